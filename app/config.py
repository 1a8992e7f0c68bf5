# app/config.py
"""
Environment-driven settings.

Everything is read from os.environ so Vercel / docker / local .env behave the same.
"""
import os
from functools import lru_cache
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


class Settings:
    """Base configuration"""

    def __init__(self) -> None:
        # AI gateway (OpenAI-compatible chat/completions)
        self.gateway_api_key = os.environ.get("AI_GATEWAY_API_KEY", "")
        self.gateway_base_url = os.environ.get("AI_GATEWAY_BASE_URL", "https://ai.gateway.lovable.dev/v1")
        self.generation_model = os.environ.get("GENERATION_MODEL", "google/gemini-2.5-flash")
        self.solve_model = os.environ.get("SOLVE_MODEL", "google/gemini-2.5-flash-lite")
        self.solve_timeout_seconds = _env_float("SOLVE_TIMEOUT_SECONDS", 55.0)
        self.recommendation_text_limit = _env_int("RECOMMENDATION_TEXT_LIMIT", 3000)

        # Redis (uploads, wrong answers, bookmarks, jobs)
        self.redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
        self.job_ttl_seconds = _env_int("JOB_TTL_SECONDS", 86400)

        # Extraction
        self.ocr_lang = os.environ.get("OCR_LANG", "kor+eng")
        self.tesseract_cmd = os.environ.get("TESSERACT_CMD") or None
        self.raster_scale = _env_float("RASTER_SCALE", 2.0)
        self.max_upload_bytes = _env_int("MAX_UPLOAD_BYTES", 20 * 1024 * 1024)

        # Sessions (in memory)
        self.session_ttl_seconds = _env_float("SESSION_TTL_SECONDS", 7200.0)

        # 多个来源用逗号分隔：例如 "http://localhost:5173,https://your-frontend.com"
        allow = os.environ.get("CORS_ALLOW_ORIGIN", "")
        self.cors_allow_origins: List[str] = [o.strip() for o in allow.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
