"""
Tesseract-backed OCR worker.

One engine is started per extraction run and terminated when the run ends.
`start()` checks the tesseract binary and the requested language packs once, so a
missing install fails the run up front instead of on page N.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Optional

import pytesseract
from PIL import Image

log = logging.getLogger("examprep")


class OcrEngineError(RuntimeError):
    pass


class OcrEngine:
    def __init__(self, lang: str = "kor+eng", tesseract_cmd: Optional[str] = None, config: str = "--psm 6"):
        self.lang = lang
        self.config = config
        self.tesseract_cmd = tesseract_cmd
        self._started = False
        self._terminated = False

    @property
    def active(self) -> bool:
        return self._started and not self._terminated

    def _configure_binary(self) -> None:
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        elif shutil.which("tesseract") is None:
            for cand in ("/usr/bin/tesseract", "/usr/local/bin/tesseract"):
                if shutil.which(cand):
                    pytesseract.pytesseract.tesseract_cmd = cand
                    break

    def _check_install(self) -> None:
        self._configure_binary()
        try:
            version = pytesseract.get_tesseract_version()
            installed = set(pytesseract.get_languages(config=""))
        except Exception as e:
            raise OcrEngineError(f"tesseract not available: {e}") from e
        missing = [l for l in self.lang.split("+") if l not in installed]
        if missing:
            raise OcrEngineError(f"tesseract language data missing: {', '.join(missing)}")
        log.info(f"[ocr] tesseract {version} ready lang={self.lang}")

    async def start(self) -> "OcrEngine":
        if self._terminated:
            raise OcrEngineError("engine already terminated")
        await asyncio.to_thread(self._check_install)
        self._started = True
        return self

    async def recognize(self, image: Image.Image) -> str:
        if not self.active:
            raise OcrEngineError("engine is not running")
        text = await asyncio.to_thread(
            pytesseract.image_to_string, image, lang=self.lang, config=self.config
        )
        return text or ""

    async def terminate(self) -> None:
        if not self._terminated:
            self._terminated = True
            log.info("[ocr] engine terminated")

    async def __aenter__(self) -> "OcrEngine":
        try:
            return await self.start()
        except BaseException:
            await self.terminate()
            raise

    async def __aexit__(self, *exc) -> None:
        await self.terminate()
