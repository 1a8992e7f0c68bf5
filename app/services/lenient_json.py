"""
Lenient parsing for capabilities the gateway answers with free-form text
(solve, weakness analysis, recommendation).

The model is asked for bare JSON but sometimes wraps it in ``` fences or adds
prose. We strip fences, try the whole string, then the outermost {...}. Anything
that still fails (or parses into the wrong shape) becomes a single synthetic
item built from the raw text, so callers always get a well-shaped result.
"""
import json
import logging
import re
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.models.generation_models import (
    Capability,
    GenerationPayload,
    ProblemSolution,
    RecommendationPayload,
    RecommendationResult,
    RecommendedProblem,
    SolveResult,
    Weakness,
    WeaknessPayload,
    WeaknessResult,
    RESULT_MODELS,
)

log = logging.getLogger("examprep")

_FENCE = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)


def strip_code_fences(s: str) -> str:
    return _FENCE.sub("", s or "").strip()


def safe_json_loads(s: str) -> Tuple[Optional[Dict[str, Any]], str]:
    if not s:
        return None, "Empty model output"
    text = strip_code_fences(s)
    try:
        obj = json.loads(text)
        if isinstance(obj, dict):
            return obj, ""
    except ValueError:
        pass

    # Fallback: extract first JSON object from text
    m = re.search(r"\{.*\}", text, flags=re.DOTALL)
    if m:
        try:
            obj = json.loads(m.group(0))
            if isinstance(obj, dict):
                return obj, ""
        except ValueError:
            pass
    return None, "Model did not return valid json"


# ===== fallbacks: one synthetic item per capability =====

def solve_fallback(content: str, payload: GenerationPayload) -> SolveResult:
    return SolveResult(problems=[ProblemSolution(
        problem="Analyzed content",
        solution=content,
        key_points="See the solution above for details.",
    )])


def weakness_fallback(content: str, payload: WeaknessPayload) -> WeaknessResult:
    wrong = payload.wrong_answers
    return WeaknessResult(weaknesses=[Weakness(
        category="General",
        error_count=len(wrong),
        error_rate=100.0,
        examples=[wa.question for wa in wrong[:3]],
    )])


def recommendation_fallback(content: str, payload: RecommendationPayload) -> RecommendationResult:
    category = payload.weaknesses[0].category if payload.weaknesses else "General"
    return RecommendationResult(problems=[RecommendedProblem(
        problem=content,
        category=category,
        difficulty="medium",
        hint="Review the PDF content again.",
        answer="The answer could not be determined.",
        explanation="Use the PDF content to work out the answer.",
    )])


FALLBACKS: Dict[Capability, Callable[[str, Any], Any]] = {
    Capability.solve: solve_fallback,
    Capability.weakness_analysis: weakness_fallback,
    Capability.recommendation: recommendation_fallback,
}


def parse_free_form(capability: Capability, content: str, payload: GenerationPayload):
    """Never raises for bad model output; returns the capability's fallback instead."""
    model = RESULT_MODELS[capability]
    obj, err = safe_json_loads(content)
    if obj is not None:
        obj.pop("capability", None)
        try:
            return model.model_validate(obj)
        except PydanticValidationError as e:
            err = f"unexpected shape: {e.error_count()} validation errors"
    log.warning(f"[llm] {capability.value}: {err}; using fallback result")
    return FALLBACKS[capability](content or "", payload)
