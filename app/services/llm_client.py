# app/services/llm_client.py
import asyncio, json, logging, time
from typing import Any, Dict, Optional, Union

import httpx
import openai
from httpx import Timeout, Limits
from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from app.config import Settings
from app.errors import (
    GenerationTimeoutError,
    UpstreamContractError,
    UpstreamGenericError,
    UpstreamQuotaError,
    UpstreamRateLimitError,
    ValidationError,
)
from app.models.generation_models import (
    COUNTED_CAPABILITIES,
    FREE_FORM_CAPABILITIES,
    QUESTION_COUNTS,
    RESULT_MODELS,
    TEXT_CAPABILITIES,
    Capability,
    GenerationPayload,
    GenerationResult,
    RecommendationPayload,
    TextPayload,
    WeaknessPayload,
    result_items,
)
from app.services.lenient_json import parse_free_form
from app.services.prompt_builder import TOOLS, build_messages

log = logging.getLogger("examprep")

DEFAULT_QUESTION_COUNT = 5


def _client_from_settings(settings: Settings) -> AsyncOpenAI:
    if not settings.gateway_api_key:
        log.error("[llm] AI_GATEWAY_API_KEY is not set")
        raise UpstreamGenericError("The AI service is not configured.", detail="AI_GATEWAY_API_KEY is not set")
    http_client = httpx.AsyncClient(
        http2=False,
        headers={"Accept-Encoding": "identity", "Connection": "keep-alive"},
        timeout=Timeout(connect=30.0, read=120.0, write=30.0, pool=120.0),
        limits=Limits(max_connections=10, max_keepalive_connections=2),
        trust_env=False,
    )
    # max_retries=0: every call is metered, retry is the caller's decision
    return AsyncOpenAI(
        api_key=settings.gateway_api_key,
        base_url=settings.gateway_base_url,
        http_client=http_client,
        max_retries=0,
    )


class GenerationClient:
    """
    Invokes one named generation capability against the AI gateway.

    quiz / fillBlank / multipleChoice / shortAnswer are requested through a forced
    function tool and must come back with exactly `question_count` items, anything
    else is an UpstreamContractError. solve / weaknessAnalysis / recommendation are
    free-form and parsed leniently, falling back to a single synthetic item.
    No automatic retry is performed.

    Built from settings, the AsyncOpenAI client is created on the first call,
    so a missing API key only fails generation, not app startup.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        settings: Optional[Settings] = None,
        model: str = "google/gemini-2.5-flash",
        solve_model: str = "google/gemini-2.5-flash-lite",
        solve_timeout: float = 55.0,
        text_limit: int = 3000,
    ):
        self._client = client
        self._settings = settings
        self.model = model
        self.solve_model = solve_model
        self.solve_timeout = solve_timeout
        self.text_limit = text_limit

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationClient":
        return cls(
            settings=settings,
            model=settings.generation_model,
            solve_model=settings.solve_model,
            solve_timeout=settings.solve_timeout_seconds,
            text_limit=settings.recommendation_text_limit,
        )

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if self._settings is None:
                raise UpstreamGenericError(detail="no AI gateway client or settings")
            self._client = _client_from_settings(self._settings)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()

    # ---------- preconditions ----------

    @staticmethod
    def validate(capability: Capability, payload: GenerationPayload) -> Optional[int]:
        """Returns the resolved question count for counted capabilities."""
        if capability in TEXT_CAPABILITIES:
            if not isinstance(payload, TextPayload):
                raise ValidationError(f"{capability.value} expects a text payload.")
            if not payload.text or not payload.text.strip():
                raise ValidationError("The text is empty.")
            count = payload.question_count
            if count is not None and count not in QUESTION_COUNTS:
                raise ValidationError("The number of questions must be 5, 10 or 15.")
            if capability in COUNTED_CAPABILITIES:
                return count or DEFAULT_QUESTION_COUNT
            return None
        if capability is Capability.weakness_analysis:
            if not isinstance(payload, WeaknessPayload):
                raise ValidationError("Wrong-answer data was not provided.")
            if not payload.wrong_answers:
                raise ValidationError("There are no wrong answers to analyze.")
            return None
        if capability is Capability.recommendation:
            if not isinstance(payload, RecommendationPayload):
                raise ValidationError("Weakness data was not provided.")
            if not payload.pdf_text or not payload.pdf_text.strip():
                raise ValidationError("The PDF text was not provided.")
            return None
        raise ValidationError(f"Unknown capability: {capability}")

    # ---------- public ----------

    async def generate(self, capability: Union[Capability, str], payload: GenerationPayload) -> GenerationResult:
        try:
            capability = Capability(capability)
        except ValueError:
            raise ValidationError(f"Unknown capability: {capability}")
        count = self.validate(capability, payload)
        if count is not None and payload.question_count != count:
            payload = payload.model_copy(update={"question_count": count})

        messages = build_messages(capability, payload, text_limit=self.text_limit)
        t0 = time.time()
        log.info(f"[llm] {capability.value} start count={count} prompt_chars={sum(len(m['content']) for m in messages)}")
        if capability in FREE_FORM_CAPABILITIES:
            result = await self._free_form(capability, payload, messages)
        else:
            result = await self._tool_call(capability, count, messages)
        dt = int((time.time() - t0) * 1000)
        log.info(f"[llm] {capability.value} done items={len(result_items(result))} {dt}ms")
        return result

    # ---------- remote ----------

    async def _complete(self, capability: Capability, **kwargs: Any):
        is_solve = capability is Capability.solve
        try:
            call = self.client.chat.completions.create(temperature=0, **kwargs)
            if is_solve:
                return await asyncio.wait_for(call, timeout=self.solve_timeout)
            return await call
        except asyncio.TimeoutError:
            log.error(f"[llm] {capability.value} timed out after {self.solve_timeout}s")
            raise GenerationTimeoutError()
        except openai.APITimeoutError as e:
            log.error(f"[llm] {capability.value} transport timeout: {e}")
            if is_solve:
                raise GenerationTimeoutError()
            raise UpstreamGenericError(detail=str(e)) from e
        except openai.RateLimitError as e:
            raise UpstreamRateLimitError(detail=str(e)) from e
        except openai.APIStatusError as e:
            if e.status_code == 429:
                raise UpstreamRateLimitError(detail=str(e)) from e
            if e.status_code == 402:
                raise UpstreamQuotaError(detail=str(e)) from e
            log.error(f"[llm] AI gateway error: {e.status_code} {str(e)[:200]}")
            raise UpstreamGenericError(detail=f"status {e.status_code}") from e
        except openai.APIConnectionError as e:
            log.error(f"[llm] AI gateway unreachable: {e}")
            raise UpstreamGenericError(detail=str(e)) from e

    async def _tool_call(self, capability: Capability, count: int, messages):
        tool = TOOLS[capability](count)
        name = tool["function"]["name"]
        resp = await self._complete(
            capability,
            model=self.model,
            messages=messages,
            tools=[tool],
            tool_choice={"type": "function", "function": {"name": name}},
        )
        tool_calls = resp.choices[0].message.tool_calls if resp.choices else None
        if not tool_calls:
            raise UpstreamContractError(detail="no tool call in response")
        try:
            args: Dict[str, Any] = json.loads(tool_calls[0].function.arguments)
        except (TypeError, ValueError) as e:
            raise UpstreamContractError(detail=f"tool arguments are not JSON: {e}") from e
        if not isinstance(args, dict):
            raise UpstreamContractError(detail="tool arguments are not an object")
        args.pop("capability", None)
        try:
            result = RESULT_MODELS[capability].model_validate(args)
        except PydanticValidationError as e:
            raise UpstreamContractError(detail=f"schema mismatch: {e.error_count()} errors") from e
        got = len(result.questions)
        if got != count:
            log.warning(f"[llm] {capability.value} returned {got} items, expected {count}")
            raise UpstreamContractError(
                f"The AI returned {got} questions instead of {count}. Please try again.",
                detail="item count mismatch",
            )
        return result

    async def _free_form(self, capability: Capability, payload: GenerationPayload, messages):
        model = self.solve_model if capability is Capability.solve else self.model
        resp = await self._complete(capability, model=model, messages=messages)
        content = (resp.choices[0].message.content if resp.choices else None) or ""
        return parse_free_form(capability, content, payload)
