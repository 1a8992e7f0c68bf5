# app/errors.py
"""
Error taxonomy shared by the extraction pipeline, the generation client and the
study session. Every error carries one human-readable message meant for the
learner, plus a machine `kind` and the HTTP status the API layer answers with.
"""
from typing import Optional


class AppError(Exception):
    kind = "error"
    status_code = 500
    default_message = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.user_message = message or self.default_message
        self.detail = detail
        super().__init__(self.user_message)

    def to_dict(self) -> dict:
        return {"error": self.user_message, "kind": self.kind}


class ValidationError(AppError):
    """Bad local input. Raised before any remote call is made."""
    kind = "validation"
    status_code = 400
    default_message = "The request is invalid."


class NotFoundError(AppError):
    kind = "not_found"
    status_code = 404
    default_message = "The requested item was not found."


class SessionStateError(AppError):
    kind = "session_state"
    status_code = 409
    default_message = "This action is not available for the current question set."


# ===== upstream (AI gateway) =====

class UpstreamError(AppError):
    """Any failure talking to the AI gateway."""
    kind = "upstream"
    status_code = 502
    default_message = "An error occurred during AI analysis."


class UpstreamGenericError(UpstreamError):
    """Non-2xx status without a specific mapping, transport failure or missing configuration."""


class UpstreamRateLimitError(UpstreamError):
    kind = "rate_limit"
    status_code = 429
    default_message = "The request limit was exceeded. Please try again in a moment."


class UpstreamQuotaError(UpstreamError):
    kind = "quota"
    status_code = 402
    default_message = "Credits are exhausted. Please add credits to the AI workspace."


class UpstreamContractError(UpstreamError):
    """The gateway answered, but not with the agreed shape or item count."""
    kind = "contract"
    status_code = 502
    default_message = "The AI returned a malformed result. Please try again."


class GenerationTimeoutError(UpstreamError, TimeoutError):
    kind = "timeout"
    status_code = 504
    default_message = "The AI response timed out. Shorten the text or try again."


# ===== extraction / persistence =====

class ExtractionError(AppError):
    kind = "extraction"
    status_code = 422
    default_message = "An error occurred while processing the PDF file."


class ExtractionBusyError(ExtractionError):
    kind = "extraction_busy"
    status_code = 409
    default_message = "A PDF is already being processed. Wait for it to finish."


class PersistenceError(AppError):
    """Non-fatal: results already shown to the learner stay valid."""
    kind = "persistence"
    status_code = 503
    default_message = "An error occurred while saving."
