"""Error taxonomy for the submission pipeline.

Collaborators (AI backend, object storage, record store) raise these
exceptions; the orchestrator catches them and turns each one into an
explicit ``SubmissionResult`` value. Only ``SessionError`` (no requester)
escapes ``submit()``.

``sanitize_error`` converts provider/internal messages into text that is
safe to show to end users (never leaks keys or stack details).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


class ClaimsError(Exception):
    """Base class for every pipeline error."""


class SubmissionValidationError(ClaimsError):
    """Client-correctable request problem. Raised before any I/O."""


class RateLimitedError(ClaimsError):
    """Every candidate model is out of quota."""

    def __init__(self, retry_after_seconds: int, exhausted_models: Sequence[str]):
        self.retry_after_seconds = retry_after_seconds
        self.exhausted_models = list(exhausted_models)
        super().__init__(
            f"All AI models are at capacity ({', '.join(self.exhausted_models)}). "
            f"Please wait {retry_after_seconds} seconds and try again."
        )


class AnalysisTimeoutError(ClaimsError):
    """The AI call did not finish within the wall-clock budget."""


class UploadError(ClaimsError):
    """An object storage write failed."""


class PersistError(ClaimsError):
    """Writing the parent record or its children failed."""


class ProviderUnavailable(ClaimsError):
    """The AI provider could not be reached or refused the call."""


class QuotaExceeded(ClaimsError):
    """The AI provider reported a quota / 429 error for one model."""


class MalformedResponse(ClaimsError):
    """The AI provider answered with something that is not a usable analysis."""


class SessionError(ClaimsError):
    """No valid session for the caller."""


@dataclass
class SecurityWarning:
    """Informational scan finding attached to a successful result."""
    source: str
    risk_level: str
    reasoning: str
    matched_categories: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "risk_level": self.risk_level,
            "reasoning": self.reasoning,
            "matched_categories": list(self.matched_categories),
        }


_RATE_LIMIT_MARKERS = ("rate_limit", "rate limit", "quota", "429", "resource_exhausted", "too many requests")


def is_rate_limit_error(exc: Optional[BaseException]) -> bool:
    """Return True for provider errors that mean "model at capacity"."""
    if exc is None:
        return False
    if isinstance(exc, (QuotaExceeded, RateLimitedError)):
        return True
    code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    if code in (429, "429"):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def sanitize_error(exc: BaseException) -> str:
    """Map an exception to a user-facing message."""
    if is_rate_limit_error(exc):
        return "AI models are currently at capacity. Please wait and try again."
    if isinstance(exc, (AnalysisTimeoutError, SubmissionValidationError)):
        return str(exc)

    message = str(exc).lower()
    if "api_key_invalid" in message or "invalid api key" in message or "api key not valid" in message:
        return "AI service configuration error. Please contact support."
    if "file_too_large" in message or "too large" in message:
        return "File size exceeds maximum allowed."
    if "401" in message or "unauthorized" in message:
        return "Authentication failed. Please check your API configuration."
    if "network" in message or "connection" in message:
        return "Network error. Please check your connection and try again."
    if "safety" in message or "blocked" in message:
        return "Content was blocked by safety filters. Please try different input."
    if isinstance(exc, MalformedResponse):
        return "AI service returned an unreadable analysis. Please try again."
    if isinstance(exc, ProviderUnavailable) or "gemini" in message or "google" in message:
        return "AI service error. Please try again."
    return "An unexpected error occurred. Please try again."


__all__ = [
    "ClaimsError",
    "SubmissionValidationError",
    "RateLimitedError",
    "AnalysisTimeoutError",
    "UploadError",
    "PersistError",
    "ProviderUnavailable",
    "QuotaExceeded",
    "MalformedResponse",
    "SessionError",
    "SecurityWarning",
    "is_rate_limit_error",
    "sanitize_error",
]
