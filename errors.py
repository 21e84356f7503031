from __future__ import annotations  # Error taxonomy shared across interview components

from datetime import datetime
from typing import Any, Dict, Optional


class InterviewError(Exception):  # Base error rendered by the API layer
    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def metadata(self) -> Dict[str, Any]:  # Extra fields surfaced to callers
        return {}


class ValidationError(InterviewError):  # Malformed or out-of-bounds caller input
    status_code = 400
    code = "validation_error"


class PayloadTooLargeError(ValidationError):  # Upload above the accepted size
    status_code = 413
    code = "payload_too_large"


class AuthenticationError(InterviewError):
    status_code = 401
    code = "unauthenticated"


class SessionNotFoundError(InterviewError):
    status_code = 404
    code = "session_not_found"


class InvalidTransitionError(InterviewError):  # Transition not allowed from the current phase
    status_code = 409
    code = "invalid_transition"


class QuotaExceededError(InterviewError):  # Identity ceiling reached
    status_code = 429
    code = "quota_exceeded"

    def __init__(self, detail: str, *, remaining: int = 0, reset_at: Optional[datetime] = None) -> None:
        super().__init__(detail)
        self.remaining = remaining
        self.reset_at = reset_at

    def retry_after_seconds(self, now: datetime) -> Optional[int]:
        if self.reset_at is None:
            return None
        return max(0, int((self.reset_at - now).total_seconds()))

    def metadata(self) -> Dict[str, Any]:
        return {
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
        }


class RateLimitedError(QuotaExceededError):  # Too many requests inside the sliding window
    code = "rate_limited"


class UsageLimitError(InterviewError):  # Global spend gate is closed
    status_code = 503
    code = "service_paused"


class UpstreamUnavailableError(InterviewError):  # Provider unavailable after retries
    status_code = 503
    code = "upstream_unavailable"

    def __init__(self, detail: str, *, retry_after: Optional[int] = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after

    def metadata(self) -> Dict[str, Any]:
        return {"retry_after": self.retry_after}


class InsufficientContentError(UpstreamUnavailableError):  # Provider reply below the minimum-content contract
    code = "insufficient_content"


class ParseError(InterviewError):  # Provider reply did not match the expected shape
    code = "parse_error"


class PersistenceError(InterviewError):  # Store read or write failed
    status_code = 500
    code = "persistence_error"


__all__ = [
    "AuthenticationError",
    "InsufficientContentError",
    "InterviewError",
    "InvalidTransitionError",
    "ParseError",
    "PayloadTooLargeError",
    "PersistenceError",
    "QuotaExceededError",
    "RateLimitedError",
    "SessionNotFoundError",
    "UpstreamUnavailableError",
    "UsageLimitError",
    "ValidationError",
]
