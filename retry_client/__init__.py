from __future__ import annotations  # Re-export retry_client public API

from .retry_client import (
    HttpResponse,
    RetryableStatusError,
    RetryExhaustedError,
    RetryOptions,
    execute,
    is_retryable_status,
)

__all__ = [
    "HttpResponse",
    "RetryableStatusError",
    "RetryExhaustedError",
    "RetryOptions",
    "execute",
    "is_retryable_status",
]
