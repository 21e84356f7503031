from __future__ import annotations  # Bounded exponential-backoff retry for outbound HTTP calls

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from config.settings import Settings, settings as default_settings


logger = logging.getLogger(__name__)


class HttpResponse(Protocol):  # Minimal HTTP response protocol
    @property
    def status_code(self) -> int: ...

    def json(self) -> Any: ...

    @property
    def text(self) -> str: ...


class RetryExhaustedError(RuntimeError):  # Terminal failure after the last attempt
    def __init__(self, message: str, *, attempts: int, last_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_status = last_status


class RetryableStatusError(RuntimeError):  # Retryable HTTP status wrapped as an error
    def __init__(self, status_code: int) -> None:
        super().__init__(f"Server error: {status_code}")
        self.status_code = status_code


@dataclass
class RetryOptions:  # Retry policy knobs
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    on_retry: Optional[Callable[[int, Exception], None]] = None

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "RetryOptions":
        cfg = cfg or default_settings
        return cls(
            max_retries=cfg.RETRY_MAX_RETRIES,
            initial_delay_ms=cfg.RETRY_INITIAL_DELAY_MS,
            max_delay_ms=cfg.RETRY_MAX_DELAY_MS,
            backoff_multiplier=cfg.RETRY_BACKOFF_MULTIPLIER,
        )

    def worst_case_wait_ms(self) -> int:
        """Upper bound on the total time spent sleeping between attempts."""

        total = 0.0
        delay = float(self.initial_delay_ms)
        for _ in range(self.max_retries):
            total += min(delay, self.max_delay_ms)
            delay *= self.backoff_multiplier
        return int(total)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def execute(
    send: Callable[[], HttpResponse],
    options: Optional[RetryOptions] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> HttpResponse:
    """Call ``send`` until it succeeds, returns a non-retryable status, or retries run out.

    2xx and non-429 4xx responses are returned to the caller unchanged. 429,
    5xx and transport exceptions are retried with exponential backoff; the
    wait before each retry is capped at ``max_delay_ms``.
    """

    opts = options or RetryOptions()
    delay = float(opts.initial_delay_ms)
    last_error: Optional[Exception] = None
    last_status: Optional[int] = None

    for attempt in range(opts.max_retries + 1):
        try:
            response = send()
            status = response.status_code
            if 200 <= status < 300:
                if attempt > 0:
                    logger.info("Request succeeded after %d retries", attempt)
                return response
            if not is_retryable_status(status):
                logger.warning("Client error %s, not retrying", status)
                return response
            last_status = status
            raise RetryableStatusError(status)
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if attempt == opts.max_retries:
                break
            if opts.on_retry is not None:
                opts.on_retry(attempt + 1, exc)
            wait_ms = min(delay, float(opts.max_delay_ms))
            logger.warning(
                "Attempt %d failed: %s. Retrying in %dms",
                attempt + 1,
                exc,
                int(wait_ms),
            )
            sleep(wait_ms / 1000.0)
            delay *= opts.backoff_multiplier

    message = str(last_error) if last_error is not None else "request failed"
    logger.error("Request failed after %d retries: %s", opts.max_retries, message)
    raise RetryExhaustedError(message, attempts=opts.max_retries + 1, last_status=last_status) from last_error


__all__ = [
    "HttpResponse",
    "RetryExhaustedError",
    "RetryOptions",
    "RetryableStatusError",
    "execute",
    "is_retryable_status",
]
