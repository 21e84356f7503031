from __future__ import annotations  # Per-identity session quota and global spend gate

import logging
import math
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Literal, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from config.settings import Settings, settings as default_settings
from errors import PersistenceError, QuotaExceededError
from observability import log_event
from storage.usage import UsageStore

logger = logging.getLogger(__name__)

AUDIO_BYTES_PER_SECOND = 32000
AUDIO_TOKENS_PER_SECOND = 100

WarningLevel = Literal["none", "soft", "hard"]


class QuotaStatus(BaseModel):  # Result of an identity quota check
    allowed: bool
    remaining: int
    reset_at: datetime
    used: int = 0
    limit: int = 0
    warning_level: WarningLevel = "none"


def estimate_audio_tokens(num_bytes: int) -> int:
    """Token-equivalent proxy for an utterance: ~32KB per second, ~100 tokens per second."""

    if num_bytes <= 0:
        return 0
    return math.ceil(num_bytes / AUDIO_BYTES_PER_SECOND) * AUDIO_TOKENS_PER_SECOND


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageGuard:  # Gatekeeper for every language-model call
    def __init__(
        self,
        store: Optional[UsageStore] = None,
        *,
        cfg: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store or UsageStore()
        self._cfg = cfg or default_settings
        self._clock = clock

    @property
    def limit(self) -> int:
        return self._cfg.session_limit()

    def _zone(self) -> ZoneInfo:
        return ZoneInfo(self._cfg.USAGE_TIMEZONE)

    def _window(self) -> tuple[str, datetime]:  # Current calendar day and the next reset instant
        local_now = self._clock().astimezone(self._zone())
        day = local_now.date()
        reset_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self._zone())
        return day.isoformat(), reset_local.astimezone(timezone.utc)

    def check_global_gate(self) -> bool:
        """Read the persisted gate; any read failure counts as closed."""

        try:
            return self._store.read_gate()
        except PersistenceError as exc:
            logger.error("Global gate check failed, denying: %s", exc)
            return False

    def check_identity_quota(self, identity: str) -> QuotaStatus:
        day, reset_at = self._window()
        limit = self.limit
        try:
            used = self._store.count_sessions(identity, day)
        except PersistenceError as exc:
            logger.error("Quota check failed for identity=%s, denying: %s", identity, exc)
            return QuotaStatus(allowed=False, remaining=0, reset_at=reset_at, used=0, limit=limit, warning_level="hard")
        return self._status(used, limit, reset_at)

    def record_session_start(self, identity: str) -> QuotaStatus:
        """Count one accepted session for ``identity``.

        The increment is conditional on the ceiling in a single statement, so
        concurrent starts from the same identity cannot overshoot it.
        """

        day, reset_at = self._window()
        limit = self.limit
        used = self._store.increment_sessions_if_below(identity, day, limit)
        if used is None:
            log_event("quota_denied", "-", identity=identity, limit=limit)
            raise QuotaExceededError(
                "Daily session limit reached",
                remaining=0,
                reset_at=reset_at,
            )
        return self._status(used, limit, reset_at)

    def record_token_spend(
        self,
        prompt_tokens: int,
        completion_tokens: int,
        *,
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
        operation: str = "llm",
    ) -> Optional[float]:
        """Add the estimated cost to the ledger and close the gate past the ceiling.

        Returns the cumulative spend, or None when the ledger could not be written.
        """

        cost = (
            max(0, prompt_tokens) * self._cfg.PROMPT_TOKEN_RATE
            + max(0, completion_tokens) * self._cfg.COMPLETION_TOKEN_RATE
        )
        try:
            total = self._store.insert_usage(
                identity=identity,
                session_id=session_id,
                operation=operation,
                prompt_tokens=max(0, prompt_tokens),
                completion_tokens=max(0, completion_tokens),
                cost=cost,
            )
            if total >= self._cfg.SPEND_CEILING_USD and self._store.read_gate():
                self._store.write_gate(False)
                logger.warning(
                    "Spend ceiling reached (%.4f >= %.2f); closing global gate",
                    total,
                    self._cfg.SPEND_CEILING_USD,
                )
                log_event("gate_closed", session_id or "-", total_cost=round(total, 6))
        except PersistenceError as exc:
            logger.error("Failed to record token usage for %s: %s", operation, exc)
            return None
        return total

    def reopen_gate(self) -> None:
        self._store.write_gate(True)
        logger.info("Global gate reopened")

    def _status(self, used: int, limit: int, reset_at: datetime) -> QuotaStatus:
        if used >= limit - 1:
            level: WarningLevel = "hard"
        elif used >= limit - 2:
            level = "soft"
        else:
            level = "none"
        return QuotaStatus(
            allowed=used < limit,
            remaining=max(0, limit - used),
            reset_at=reset_at,
            used=used,
            limit=limit,
            warning_level=level,
        )


def session_limit_warning(status: QuotaStatus) -> Optional[str]:
    """Human-readable warning once the identity nears its ceiling."""

    if status.warning_level == "hard":
        return (
            f"Warning: You have only {status.remaining} interview sessions remaining today. "
            f"Your limit will reset at {status.reset_at.isoformat()}."
        )
    if status.warning_level == "soft":
        return f"Note: You have {status.remaining} interview sessions remaining today. Your limit will reset at midnight."
    return None


__all__ = [
    "QuotaStatus",
    "UsageGuard",
    "estimate_audio_tokens",
    "session_limit_warning",
]
