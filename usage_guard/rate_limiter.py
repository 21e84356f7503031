from __future__ import annotations  # Sliding-window request limiter per identity

import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Optional

from config.settings import Settings, settings as default_settings
from errors import RateLimitedError
from observability import log_event

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:  # In-process limiter for mutating API calls
    def __init__(
        self,
        limit: int,
        window_s: float,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.limit = limit
        self.window = timedelta(seconds=window_s)
        self._clock = clock
        self._hits: Dict[str, Deque[datetime]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "RateLimiter":
        cfg = cfg or default_settings
        return cls(cfg.RATE_LIMIT_REQUESTS, cfg.RATE_LIMIT_WINDOW_S)

    def _prune(self, identity: str, now: datetime) -> Deque[datetime]:
        hits = self._hits.get(identity)
        if hits is None:
            return deque()
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if not hits:
            del self._hits[identity]
        return hits

    def remaining(self, identity: str) -> int:
        with self._lock:
            hits = self._prune(identity, self._clock())
            return max(0, self.limit - len(hits))

    def hit(self, identity: str) -> int:
        """Count one request for ``identity`` and return how many are left in the window.

        Raises ``RateLimitedError`` without counting when the window is already full.
        """

        with self._lock:
            now = self._clock()
            hits = self._prune(identity, now)
            if len(hits) >= self.limit:
                reset_at = hits[0] + self.window
                log_event("rate_limited", "-", identity=identity, limit=self.limit)
                raise RateLimitedError(
                    f"Too many requests; at most {self.limit} per {int(self.window.total_seconds())}s",
                    remaining=0,
                    reset_at=reset_at,
                )
            hits.append(now)
            self._hits[identity] = hits
            return self.limit - len(hits)

    def tracked_identities(self) -> int:
        with self._lock:
            return len(self._hits)


__all__ = ["RateLimiter"]
