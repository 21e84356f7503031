"""Persistence helpers for usage counters, the spend ledger and the global gate."""
from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .models import UsageRecord
from .sqlite import get_conn

GATE_KEY = "ALLOW_LLM_CALLS"


class TokenUsagePayload(BaseModel):
    identity: Optional[str] = None
    session_id: Optional[str] = None
    operation: str
    prompt_tokens: int = Field(ge=0)
    completion_tokens: int = Field(ge=0)
    cost: float = Field(ge=0.0)


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class UsageStore:  # Quota counters and spend ledger
    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path

    def read_gate(self) -> bool:
        """Return True when language-model calls are allowed; a missing row reads as closed."""

        with get_conn(self._db_path) as conn:
            row = conn.execute("SELECT value FROM global_settings WHERE key = ?", (GATE_KEY,)).fetchone()
        return row is not None and str(row["value"]).lower() == "true"

    def write_gate(self, allowed: bool) -> None:
        with get_conn(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO global_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (GATE_KEY, "true" if allowed else "false", _now()),
            )

    def count_sessions(self, identity: str, day: str) -> int:
        with get_conn(self._db_path) as conn:
            row = conn.execute(
                "SELECT count FROM session_usage WHERE identity = ? AND day = ?",
                (identity, day),
            ).fetchone()
        return int(row["count"]) if row else 0

    def increment_sessions_if_below(self, identity: str, day: str, limit: int) -> Optional[int]:
        """Atomically add one session for ``identity`` on ``day`` unless ``limit`` is reached.

        Returns the new count, or None when the ceiling was already hit.
        """

        with get_conn(self._db_path) as conn:
            cur = conn.execute(
                """
                INSERT INTO session_usage (identity, day, count) VALUES (?, ?, 1)
                ON CONFLICT(identity, day) DO UPDATE SET count = count + 1
                WHERE session_usage.count < ?
                """,
                (identity, day, limit),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT count FROM session_usage WHERE identity = ? AND day = ?",
                (identity, day),
            ).fetchone()
        return int(row["count"])

    def insert_usage(self, **data: Any) -> float:
        """Insert a ledger row and return the cumulative cost including it."""

        payload = TokenUsagePayload(**data)
        with get_conn(self._db_path) as conn:
            conn.execute(
                """INSERT INTO token_usage
                   (timestamp, identity, session_id, operation, prompt_tokens, completion_tokens, cost)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    _now(),
                    payload.identity,
                    payload.session_id,
                    payload.operation,
                    payload.prompt_tokens,
                    payload.completion_tokens,
                    payload.cost,
                ),
            )
            total = conn.execute("SELECT COALESCE(SUM(cost), 0) FROM token_usage").fetchone()[0]
        return float(total)

    def total_cost(self) -> float:
        with get_conn(self._db_path) as conn:
            total = conn.execute("SELECT COALESCE(SUM(cost), 0) FROM token_usage").fetchone()[0]
        return float(total)

    def recent_usage(self, limit: int = 20) -> List[UsageRecord]:
        with get_conn(self._db_path) as conn:
            rows = conn.execute(
                """
                SELECT timestamp, identity, session_id, operation, prompt_tokens, completion_tokens, cost
                FROM token_usage
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [UsageRecord(**dict(row)) for row in rows]


__all__ = ["GATE_KEY", "TokenUsagePayload", "UsageStore"]
