from __future__ import annotations  # Re-export storage public API

from .migrate import migrate
from .models import (
    AnswerRecord,
    NewQuestion,
    QuestionRecord,
    ReportRecord,
    SessionDetails,
    SessionRecord,
    UsageRecord,
    UserStats,
)
from .sessions import SessionStore
from .usage import GATE_KEY, UsageStore

__all__ = [
    "GATE_KEY",
    "AnswerRecord",
    "NewQuestion",
    "QuestionRecord",
    "ReportRecord",
    "SessionDetails",
    "SessionRecord",
    "SessionStore",
    "UsageRecord",
    "UsageStore",
    "UserStats",
    "migrate",
]
