from __future__ import annotations  # Re-export prompt_gateway public API

from .models import (
    AnswerAnalysis,
    DangerZone,
    FinalPair,
    GeneratedQuestion,
    JobData,
    QAItem,
    QuestionFeedback,
    ReportDraft,
)
from .gateway import FALLBACK_FINAL_PAIR, FALLBACK_FOLLOW_UP, PromptGateway, build_report

__all__ = [
    "FALLBACK_FINAL_PAIR",
    "FALLBACK_FOLLOW_UP",
    "AnswerAnalysis",
    "DangerZone",
    "FinalPair",
    "GeneratedQuestion",
    "JobData",
    "PromptGateway",
    "QAItem",
    "QuestionFeedback",
    "ReportDraft",
    "build_report",
]
