"""Pydantic schemas for the interview session API."""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from interview_session import Phase, TurnResult
from prompt_gateway import JobData
from storage import AnswerRecord, QuestionRecord, ReportRecord, SessionDetails, SessionRecord


class StartReq(BaseModel):
    job_description: str = Field(alias="jobDescription")

    model_config = ConfigDict(populate_by_name=True)


class AnswerReq(BaseModel):
    answer: str


class QuestionPayload(BaseModel):
    id: str
    text: str
    category: str
    skill: str
    stage: str
    is_follow_up: bool = False
    position: int

    @classmethod
    def from_record(cls, record: QuestionRecord) -> "QuestionPayload":
        return cls(
            id=record.id,
            text=record.text,
            category=record.category,
            skill=record.skill,
            stage=record.stage,
            is_follow_up=record.is_follow_up,
            position=record.position,
        )


class TurnResp(BaseModel):
    session_id: str
    phase: Phase
    question: Optional[QuestionPayload] = None
    report: Optional[ReportRecord] = None
    progress: float = 0.0
    warning: Optional[str] = None

    @classmethod
    def from_result(cls, result: TurnResult) -> "TurnResp":
        return cls(
            session_id=result.session_id,
            phase=result.phase,
            question=QuestionPayload.from_record(result.question) if result.question else None,
            report=result.report,
            progress=result.progress,
            warning=result.warning,
        )


class SessionSummary(BaseModel):  # Session row without the engine checkpoint
    id: str
    status: Literal["in_progress", "completed", "abandoned"]
    job_title: Optional[str] = None
    company: Optional[str] = None
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: SessionRecord) -> "SessionSummary":
        return cls(
            id=record.id,
            status=record.status,
            job_title=record.job_title,
            company=record.company,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
        )


class SessionResp(BaseModel):
    session: SessionSummary
    job_description: str
    job_data: JobData
    phase: Phase
    progress: float
    current_question: Optional[QuestionPayload] = None
    questions: List[QuestionPayload] = Field(default_factory=list)
    answers: List[AnswerRecord] = Field(default_factory=list)
    reports: List[ReportRecord] = Field(default_factory=list)

    @classmethod
    def from_details(cls, details: SessionDetails, turn: TurnResult) -> "SessionResp":
        return cls(
            session=SessionSummary.from_record(details.session),
            job_description=details.session.job_description,
            job_data=details.session.job_data,
            phase=turn.phase,
            progress=turn.progress,
            current_question=QuestionPayload.from_record(turn.question) if turn.question else None,
            questions=[QuestionPayload.from_record(item) for item in details.questions],
            answers=details.answers,
            reports=details.reports,
        )


class UsageResp(BaseModel):
    allowed: bool
    remaining: int
    used: int
    limit: int
    reset_at: datetime
    warning_level: Literal["none", "soft", "hard"]
    warning: Optional[str] = None
    service_available: bool
    requests_remaining: int


class TranscriptionResp(BaseModel):
    text: str
