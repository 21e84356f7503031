from __future__ import annotations  # Persisted record shapes for the session store

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from prompt_gateway.models import AnswerAnalysis, Category, Difficulty, JobData, ReportDraft

SessionStatus = Literal["in_progress", "completed", "abandoned"]
QuestionStage = Literal["main", "follow_up", "final"]


class SessionRecord(BaseModel):  # interview_sessions row
    id: str
    user_id: Optional[str] = None
    identity: str
    status: SessionStatus = "in_progress"
    job_description: str
    job_title: Optional[str] = None
    company: Optional[str] = None
    job_data: JobData = Field(default_factory=JobData)
    machine_state: Optional[str] = None
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None


class NewQuestion(BaseModel):  # Question payload before persistence; id is assigned on insert when omitted
    id: Optional[str] = None
    text: str
    category: Category = "general"
    skill: str = "General"
    difficulty: Difficulty = "medium"
    stage: QuestionStage = "main"
    is_follow_up: bool = False
    parent_question_id: Optional[str] = None


class QuestionRecord(NewQuestion):  # questions row
    id: str
    session_id: str
    position: int
    created_at: str


class AnswerRecord(BaseModel):  # answers row
    id: str
    session_id: str
    question_id: str
    content: str
    analysis: Optional[AnswerAnalysis] = None
    created_at: str


class ReportRecord(BaseModel):  # feedback_reports row
    id: str
    session_id: str
    version: int
    report: ReportDraft
    created_at: str


class SessionDetails(BaseModel):  # Session with questions, answers and reports
    session: SessionRecord
    questions: List[QuestionRecord] = Field(default_factory=list)
    answers: List[AnswerRecord] = Field(default_factory=list)
    reports: List[ReportRecord] = Field(default_factory=list)

    def question(self, question_id: str) -> Optional[QuestionRecord]:
        return next((item for item in self.questions if item.id == question_id), None)

    def answer_for(self, question_id: str) -> Optional[AnswerRecord]:
        return next((item for item in self.answers if item.question_id == question_id), None)

    def latest_report(self) -> Optional[ReportRecord]:
        if not self.reports:
            return None
        return max(self.reports, key=lambda item: item.version)


class UserStats(BaseModel):  # Dashboard summary for one identity
    total_interviews: int = 0
    completed_interviews: int = 0
    average_score: float = 0.0
    last_interview_date: Optional[str] = None


class UsageRecord(BaseModel):  # token_usage row
    timestamp: str
    identity: Optional[str] = None
    session_id: Optional[str] = None
    operation: str
    prompt_tokens: int
    completion_tokens: int
    cost: float
