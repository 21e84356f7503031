"""Typed results returned by the prompt gateway."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Category = Literal["technical", "behavioral", "situational", "general"]
Difficulty = Literal["easy", "medium", "hard"]
Severity = Literal["low", "medium", "high"]
DangerZoneType = Literal[
    "missing_required_skill",
    "vague_response",
    "poor_situational_judgment",
    "value_misalignment",
]


class JobData(BaseModel):  # Structured job description
    title: str = "Unknown Position"
    company: str = "Unknown Company"
    required_skills: List[str] = Field(default_factory=list)
    preferred_skills: List[str] = Field(default_factory=list)
    responsibilities: List[str] = Field(default_factory=list)
    qualifications: List[str] = Field(default_factory=list)
    company_values: List[str] = Field(default_factory=list)


class GeneratedQuestion(BaseModel):  # Question proposed by the provider
    id: str
    text: str
    type: Category = "general"
    skill: str = "General"
    difficulty: Difficulty = "medium"


class DangerZone(BaseModel):  # Flagged gap in an answer
    type: DangerZoneType
    skill: str
    severity: Severity
    description: str


class AnswerAnalysis(BaseModel):  # Per-answer scoring on a 1-10 scale
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    missing_competencies: List[str] = Field(default_factory=list)
    score: float = Field(default=5.0, ge=1.0, le=10.0)
    needs_follow_up: bool = False
    danger_zones: List[DangerZone] = Field(default_factory=list)


class FinalPair(BaseModel):  # Closing questions
    classic: str
    curveball: str


class QAItem(BaseModel):  # Question/answer pair fed to the report prompt
    question: str
    category: Category = "general"
    skill: str = "General"
    is_follow_up: bool = False
    answer: str = ""
    analysis: Optional[AnswerAnalysis] = None


class QuestionFeedback(BaseModel):
    question: str
    score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class ReportDraft(BaseModel):  # Feedback report on the canonical 0-100 scale
    overall_score: float = Field(ge=0.0, le=100.0)
    summary: str
    strengths: List[str] = Field(default_factory=list)
    areas_for_improvement: List[str] = Field(default_factory=list)
    danger_zones: List[str] = Field(default_factory=list)
    danger_zone_risk: Optional[Severity] = None
    question_feedback: List[QuestionFeedback] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    practice_questions: List[str] = Field(default_factory=list)
