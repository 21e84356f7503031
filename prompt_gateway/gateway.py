from __future__ import annotations  # Typed prompt operations over the LLM transport

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from config import (
    ANALYZE_KEY,
    FINAL_PAIR_KEY,
    FOLLOW_UP_KEY,
    GATEWAY_TARGETS,
    PARSE_JOB_KEY,
    QUESTIONS_KEY,
    REPORT_KEY,
    InterviewFlow,
    LlmRoute,
)
from errors import InsufficientContentError, ParseError, UsageLimitError
from llm_gateway import HttpClient, complete
from retry_client import RetryOptions

from . import prompts
from .models import AnswerAnalysis, Category, FinalPair, GeneratedQuestion, JobData, QAItem, QuestionFeedback, ReportDraft
from .parsing import (
    as_str_list,
    clean_follow_up,
    danger_zone_risk,
    identify_danger_zones,
    mean_score,
    normalize_analysis,
    normalize_job_data,
    normalize_question,
    normalize_risk,
    normalize_score,
    parse_final_pair,
    parse_json_object,
    parse_question_list,
)

if TYPE_CHECKING:
    from usage_guard import UsageGuard

logger = logging.getLogger(__name__)

FALLBACK_FOLLOW_UP = "Could you elaborate more on your experience with this specific area?"
FALLBACK_FINAL_PAIR = FinalPair(
    classic="Why do you want to work for our company, and what makes you a strong fit for this role?",
    curveball="If you could redesign one product you use every day, what would you change and why?",
)
PAUSED_MESSAGE = "The AI interview service is temporarily paused. Please try again later."

CHARS_PER_TOKEN = 4


def _estimate_tokens(text: str) -> int:
    return max(1, len(text) // CHARS_PER_TOKEN) if text else 0


class PromptGateway:  # One method per prompt operation, all metered through the usage guard
    def __init__(
        self,
        routes: Dict[str, LlmRoute],
        guard: UsageGuard,
        *,
        client: Optional[HttpClient] = None,
        retry: Optional[RetryOptions] = None,
        flow: Optional[InterviewFlow] = None,
    ) -> None:
        missing = [key for key in GATEWAY_TARGETS if key not in routes]
        if missing:
            raise KeyError(f"Routes missing for: {', '.join(missing)}")
        self._routes = routes
        self._guard = guard
        self._client = client
        self._retry = retry
        self.flow = flow or InterviewFlow()

    def _call(
        self,
        key: str,
        messages: prompts.Messages,
        *,
        json_mode: bool = False,
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        if not self._guard.check_global_gate():
            logger.warning("Global gate closed, refusing %s", key)
            raise UsageLimitError(PAUSED_MESSAGE)
        completion = complete(
            messages,
            cfg=self._routes[key],
            client=self._client,
            retry=self._retry,
            json_mode=json_mode,
        )
        prompt_tokens = completion.prompt_tokens
        completion_tokens = completion.completion_tokens
        if not prompt_tokens and not completion_tokens:
            # Provider omitted usage; meter an estimate instead of nothing
            prompt_tokens = sum(_estimate_tokens(item["content"]) for item in messages)
            completion_tokens = _estimate_tokens(completion.text)
        self._guard.record_token_spend(
            prompt_tokens,
            completion_tokens,
            identity=identity,
            session_id=session_id,
            operation=key.rsplit(".", 1)[-1],
        )
        return completion.text

    def parse_job_description(self, text: str, *, identity: Optional[str] = None) -> JobData:
        raw = self._call(PARSE_JOB_KEY, prompts.parse_job_description(text), json_mode=True, identity=identity)
        try:
            data = parse_json_object(raw)
        except ParseError as exc:
            logger.warning("Job description reply unparseable, using defaults: %s", exc)
            data = {}
        return normalize_job_data(data, text)

    def generate_questions(
        self,
        job: JobData,
        count: Optional[int] = None,
        *,
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> List[GeneratedQuestion]:
        count = count or self.flow.main_questions
        raw = self._call(
            QUESTIONS_KEY,
            prompts.generate_questions(job, count),
            json_mode=True,
            identity=identity,
            session_id=session_id,
        )
        try:
            items = parse_question_list(raw)
        except ParseError as exc:
            raise InsufficientContentError(f"Question generation returned no usable questions: {exc}") from exc
        questions: List[GeneratedQuestion] = []
        for index, item in enumerate(items):
            question = normalize_question(item, index)
            if question is not None:
                questions.append(question)
        questions = questions[:count]
        required = min(count, self.flow.min_questions)
        if len(questions) < required:
            raise InsufficientContentError(
                f"Question generation returned {len(questions)} usable questions, need at least {required}"
            )
        return questions

    def analyze_answer(
        self,
        question: str,
        answer: str,
        job: JobData,
        *,
        category: Category = "general",
        skill: str = "General",
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> AnswerAnalysis:
        raw = self._call(
            ANALYZE_KEY,
            prompts.analyze_answer(question, answer, job, skill=skill),
            json_mode=True,
            identity=identity,
            session_id=session_id,
        )
        try:
            analysis = normalize_analysis(parse_json_object(raw))
        except ParseError as exc:
            logger.warning("Answer analysis unparseable, using neutral defaults: %s", exc)
            analysis = AnswerAnalysis()
        analysis.danger_zones = identify_danger_zones(
            category=category,
            skill=skill,
            answer=answer,
            analysis=analysis,
            job=job,
        )
        return analysis

    def generate_follow_up(
        self,
        question: str,
        answer: str,
        analysis: Optional[AnswerAnalysis] = None,
        *,
        job: Optional[JobData] = None,
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        raw = self._call(
            FOLLOW_UP_KEY,
            prompts.generate_follow_up(question, answer, analysis, job or JobData()),
            identity=identity,
            session_id=session_id,
        )
        cleaned = clean_follow_up(raw)
        if cleaned:
            return cleaned
        targeted = prompts.targeted_hint(analysis.danger_zones) if analysis else None
        return targeted or FALLBACK_FOLLOW_UP

    def generate_final_pair(
        self,
        job: Optional[JobData] = None,
        *,
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> FinalPair:
        raw = self._call(
            FINAL_PAIR_KEY,
            prompts.generate_final_pair(job or JobData()),
            identity=identity,
            session_id=session_id,
        )
        pair = parse_final_pair(raw)
        if pair is None:
            logger.warning("Final pair reply did not match the numbered format, using fallback")
            return FALLBACK_FINAL_PAIR
        return pair

    def generate_feedback_report(
        self,
        job: JobData,
        items: Sequence[QAItem],
        *,
        identity: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ReportDraft:
        raw = self._call(
            REPORT_KEY,
            prompts.generate_feedback_report(job, items),
            json_mode=True,
            identity=identity,
            session_id=session_id,
        )
        try:
            data = parse_json_object(raw)
        except ParseError as exc:
            raise InsufficientContentError(f"Feedback report could not be parsed: {exc}") from exc
        return build_report(data, items)


def _get(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


def build_report(data: Dict[str, Any], items: Sequence[QAItem]) -> ReportDraft:
    """Normalize a provider report object onto the 0-100 report shape."""

    scores = [item.analysis.score for item in items if item.analysis is not None]
    overall = normalize_score(_get(data, "overallScore", "overall_score", "score"))
    if overall is None:
        overall = mean_score(scores)

    zones = [zone for item in items if item.analysis for zone in item.analysis.danger_zones]
    risk = normalize_risk(_get(data, "dangerZoneRisk", "danger_zone_risk")) or danger_zone_risk(zones)
    danger_notes = as_str_list(_get(data, "dangerZones", "danger_zones"))
    if not danger_notes:
        danger_notes = list(dict.fromkeys(zone.description for zone in zones))

    feedback: List[QuestionFeedback] = []
    for entry in _get(data, "questionFeedback", "question_feedback") or []:
        if not isinstance(entry, dict) or not _get(entry, "question"):
            continue
        feedback.append(
            QuestionFeedback(
                question=str(_get(entry, "question")),
                score=normalize_score(entry.get("score")),
                strengths=as_str_list(entry.get("strengths")),
                improvements=as_str_list(_get(entry, "improvements", "weaknesses")),
            )
        )

    summary = _get(data, "summary", "overallFeedback", "overall_feedback")
    return ReportDraft(
        overall_score=overall,
        summary=str(summary).strip() if summary else "Interview completed.",
        strengths=as_str_list(_get(data, "strengths", "keyStrengths", "key_strengths")),
        areas_for_improvement=as_str_list(_get(data, "areasForImprovement", "areas_for_improvement")),
        danger_zones=danger_notes,
        danger_zone_risk=risk,
        question_feedback=feedback,
        next_steps=as_str_list(_get(data, "nextSteps", "next_steps")),
        practice_questions=as_str_list(_get(data, "practiceQuestions", "practice_questions")),
    )


__all__ = [
    "FALLBACK_FINAL_PAIR",
    "FALLBACK_FOLLOW_UP",
    "PromptGateway",
    "build_report",
]
