from __future__ import annotations  # Interview session state machine

import logging
from typing import List, Literal, Optional, Sequence
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError as ModelValidationError

from config import InterviewFlow, Settings, settings as default_settings
from config.safety import screen_text
from errors import (
    InvalidTransitionError,
    PersistenceError,
    QuotaExceededError,
    SessionNotFoundError,
    UpstreamUnavailableError,
    UsageLimitError,
    ValidationError,
)
from observability import log_event
from prompt_gateway import FALLBACK_FINAL_PAIR, FALLBACK_FOLLOW_UP, AnswerAnalysis, FinalPair, PromptGateway, QAItem
from prompt_gateway.prompts import targeted_hint
from storage import NewQuestion, QuestionRecord, ReportRecord, SessionDetails, SessionRecord, SessionStore, UserStats
from usage_guard import UsageGuard, session_limit_warning

logger = logging.getLogger(__name__)

Phase = Literal[
    "awaiting_job_description",
    "questioning_main",
    "awaiting_follow_up",
    "questioning_final",
    "completed",
    "abandoned",
]
ANSWERABLE_PHASES = ("questioning_main", "awaiting_follow_up", "questioning_final")
FOLLOW_UP_WEIGHT = 0.5


class MachineState(BaseModel):  # Checkpointed position of a session in the flow
    phase: Phase = "awaiting_job_description"
    main_index: int = 0
    final_index: int = 0
    current_question_id: Optional[str] = None
    main_question_ids: List[str] = Field(default_factory=list)
    final_question_ids: List[str] = Field(default_factory=list)


class TurnResult(BaseModel):  # Outcome of one transition
    session_id: str
    phase: Phase
    question: Optional[QuestionRecord] = None
    report: Optional[ReportRecord] = None
    progress: float = 0.0
    warning: Optional[str] = None


def progress(state: MachineState) -> float:
    """Informational 0-100 progress within the current stage.

    The main stage counts 1 per answered main question and 0.5 per answered
    follow-up; the final stage is a separate fraction over its questions.
    """

    if state.phase == "completed":
        return 100.0
    if state.phase in ("questioning_main", "awaiting_follow_up"):
        total = len(state.main_question_ids) * (1 + FOLLOW_UP_WEIGHT)
        if not total:
            return 0.0
        done = state.main_index * (1 + FOLLOW_UP_WEIGHT)
        if state.phase == "awaiting_follow_up":
            done += 1
        return round(done / total * 100, 1)
    if state.phase == "questioning_final":
        total = len(state.final_question_ids)
        return round(state.final_index / total * 100, 1) if total else 0.0
    return 0.0


class InterviewEngine:  # Drives sessions through main, follow-up and final stages
    def __init__(
        self,
        store: SessionStore,
        gateway: PromptGateway,
        guard: UsageGuard,
        *,
        flow: Optional[InterviewFlow] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._guard = guard
        self._flow = flow or gateway.flow
        self._settings = settings or default_settings

    # ---- transitions ---------------------------------------------------

    def start(self, job_description: str, *, identity: str, user_id: Optional[str] = None) -> TurnResult:
        text = self._validate_text(
            job_description,
            minimum=self._settings.MIN_JOB_DESCRIPTION_CHARS,
            label="Job description",
            fields=["job_description"],
        )
        quota = self._guard.check_identity_quota(identity)
        if not quota.allowed:
            log_event("quota_denied", "-", identity=identity, limit=quota.limit)
            raise QuotaExceededError(
                "Daily session limit reached",
                remaining=quota.remaining,
                reset_at=quota.reset_at,
            )

        # Both provider calls are required; nothing is persisted if either fails
        job = self._gateway.parse_job_description(text, identity=identity)
        generated = self._gateway.generate_questions(job, self._flow.main_questions, identity=identity)

        questions = [
            NewQuestion(
                id=uuid4().hex,
                text=item.text,
                category=item.type,
                skill=item.skill,
                difficulty=item.difficulty,
                stage="main",
            )
            for item in generated
        ]
        state = MachineState(
            phase="questioning_main",
            main_question_ids=[item.id for item in questions],
            current_question_id=questions[0].id,
        )
        session = self._store.create_session(
            identity=identity,
            job_description=text,
            job_data=job,
            user_id=user_id,
            questions=questions,
            machine_state=state.model_dump_json(),
        )
        # The quota slot is only taken once the session exists
        try:
            status = self._guard.record_session_start(identity)
        except (QuotaExceededError, PersistenceError):
            self._store.delete_session(session.id)
            raise
        first = self.get_session(session.id).question(state.current_question_id or "")
        log_event(
            "session_started",
            session.id,
            identity=identity,
            phase=state.phase,
            questions=len(questions),
        )
        return TurnResult(
            session_id=session.id,
            phase=state.phase,
            question=first,
            progress=progress(state),
            warning=session_limit_warning(status),
        )

    def submit_answer(self, session_id: str, text: str) -> TurnResult:
        details = self.get_session(session_id)
        state = self._require_answerable(details)
        answer_text = self._validate_text(
            text,
            minimum=self._settings.MIN_ANSWER_CHARS,
            label="Answer",
            fields=["answer"],
        )
        question = details.question(state.current_question_id or "")
        if question is None:
            raise PersistenceError(f"Session '{session_id}' points at a missing question")

        answer = self._store.append_answer(session_id, question.id, answer_text)
        analysis = self._analyze(details, question, answer.id, answer_text)
        log_event(
            "answer_recorded",
            session_id,
            phase=state.phase,
            question_id=question.id,
            score=analysis.score if analysis else None,
        )

        if state.phase == "questioning_main":
            return self._after_main_answer(details, state, question, answer_text, analysis)
        if state.phase == "awaiting_follow_up":
            return self._after_follow_up_answer(details, state)
        return self._after_final_answer(details, state)

    def abandon(self, session_id: str) -> TurnResult:
        details = self.get_session(session_id)
        state = self._require_answerable(details)
        state.phase = "abandoned"
        state.current_question_id = None
        if not self._store.mark_abandoned(session_id, state.model_dump_json()):
            raise InvalidTransitionError("Session is no longer in progress")
        log_event("session_abandoned", session_id, phase=state.phase)
        return TurnResult(session_id=session_id, phase=state.phase, progress=progress(state))

    def regenerate_report(self, session_id: str) -> ReportRecord:
        details = self.get_session(session_id)
        if details.session.status != "completed":
            raise InvalidTransitionError("Reports can only be regenerated for completed sessions")
        record = self._generate_report(details)
        log_event("report_regenerated", session_id, version=record.version)
        return record

    # ---- queries -------------------------------------------------------

    def get_session(self, session_id: str) -> SessionDetails:
        details = self._store.get_session_with_details(session_id)
        if details is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return details

    def list_sessions(self, identity: str, limit: Optional[int] = None) -> List[SessionRecord]:
        return self._store.list_sessions_for_identity(identity, limit=limit)

    def delete_session(self, session_id: str) -> bool:
        deleted = self._store.delete_session(session_id)
        if deleted:
            log_event("session_deleted", session_id)
        return deleted

    def stats(self, identity: str) -> UserStats:
        return self._store.get_user_stats(identity)

    def load_state(self, details: SessionDetails) -> MachineState:
        """Rebuild the machine state from the stored checkpoint."""

        raw = details.session.machine_state
        if raw:
            try:
                return MachineState.model_validate_json(raw)
            except ModelValidationError as exc:
                raise PersistenceError(f"Corrupt machine state for session '{details.session.id}'") from exc
        if details.session.status == "completed":
            return MachineState(phase="completed")
        if details.session.status == "abandoned":
            return MachineState(phase="abandoned")
        return MachineState()

    def current_turn(self, details: SessionDetails) -> TurnResult:
        state = self.load_state(details)
        question = details.question(state.current_question_id) if state.current_question_id else None
        return TurnResult(
            session_id=details.session.id,
            phase=state.phase,
            question=question,
            report=details.latest_report(),
            progress=progress(state),
        )

    # ---- stage handlers ------------------------------------------------

    def _after_main_answer(
        self,
        details: SessionDetails,
        state: MachineState,
        question: QuestionRecord,
        answer_text: str,
        analysis: Optional[AnswerAnalysis],
    ) -> TurnResult:
        session_id = details.session.id
        try:
            follow_up_text = self._gateway.generate_follow_up(
                question.text,
                answer_text,
                analysis,
                job=details.session.job_data,
                identity=details.session.identity,
                session_id=session_id,
            )
        except (UpstreamUnavailableError, UsageLimitError) as exc:
            logger.warning("Follow-up generation failed for session=%s, using fallback: %s", session_id, exc)
            follow_up_text = (targeted_hint(analysis.danger_zones) if analysis else None) or FALLBACK_FOLLOW_UP

        follow_up = NewQuestion(
            id=uuid4().hex,
            text=follow_up_text,
            category=question.category,
            skill=question.skill,
            difficulty=question.difficulty,
            stage="follow_up",
            is_follow_up=True,
            parent_question_id=question.id,
        )
        state.phase = "awaiting_follow_up"
        state.current_question_id = follow_up.id
        return self._advance(session_id, state, new_questions=[follow_up])

    def _after_follow_up_answer(self, details: SessionDetails, state: MachineState) -> TurnResult:
        session_id = details.session.id
        if state.main_index + 1 < len(state.main_question_ids):
            state.main_index += 1
            state.phase = "questioning_main"
            state.current_question_id = state.main_question_ids[state.main_index]
            question = details.question(state.current_question_id)
            return self._advance(session_id, state, question)

        pair = self._final_pair(details)
        finals = [
            NewQuestion(id=uuid4().hex, text=pair.classic, category="behavioral", skill="Motivation", stage="final"),
            NewQuestion(
                id=uuid4().hex,
                text=pair.curveball,
                category="situational",
                skill="Creative Thinking",
                stage="final",
            ),
        ]
        state.phase = "questioning_final"
        state.final_index = 0
        state.final_question_ids = [item.id for item in finals]
        state.current_question_id = finals[0].id
        return self._advance(session_id, state, new_questions=finals)

    def _after_final_answer(self, details: SessionDetails, state: MachineState) -> TurnResult:
        session_id = details.session.id
        if state.final_index + 1 < len(state.final_question_ids):
            state.final_index += 1
            state.current_question_id = state.final_question_ids[state.final_index]
            question = details.question(state.current_question_id)
            return self._advance(session_id, state, question)

        # Report is required: on failure the checkpoint stays on the last final question
        refreshed = self.get_session(session_id)
        record = self._generate_report(refreshed)
        state.phase = "completed"
        state.current_question_id = None
        if not self._store.mark_completed(session_id, state.model_dump_json()):
            raise InvalidTransitionError("Session is no longer in progress")
        log_event(
            "session_completed",
            session_id,
            phase=state.phase,
            overall_score=record.report.overall_score,
            version=record.version,
        )
        return TurnResult(session_id=session_id, phase=state.phase, report=record, progress=progress(state))

    # ---- helpers -------------------------------------------------------

    def _advance(
        self,
        session_id: str,
        state: MachineState,
        question: Optional[QuestionRecord] = None,
        *,
        new_questions: Sequence[NewQuestion] = (),
    ) -> TurnResult:
        if new_questions:
            # New rows and the checkpoint that points at them commit together
            created = self._store.advance(session_id, new_questions, state.model_dump_json())
            question = next(item for item in created if item.id == state.current_question_id)
        else:
            self._save(session_id, state)
        log_event(
            "transition",
            session_id,
            phase=state.phase,
            question_id=state.current_question_id,
            progress=progress(state),
        )
        return TurnResult(session_id=session_id, phase=state.phase, question=question, progress=progress(state))

    def _save(self, session_id: str, state: MachineState) -> None:
        self._store.save_progress(session_id, state.model_dump_json())

    def _require_answerable(self, details: SessionDetails) -> MachineState:
        if details.session.status != "in_progress":
            raise InvalidTransitionError(f"Session is {details.session.status}")
        state = self.load_state(details)
        if state.phase not in ANSWERABLE_PHASES:
            raise InvalidTransitionError(f"Session cannot accept answers in phase '{state.phase}'")
        return state

    def _validate_text(self, text: str, *, minimum: int, label: str, fields: List[str]) -> str:
        cleaned = (text or "").strip()
        if len(cleaned) < minimum:
            raise ValidationError(f"{label} must be at least {minimum} characters")
        if len(cleaned) > self._settings.MAX_INPUT_CHARS:
            raise ValidationError(f"{label} must be at most {self._settings.MAX_INPUT_CHARS} characters")
        finding = screen_text(cleaned, fields)
        if finding.blocked:
            logger.warning("%s rejected by content screen category=%s", label, finding.category)
            raise ValidationError(f"{label} was rejected by content screening ({finding.category})")
        return cleaned

    def _analyze(
        self,
        details: SessionDetails,
        question: QuestionRecord,
        answer_id: str,
        answer_text: str,
    ) -> Optional[AnswerAnalysis]:
        try:
            analysis = self._gateway.analyze_answer(
                question.text,
                answer_text,
                details.session.job_data,
                category=question.category,
                skill=question.skill,
                identity=details.session.identity,
                session_id=details.session.id,
            )
        except (UpstreamUnavailableError, UsageLimitError) as exc:
            logger.warning("Answer analysis skipped for question=%s: %s", question.id, exc)
            return None
        self._store.attach_analysis(answer_id, analysis)
        return analysis

    def _final_pair(self, details: SessionDetails) -> FinalPair:
        try:
            return self._gateway.generate_final_pair(
                details.session.job_data,
                identity=details.session.identity,
                session_id=details.session.id,
            )
        except (UpstreamUnavailableError, UsageLimitError) as exc:
            logger.warning("Final pair generation failed for session=%s, using fallback: %s", details.session.id, exc)
            return FALLBACK_FINAL_PAIR

    def _generate_report(self, details: SessionDetails) -> ReportRecord:
        items: List[QAItem] = []
        for question in sorted(details.questions, key=lambda item: item.position):
            answer = details.answer_for(question.id)
            if answer is None:
                continue
            items.append(
                QAItem(
                    question=question.text,
                    category=question.category,
                    skill=question.skill,
                    is_follow_up=question.is_follow_up,
                    answer=answer.content,
                    analysis=answer.analysis,
                )
            )
        draft = self._gateway.generate_feedback_report(
            details.session.job_data,
            items,
            identity=details.session.identity,
            session_id=details.session.id,
        )
        return self._store.create_report(details.session.id, draft)


__all__ = [
    "ANSWERABLE_PHASES",
    "InterviewEngine",
    "MachineState",
    "Phase",
    "TurnResult",
    "progress",
]
