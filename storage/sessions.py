from __future__ import annotations  # Session store adapter over SQLite

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from uuid import uuid4

from prompt_gateway.models import AnswerAnalysis, JobData, ReportDraft

from .models import (
    AnswerRecord,
    NewQuestion,
    QuestionRecord,
    ReportRecord,
    SessionDetails,
    SessionRecord,
    UserStats,
)
from .sqlite import get_conn

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SessionStore:  # CRUD contract consumed by the interview engine
    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path

    def _conn(self):
        return get_conn(self._db_path)

    def create_session(
        self,
        *,
        identity: str,
        job_description: str,
        job_data: JobData,
        user_id: Optional[str] = None,
        questions: Sequence[NewQuestion] = (),
        machine_state: Optional[str] = None,
    ) -> SessionRecord:
        """Persist a new in-progress session with its opening questions and checkpoint.

        Everything is written in one transaction, so a failure leaves no partial session behind.
        """

        now = _now()
        record = SessionRecord(
            id=uuid4().hex,
            user_id=user_id,
            identity=identity,
            job_description=job_description,
            job_title=job_data.title,
            company=job_data.company,
            job_data=job_data,
            created_at=now,
            updated_at=now,
        )
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO interview_sessions (
                    id, user_id, identity, status, job_description, job_title, company,
                    job_data, machine_state, created_at, updated_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL)
                """,
                (
                    record.id,
                    record.user_id,
                    record.identity,
                    record.status,
                    record.job_description,
                    record.job_title,
                    record.company,
                    job_data.model_dump_json(),
                    machine_state,
                    now,
                    now,
                ),
            )
            self._insert_questions(conn, record.id, questions, now)
        record.machine_state = machine_state
        logger.info("Created session %s for identity=%s", record.id, identity)
        return record

    def append_questions(self, session_id: str, questions: Sequence[NewQuestion]) -> List[QuestionRecord]:
        """Append questions after the session's current last position."""

        now = _now()
        with self._conn() as conn:
            self._require_session(conn, session_id)
            created = self._insert_questions(conn, session_id, questions, now)
            self._touch(conn, session_id, now)
        return created

    def advance(
        self,
        session_id: str,
        questions: Sequence[NewQuestion],
        machine_state: str,
    ) -> List[QuestionRecord]:
        """Append the next stage's questions and move the checkpoint onto them in one transaction."""

        now = _now()
        with self._conn() as conn:
            self._require_session(conn, session_id)
            created = self._insert_questions(conn, session_id, questions, now)
            conn.execute(
                "UPDATE interview_sessions SET machine_state = ?, updated_at = ? WHERE id = ?",
                (machine_state, now, session_id),
            )
        return created

    def _insert_questions(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        questions: Sequence[NewQuestion],
        now: str,
    ) -> List[QuestionRecord]:
        created: List[QuestionRecord] = []
        next_position = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 FROM questions WHERE session_id = ?",
            (session_id,),
        ).fetchone()[0]
        for offset, item in enumerate(questions):
            position = int(next_position) + offset
            if item.parent_question_id is not None:
                parent = conn.execute(
                    "SELECT session_id, position FROM questions WHERE id = ?",
                    (item.parent_question_id,),
                ).fetchone()
                if parent is None or parent["session_id"] != session_id or parent["position"] >= position:
                    raise ValueError(
                        f"Parent question '{item.parent_question_id}' is not an earlier question of session '{session_id}'"
                    )
            record = QuestionRecord(
                **item.model_dump(exclude={"id"}),
                id=item.id or uuid4().hex,
                session_id=session_id,
                position=position,
                created_at=now,
            )
            conn.execute(
                """
                INSERT INTO questions (
                    id, session_id, text, category, skill, difficulty, stage,
                    position, is_follow_up, parent_question_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    session_id,
                    record.text,
                    record.category,
                    record.skill,
                    record.difficulty,
                    record.stage,
                    record.position,
                    int(record.is_follow_up),
                    record.parent_question_id,
                    now,
                ),
            )
            created.append(record)
        return created

    def append_answer(self, session_id: str, question_id: str, content: str) -> AnswerRecord:
        """Store the answer for ``question_id``.

        A question holds at most one answer: a second write for the same
        question replaces the content and clears the stale analysis.
        """

        now = _now()
        with self._conn() as conn:
            owner = conn.execute(
                "SELECT session_id FROM questions WHERE id = ?",
                (question_id,),
            ).fetchone()
            if owner is None or owner["session_id"] != session_id:
                raise ValueError(f"Question '{question_id}' does not belong to session '{session_id}'")
            conn.execute(
                """
                INSERT INTO answers (id, session_id, question_id, content, analysis, created_at)
                VALUES (?, ?, ?, ?, NULL, ?)
                ON CONFLICT(question_id) DO UPDATE SET
                    content = excluded.content,
                    analysis = NULL,
                    created_at = excluded.created_at
                """,
                (uuid4().hex, session_id, question_id, content, now),
            )
            row = conn.execute(
                "SELECT id, session_id, question_id, content, analysis, created_at FROM answers WHERE question_id = ?",
                (question_id,),
            ).fetchone()
            self._touch(conn, session_id, now)
        return _answer_from_row(row)

    def attach_analysis(self, answer_id: str, analysis: AnswerAnalysis) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE answers SET analysis = ? WHERE id = ?",
                (analysis.model_dump_json(), answer_id),
            )

    def save_progress(self, session_id: str, machine_state: str) -> None:  # Checkpoint the engine state
        now = _now()
        with self._conn() as conn:
            conn.execute(
                "UPDATE interview_sessions SET machine_state = ?, updated_at = ? WHERE id = ?",
                (machine_state, now, session_id),
            )

    def mark_completed(self, session_id: str, machine_state: Optional[str] = None) -> bool:
        """Move an in-progress session to completed; False when it was not in progress."""

        now = _now()
        with self._conn() as conn:
            cur = conn.execute(
                """
                UPDATE interview_sessions
                SET status = 'completed',
                    completed_at = ?,
                    updated_at = ?,
                    machine_state = COALESCE(?, machine_state)
                WHERE id = ? AND status = 'in_progress'
                """,
                (now, now, machine_state, session_id),
            )
            return cur.rowcount == 1

    def mark_abandoned(self, session_id: str, machine_state: Optional[str] = None) -> bool:
        now = _now()
        with self._conn() as conn:
            cur = conn.execute(
                """
                UPDATE interview_sessions
                SET status = 'abandoned',
                    updated_at = ?,
                    machine_state = COALESCE(?, machine_state)
                WHERE id = ? AND status = 'in_progress'
                """,
                (now, machine_state, session_id),
            )
            return cur.rowcount == 1

    def create_report(self, session_id: str, report: ReportDraft) -> ReportRecord:
        """Append a new report version; earlier versions are kept untouched."""

        now = _now()
        with self._conn() as conn:
            self._require_session(conn, session_id)
            version = conn.execute(
                "SELECT COALESCE(MAX(version), 0) + 1 FROM feedback_reports WHERE session_id = ?",
                (session_id,),
            ).fetchone()[0]
            record = ReportRecord(
                id=uuid4().hex,
                session_id=session_id,
                version=int(version),
                report=report,
                created_at=now,
            )
            conn.execute(
                """
                INSERT INTO feedback_reports (id, session_id, version, overall_score, summary, report_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    session_id,
                    record.version,
                    report.overall_score,
                    report.summary,
                    report.model_dump_json(),
                    now,
                ),
            )
        return record

    def get_session_with_details(self, session_id: str) -> Optional[SessionDetails]:
        with self._conn() as conn:
            header = conn.execute("SELECT * FROM interview_sessions WHERE id = ?", (session_id,)).fetchone()
            if header is None:
                return None
            questions = conn.execute(
                "SELECT * FROM questions WHERE session_id = ? ORDER BY position ASC",
                (session_id,),
            ).fetchall()
            answers = conn.execute(
                "SELECT * FROM answers WHERE session_id = ? ORDER BY created_at ASC",
                (session_id,),
            ).fetchall()
            reports = conn.execute(
                "SELECT * FROM feedback_reports WHERE session_id = ? ORDER BY version ASC",
                (session_id,),
            ).fetchall()
        return SessionDetails(
            session=_session_from_row(header),
            questions=[_question_from_row(row) for row in questions],
            answers=[_answer_from_row(row) for row in answers],
            reports=[_report_from_row(row) for row in reports],
        )

    def list_sessions_for_identity(self, identity: str, limit: Optional[int] = None) -> List[SessionRecord]:
        sql = "SELECT * FROM interview_sessions WHERE identity = ? ORDER BY created_at DESC, rowid DESC"
        params: tuple = (identity,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (identity, limit)
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_session_from_row(row) for row in rows]

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and everything it owns; deleting twice is a no-op."""

        with self._conn() as conn:
            cur = conn.execute("DELETE FROM interview_sessions WHERE id = ?", (session_id,))
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted session %s", session_id)
        return deleted

    def get_user_stats(self, identity: str) -> UserStats:
        with self._conn() as conn:
            totals = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed,
                       MAX(created_at) AS last_created
                FROM interview_sessions
                WHERE identity = ?
                """,
                (identity,),
            ).fetchone()
            average = conn.execute(
                """
                SELECT AVG(r.overall_score)
                FROM feedback_reports r
                JOIN interview_sessions s ON s.id = r.session_id
                WHERE s.identity = ?
                  AND r.version = (
                      SELECT MAX(version) FROM feedback_reports latest WHERE latest.session_id = r.session_id
                  )
                """,
                (identity,),
            ).fetchone()[0]
        return UserStats(
            total_interviews=int(totals["total"] or 0),
            completed_interviews=int(totals["completed"] or 0),
            average_score=round(float(average or 0.0), 1),
            last_interview_date=totals["last_created"],
        )

    def _require_session(self, conn: sqlite3.Connection, session_id: str) -> None:
        row = conn.execute("SELECT 1 FROM interview_sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise KeyError(f"Session '{session_id}' not found")

    def _touch(self, conn: sqlite3.Connection, session_id: str, now: str) -> None:
        conn.execute("UPDATE interview_sessions SET updated_at = ? WHERE id = ?", (now, session_id))


def _session_from_row(row: sqlite3.Row) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        user_id=row["user_id"],
        identity=row["identity"],
        status=row["status"],
        job_description=row["job_description"],
        job_title=row["job_title"],
        company=row["company"],
        job_data=JobData.model_validate_json(row["job_data"]),
        machine_state=row["machine_state"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _question_from_row(row: sqlite3.Row) -> QuestionRecord:
    return QuestionRecord(
        id=row["id"],
        session_id=row["session_id"],
        text=row["text"],
        category=row["category"],
        skill=row["skill"],
        difficulty=row["difficulty"],
        stage=row["stage"],
        position=row["position"],
        is_follow_up=bool(row["is_follow_up"]),
        parent_question_id=row["parent_question_id"],
        created_at=row["created_at"],
    )


def _answer_from_row(row: sqlite3.Row) -> AnswerRecord:
    analysis = AnswerAnalysis.model_validate_json(row["analysis"]) if row["analysis"] else None
    return AnswerRecord(
        id=row["id"],
        session_id=row["session_id"],
        question_id=row["question_id"],
        content=row["content"],
        analysis=analysis,
        created_at=row["created_at"],
    )


def _report_from_row(row: sqlite3.Row) -> ReportRecord:
    return ReportRecord(
        id=row["id"],
        session_id=row["session_id"],
        version=row["version"],
        report=ReportDraft.model_validate(json.loads(row["report_json"])),
        created_at=row["created_at"],
    )


__all__ = ["SessionStore"]
