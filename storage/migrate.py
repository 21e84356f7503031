"""SQLite schema migrations."""
from __future__ import annotations

import os
import sqlite3
from typing import Iterable

SCHEMA: Iterable[str] = [
    """
CREATE TABLE IF NOT EXISTS interview_sessions (
  id TEXT PRIMARY KEY,
  user_id TEXT,
  identity TEXT NOT NULL,
  status TEXT NOT NULL CHECK (status IN ('in_progress', 'completed', 'abandoned')),
  job_description TEXT NOT NULL,
  job_title TEXT,
  company TEXT,
  job_data TEXT NOT NULL,
  machine_state TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  completed_at TEXT,
  CHECK ((status = 'completed') = (completed_at IS NOT NULL))
);
""",
    """
CREATE TABLE IF NOT EXISTS questions (
  id TEXT PRIMARY KEY,
  session_id TEXT NOT NULL REFERENCES interview_sessions(id) ON DELETE CASCADE,
  text TEXT NOT NULL,
  category TEXT NOT NULL,
  skill TEXT NOT NULL,
  difficulty TEXT NOT NULL,
  stage TEXT NOT NULL,
  position INTEGER NOT NULL,
  is_follow_up INTEGER NOT NULL DEFAULT 0,
  parent_question_id TEXT REFERENCES questions(id) ON DELETE CASCADE,
  created_at TEXT NOT NULL,
  UNIQUE (session_id, position)
);
""",
    """
CREATE TABLE IF NOT EXISTS answers (
  id TEXT PRIMARY KEY,
  session_id TEXT NOT NULL REFERENCES interview_sessions(id) ON DELETE CASCADE,
  question_id TEXT NOT NULL UNIQUE REFERENCES questions(id) ON DELETE CASCADE,
  content TEXT NOT NULL,
  analysis TEXT,
  created_at TEXT NOT NULL
);
""",
    """
CREATE TABLE IF NOT EXISTS feedback_reports (
  id TEXT PRIMARY KEY,
  session_id TEXT NOT NULL REFERENCES interview_sessions(id) ON DELETE CASCADE,
  version INTEGER NOT NULL,
  overall_score REAL NOT NULL,
  summary TEXT NOT NULL,
  report_json TEXT NOT NULL,
  created_at TEXT NOT NULL,
  UNIQUE (session_id, version)
);
""",
    """
CREATE TABLE IF NOT EXISTS token_usage (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  timestamp TEXT NOT NULL,
  identity TEXT,
  session_id TEXT,
  operation TEXT NOT NULL,
  prompt_tokens INTEGER NOT NULL,
  completion_tokens INTEGER NOT NULL,
  cost REAL NOT NULL
);
""",
    """
CREATE TABLE IF NOT EXISTS session_usage (
  identity TEXT NOT NULL,
  day TEXT NOT NULL,
  count INTEGER NOT NULL DEFAULT 0,
  PRIMARY KEY (identity, day)
);
""",
    """
CREATE TABLE IF NOT EXISTS global_settings (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
""",
    """
INSERT OR IGNORE INTO global_settings (key, value, updated_at)
VALUES ('ALLOW_LLM_CALLS', 'true', datetime('now'));
""",
    "CREATE INDEX IF NOT EXISTS idx_sessions_identity ON interview_sessions(identity, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_questions_session ON questions(session_id, position);",
]


def migrate(db_path: str = "data/interview.db") -> None:
    """Apply schema migrations to the SQLite database."""

    directory = os.path.dirname(db_path) or "."
    os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for stmt in SCHEMA:
            cur.execute(stmt)
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    migrate()
