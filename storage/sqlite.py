"""SQLite helpers for the persistence layer."""
from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from config.settings import settings
from errors import PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def get_conn(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield a SQLite connection, ensuring the data directory exists.

    The transaction commits when the block exits cleanly; any ``sqlite3.Error``
    is rolled back and re-raised as ``PersistenceError``.
    """

    path = db_path or settings.DB_PATH
    directory = os.path.dirname(path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(path, timeout=10.0)
    except (OSError, sqlite3.Error) as exc:
        logger.error("Could not open database %s: %s", path, exc)
        raise PersistenceError(f"Could not open database: {exc}") from exc
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        logger.error("Database operation failed: %s", exc)
        raise PersistenceError(f"Database operation failed: {exc}") from exc
    finally:
        conn.close()
