from __future__ import annotations

from typing import Optional

from domain.models import FinishedSession, LiveSession
from domain.repositories import LiveSessionRepository
from infrastructure.db.rows import (
    finished_from_json,
    finished_to_json,
    session_from_json,
    session_to_json,
)
from infrastructure.db.sqlite_base import SqliteRepository


class SqliteLiveSessionRepository(SqliteRepository, LiveSessionRepository):
    """
    SQLite-backed implementation of `LiveSessionRepository`.

    Owns the `live_sessions` table (one row per user: the current-session
    slot) and the `finished_sessions` archive. Sessions are stored as JSON.
    """

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS live_sessions (
            user_id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            payload TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS finished_sessions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            payload TEXT NOT NULL
        )
        """,
    )

    def save(self, user_id: str, session: LiveSession) -> None:
        with self._connection("save live session") as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO live_sessions (user_id, session_id, payload)
                VALUES (?, ?, ?)
                ON CONFLICT (user_id)
                DO UPDATE SET session_id = excluded.session_id, payload = excluded.payload
                """,
                (user_id, session.id, session_to_json(session)),
            )

    def load_current(self, user_id: str) -> Optional[LiveSession]:
        with self._connection("load live session") as conn:
            cur = conn.cursor()
            cur.execute("SELECT payload FROM live_sessions WHERE user_id = ?", (user_id,))
            row = cur.fetchone()
            if not row:
                return None
            return session_from_json(row[0])

    def clear_current(self, user_id: str) -> None:
        with self._connection("clear live session") as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM live_sessions WHERE user_id = ?", (user_id,))

    def archive(self, finished: FinishedSession) -> None:
        with self._connection("archive session") as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO finished_sessions (id, user_id, payload)
                VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET payload = excluded.payload
                """,
                (finished.id, finished.user_id, finished_to_json(finished)),
            )

    def get_finished(self, session_id: str) -> Optional[FinishedSession]:
        with self._connection("load finished session") as conn:
            cur = conn.cursor()
            cur.execute("SELECT payload FROM finished_sessions WHERE id = ?", (session_id,))
            row = cur.fetchone()
            if not row:
                return None
            return finished_from_json(row[0])
