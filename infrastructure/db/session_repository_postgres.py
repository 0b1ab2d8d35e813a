from __future__ import annotations

from typing import Optional

from domain.models import FinishedSession, LiveSession
from domain.repositories import LiveSessionRepository
from infrastructure.db.postgres_base import PostgresRepository
from infrastructure.db.rows import (
    finished_from_json,
    finished_to_json,
    session_from_json,
    session_to_json,
)


class PostgresLiveSessionRepository(PostgresRepository, LiveSessionRepository):
    """
    Postgres-backed implementation of `LiveSessionRepository`.

    Same layout as the SQLite adapter; payloads are kept as TEXT so both
    backends share the JSON codec in `rows.py`.
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
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO live_sessions (user_id, session_id, payload)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (user_id)
                    DO UPDATE SET session_id = EXCLUDED.session_id, payload = EXCLUDED.payload
                    """,
                    (user_id, session.id, session_to_json(session)),
                )

    def load_current(self, user_id: str) -> Optional[LiveSession]:
        with self._connection("load live session") as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT payload FROM live_sessions WHERE user_id = %s", (user_id,))
                row = cur.fetchone()
                if not row:
                    return None
                return session_from_json(row[0])

    def clear_current(self, user_id: str) -> None:
        with self._connection("clear live session") as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM live_sessions WHERE user_id = %s", (user_id,))

    def archive(self, finished: FinishedSession) -> None:
        with self._connection("archive session") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO finished_sessions (id, user_id, payload)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET payload = EXCLUDED.payload
                    """,
                    (finished.id, finished.user_id, finished_to_json(finished)),
                )

    def get_finished(self, session_id: str) -> Optional[FinishedSession]:
        with self._connection("load finished session") as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT payload FROM finished_sessions WHERE id = %s", (session_id,))
                row = cur.fetchone()
                if not row:
                    return None
                return finished_from_json(row[0])
