from __future__ import annotations

from typing import List

from domain.models import ParkedKey, ParkedSessionEntry
from domain.repositories import ParkedSessionRepository
from infrastructure.db.rows import dt_to_str, parked_entry_from_row, session_to_json
from infrastructure.db.sqlite_base import SqliteRepository


class SqliteParkedSessionRepository(SqliteRepository, ParkedSessionRepository):
    """SQLite-backed store for sessions parked until a later tournament day."""

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS parked_sessions (
            key TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            day INTEGER NOT NULL,
            user_id TEXT NOT NULL,
            scheduled_date TEXT NOT NULL,
            payload TEXT NOT NULL
        )
        """,
    )

    def put_parked(self, entry: ParkedSessionEntry) -> None:
        with self._connection("park session") as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO parked_sessions (key, session_id, day, user_id, scheduled_date, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (key)
                DO UPDATE SET scheduled_date = excluded.scheduled_date, payload = excluded.payload
                """,
                (
                    str(entry.key),
                    entry.key.session_id,
                    entry.key.day,
                    entry.user_id,
                    dt_to_str(entry.scheduled_date),
                    session_to_json(entry.session),
                ),
            )

    def list_parked(self, user_id: str) -> List[ParkedSessionEntry]:
        with self._connection("list parked sessions") as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT key, user_id, payload
                FROM parked_sessions
                WHERE user_id = ?
                ORDER BY scheduled_date
                """,
                (user_id,),
            )
            rows = cur.fetchall()
            return [parked_entry_from_row(row[0], row[1], row[2]) for row in rows]

    def remove_parked(self, key: ParkedKey) -> None:
        with self._connection("remove parked session") as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM parked_sessions WHERE key = ?", (str(key),))
