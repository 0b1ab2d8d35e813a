from __future__ import annotations

from typing import List

from domain.models import ParkedKey, ParkedSessionEntry
from domain.repositories import ParkedSessionRepository
from infrastructure.db.postgres_base import PostgresRepository
from infrastructure.db.rows import parked_entry_from_row, session_to_json


class PostgresParkedSessionRepository(PostgresRepository, ParkedSessionRepository):
    """Postgres-backed store for sessions parked until a later tournament day."""

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS parked_sessions (
            key TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            day INTEGER NOT NULL,
            user_id TEXT NOT NULL,
            scheduled_date TIMESTAMPTZ NOT NULL,
            payload TEXT NOT NULL
        )
        """,
    )

    def put_parked(self, entry: ParkedSessionEntry) -> None:
        with self._connection("park session") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO parked_sessions (key, session_id, day, user_id, scheduled_date, payload)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (key)
                    DO UPDATE SET scheduled_date = EXCLUDED.scheduled_date, payload = EXCLUDED.payload
                    """,
                    (
                        str(entry.key),
                        entry.key.session_id,
                        entry.key.day,
                        entry.user_id,
                        entry.scheduled_date,
                        session_to_json(entry.session),
                    ),
                )

    def list_parked(self, user_id: str) -> List[ParkedSessionEntry]:
        with self._connection("list parked sessions") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT key, user_id, payload
                    FROM parked_sessions
                    WHERE user_id = %s
                    ORDER BY scheduled_date
                    """,
                    (user_id,),
                )
                rows = cur.fetchall()
                return [parked_entry_from_row(row[0], row[1], row[2]) for row in rows]

    def remove_parked(self, key: ParkedKey) -> None:
        with self._connection("remove parked session") as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM parked_sessions WHERE key = %s", (str(key),))
