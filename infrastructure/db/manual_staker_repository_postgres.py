from __future__ import annotations

from typing import List, Optional

from domain.models import ManualStakerProfile
from domain.repositories import ManualStakerRepository
from infrastructure.db.postgres_base import PostgresRepository
from infrastructure.db.rows import dt_to_str, manual_staker_from_row

_SELECT = "SELECT id, created_by_user_id, name, contact_info, notes, created_at FROM manual_stakers"


class PostgresManualStakerRepository(PostgresRepository, ManualStakerRepository):
    """Postgres-backed implementation of `ManualStakerRepository`."""

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS manual_stakers (
            id TEXT PRIMARY KEY,
            created_by_user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            contact_info TEXT,
            notes TEXT,
            created_at TEXT NOT NULL
        )
        """,
    )

    def create(self, profile: ManualStakerProfile) -> None:
        with self._connection("create manual staker") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO manual_stakers (id, created_by_user_id, name, contact_info, notes, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        profile.id,
                        profile.created_by_user_id,
                        profile.name,
                        profile.contact_info,
                        profile.notes,
                        dt_to_str(profile.created_at),
                    ),
                )

    def get(self, profile_id: str) -> Optional[ManualStakerProfile]:
        with self._connection("load manual staker") as conn:
            with conn.cursor() as cur:
                cur.execute(f"{_SELECT} WHERE id = %s", (profile_id,))
                row = cur.fetchone()
                if not row:
                    return None
                return manual_staker_from_row(row)

    def list_for_user(self, user_id: str) -> List[ManualStakerProfile]:
        with self._connection("list manual stakers") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"{_SELECT} WHERE created_by_user_id = %s ORDER BY LOWER(name)",
                    (user_id,),
                )
                return [manual_staker_from_row(row) for row in cur.fetchall()]
