from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from domain.models import AppUserStaker, Stake, StakeStatus
from domain.repositories import StakeRepository
from infrastructure.db.rows import STAKE_COLUMNS, dt_to_str, stake_from_row, stake_to_row
from infrastructure.db.sqlite_base import SqliteRepository

_SELECT = f"SELECT {', '.join(STAKE_COLUMNS)} FROM stakes"


class SqliteStakeRepository(SqliteRepository, StakeRepository):
    """
    SQLite-backed implementation of `StakeRepository`.

    `save_stake` inserts once per id and ignores repeats, so a retried save
    never rewrites the figures or rolls a settled stake back to pending.
    Status only changes through `update_stake_status`.
    """

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS stakes (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            staker_kind TEXT NOT NULL,
            staker_value TEXT NOT NULL,
            staked_player_user_id TEXT NOT NULL,
            stake_percentage REAL NOT NULL,
            markup REAL NOT NULL,
            total_player_buy_in REAL NOT NULL,
            player_cashout REAL NOT NULL,
            staker_cost REAL NOT NULL,
            amount_transferred REAL NOT NULL,
            status TEXT NOT NULL,
            session_game_name TEXT,
            session_stakes TEXT,
            session_date TEXT,
            is_tournament_session INTEGER NOT NULL DEFAULT 0,
            proposed_at TEXT,
            settled_at TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS stakes_session_id ON stakes (session_id)",
    )

    def save_stake(self, stake: Stake) -> None:
        placeholders = ", ".join("?" for _ in STAKE_COLUMNS)
        with self._connection("save stake") as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO stakes ({', '.join(STAKE_COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT (id) DO NOTHING
                """,
                stake_to_row(stake),
            )

    def get_stake(self, stake_id: str) -> Optional[Stake]:
        with self._connection("load stake") as conn:
            cur = conn.cursor()
            cur.execute(f"{_SELECT} WHERE id = ?", (stake_id,))
            row = cur.fetchone()
            if not row:
                return None
            return stake_from_row(row)

    def list_stakes(self, session_id: str) -> List[Stake]:
        with self._connection("list stakes") as conn:
            cur = conn.cursor()
            cur.execute(f"{_SELECT} WHERE session_id = ? ORDER BY proposed_at DESC", (session_id,))
            return [stake_from_row(row) for row in cur.fetchall()]

    def list_stakes_for_user(self, user_id: str) -> List[Stake]:
        with self._connection("list user stakes") as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                {_SELECT}
                WHERE staked_player_user_id = ?
                   OR (staker_kind = ? AND staker_value = ?)
                ORDER BY proposed_at DESC
                """,
                (user_id, AppUserStaker.kind, user_id),
            )
            return [stake_from_row(row) for row in cur.fetchall()]

    def update_stake_status(
        self,
        stake_id: str,
        status: StakeStatus,
        settled_at: Optional[datetime] = None,
    ) -> None:
        with self._connection("update stake status") as conn:
            cur = conn.cursor()
            cur.execute(
                "UPDATE stakes SET status = ?, settled_at = ? WHERE id = ?",
                (status.value, dt_to_str(settled_at), stake_id),
            )
