from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from .models import (
    FinishedSession,
    LiveSession,
    ManualStakerProfile,
    ParkedKey,
    ParkedSessionEntry,
    Stake,
    StakeStatus,
)


class LiveSessionRepository(Protocol):
    """
    Durable store for the per-user current-session slot and the archive
    of finished sessions.

    Implementations raise `PersistenceError` on any driver failure and
    never leak SQL / driver details to the application layer.
    """

    def save(self, user_id: str, session: LiveSession) -> None:
        """Write (insert or replace) the user's current session."""

        ...

    def load_current(self, user_id: str) -> Optional[LiveSession]:
        """Return the user's current session, or None if the slot is empty."""

        ...

    def clear_current(self, user_id: str) -> None:
        """Empty the user's current-session slot. Clearing an empty slot is a no-op."""

        ...

    def archive(self, finished: FinishedSession) -> None:
        """
        Store a finished-session record.

        Must be an upsert keyed by `finished.id` so retried writes never
        produce duplicates.
        """

        ...

    def get_finished(self, session_id: str) -> Optional[FinishedSession]:
        ...


class ParkedSessionRepository(Protocol):
    """Durable store for multi-day sessions parked until a later day."""

    def put_parked(self, entry: ParkedSessionEntry) -> None:
        ...

    def list_parked(self, user_id: str) -> List[ParkedSessionEntry]:
        ...

    def remove_parked(self, key: ParkedKey) -> None:
        """Remove a parked entry. Removing an unknown key is a no-op."""

        ...


class StakeRepository(Protocol):
    """
    Persistence abstraction for settlement records.

    `save_stake` inserts once per stake id and ignores repeats: settlement
    derives stake ids from the session and configuration, so a retried save
    neither duplicates a record nor rolls back its status.
    """

    def save_stake(self, stake: Stake) -> None:
        ...

    def get_stake(self, stake_id: str) -> Optional[Stake]:
        ...

    def list_stakes(self, session_id: str) -> List[Stake]:
        ...

    def list_stakes_for_user(self, user_id: str) -> List[Stake]:
        """Stakes where the user is the staked player or the app-user staker."""

        ...

    def update_stake_status(
        self,
        stake_id: str,
        status: StakeStatus,
        settled_at: Optional[datetime] = None,
    ) -> None:
        ...


class ManualStakerRepository(Protocol):
    def create(self, profile: ManualStakerProfile) -> None:
        ...

    def get(self, profile_id: str) -> Optional[ManualStakerProfile]:
        ...

    def list_for_user(self, user_id: str) -> List[ManualStakerProfile]:
        ...
