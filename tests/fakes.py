from __future__ import annotations

import copy
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from domain.clock import SessionClock
from domain.errors import PersistenceError
from domain.models import (
    AppUserStaker,
    FinishedSession,
    LiveSession,
    ManualStakerProfile,
    ParkedKey,
    ParkedSessionEntry,
    Stake,
    StakeStatus,
)
from domain.repositories import (
    LiveSessionRepository,
    ManualStakerRepository,
    ParkedSessionRepository,
    StakeRepository,
)

T0 = datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)


class FakeClock(SessionClock):
    def __init__(self, start: datetime = T0) -> None:
        self.current = start
        super().__init__(now=lambda: self.current)

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current = self.current + timedelta(seconds=seconds, **kwargs)
        return self.current


class FailingMixin:
    """Operations listed in `failing` raise PersistenceError until removed."""

    def __init__(self) -> None:
        self.failing: Set[str] = set()
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise PersistenceError(f"{operation} unavailable", operation)


class InMemoryLiveSessionRepository(FailingMixin, LiveSessionRepository):
    def __init__(self) -> None:
        super().__init__()
        self.current: Dict[str, LiveSession] = {}
        self.finished: Dict[str, FinishedSession] = {}

    def save(self, user_id: str, session: LiveSession) -> None:
        self._check("save")
        self.current[user_id] = copy.deepcopy(session)

    def load_current(self, user_id: str) -> Optional[LiveSession]:
        self._check("load_current")
        return copy.deepcopy(self.current.get(user_id))

    def clear_current(self, user_id: str) -> None:
        self._check("clear_current")
        self.current.pop(user_id, None)

    def archive(self, finished: FinishedSession) -> None:
        self._check("archive")
        self.finished[finished.id] = finished

    def get_finished(self, session_id: str) -> Optional[FinishedSession]:
        return self.finished.get(session_id)


class InMemoryParkedSessionRepository(FailingMixin, ParkedSessionRepository):
    def __init__(self) -> None:
        super().__init__()
        self.entries: Dict[ParkedKey, ParkedSessionEntry] = {}

    def put_parked(self, entry: ParkedSessionEntry) -> None:
        self._check("put_parked")
        self.entries[entry.key] = copy.deepcopy(entry)

    def list_parked(self, user_id: str) -> List[ParkedSessionEntry]:
        self._check("list_parked")
        return [copy.deepcopy(e) for e in self.entries.values() if e.user_id == user_id]

    def remove_parked(self, key: ParkedKey) -> None:
        self._check("remove_parked")
        self.entries.pop(key, None)


class InMemoryStakeRepository(FailingMixin, StakeRepository):
    def __init__(self) -> None:
        super().__init__()
        self.stakes: Dict[str, Stake] = {}
        self.status_updates = 0

    def save_stake(self, stake: Stake) -> None:
        self._check("save_stake")
        self.stakes.setdefault(stake.id, stake)

    def get_stake(self, stake_id: str) -> Optional[Stake]:
        return self.stakes.get(stake_id)

    def list_stakes(self, session_id: str) -> List[Stake]:
        return [s for s in self.stakes.values() if s.session_id == session_id]

    def list_stakes_for_user(self, user_id: str) -> List[Stake]:
        return [
            s
            for s in self.stakes.values()
            if s.staked_player_user_id == user_id or s.staker == AppUserStaker(user_id)
        ]

    def update_stake_status(
        self,
        stake_id: str,
        status: StakeStatus,
        settled_at: Optional[datetime] = None,
    ) -> None:
        self._check("update_stake_status")
        self.status_updates += 1
        stake = self.stakes[stake_id]
        self.stakes[stake_id] = replace(stake, status=status, settled_at=settled_at)


class InMemoryManualStakerRepository(ManualStakerRepository):
    def __init__(self) -> None:
        self.profiles: Dict[str, ManualStakerProfile] = {}

    def create(self, profile: ManualStakerProfile) -> None:
        self.profiles[profile.id] = profile

    def get(self, profile_id: str) -> Optional[ManualStakerProfile]:
        return self.profiles.get(profile_id)

    def list_for_user(self, user_id: str) -> List[ManualStakerProfile]:
        return [p for p in self.profiles.values() if p.created_by_user_id == user_id]
