from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union


def new_id() -> str:
    return str(uuid.uuid4())


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    PAUSED = "paused"
    PARKED_FOR_NEXT_DAY = "parked_for_next_day"
    COMPLETED = "completed"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.COMPLETED, SessionPhase.DISCARDED)

    @property
    def is_running(self) -> bool:
        """Active or Paused: the session occupies the current-session slot."""

        return self in (SessionPhase.ACTIVE, SessionPhase.PAUSED)


@dataclass
class LiveSession:
    """
    A poker sitting being tracked in real time.

    Elapsed time is never ticked by a timer. `elapsed_seconds` holds the
    folded total and, while the session is Active, `last_active_at` is the
    reference point the live delta is measured from (see `domain.clock`).
    """

    id: str
    user_id: str
    game_name: str
    stakes_label: str
    buy_in: float
    start_time: datetime
    phase: SessionPhase = SessionPhase.NOT_STARTED
    elapsed_seconds: float = 0.0
    last_active_at: Optional[datetime] = None
    last_paused_at: Optional[datetime] = None
    is_tournament: bool = False
    tournament_name: Optional[str] = None
    current_day: int = 1
    paused_for_next_day: bool = False
    paused_for_next_day_date: Optional[datetime] = None
    # Each rebuy/add-on is recorded on top of the initial buy-in.
    rebuys: List[float] = field(default_factory=list)

    @property
    def initial_buy_in(self) -> float:
        return self.buy_in - sum(self.rebuys)

    @property
    def title(self) -> str:
        if self.is_tournament:
            return self.tournament_name or self.game_name
        return f"{self.stakes_label} @ {self.game_name}"


@dataclass(frozen=True)
class ParkedKey:
    """Registry key of a parked session: the session id and the day it resumes as."""

    session_id: str
    day: int

    def __str__(self) -> str:
        return f"{self.session_id}_day{self.day}"

    @classmethod
    def parse(cls, raw: Union[str, "ParkedKey"]) -> "ParkedKey":
        if isinstance(raw, ParkedKey):
            return raw
        session_id, sep, day = str(raw).rpartition("_day")
        if not sep or not session_id or not day.isdigit():
            raise ValueError(f"Invalid parked session key: {raw}")
        return cls(session_id=session_id, day=int(day))


@dataclass
class ParkedSessionEntry:
    key: ParkedKey
    user_id: str
    session: LiveSession

    @property
    def scheduled_date(self) -> datetime:
        # Parking always sets the date, so entries never carry None here.
        return self.session.paused_for_next_day_date  # type: ignore[return-value]

    @property
    def display_name(self) -> str:
        return f"{self.session.title} - Day {self.key.day}"


@dataclass(frozen=True)
class ParkedSessionInfo:
    """Read-only listing row for a parked session."""

    key: ParkedKey
    display_name: str
    scheduled_date: datetime
    overdue: bool


# Staker identity: exactly one of three variants.


@dataclass(frozen=True)
class AppUserStaker:
    user_id: str

    kind = "app_user"

    @property
    def value(self) -> str:
        return self.user_id


@dataclass(frozen=True)
class ManualProfileStaker:
    profile_id: str

    kind = "manual_profile"

    @property
    def value(self) -> str:
        return self.profile_id


@dataclass(frozen=True)
class FreeformStaker:
    name: str

    kind = "freeform"

    @property
    def value(self) -> str:
        return self.name


StakerIdentity = Union[AppUserStaker, ManualProfileStaker, FreeformStaker]

STAKER_KINDS = {
    AppUserStaker.kind: AppUserStaker,
    ManualProfileStaker.kind: ManualProfileStaker,
    FreeformStaker.kind: FreeformStaker,
}


@dataclass(frozen=True)
class StakeConfiguration:
    """
    One staking arrangement attached to a session before it ends.

    Transient: consumed by settlement and never persisted itself.
    """

    staker: StakerIdentity
    percentage_sold: float
    markup: float = 1.0
    id: str = field(default_factory=new_id)


class StakeStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"


@dataclass(frozen=True)
class Stake:
    """
    Persisted settlement record for one staker on one finished session.

    Everything except `status`/`settled_at` is fixed at creation time.
    """

    id: str
    session_id: str
    staker: StakerIdentity
    staked_player_user_id: str
    stake_percentage: float
    markup: float
    total_player_buy_in_for_session: float
    player_cashout_for_session: float
    staker_cost: float
    amount_transferred_at_settlement: float
    status: StakeStatus = StakeStatus.PENDING
    session_game_name: str = ""
    session_stakes: str = ""
    session_date: Optional[datetime] = None
    is_tournament_session: bool = False
    proposed_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    @property
    def player_session_net_result(self) -> float:
        return self.player_cashout_for_session - self.total_player_buy_in_for_session

    @property
    def staker_share_of_cashout(self) -> float:
        return self.player_cashout_for_session * (self.stake_percentage / 100.0)


@dataclass(frozen=True)
class FinishedSession:
    """Archived record of a completed live session."""

    id: str
    user_id: str
    game_name: str
    stakes_label: str
    is_tournament: bool
    tournament_name: Optional[str]
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    buy_in: float
    cashout: float
    days_played: int
    adjusted_profit: float

    @property
    def profit(self) -> float:
        return self.cashout - self.buy_in

    @property
    def hours_played(self) -> float:
        return self.elapsed_seconds / 3600.0


@dataclass
class ManualStakerProfile:
    """A saved staker who is not an app user."""

    id: str
    created_by_user_id: str
    name: str
    created_at: datetime
    contact_info: Optional[str] = None
    notes: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name
