from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from application.sessions import CommandResult, SessionSlots
from application.staking import (
    create_manual_staker,
    fetch_stakes_for_session,
    fetch_stakes_for_user,
    list_manual_stakers,
    mark_stake_settled,
)
from domain.errors import PersistenceError, StateError
from domain.models import (
    FinishedSession,
    LiveSession,
    ManualStakerProfile,
    ParkedKey,
    ParkedSessionInfo,
    Stake,
    StakeConfiguration,
)


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular channel (Telegram, Discord, web).

    The application layer never depends on concrete SDK types; it only sees
    this small context object.
    """

    provider: str
    provider_user_id: str
    display_name: str = ""

    @property
    def user_id(self) -> str:
        """Internal user id: the external identity qualified by its provider."""

        return f"{self.provider}:{self.provider_user_id}"


def start_session(
    ctx: ExternalContext,
    slots: SessionSlots,
    game_name: str,
    stakes_label: str,
    buy_in: float,
    is_tournament: bool = False,
    tournament_name: Optional[str] = None,
) -> CommandResult:
    return slots.for_user(ctx.user_id).start(
        game_name, stakes_label, buy_in, is_tournament, tournament_name
    )


def pause_session(ctx: ExternalContext, slots: SessionSlots) -> CommandResult:
    return slots.for_user(ctx.user_id).pause()


def resume_session(ctx: ExternalContext, slots: SessionSlots) -> CommandResult:
    return slots.for_user(ctx.user_id).resume()


def add_rebuy(ctx: ExternalContext, slots: SessionSlots, amount: float) -> CommandResult:
    return slots.for_user(ctx.user_id).add_rebuy(amount)


def current_session(ctx: ExternalContext, slots: SessionSlots) -> Tuple[Optional[LiveSession], float]:
    """The caller's running session and its elapsed seconds right now."""

    manager = slots.for_user(ctx.user_id)
    session = manager.session
    if session is None or not session.phase.is_running:
        return None, 0.0
    return session, manager.elapsed()


def attach_stake(
    ctx: ExternalContext,
    slots: SessionSlots,
    config: StakeConfiguration,
) -> StakeConfiguration:
    return slots.for_user(ctx.user_id).attach_stake(config)


def park_for_next_day(
    ctx: ExternalContext,
    slots: SessionSlots,
    scheduled_date: datetime,
) -> ParkedKey:
    result = slots.for_user(ctx.user_id).park_for_next_day(scheduled_date)
    return result.parked_key  # type: ignore[return-value]


def restore_parked_session(
    ctx: ExternalContext,
    slots: SessionSlots,
    key: Union[str, ParkedKey],
) -> LiveSession:
    return slots.for_user(ctx.user_id).restore_parked_session(key).session  # type: ignore[return-value]


def discard_parked_session(
    ctx: ExternalContext,
    slots: SessionSlots,
    key: Union[str, ParkedKey],
) -> None:
    slots.for_user(ctx.user_id).discard_parked_session(key)


def discard_session(ctx: ExternalContext, slots: SessionSlots) -> CommandResult:
    return slots.for_user(ctx.user_id).discard_session()


def end_session(
    ctx: ExternalContext,
    slots: SessionSlots,
    final_cashout: float,
    stake_configurations: Iterable[StakeConfiguration] = (),
) -> Tuple[FinishedSession, List[Stake]]:
    result = slots.for_user(ctx.user_id).end(final_cashout, stake_configurations)
    if result.finished is None:
        raise StateError("Session did not complete.")
    return result.finished, result.stakes


def list_parked_sessions(user_id: str, slots: SessionSlots) -> List[ParkedSessionInfo]:
    return slots.for_user(user_id).list_parked_sessions()


def fetch_session_stakes(session_id: str, slots: SessionSlots) -> List[Stake]:
    return fetch_stakes_for_session(session_id, slots.stake_repo)


def fetch_user_stakes(ctx: ExternalContext, slots: SessionSlots) -> List[Stake]:
    return fetch_stakes_for_user(ctx.user_id, slots.stake_repo)


def settle_stake(ctx: ExternalContext, slots: SessionSlots, stake_id: str) -> Stake:
    return mark_stake_settled(stake_id, slots.stake_repo, slots.clock.now(), ctx.user_id)


def sync_pending_writes(ctx: ExternalContext, slots: SessionSlots) -> Sequence[str]:
    """Retry queued writes; returns the targets still unsynced."""

    manager = slots.for_user(ctx.user_id)
    manager.flush_pending_writes()
    return manager.pending_writes


def save_manual_staker(
    ctx: ExternalContext,
    slots: SessionSlots,
    name: str,
    contact_info: Optional[str] = None,
    notes: Optional[str] = None,
) -> ManualStakerProfile:
    if slots.manual_staker_repo is None:
        raise StateError("Manual staker profiles are not available.")
    return create_manual_staker(
        ctx.user_id, name, slots.manual_staker_repo, slots.clock.now(), contact_info, notes
    )


def manual_stakers(ctx: ExternalContext, slots: SessionSlots) -> List[ManualStakerProfile]:
    if slots.manual_staker_repo is None:
        return []
    return list_manual_stakers(ctx.user_id, slots.manual_staker_repo)


def sign_out(ctx: ExternalContext, slots: SessionSlots) -> Optional[PersistenceError]:
    """Sign the caller out; returns the outstanding error if unsaved changes kept them signed in."""

    return slots.sign_out(ctx.user_id)
