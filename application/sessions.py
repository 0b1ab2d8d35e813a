from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from application.registry import MultiDaySessionRegistry
from application.staking import adjusted_profit, settle_session, validate_stake_configuration
from domain.clock import SessionClock
from domain.errors import NotFoundError, PersistenceError, StateError, ValidationError
from domain.models import (
    FinishedSession,
    LiveSession,
    ParkedKey,
    ParkedSessionEntry,
    ParkedSessionInfo,
    SessionPhase,
    Stake,
    StakeConfiguration,
    new_id,
)
from domain.repositories import (
    LiveSessionRepository,
    ManualStakerRepository,
    ParkedSessionRepository,
    StakeRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(hours=120)


@dataclass
class CommandResult:
    """
    Outcome of one lifecycle command.

    The in-memory transition has always been applied when a result is
    returned. `sync_error` is set when a storage write failed; the write is
    queued and retried by `flush_pending_writes()`.
    """

    session: Optional[LiveSession] = None
    parked_key: Optional[ParkedKey] = None
    finished: Optional[FinishedSession] = None
    stakes: List[Stake] = field(default_factory=list)
    sync_error: Optional[PersistenceError] = None

    @property
    def synced(self) -> bool:
        return self.sync_error is None


def _check_amount(name: str, value: float, allow_zero: bool = True) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(name, f"{name} must be a number.")
    if value < 0:
        raise ValidationError(name, f"{name} must not be negative.")
    if value == 0 and not allow_zero:
        raise ValidationError(name, f"{name} must be greater than zero.")
    return float(value)


class SessionLifecycleManager:
    """
    Owns one user's current-session slot and drives it through the
    session state machine.

    Commands validate the transition first and raise `StateError` /
    `ValidationError` before touching anything. Once a transition is
    applied it is authoritative; storage writes are attempted immediately
    and, if they fail, queued for `flush_pending_writes()`.

    Repeating a command whose target phase the session is already in
    (pause while Paused, resume while Active, end while Completed) is a
    no-op.
    """

    def __init__(
        self,
        user_id: str,
        session_repo: LiveSessionRepository,
        parked_repo: ParkedSessionRepository,
        stake_repo: StakeRepository,
        registry: Optional[MultiDaySessionRegistry] = None,
        clock: Optional[SessionClock] = None,
        manual_staker_repo: Optional[ManualStakerRepository] = None,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
    ) -> None:
        self.user_id = user_id
        self._session_repo = session_repo
        self._parked_repo = parked_repo
        self._stake_repo = stake_repo
        self._manual_staker_repo = manual_staker_repo
        self.registry = registry if registry is not None else MultiDaySessionRegistry()
        self.clock = clock or SessionClock()
        self._stale_after = stale_after

        self._session: Optional[LiveSession] = None
        self._attached: Dict[str, StakeConfiguration] = {}
        self._completion: Optional[CommandResult] = None
        # Failed writes keyed by the record they target; a newer write to the
        # same record replaces the queued one.
        self._pending: "OrderedDict[str, Tuple[Callable[[], None], Tuple[str, ...]]]" = OrderedDict()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def session(self) -> Optional[LiveSession]:
        """The session in the slot. May be Completed/Discarded until the next start."""

        return self._session

    @property
    def phase(self) -> SessionPhase:
        if self._session is None:
            return SessionPhase.NOT_STARTED
        return self._session.phase

    @property
    def attached_stakes(self) -> List[StakeConfiguration]:
        return list(self._attached.values())

    @property
    def pending_writes(self) -> List[str]:
        return list(self._pending)

    def elapsed(self, at: Optional[datetime] = None) -> float:
        if self._session is None:
            return 0.0
        return self.clock.elapsed(self._session, at)

    def list_parked_sessions(self) -> List[ParkedSessionInfo]:
        return self.registry.describe(self.user_id, self.clock.now())

    # ------------------------------------------------------------------
    # Persistence plumbing
    # ------------------------------------------------------------------

    def _persist(
        self,
        target: str,
        write: Callable[[], None],
        after: Sequence[str] = (),
    ) -> Optional[PersistenceError]:
        """
        Attempt one write now, or queue it under `target`.

        A write listed with `after` targets is held back while any of them
        is still queued, so it can never land before the writes it depends on.
        """

        self._pending.pop(target, None)
        blocked = [dep for dep in after if dep in self._pending]
        if blocked:
            logger.warning("Write to %s for user %s waits on %s", target, self.user_id, blocked)
            self._pending[target] = (write, tuple(after))
            return PersistenceError(f"{target} waits on unsaved {', '.join(blocked)}", target)
        try:
            write()
        except PersistenceError as exc:
            logger.warning("Write to %s failed for user %s, queued for retry: %s", target, self.user_id, exc)
            self._pending[target] = (write, tuple(after))
            return exc
        return None

    def _persist_all(self, writes: Iterable[tuple]) -> Optional[PersistenceError]:
        first_error = None
        for item in writes:
            error = self._persist(*item)
            if first_error is None:
                first_error = error
        return first_error

    def _save_current(self, session: LiveSession, after: Sequence[str] = ()) -> tuple:
        return "current", lambda: self._session_repo.save(self.user_id, session), after

    def _clear_current(self, after: Sequence[str] = ()) -> tuple:
        return "current", lambda: self._session_repo.clear_current(self.user_id), after

    def flush_pending_writes(self) -> Optional[PersistenceError]:
        """
        Retry every queued write in order.

        Returns the first error still outstanding, or None once everything
        is durable.
        """

        first_error = None
        for target, (write, after) in list(self._pending.items()):
            blocked = [dep for dep in after if dep in self._pending]
            if blocked:
                if first_error is None:
                    first_error = PersistenceError(f"{target} waits on unsaved {', '.join(blocked)}", target)
                continue
            try:
                write()
            except PersistenceError as exc:
                logger.warning("Retry of %s failed for user %s: %s", target, self.user_id, exc)
                if first_error is None:
                    first_error = exc
                continue
            self._pending.pop(target, None)
        return first_error

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def load_current(self) -> CommandResult:
        """
        Rehydrate the slot and the user's parked sessions from storage.

        A running session older than the stale threshold is discarded on
        load. Read failures propagate as `PersistenceError`.
        """

        self.registry.load(self._parked_repo.list_parked(self.user_id))
        session = self._session_repo.load_current(self.user_id)
        if session is None or not session.phase.is_running:
            self._session = None
            return CommandResult()

        now = self.clock.now()
        if session.start_time < now - self._stale_after:
            logger.warning(
                "Discarding stale session %s for user %s (started %s)",
                session.id,
                self.user_id,
                session.start_time.isoformat(),
            )
            session.elapsed_seconds = self.clock.folded(session, now)
            session.last_active_at = None
            session.phase = SessionPhase.DISCARDED
            self._session = session
            error = self._persist(*self._clear_current())
            return CommandResult(session=session, sync_error=error)

        self._session = session
        return CommandResult(session=session)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(
        self,
        game_name: str,
        stakes_label: str,
        buy_in: float,
        is_tournament: bool = False,
        tournament_name: Optional[str] = None,
    ) -> CommandResult:
        if is_tournament and tournament_name:
            game_name = tournament_name

        current = self._session
        if current is not None and current.phase == SessionPhase.ACTIVE:
            if (
                current.game_name,
                current.stakes_label,
                current.is_tournament,
                current.initial_buy_in,
            ) == ((game_name or "").strip(), (stakes_label or "").strip(), is_tournament, buy_in):
                logger.debug("start: session %s already active", current.id)
                return CommandResult(session=current)
            raise StateError("Another session is already in progress.")
        if current is not None and not current.phase.is_terminal:
            raise StateError("Another session is already in progress.")

        buy_in = _check_amount("buy_in", buy_in)
        if not (game_name or "").strip():
            raise ValidationError("game_name", "Game name must not be empty.")

        now = self.clock.now()
        session = LiveSession(
            id=new_id(),
            user_id=self.user_id,
            game_name=game_name.strip(),
            stakes_label=(stakes_label or "").strip(),
            buy_in=buy_in,
            start_time=now,
            phase=SessionPhase.ACTIVE,
            elapsed_seconds=0.0,
            last_active_at=now,
            is_tournament=is_tournament,
            tournament_name=tournament_name if is_tournament else None,
            current_day=1,
        )
        self._session = session
        self._attached.clear()
        self._completion = None
        logger.info("Session %s started for user %s (%s)", session.id, self.user_id, session.title)

        error = self._persist(*self._save_current(session))
        return CommandResult(session=session, sync_error=error)

    def _require_running(self, command: str) -> LiveSession:
        session = self._session
        if session is None or not session.phase.is_running:
            raise StateError(f"Cannot {command}: no session in progress (phase: {self.phase.value}).")
        return session

    def pause(self) -> CommandResult:
        session = self._session
        if session is not None and session.phase == SessionPhase.PAUSED:
            logger.debug("pause: session %s already paused", session.id)
            return CommandResult(session=session)
        if session is None or session.phase != SessionPhase.ACTIVE:
            raise StateError(f"Cannot pause a session in phase {self.phase.value}.")

        now = self.clock.now()
        session.elapsed_seconds = self.clock.folded(session, now)
        session.last_active_at = None
        session.last_paused_at = now
        session.phase = SessionPhase.PAUSED

        error = self._persist(*self._save_current(session))
        return CommandResult(session=session, sync_error=error)

    def resume(self) -> CommandResult:
        session = self._session
        if session is not None and session.phase == SessionPhase.ACTIVE:
            logger.debug("resume: session %s already active", session.id)
            return CommandResult(session=session)
        if session is None or session.phase != SessionPhase.PAUSED:
            raise StateError(f"Cannot resume a session in phase {self.phase.value}.")

        session.last_active_at = self.clock.now()
        session.phase = SessionPhase.ACTIVE

        error = self._persist(*self._save_current(session))
        return CommandResult(session=session, sync_error=error)

    def add_rebuy(self, amount: float) -> CommandResult:
        session = self._require_running("rebuy")
        amount = _check_amount("amount", amount, allow_zero=False)

        session.buy_in += amount
        session.rebuys.append(amount)
        logger.info("Session %s rebuy of %s (total buy-in %s)", session.id, amount, session.buy_in)

        error = self._persist(*self._save_current(session))
        return CommandResult(session=session, sync_error=error)

    def attach_stake(self, config: StakeConfiguration) -> StakeConfiguration:
        """Validate and attach a staking arrangement to the running session."""

        self._require_running("attach a stake")
        validate_stake_configuration(config, self._manual_staker_repo)
        self._attached[config.id] = config
        return config

    def detach_stake(self, configuration_id: str) -> None:
        if self._attached.pop(configuration_id, None) is None:
            raise NotFoundError(f"No stake configuration with id {configuration_id}.")

    def park_for_next_day(self, scheduled_date: datetime) -> CommandResult:
        """
        Park the running session until `scheduled_date` and free the slot.

        The session moves into the registry under `<session id>_day<n>`,
        where n is the day it will resume as.
        """

        session = self._require_running("park")
        if not isinstance(scheduled_date, datetime):
            raise ValidationError("scheduled_date", "A scheduled date is required.")
        if scheduled_date.tzinfo is None or scheduled_date.utcoffset() is None:
            raise ValidationError("scheduled_date", "The scheduled date must include a timezone.")

        now = self.clock.now()
        session.elapsed_seconds = self.clock.folded(session, now)
        session.last_active_at = None
        session.last_paused_at = now
        session.paused_for_next_day = True
        session.paused_for_next_day_date = scheduled_date
        session.phase = SessionPhase.PARKED_FOR_NEXT_DAY

        key = ParkedKey(session_id=session.id, day=session.current_day + 1)
        entry = ParkedSessionEntry(key=key, user_id=self.user_id, session=session)
        self.registry.put(entry)
        self._session = None
        self._attached.clear()
        logger.info("Session %s parked as %s until %s", session.id, key, scheduled_date.isoformat())

        # The stored slot keeps the session until the parked copy is durable.
        error = self._persist_all(
            [
                (f"parked:{key}", lambda: self._parked_repo.put_parked(entry)),
                self._clear_current(after=[f"parked:{key}"]),
            ]
        )
        return CommandResult(session=session, parked_key=key, sync_error=error)

    def restore_parked_session(self, key: Union[str, ParkedKey]) -> CommandResult:
        parsed = self._parse_key(key)
        entry = self.registry.get(parsed)
        if entry is None or entry.user_id != self.user_id:
            if self.registry.was_discarded(parsed, self.user_id):
                raise StateError(f"Parked session {parsed} was discarded.")
            raise NotFoundError(f"No parked session {parsed}.")
        if self._session is not None and self._session.phase.is_running:
            raise StateError("Finish or park the current session before restoring another.")

        session = entry.session
        session.current_day += 1
        session.last_active_at = self.clock.now()
        session.paused_for_next_day = False
        session.paused_for_next_day_date = None
        session.phase = SessionPhase.ACTIVE

        self.registry.remove(parsed)
        self._session = session
        self._attached.clear()
        self._completion = None
        logger.info("Session %s restored for day %d", session.id, session.current_day)

        error = self._persist_all(
            [
                self._save_current(session),
                (f"parked:{parsed}", lambda: self._parked_repo.remove_parked(parsed), ["current"]),
            ]
        )
        return CommandResult(session=session, sync_error=error)

    def discard_parked_session(self, key: Union[str, ParkedKey]) -> CommandResult:
        parsed = self._parse_key(key)
        if self.registry.was_discarded(parsed, self.user_id):
            logger.debug("discard: parked session %s already discarded", parsed)
            return CommandResult()

        entry = self.registry.get(parsed)
        if entry is None or entry.user_id != self.user_id:
            raise NotFoundError(f"No parked session {parsed}.")

        entry.session.phase = SessionPhase.DISCARDED
        self.registry.mark_discarded(parsed)
        logger.info("Parked session %s discarded", parsed)

        error = self._persist(f"parked:{parsed}", lambda: self._parked_repo.remove_parked(parsed))
        return CommandResult(session=entry.session, sync_error=error)

    def discard_session(self) -> CommandResult:
        """Abandon the running session without settlement."""

        session = self._session
        if session is not None and session.phase == SessionPhase.DISCARDED:
            return CommandResult(session=session)
        session = self._require_running("discard")

        now = self.clock.now()
        session.elapsed_seconds = self.clock.folded(session, now)
        session.last_active_at = None
        session.last_paused_at = now
        session.phase = SessionPhase.DISCARDED
        self._attached.clear()
        logger.info("Session %s discarded", session.id)

        error = self._persist(*self._clear_current())
        return CommandResult(session=session, sync_error=error)

    def end(
        self,
        final_cashout: float,
        stake_configurations: Iterable[StakeConfiguration] = (),
    ) -> CommandResult:
        """
        Complete the running session and settle its stakes.

        Settlement runs exactly once per session: ending an already
        Completed session retries any outstanding writes and returns the
        original result rather than computing new stakes.
        """

        session = self._session
        if session is not None and session.phase == SessionPhase.COMPLETED and self._completion:
            logger.debug("end: session %s already completed, retrying writes", session.id)
            done = self._completion
            return CommandResult(
                session=done.session,
                finished=done.finished,
                stakes=list(done.stakes),
                sync_error=self.flush_pending_writes(),
            )
        session = self._require_running("end")

        final_cashout = _check_amount("final_cashout", final_cashout)
        configurations = dict(self._attached)
        for config in stake_configurations:
            validate_stake_configuration(config, self._manual_staker_repo)
            configurations[config.id] = config

        now = self.clock.now()
        session.elapsed_seconds = self.clock.folded(session, now)
        session.last_active_at = None
        session.last_paused_at = now
        session.phase = SessionPhase.COMPLETED

        stakes = settle_session(session, final_cashout, configurations.values(), now)
        finished = FinishedSession(
            id=session.id,
            user_id=self.user_id,
            game_name=session.game_name,
            stakes_label=session.stakes_label,
            is_tournament=session.is_tournament,
            tournament_name=session.tournament_name,
            start_time=session.start_time,
            end_time=now,
            elapsed_seconds=session.elapsed_seconds,
            buy_in=session.buy_in,
            cashout=final_cashout,
            days_played=session.current_day,
            adjusted_profit=adjusted_profit(final_cashout - session.buy_in, stakes),
        )
        self._attached.clear()
        self._completion = CommandResult(session=session, finished=finished, stakes=stakes)
        logger.info(
            "Session %s completed: buy-in %s, cash-out %s, %d stake(s)",
            session.id,
            session.buy_in,
            final_cashout,
            len(stakes),
        )

        writes = [(f"archive:{session.id}", lambda: self._session_repo.archive(finished))]
        writes.extend(
            (f"stake:{stake.id}", lambda stake=stake: self._stake_repo.save_stake(stake))
            for stake in stakes
        )
        writes.append(self._clear_current(after=[target for target, _ in writes]))
        error = self._persist_all(writes)
        return CommandResult(session=session, finished=finished, stakes=list(stakes), sync_error=error)

    @staticmethod
    def _parse_key(key: Union[str, ParkedKey]) -> ParkedKey:
        try:
            return ParkedKey.parse(key)
        except ValueError as exc:
            raise NotFoundError(str(exc)) from exc


class SessionSlots:
    """
    One lifecycle manager per signed-in user.

    Managers are created lazily and rehydrated from storage on first use.
    Parked sessions live in a single registry shared by all users.
    """

    def __init__(
        self,
        session_repo: LiveSessionRepository,
        parked_repo: ParkedSessionRepository,
        stake_repo: StakeRepository,
        manual_staker_repo: Optional[ManualStakerRepository] = None,
        clock: Optional[SessionClock] = None,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
    ) -> None:
        self.session_repo = session_repo
        self.parked_repo = parked_repo
        self.stake_repo = stake_repo
        self.manual_staker_repo = manual_staker_repo
        self.clock = clock or SessionClock()
        self.registry = MultiDaySessionRegistry()
        self._stale_after = stale_after
        self._managers: Dict[str, SessionLifecycleManager] = {}

    def for_user(self, user_id: str) -> SessionLifecycleManager:
        manager = self._managers.get(user_id)
        if manager is not None:
            return manager

        manager = SessionLifecycleManager(
            user_id,
            self.session_repo,
            self.parked_repo,
            self.stake_repo,
            registry=self.registry,
            clock=self.clock,
            manual_staker_repo=self.manual_staker_repo,
            stale_after=self._stale_after,
        )
        manager.load_current()
        self._managers[user_id] = manager
        return manager

    def is_signed_in(self, user_id: str) -> bool:
        return user_id in self._managers

    def sign_out(self, user_id: str) -> Optional[PersistenceError]:
        """
        Drop the user's in-memory slot and parked entries.

        Queued writes are attempted one last time. If any is still failing
        the user stays signed in, nothing is dropped, and the error is
        returned so the caller can report it.
        """

        manager = self._managers.get(user_id)
        if manager is None:
            return None
        error = manager.flush_pending_writes()
        if error is not None:
            logger.error("Sign-out refused for user %s, unsynced writes: %s", user_id, manager.pending_writes)
            return error
        del self._managers[user_id]
        self.registry.drop_user(user_id)
        return None
