from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from .models import LiveSession, SessionPhase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionClock:
    """
    Pure elapsed-time accounting for live sessions.

    Nothing here ticks in the background: elapsed time is always recomputed
    from the folded total plus the delta since `last_active_at`, so a process
    that was suspended for the whole pause still reports the right figure.
    The `now` callable is injectable so tests can drive time explicitly.
    """

    def __init__(self, now: Optional[Callable[[], datetime]] = None) -> None:
        self._now = now or utcnow

    def now(self) -> datetime:
        return self._now()

    @staticmethod
    def live_delta(session: LiveSession, at: datetime) -> float:
        if session.phase != SessionPhase.ACTIVE or session.last_active_at is None:
            return 0.0
        # A clock that stepped backwards must not shrink elapsed time.
        return max(0.0, (at - session.last_active_at).total_seconds())

    def elapsed(self, session: LiveSession, at: Optional[datetime] = None) -> float:
        """Cumulative active seconds as of `at` (defaults to now)."""

        if at is None:
            at = self.now()
        return session.elapsed_seconds + self.live_delta(session, at)

    def folded(self, session: LiveSession, at: datetime) -> float:
        """The value `elapsed_seconds` takes when the live delta is folded in at `at`."""

        return self.elapsed(session, at)
