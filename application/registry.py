from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from domain.models import ParkedKey, ParkedSessionEntry, ParkedSessionInfo

logger = logging.getLogger(__name__)

KeyLike = Union[str, ParkedKey]


class MultiDaySessionRegistry:
    """
    In-memory collection of sessions parked for a later day.

    Entries are keyed by `(session_id, day)`. The registry is independent of
    the single current-session slot: a user can have any number of parked
    sessions while another session is live. Durability is the caller's
    concern (the lifecycle manager writes through `ParkedSessionRepository`).

    Keys that were discarded are remembered with their owner so a repeated
    discard by that owner is a no-op rather than a `NotFoundError`.
    """

    def __init__(self) -> None:
        self._entries: Dict[ParkedKey, ParkedSessionEntry] = {}
        self._discarded: Dict[ParkedKey, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: KeyLike) -> bool:
        return ParkedKey.parse(key) in self._entries

    def put(self, entry: ParkedSessionEntry) -> None:
        self._entries[entry.key] = entry
        self._discarded.pop(entry.key, None)

    def load(self, entries: Iterable[ParkedSessionEntry]) -> None:
        """Merge entries read back from storage, e.g. on sign-in."""

        for entry in entries:
            if entry.key not in self._discarded:
                self._entries[entry.key] = entry

    def get(self, key: KeyLike) -> Optional[ParkedSessionEntry]:
        return self._entries.get(ParkedKey.parse(key))

    def remove(self, key: KeyLike) -> Optional[ParkedSessionEntry]:
        return self._entries.pop(ParkedKey.parse(key), None)

    def mark_discarded(self, key: KeyLike) -> None:
        parsed = ParkedKey.parse(key)
        entry = self._entries.pop(parsed, None)
        if entry is not None:
            self._discarded[parsed] = entry.user_id

    def was_discarded(self, key: KeyLike, user_id: Optional[str] = None) -> bool:
        """True if the key was discarded (by `user_id`, when given)."""

        owner = self._discarded.get(ParkedKey.parse(key))
        if owner is None:
            return False
        return user_id is None or owner == user_id

    def list(self, user_id: str) -> List[ParkedSessionEntry]:
        """The user's parked entries, earliest scheduled date first."""

        entries = [e for e in self._entries.values() if e.user_id == user_id]
        return sorted(entries, key=lambda e: e.scheduled_date)

    def describe(self, user_id: str, now: datetime) -> List[ParkedSessionInfo]:
        """
        Listing rows for the user's parked sessions.

        Entries whose scheduled date has passed are flagged overdue; they are
        never discarded automatically.
        """

        return [
            ParkedSessionInfo(
                key=entry.key,
                display_name=entry.display_name,
                scheduled_date=entry.scheduled_date,
                overdue=entry.scheduled_date < now,
            )
            for entry in self.list(user_id)
        ]

    def drop_user(self, user_id: str) -> None:
        """Forget a user's entries in memory (sign-out). Storage is untouched."""

        keys = [k for k, e in self._entries.items() if e.user_id == user_id]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug("Dropped %d parked session(s) for user %s", len(keys), user_id)
