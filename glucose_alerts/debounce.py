"""Per-(user, rule) cooldown tracking for fired alerts."""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .models.readings import ensure_utc

_DEFAULT_MAX_ENTRIES = 10_000


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    last_fired_at: datetime | None = None


class DebounceTracker:
    """Remembers when each (user, rule) pair last fired.

    One instance is created per process and injected into the engine. Keys
    are added on first fire and evicted least-recently-fired first once
    ``max_entries`` is exceeded. Each key has its own lock so the
    check-then-record sequence in ``try_fire`` is atomic without
    serializing unrelated users.
    """

    def __init__(self, max_entries: int = _DEFAULT_MAX_ENTRIES) -> None:
        self._max_entries = max(1, int(max_entries))
        self._entries: OrderedDict[tuple[str, str], _Entry] = OrderedDict()
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _get_or_create(self, key: tuple[str, str]) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            return entry

    def _touch(self, key: tuple[str, str], entry: _Entry) -> None:
        with self._guard:
            # re-insert in case the entry was evicted while its lock was held
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    @staticmethod
    def _cooling_down(entry: _Entry, now: datetime, cooldown_minutes: int) -> bool:
        if entry.last_fired_at is None or cooldown_minutes <= 0:
            return False
        return now - entry.last_fired_at < timedelta(minutes=cooldown_minutes)

    def last_fired_at(self, user_id: str, rule_id: str) -> datetime | None:
        with self._guard:
            entry = self._entries.get((user_id, rule_id))
        return entry.last_fired_at if entry else None

    def active_count(self, user_id: str, since: datetime) -> int:
        """Number of rules of ``user_id`` that fired at or after ``since``."""
        since = ensure_utc(since)
        with self._guard:
            entries = [e for (uid, _), e in self._entries.items() if uid == user_id]
        return sum(
            1 for e in entries if e.last_fired_at is not None and e.last_fired_at >= since
        )

    def should_suppress(
        self, user_id: str, rule_id: str, now: datetime, cooldown_minutes: int
    ) -> bool:
        """Return True if the pair fired less than ``cooldown_minutes`` ago."""
        with self._guard:
            entry = self._entries.get((user_id, rule_id))
        if entry is None:
            return False
        with entry.lock:
            return self._cooling_down(entry, ensure_utc(now), cooldown_minutes)

    def record_fired(self, user_id: str, rule_id: str, now: datetime) -> None:
        key = (user_id, rule_id)
        now = ensure_utc(now)
        entry = self._get_or_create(key)
        with entry.lock:
            if entry.last_fired_at is None or now > entry.last_fired_at:
                entry.last_fired_at = now
        self._touch(key, entry)

    def try_fire(
        self, user_id: str, rule_id: str, now: datetime, cooldown_minutes: int
    ) -> bool:
        """Check the cooldown and record a fire in one step.

        Returns False (and leaves the state untouched) when suppressed.
        """
        key = (user_id, rule_id)
        now = ensure_utc(now)
        entry = self._get_or_create(key)
        with entry.lock:
            if self._cooling_down(entry, now, cooldown_minutes):
                return False
            entry.last_fired_at = now
        self._touch(key, entry)
        return True

    def clear(self) -> None:
        with self._guard:
            self._entries.clear()


__all__ = ["DebounceTracker"]
