"""Short per-user reading history used by rate-of-change rules."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from datetime import datetime, timedelta

from .models.readings import Reading, ensure_utc

logger = logging.getLogger(__name__)

_DEFAULT_MAX_AGE_MIN = 60
_DEFAULT_MAX_PER_USER = 120
_DEFAULT_MAX_USERS = 10_000


class ReadingHistory:
    """Bounded window of recent readings per user.

    Only as much history is kept as the longest rate window needs; older
    readings are pruned whenever a user's history is touched. At most
    ``max_users`` users are tracked, least recently updated dropped first.
    """

    def __init__(
        self,
        max_age_minutes: int = _DEFAULT_MAX_AGE_MIN,
        max_per_user: int = _DEFAULT_MAX_PER_USER,
        max_users: int = _DEFAULT_MAX_USERS,
    ) -> None:
        self.max_age = timedelta(minutes=max(1, max_age_minutes))
        self.max_per_user = max(1, max_per_user)
        self.max_users = max(1, max_users)
        self._readings: OrderedDict[str, deque[Reading]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)

    def _prune(self, items: deque[Reading], newest: datetime) -> None:
        cutoff = newest - self.max_age
        while items and items[0].timestamp < cutoff:
            items.popleft()

    def record(self, reading: Reading) -> bool:
        """Append ``reading``; returns False if it is older than the newest one."""
        with self._lock:
            items = self._readings.setdefault(
                reading.user_id, deque(maxlen=self.max_per_user)
            )
            if items and reading.timestamp < items[-1].timestamp:
                logger.warning(
                    "Ignoring out-of-order reading for user %s at %s",
                    reading.user_id,
                    reading.timestamp.isoformat(),
                )
                return False
            items.append(reading)
            self._prune(items, reading.timestamp)
            self._readings.move_to_end(reading.user_id)
            while len(self._readings) > self.max_users:
                self._readings.popitem(last=False)
            return True

    def recent(self, user_id: str, until: datetime | None = None) -> list[Reading]:
        """Readings for ``user_id`` inside the retention window, oldest first."""
        with self._lock:
            items = self._readings.get(user_id)
            if not items:
                return []
            newest = ensure_utc(until) if until is not None else items[-1].timestamp
            cutoff = newest - self.max_age
            return [r for r in items if cutoff <= r.timestamp <= newest]

    def clear(self, user_id: str | None = None) -> None:
        with self._lock:
            if user_id is None:
                self._readings.clear()
            else:
                self._readings.pop(user_id, None)


__all__ = ["ReadingHistory"]
