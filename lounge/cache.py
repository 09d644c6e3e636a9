"""TTL cache helpers for slot availability reads."""
from __future__ import annotations

from datetime import date, time
from threading import Lock
from typing import Dict, FrozenSet, Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def pop(self, key: str) -> None:
        self._cache.pop(key, None)

    def pop_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix`` and return how many were removed."""
        stale = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
        for key in stale:
            self._cache.pop(key, None)
        return len(stale)

    def clear(self) -> None:
        self._cache.clear()


class AvailabilityCache:
    """Station ids booked during a slot, keyed by (date, start, end).

    Entries are advisory: every booking write for a date must call
    :meth:`invalidate_date`, and the write path never reads from here.
    Each invalidation bumps the date's generation; a reader that started
    before the bump cannot store its result afterwards.
    """

    def __init__(self, ttl: int, maxsize: int = 512) -> None:
        self._store: SimpleTTLCache[FrozenSet[int]] = SimpleTTLCache(ttl=ttl, maxsize=maxsize)
        self._generations: Dict[date, int] = {}
        self._lock = Lock()

    @staticmethod
    def _date_prefix(booking_date: date) -> str:
        return f"availability:{booking_date.isoformat()}:"

    @classmethod
    def key(cls, booking_date: date, start_time: time, end_time: time) -> str:
        return f"{cls._date_prefix(booking_date)}{start_time.isoformat()}-{end_time.isoformat()}"

    def generation(self, booking_date: date) -> int:
        with self._lock:
            return self._generations.get(booking_date, 0)

    def get(self, booking_date: date, start_time: time, end_time: time) -> Optional[FrozenSet[int]]:
        return self._store.get(self.key(booking_date, start_time, end_time))

    def set(
        self,
        booking_date: date,
        start_time: time,
        end_time: time,
        booked_ids: FrozenSet[int],
        generation: Optional[int] = None,
    ) -> bool:
        """Store ``booked_ids`` unless the date was invalidated after ``generation`` was read."""
        with self._lock:
            if generation is not None and self._generations.get(booking_date, 0) != generation:
                return False
            self._store.set(self.key(booking_date, start_time, end_time), frozenset(booked_ids))
            return True

    def invalidate_date(self, booking_date: date) -> int:
        with self._lock:
            self._generations[booking_date] = self._generations.get(booking_date, 0) + 1
            return self._store.pop_prefix(self._date_prefix(booking_date))

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
