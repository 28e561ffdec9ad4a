"""Process-local TTL cache shared by the rule and offer engines."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Generic, Hashable, MutableMapping, TypeVar


V = TypeVar("V")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _CacheEntry:
    value: object
    inserted_at: datetime


class TTLCache(Generic[V]):
    """Key -> (value, inserted_at) map with time-based expiry and explicit invalidation.

    Entries are evicted lazily on read. There is no cross-instance coordination:
    each process keeps its own copy and converges within one TTL.
    """

    def __init__(self, ttl: timedelta, *, clock: Callable[[], datetime] | None = None) -> None:
        self._ttl = ttl
        self._clock = clock or _utcnow
        self._entries: MutableMapping[Hashable, _CacheEntry] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get(self, key: Hashable) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.inserted_at >= self._ttl:
            self._entries.pop(key, None)
            return None
        return entry.value  # type: ignore[return-value]

    def set(self, key: Hashable, value: V) -> None:
        self._entries[key] = _CacheEntry(value=value, inserted_at=self._clock())

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one key, or every entry when ``key`` is ``None``."""

        if key is None:
            self._entries.clear()
            return
        self._entries.pop(key, None)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["TTLCache"]
