from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Optional, TypeVar

from artifact_tracker.core.timeutils import Clock, utc_now

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    data: T
    timestamp: datetime
    etag: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CacheLookup(Generic[T]):
    data: T
    timestamp: datetime
    etag: Optional[str]
    is_fresh: bool

    def age(self, now: datetime) -> timedelta:
        return now - self.timestamp


class TimedCache(Generic[T]):
    """
    Single-slot cache with a TTL.

    Expired entries are kept: get() reports them with is_fresh=False so callers can
    serve them when a refresh fails. Nothing is ever evicted.
    """

    def __init__(self, ttl: timedelta, *, clock: Clock = utc_now) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entry: Optional[CacheEntry[T]] = None

    def now(self) -> datetime:
        return self._clock()

    def get(self) -> Optional[CacheLookup[T]]:
        entry = self._entry
        if entry is None:
            return None
        is_fresh = self._clock() - entry.timestamp < self._ttl
        return CacheLookup(data=entry.data, timestamp=entry.timestamp, etag=entry.etag, is_fresh=is_fresh)

    def set(self, data: T, *, etag: Optional[str] = None) -> CacheEntry[T]:
        entry = CacheEntry(data=data, timestamp=self._clock(), etag=etag)
        self._entry = entry
        return entry
