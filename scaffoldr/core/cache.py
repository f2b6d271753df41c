"""Thread-safe TTL cache with least-recently-used eviction.

Shared by the compiler, the catalog and the variable resolver. Entries expire
lazily: a read at or after the expiry instant removes the entry and counts as
a miss. When a capacity is set, inserting a new key into a full cache evicts
exactly one entry, the one with the oldest ``last_accessed``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    value: T
    last_accessed: float
    access_count: int
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class CacheStats:
    size: int
    capacity: int | None
    ttl: float
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class TTLCache(Generic[T]):
    """Mapping of string keys to values with TTL expiry and LRU eviction.

    Args:
        ttl: Seconds an entry stays visible after insertion
        capacity: Maximum number of entries (None for unbounded)
        clock: Monotonic time source, injectable for tests
        name: Label used in log records
    """

    def __init__(
        self,
        ttl: float,
        capacity: int | None = None,
        *,
        clock: Clock = time.monotonic,
        name: str = "cache",
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.ttl = ttl
        self.capacity = capacity
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> T | None:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def get_entry(self, key: str) -> CacheEntry[T] | None:
        """Return the fresh entry for ``key`` and record the access."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if not entry.is_fresh(now):
                del self._entries[key]
                self._misses += 1
                logger.debug(f"{self.name}: expired entry dropped: {key}")
                return None
            entry.last_accessed = now
            entry.access_count += 1
            self._hits += 1
            return entry

    def set(self, key: str, value: T) -> CacheEntry[T]:
        with self._lock:
            now = self._clock()
            if (
                key not in self._entries
                and self.capacity is not None
                and len(self._entries) >= self.capacity
            ):
                self._evict_least_recently_used()
            entry = CacheEntry(
                value=value,
                last_accessed=now,
                access_count=1,
                expires_at=now + self.ttl,
            )
            self._entries[key] = entry
            return entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, key: object) -> bool:
        # Non-mutating membership check; does not touch LRU bookkeeping.
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and entry.is_fresh(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                capacity=self.capacity,
                ttl=self.ttl,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def _evict_least_recently_used(self) -> None:
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].last_accessed)
        del self._entries[oldest_key]
        self._evictions += 1
        logger.debug(f"{self.name}: evicted least recently used entry: {oldest_key}")
