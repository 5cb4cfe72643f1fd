"""Bounded memoization for per-asset sub-scores and whole selections.

Entries live in insertion order. On every access the cache checks whether the
cleanup interval has elapsed on the injected clock; if so and the cache holds
more than max_entries, the oldest entries are dropped until half the bound
remains. Tests drive eviction by passing a fake clock.

The cache is shared by scoring worker threads, so every mutation happens
under a lock. Values must be immutable.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

from btcdom.logging import get_logger

logger = get_logger(__name__)

V = TypeVar("V")

_MISSING = object()


@dataclass(frozen=True)
class CacheStats:
    """Counters for one cache instance."""

    hits: int
    misses: int
    evictions: int
    size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ScoreCache(Generic[V]):
    """Insertion-ordered memo table with periodic size-based eviction.

    Args:
        name: Label used in log events.
        max_entries: Size above which a cleanup pass trims the cache.
        cleanup_interval_seconds: Minimum clock time between cleanup passes.
        clock: Monotonic time source in seconds. Defaults to time.monotonic.
    """

    def __init__(
        self,
        name: str = "score",
        max_entries: int = 10000,
        cleanup_interval_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._max_entries = max(1, max_entries)
        self._interval = cleanup_interval_seconds
        self._clock = clock
        self._entries: OrderedDict[Hashable, V] = OrderedDict()
        self._lock = threading.Lock()
        self._last_cleanup = clock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_compute(self, key: Hashable, compute: Callable[[], V]) -> V:
        """Return the cached value for key, computing and storing it on a miss.

        compute() runs outside the lock; concurrent misses on the same key may
        both compute, which is harmless because values are pure.
        """
        with self._lock:
            self._maybe_cleanup()
            value = self._entries.get(key, _MISSING)
            if value is not _MISSING:
                self._hits += 1
                return value  # type: ignore[return-value]
            self._misses += 1

        computed = compute()
        with self._lock:
            self._entries.setdefault(key, computed)
        return computed

    def cleanup(self) -> int:
        """Force a trim pass regardless of the interval.

        Returns:
            Number of entries evicted.
        """
        with self._lock:
            return self._trim()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
            )

    def _maybe_cleanup(self) -> None:
        now = self._clock()
        if now - self._last_cleanup < self._interval:
            return
        self._last_cleanup = now
        self._trim()

    def _trim(self) -> int:
        # Caller holds the lock.
        if len(self._entries) <= self._max_entries:
            return 0
        target = self._max_entries // 2
        evicted = 0
        while len(self._entries) > target:
            self._entries.popitem(last=False)
            evicted += 1
        self._evictions += evicted
        logger.debug(
            "score_cache_trimmed",
            cache=self._name,
            evicted=evicted,
            remaining=len(self._entries),
        )
        return evicted
