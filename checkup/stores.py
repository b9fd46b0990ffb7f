"""
In-memory TTL stores for AI Visibility Checkup.

Backs the result cache, rate limiter state, and the share store fallback.
State is per process: multiple API instances do not share entries.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from cachetools import TLRUCache

V = TypeVar("V")

DEFAULT_MAX_ENTRIES = 10_000


@dataclass
class _Entry(Generic[V]):
    value: V
    ttl_seconds: Optional[float]


def _expires_at(key: str, entry: _Entry, now: float) -> float:
    if entry.ttl_seconds is None:
        return math.inf
    return now + entry.ttl_seconds


class TTLStore(Generic[V]):
    """
    Bounded key/value map with per-entry expiry.

    Expired entries read as absent and are swept on the next write. When
    max_entries is reached the least recently used entry is evicted.
    """

    def __init__(
        self,
        default_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self.clock = clock
        self._cache = TLRUCache(maxsize=max_entries, ttu=_expires_at, timer=clock)
        self._lock = threading.Lock()

    def _ttl(self, ttl_seconds: Optional[float]) -> Optional[float]:
        return ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds

    def _put(self, key: str, value: V, ttl: Optional[float]) -> None:
        if ttl is not None and ttl <= 0:
            self._cache.pop(key, None)
            return
        self._cache[key] = _Entry(value=value, ttl_seconds=ttl)

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._cache.get(key)
            return entry.value if entry is not None else None

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            self._put(key, value, self._ttl(ttl_seconds))

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def update(self, key: str, func: Callable[[Optional[V]], V], ttl_seconds: Optional[float] = None) -> V:
        """Atomically read-modify-write a single key."""
        with self._lock:
            entry = self._cache.get(key)
            value = func(entry.value if entry is not None else None)
            self._put(key, value, self._ttl(ttl_seconds))
            return value

    def expire(self, key: str) -> None:
        """Force an entry to be treated as expired."""
        self.delete(key)

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None
