"""
In-memory cache with fixed time-based expiry.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    cached_at: float


class TTLCache(Generic[K, V]):
    """
    Entries expire a fixed duration after being stored, regardless of how
    often they are read. Expired entries are never returned; they are
    dropped on access or by ``purge_expired``.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache"
    ):
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[K, CacheEntry[V]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._is_expired(entry):
            self._drop(key)
            return False
        return True

    def _is_expired(self, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.cached_at >= self.ttl_seconds

    def _drop(self, key: K) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._on_remove(key, entry)

    def _on_remove(self, key: K, entry: CacheEntry[V]) -> None:
        """Hook for subclasses that keep aggregate counters."""

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._is_expired(entry):
            logger.debug(f"[{self.name}] Expired: {key}")
            self._drop(key)
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def get_entry(self, key: K) -> Optional[CacheEntry[V]]:
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry):
            return None
        return entry

    def put(self, key: K, value: V) -> None:
        if key in self._entries:
            self._drop(key)
        entry = CacheEntry(value=value, cached_at=self._clock())
        self._entries[key] = entry
        self._on_add(key, entry)

    def _on_add(self, key: K, entry: CacheEntry[V]) -> None:
        """Hook for subclasses that keep aggregate counters."""

    def evict(self, key: K) -> bool:
        if key not in self._entries:
            return False
        self._drop(key)
        return True

    def keys(self) -> List[K]:
        return list(self._entries.keys())

    def purge_expired(self) -> int:
        expired = [k for k, e in self._entries.items() if self._is_expired(e)]
        for key in expired:
            self._drop(key)
        if expired:
            logger.debug(f"[{self.name}] Purged {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        for key in list(self._entries.keys()):
            self._drop(key)
