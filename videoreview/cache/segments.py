"""
Segment cache: fully encoded segment bytes keyed by SegmentJobKey.
"""

import time
from typing import Any, Callable, Dict

from ..transcoding.models import SegmentJobKey
from .ttl import TTLCache, CacheEntry

DEFAULT_SEGMENT_TTL = 30 * 60  # 30 minutes


class SegmentCache(TTLCache[SegmentJobKey, bytes]):
    """Short-lived store of encoded segments. Time-based expiry, not LRU."""

    def __init__(self, ttl_seconds: float = DEFAULT_SEGMENT_TTL, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds, clock=clock, name="SegmentCache")
        self.total_bytes = 0

    def _on_add(self, key: SegmentJobKey, entry: CacheEntry[bytes]) -> None:
        self.total_bytes += len(entry.value)

    def _on_remove(self, key: SegmentJobKey, entry: CacheEntry[bytes]) -> None:
        self.total_bytes -= len(entry.value)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self),
            "total_bytes": self.total_bytes,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }
