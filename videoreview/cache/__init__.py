"""
Caches and single-flight registries for VideoReview
"""

from .singleflight import SingleFlight
from .ttl import TTLCache, CacheEntry
from .segments import SegmentCache
from .metadata import MetadataCache
from .source import SourceCache, LocalCacheEntry, cache_filename

__all__ = [
    "SingleFlight",
    "TTLCache",
    "CacheEntry",
    "SegmentCache",
    "MetadataCache",
    "SourceCache",
    "LocalCacheEntry",
    "cache_filename",
]
