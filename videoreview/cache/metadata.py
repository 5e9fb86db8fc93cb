"""
Metadata cache: probe results per storage key with a TTL.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from ..errors import ProbeError
from ..transcoding.models import VideoMetadata
from ..transcoding.probe import MediaProbe
from .singleflight import SingleFlight
from .ttl import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_METADATA_TTL = 60 * 60  # 1 hour


class MetadataCache:
    """Probes each source at most once per TTL window, deduplicating concurrent probes."""

    def __init__(
        self,
        probe: MediaProbe,
        sign_url: Callable[[str], str],
        ttl_seconds: float = DEFAULT_METADATA_TTL,
        clock: Callable[[], float] = time.monotonic
    ):
        self.probe = probe
        self._sign_url = sign_url
        self._cache: TTLCache[str, VideoMetadata] = TTLCache(ttl_seconds, clock=clock, name="MetadataCache")
        self._probes: SingleFlight[str, Any] = SingleFlight("Probe")

    def get(self, storage_key: str) -> Optional[VideoMetadata]:
        return self._cache.get(storage_key)

    def put(self, storage_key: str, metadata: VideoMetadata) -> None:
        self._cache.put(storage_key, metadata)

    async def resolve(self, storage_key: str) -> VideoMetadata:
        """Cached metadata, or a fresh probe of the signed URL."""
        cached = self._cache.get(storage_key)
        if cached is not None:
            return cached
        return await self._probes.run(storage_key, lambda: self._probe(storage_key))

    async def _probe(self, storage_key: str) -> VideoMetadata:
        source = self._sign_url(storage_key)
        started = time.monotonic()
        metadata = await self.probe.get_metadata(source)
        self._cache.put(storage_key, metadata)
        logger.info(
            f"[Probe] {storage_key}: {metadata.duration:.2f}s, {metadata.format}, "
            f"audio={'yes' if metadata.has_audio else 'no'} ({time.monotonic() - started:.2f}s)"
        )
        return metadata

    async def has_audio(self, storage_key: str) -> bool:
        """
        Whether the source has an audio stream.

        ProbeError counts as yes; a missing or forbidden source propagates.
        """
        try:
            metadata = await self.resolve(storage_key)
        except ProbeError as e:
            logger.warning(f"[Probe] Audio detection failed for {storage_key}, assuming audio present: {e}")
            return True
        return metadata.has_audio

    def purge_expired(self) -> int:
        return self._cache.purge_expired()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._cache),
            "ttl_seconds": self._cache.ttl_seconds,
            "probes_in_flight": len(self._probes),
        }
