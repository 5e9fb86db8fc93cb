"""
Segment job management for VideoReview.

A SegmentJob is one in-flight encode. Its output is buffered as it
arrives so the caller that started it can stream while later callers for
the same segment wait for the finished bytes. The job runs in its own
task: a client that disconnects stops reading, but the encode finishes and
lands in the segment cache.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from .cache import MetadataCache, SegmentCache, SingleFlight, SourceCache
from .config import VideoReviewConfig
from .errors import EncodeError, NotFoundError, ProbeError
from .hardware import EncoderProfile
from .storage import StorageClient
from .transcoding.commands import CommandBuilder
from .transcoding.constants import READ_CHUNK_SIZE
from .transcoding.encoders import select_profile
from .transcoding.engine import SegmentEncoder, find_executable
from .transcoding.models import SegmentJobKey, VideoMetadata
from .transcoding.performance import PerformanceTracker
from .transcoding.playlist import Playlist, PlaylistBuilder
from .transcoding.probe import MediaProbe
from .transcoding.scheduler import LookAheadScheduler

logger = logging.getLogger(__name__)


async def iter_bytes(data: bytes, chunk_size: int = READ_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Serve already-encoded bytes as a fresh stream."""
    for offset in range(0, len(data), chunk_size):
        yield data[offset:offset + chunk_size]


class SegmentJob:
    """One in-flight segment encode, shared by every caller of the same key."""

    def __init__(self, key: SegmentJobKey):
        self.key = key
        self.created_at = time.monotonic()
        self.chunks: List[bytes] = []
        self.task: Optional[asyncio.Task] = None
        self._done = False
        self._error: Optional[BaseException] = None
        self._changed = asyncio.Event()

    @property
    def done(self) -> bool:
        return self._done

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def start(self, producer: Callable[["SegmentJob"], Awaitable[None]]) -> "SegmentJob":
        self.task = asyncio.create_task(self._run(producer))
        return self

    def add_done_callback(self, fn: Callable[["SegmentJob"], None]) -> None:
        self.task.add_done_callback(lambda _: fn(self))

    async def _run(self, producer: Callable[["SegmentJob"], Awaitable[None]]) -> None:
        try:
            await producer(self)
        except asyncio.CancelledError:
            self._finish(EncodeError(f"Encode of {self.key} was cancelled"))
            raise
        except Exception as e:
            # Delivered to every waiter through result()/stream()
            self._finish(e)
        else:
            self._finish(None)

    def _notify(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()

    def feed(self, chunk: bytes) -> None:
        self.chunks.append(chunk)
        self._notify()

    def _finish(self, error: Optional[BaseException]) -> None:
        self._error = error
        self._done = True
        self._notify()

    def payload(self) -> bytes:
        return b"".join(self.chunks)

    async def wait(self) -> None:
        while not self._done:
            await self._changed.wait()

    async def wait_started(self) -> None:
        """Wait for the first bytes. Raises if the job failed before producing any."""
        while not self.chunks and not self._done:
            await self._changed.wait()
        if not self.chunks and self._error is not None:
            raise self._error

    async def result(self) -> bytes:
        """Complete output once the encode finishes."""
        await self.wait()
        if self._error is not None:
            raise self._error
        return self.payload()

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield output as it is produced; raises the job's error at the end."""
        index = 0
        while True:
            while index < len(self.chunks):
                yield self.chunks[index]
                index += 1
            if self._done:
                if self._error is not None:
                    raise self._error
                return
            await self._changed.wait()


@dataclass
class SegmentStats:
    """Counters for /api/stats."""
    requests: int = 0
    cache_hits: int = 0
    shared: int = 0
    encodes_started: int = 0
    encodes_completed: int = 0
    encodes_failed: int = 0
    total_encode_seconds: float = 0.0
    start_time: float = field(default_factory=time.time)

    @property
    def average_encode_seconds(self) -> float:
        if self.encodes_completed:
            return self.total_encode_seconds / self.encodes_completed
        return 0.0

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": self.requests,
            "cache_hits": self.cache_hits,
            "shared": self.shared,
            "encodes_started": self.encodes_started,
            "encodes_completed": self.encodes_completed,
            "encodes_failed": self.encodes_failed,
            "average_encode_seconds": round(self.average_encode_seconds, 3),
        }


class SegmentJobManager:
    """Serves segments from cache or a single shared encode, and drives look-ahead."""

    def __init__(
        self,
        config: VideoReviewConfig,
        storage: StorageClient,
        metadata: MetadataCache,
        source_cache: SourceCache,
        encoder: SegmentEncoder,
        segment_cache: SegmentCache,
        playlist_builder: PlaylistBuilder,
        profile: EncoderProfile
    ):
        self.config = config
        self.storage = storage
        self.metadata = metadata
        self.source_cache = source_cache
        self.encoder = encoder
        self.segment_cache = segment_cache
        self.playlist_builder = playlist_builder
        self.profile = profile
        self.stats = SegmentStats()
        self._jobs: SingleFlight[SegmentJobKey, SegmentJob] = SingleFlight("Segment")

        tc = config.transcoding
        self.scheduler = LookAheadScheduler(
            self,
            metadata,
            encoder.performance,
            max_workers=tc.max_background_encodes,
            default_window=tc.lookahead_window,
            max_window=tc.lookahead_max_window,
            margin=tc.lookahead_margin,
        )
        self._cleanup_task: Optional[asyncio.Task] = None
        self._cleanup_interval = config.cache.cleanup_interval_seconds
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Index the on-disk source cache and start the cleanup loop."""
        if self._running:
            return
        self._running = True
        await asyncio.to_thread(self.source_cache.load_existing)
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info(f"[Jobs] Started (encoder={self.profile.encoder_name})")

    async def stop(self) -> None:
        self._running = False

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        await self.scheduler.shutdown()

        pending = [job.task for job in self._jobs.values() if job.task]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        await self.source_cache.close()
        logger.info("[Jobs] Stopped")

    async def _cleanup_loop(self) -> None:
        logger.debug("[Cleanup] Starting cleanup loop")
        while self._running:
            try:
                await asyncio.sleep(self._cleanup_interval)
                self.purge_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Cleanup] Error in cleanup loop: {e}")

    def purge_expired(self) -> int:
        purged = self.segment_cache.purge_expired() + self.metadata.purge_expired()
        if purged:
            logger.info(f"[Cleanup] Purged {purged} expired cache entries")
        return purged

    # ------------------------------------------------------------------
    # Segment jobs
    # ------------------------------------------------------------------

    def is_busy(self, key: SegmentJobKey) -> bool:
        return key in self.segment_cache or key in self._jobs

    def is_in_flight(self, key: SegmentJobKey) -> bool:
        return key in self._jobs

    @property
    def in_flight_count(self) -> int:
        return len(self._jobs)

    def _join_or_start(self, key: SegmentJobKey) -> Tuple[SegmentJob, bool]:
        job, created = self._jobs.join_or_start(
            key, lambda: SegmentJob(key).start(self._encode_into)
        )
        if created:
            self.stats.encodes_started += 1
        return job, created

    async def _encode_into(self, job: SegmentJob) -> None:
        started = time.monotonic()
        try:
            async for chunk in self.encoder.encode_segment(job.key):
                job.feed(chunk)
        except Exception:
            self.stats.encodes_failed += 1
            raise

        # Cached before the job settles, so the key is never briefly unknown
        self.segment_cache.put(job.key, job.payload())
        self.stats.encodes_completed += 1
        self.stats.total_encode_seconds += time.monotonic() - started

    async def prefetch(self, key: SegmentJobKey) -> None:
        job, _ = self._join_or_start(key)
        await job.result()

    async def _check_index(self, key: SegmentJobKey) -> None:
        try:
            metadata = await self.metadata.resolve(key.storage_key)
        except ProbeError:
            # Let the encode itself decide
            return
        count = metadata.segment_count(key.segment_duration)
        if key.segment_index < 0 or key.segment_index >= count:
            raise NotFoundError(
                f"Segment {key.segment_index} out of range (0-{count - 1})",
                details={"segment_count": count},
            )

    async def open_segment(self, key: SegmentJobKey) -> Tuple[AsyncIterator[bytes], str]:
        """
        Stream for one segment plus how it was served: HIT, SHARED or MISS.

        On a miss the returned iterator follows the live encode. Failures
        before the first byte raise here so the API can still answer with
        a structured error.
        """
        await self._check_index(key)
        self.stats.requests += 1

        cached = self.segment_cache.get(key)
        if cached is not None:
            self.stats.cache_hits += 1
            self.scheduler.schedule_ahead(key.storage_key, key.segment_index, key.segment_duration)
            logger.debug(f"[Segment] Cache hit: {key}")
            return iter_bytes(cached), "HIT"

        job, created = self._join_or_start(key)
        self.scheduler.schedule_ahead(key.storage_key, key.segment_index, key.segment_duration)

        if not created:
            self.stats.shared += 1
            logger.debug(f"[Segment] Waiting on in-flight encode: {key}")
            data = await job.result()
            return iter_bytes(data), "SHARED"

        logger.info(f"[Segment] Encoding {key}")
        await job.wait_started()
        return job.stream(), "MISS"

    async def get_segment(self, key: SegmentJobKey) -> bytes:
        """Complete bytes for one segment, from cache or a shared encode."""
        cached = self.segment_cache.get(key)
        if cached is not None:
            return cached
        job, _ = self._join_or_start(key)
        return await job.result()

    # ------------------------------------------------------------------
    # Metadata, playlist, streams
    # ------------------------------------------------------------------

    async def get_info(self, storage_key: str) -> VideoMetadata:
        return await self.metadata.resolve(storage_key)

    async def build_playlist(self, storage_key: str, segment_duration: float) -> Playlist:
        metadata = await self.metadata.resolve(storage_key)
        return self.playlist_builder.build(storage_key, metadata.duration, segment_duration)

    async def open_stream(
        self,
        storage_key: str,
        start_time: float = 0,
        duration: Optional[float] = None
    ) -> AsyncIterator[bytes]:
        return await self.encoder.open_stream(storage_key, start_time, duration)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "segments": self.stats.to_dict(),
            "segment_cache": self.segment_cache.get_stats(),
            "metadata_cache": self.metadata.get_stats(),
            "source_cache": self.source_cache.get_stats(),
            "in_flight_encodes": self.in_flight_count,
            "lookahead": self.scheduler.get_stats(),
            "encoder": self.profile.to_dict(),
            "uptime_seconds": self.stats.uptime_seconds,
        }


def create_job_manager(
    config: VideoReviewConfig,
    storage: Optional[StorageClient] = None,
    process_factory: Optional[Callable[..., Any]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    profile: Optional[EncoderProfile] = None
) -> SegmentJobManager:
    """Construct every component once, with configuration injected."""
    storage = storage or StorageClient(config.storage)
    expiry = config.storage.signed_url_expiry

    def sign_url(storage_key: str) -> str:
        return storage.get_signed_url(storage_key, expiry)

    tc = config.transcoding
    cc = config.cache
    profile = profile or select_profile(hw_config=config.hardware)

    probe = MediaProbe(
        find_executable(tc.ffprobe_path, "ffprobe"),
        timeout=tc.probe_timeout,
        process_factory=process_factory,
    )
    metadata = MetadataCache(probe, sign_url, ttl_seconds=cc.metadata_ttl_seconds)
    source_cache = SourceCache(
        cc.local_cache_dir,
        cc.max_local_cache_bytes,
        sign_url,
        enabled=cc.local_cache_enabled,
        target_ratio=cc.eviction_target_ratio,
        download_timeout=cc.download_timeout,
        http_client=http_client,
    )
    command_builder = CommandBuilder(find_executable(tc.ffmpeg_path, "ffmpeg"), profile, tc)
    encoder = SegmentEncoder(
        command_builder,
        metadata,
        source_cache,
        sign_url,
        performance=PerformanceTracker(),
        process_factory=process_factory,
    )

    return SegmentJobManager(
        config=config,
        storage=storage,
        metadata=metadata,
        source_cache=source_cache,
        encoder=encoder,
        segment_cache=SegmentCache(cc.segment_ttl_seconds),
        playlist_builder=PlaylistBuilder(default_segment_duration=tc.segment_duration),
        profile=profile,
    )
