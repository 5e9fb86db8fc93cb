"""
Look-ahead scheduling of background segment encodes.

Every segment request triggers a best-effort plan: encode segment 0 if
nobody has it, then the next few segments after the one being watched.
The window grows when encodes for this source run slower than real time.
"""

import asyncio
import logging
import math
from typing import Any, Callable, Coroutine, Dict, List, Optional, Protocol, Set

from .models import SegmentJobKey, VideoMetadata
from .performance import PerformanceTracker

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 3
MAX_WINDOW = 6
WINDOW_MARGIN = 2


class SegmentSource(Protocol):
    """What the scheduler needs from the job manager."""

    def is_busy(self, key: SegmentJobKey) -> bool:
        """True if the segment is cached or being encoded."""

    async def prefetch(self, key: SegmentJobKey) -> None:
        """Encode the segment into the cache without streaming it anywhere."""


class MetadataResolver(Protocol):
    async def resolve(self, storage_key: str) -> VideoMetadata:
        ...


def lookahead_window(
    average_encode_seconds: Optional[float],
    segment_duration: float,
    default: int = DEFAULT_WINDOW,
    maximum: int = MAX_WINDOW,
    margin: int = WINDOW_MARGIN
) -> int:
    """
    Number of segments to encode ahead of playback.

    While encodes keep up with playback the default applies. When the
    average encode takes longer than a segment plays, the window covers
    that many segment-durations plus a margin, capped at ``maximum``.
    """
    if average_encode_seconds is None or segment_duration <= 0:
        return default
    if average_encode_seconds <= segment_duration:
        return default
    return min(maximum, math.ceil(average_encode_seconds / segment_duration) + margin)


def plan_lookahead(
    current_index: int,
    total_segments: int,
    window: int,
    is_busy: Callable[[int], bool]
) -> List[int]:
    """Segment indices to encode in the background, segment 0 first."""
    candidates: List[int] = []
    if total_segments <= 0:
        return candidates

    # Reviewers jump back to the start a lot
    if not is_busy(0):
        candidates.append(0)

    for offset in range(1, window + 1):
        index = current_index + offset
        if index >= total_segments:
            break
        if index < 0 or index in candidates or is_busy(index):
            continue
        candidates.append(index)

    return candidates


class LookAheadScheduler:
    """
    Submits background encodes to a bounded pool.

    At most ``max_workers`` prefetches encode at once. Failures are
    observed by a supervisor callback and logged; they never reach the
    request that triggered the plan.
    """

    def __init__(
        self,
        source: SegmentSource,
        metadata: MetadataResolver,
        performance: PerformanceTracker,
        max_workers: int = 2,
        default_window: int = DEFAULT_WINDOW,
        max_window: int = MAX_WINDOW,
        margin: int = WINDOW_MARGIN
    ):
        self.source = source
        self.metadata = metadata
        self.performance = performance
        self.max_workers = max_workers
        self.default_window = default_window
        self.max_window = max_window
        self.margin = margin
        self._slots = asyncio.Semaphore(max_workers)
        self._tasks: Set[asyncio.Task] = set()
        # Prefetches submitted but not yet finished, including those waiting for a slot
        self._queued: Set[SegmentJobKey] = set()
        self._closed = False
        self.planned = 0
        self.prefetched = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def window_for(self, storage_key: str, segment_duration: float) -> int:
        return lookahead_window(
            self.performance.average(storage_key),
            segment_duration,
            default=self.default_window,
            maximum=self.max_window,
            margin=self.margin,
        )

    def schedule_ahead(
        self,
        storage_key: str,
        current_index: int,
        segment_duration: float
    ) -> Optional[asyncio.Task]:
        """Plan background encodes around ``current_index``. Never awaited by callers."""
        if self._closed:
            return None
        return self._submit(
            self._plan(storage_key, current_index, segment_duration),
            label=f"plan {storage_key}#{current_index}",
        )

    async def _plan(self, storage_key: str, current_index: int, segment_duration: float) -> List[int]:
        metadata = await self.metadata.resolve(storage_key)
        total = metadata.segment_count(segment_duration)
        window = self.window_for(storage_key, segment_duration)

        def is_busy(index: int) -> bool:
            key = SegmentJobKey(storage_key, index, segment_duration)
            return key in self._queued or self.source.is_busy(key)

        candidates = plan_lookahead(current_index, total, window, is_busy)
        self.planned += 1

        for index in candidates:
            key = SegmentJobKey(storage_key, index, segment_duration)
            self._queued.add(key)
            task = self._submit(self._prefetch(key), label=f"prefetch {key}")
            # Released on completion, including cancellation before the first step
            task.add_done_callback(lambda _, key=key: self._queued.discard(key))

        if candidates:
            logger.debug(
                f"[LookAhead] {storage_key}#{current_index}: window={window}, "
                f"queued {candidates} of {total}"
            )
        return candidates

    async def _prefetch(self, key: SegmentJobKey) -> None:
        async with self._slots:
            # Someone may have requested it while we waited for a slot
            if self.source.is_busy(key):
                return
            await self.source.prefetch(key)
            self.prefetched += 1

    def _submit(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._supervise(t, label))
        return task

    def _supervise(self, task: asyncio.Task, label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            logger.warning(f"[LookAhead] {label} failed: {exc}")

    async def shutdown(self) -> None:
        """Stop accepting plans and cancel queued prefetches."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "pending": self.pending,
            "queued": len(self._queued),
            "max_workers": self.max_workers,
            "planned": self.planned,
            "prefetched": self.prefetched,
            "failed": self.failed,
        }
