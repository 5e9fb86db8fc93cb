"""
Single-flight registry.

At most one pending operation per key. The first caller starts it, later
callers subscribe to the same handle, and the entry is dropped as soon as
the operation settles, whatever the outcome.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
H = TypeVar("H")
T = TypeVar("T")


class SingleFlight(Generic[K, H]):
    """
    Keyed registry of pending operations.

    A handle is anything exposing ``add_done_callback``: an asyncio.Task,
    or a SegmentJob wrapping one. Checking for an existing entry and
    registering a new one happen without a suspension point in between,
    which is what makes the registry race-free on a single event loop.
    """

    def __init__(self, name: str = "flight"):
        self.name = name
        self._inflight: Dict[K, H] = {}

    def __contains__(self, key: K) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    def get(self, key: K) -> Optional[H]:
        return self._inflight.get(key)

    def values(self) -> List[H]:
        return list(self._inflight.values())

    def keys(self) -> List[K]:
        return list(self._inflight.keys())

    def join_or_start(self, key: K, start: Callable[[], H]) -> Tuple[H, bool]:
        """Return (handle, created). ``start`` runs only when nothing is pending."""
        handle = self._inflight.get(key)
        if handle is not None:
            logger.debug(f"[{self.name}] Joining in-flight operation for {key}")
            return handle, False

        handle = start()
        self._inflight[key] = handle
        handle.add_done_callback(lambda _: self._settle(key, handle))
        return handle, True

    def _settle(self, key: K, handle: H) -> None:
        if self._inflight.get(key) is handle:
            del self._inflight[key]

        # Every caller may have left already; retrieve the outcome so asyncio
        # does not report it as never retrieved
        if isinstance(handle, asyncio.Future) and not handle.cancelled():
            exc = handle.exception()
            if exc is not None:
                logger.debug(f"[{self.name}] Operation for {key} failed: {exc!r}")

    async def run(self, key: K, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``factory`` once per key and share its result.

        The shared task is shielded: a caller being cancelled (client
        disconnect) never cancels work other callers may be waiting on.
        """
        task, _ = self.join_or_start(key, lambda: asyncio.ensure_future(factory()))
        return await asyncio.shield(task)
