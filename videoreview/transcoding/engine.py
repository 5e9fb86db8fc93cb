"""
FFmpeg execution: segment encodes and direct streams as async byte iterators.
"""

import asyncio
import logging
import shutil
import subprocess
import sys
import time
from collections import deque
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, TYPE_CHECKING

from ..errors import CacheIOError, DownloadError, EncodeError
from .commands import CommandBuilder
from .constants import READ_CHUNK_SIZE, STDERR_TAIL_LINES
from .error_classifier import error_for_category, get_error_classifier
from .models import SegmentJobKey
from .performance import PerformanceTracker

if TYPE_CHECKING:
    from ..cache import MetadataCache, SourceCache

logger = logging.getLogger(__name__)


def find_executable(configured: str, name: str) -> str:
    """Resolve an ffmpeg/ffprobe path; 'auto' means look it up on PATH."""
    if configured and configured != "auto":
        return configured
    found = shutil.which(name)
    if found:
        return found
    return name


class SegmentEncoder:
    """
    Runs ffmpeg with stdout piped back to us.

    Output is exposed as an async iterator so callers can forward bytes
    while the encode is still running. Closing the iterator early kills
    the process.
    """

    def __init__(
        self,
        command_builder: CommandBuilder,
        metadata: "MetadataCache",
        source_cache: "SourceCache",
        sign_url: Callable[[str], str],
        performance: Optional[PerformanceTracker] = None,
        process_factory: Optional[Callable[..., Any]] = None,
        chunk_size: int = READ_CHUNK_SIZE
    ):
        self.command_builder = command_builder
        self.metadata = metadata
        self.source_cache = source_cache
        self.performance = performance or PerformanceTracker()
        self.chunk_size = chunk_size
        self._sign_url = sign_url
        self._process_factory = process_factory or asyncio.create_subprocess_exec

    async def resolve_input(self, storage_key: str) -> str:
        """Prefer the local source cache, fall back to a signed URL."""
        try:
            local = await self.source_cache.ensure_local(storage_key)
        except (DownloadError, CacheIOError) as e:
            logger.warning(f"[Encode] Local cache unavailable for {storage_key}, using signed URL: {e}")
            local = None

        if local is not None:
            return str(local)
        return self._sign_url(storage_key)

    async def encode_segment(self, key: SegmentJobKey) -> AsyncIterator[bytes]:
        """
        Encode one segment and yield MPEG-TS bytes as ffmpeg produces them.

        The wall-clock time of a successful encode is fed into the
        performance tracker for the look-ahead window. Raises EncodeError
        if ffmpeg fails; bytes already yielded are not retracted.
        """
        started = time.monotonic()
        has_audio = await self.metadata.has_audio(key.storage_key)
        source = await self.resolve_input(key.storage_key)

        cmd = self.command_builder.build_segment_command(
            source, key.start_time, key.segment_duration, has_audio
        )

        size = 0
        async with aclosing(self.run_process(cmd, label=str(key))) as stream:
            async for chunk in stream:
                size += len(chunk)
                yield chunk

        elapsed = time.monotonic() - started
        average = self.performance.record(key.storage_key, elapsed)
        logger.info(
            f"[Encode] {key}: {size / 1024:.0f} KB in {elapsed:.2f}s (avg {average:.2f}s)"
        )

    async def open_stream(
        self,
        storage_key: str,
        start_time: float = 0,
        duration: Optional[float] = None
    ) -> AsyncIterator[bytes]:
        """
        Prepare a single-shot fragmented MP4 stream.

        Input resolution happens here, before any byte is sent, so storage
        errors still reach the client as structured errors. The stream never
        triggers a download: a locally cached source is used only if present.
        """
        local = self.source_cache.lookup(storage_key)
        source = str(local) if local is not None else self._sign_url(storage_key)
        cmd = self.command_builder.build_stream_command(source, start_time, duration)
        label = f"{storage_key}@{start_time:g}s"
        return self.run_process(cmd, label=label)

    async def run_process(self, cmd: List[str], label: str) -> AsyncIterator[bytes]:
        """Run ffmpeg and yield its stdout. Raises EncodeError on failure."""
        # Arguments may hold a signed URL, so only the binary and label are logged
        logger.debug(f"[Encode] Running {cmd[0]} for {label}")

        kwargs: Dict[str, Any] = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        try:
            process = await self._process_factory(*cmd, **kwargs)
        except OSError as e:
            logger.error(f"[Encode] Failed to start FFmpeg for {label}: {e}")
            raise EncodeError(f"Failed to start ffmpeg: {e}") from e

        stderr_lines: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        stderr_task = asyncio.create_task(self._drain_stderr(process, stderr_lines))
        finished = False

        try:
            while True:
                chunk = await process.stdout.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
            returncode = await process.wait()
            await stderr_task
            finished = True
        finally:
            if not finished:
                stderr_task.cancel()
                self._kill(process, label)

        if returncode != 0:
            stderr_text = "".join(stderr_lines)
            details = get_error_classifier().describe(stderr_text, returncode)
            logger.error(
                f"[Encode] FFmpeg failed for {label} (exit {returncode}): "
                f"{details['description']} | {details['last_line']}"
            )
            error_cls = error_for_category(details, EncodeError)
            raise error_cls(
                f"ffmpeg exited with code {returncode}: {details['description']}",
                details=details,
            )

    async def _drain_stderr(self, process: Any, lines: Deque[str]) -> None:
        """Keep the stderr pipe empty so ffmpeg never blocks on it."""
        try:
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                lines.append(line.decode("utf-8", errors="ignore"))
        except (OSError, ValueError) as e:
            logger.debug(f"[Encode] stderr reader error: {e}")

    def _kill(self, process: Any, label: str) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
            logger.debug(f"[Encode] Killed FFmpeg for {label}")
        except (ProcessLookupError, OSError):
            pass
