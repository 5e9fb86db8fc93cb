"""
Media probing with ffprobe.
"""

import asyncio
import json
import logging
from fractions import Fraction
from typing import Any, Callable, Dict, List, Optional

from ..errors import ProbeError
from .error_classifier import error_for_category, get_error_classifier
from .models import VideoMetadata, VideoStreamInfo, AudioStreamInfo

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_frame_rate(rate: Optional[str]) -> float:
    """Parse ffprobe rates such as '30000/1001' or '25'."""
    if not rate:
        return 0.0
    try:
        value = Fraction(rate)
    except (ValueError, ZeroDivisionError):
        return 0.0
    return round(float(value), 3)


def _first_stream(streams: List[Dict[str, Any]], codec_type: str) -> Optional[Dict[str, Any]]:
    for stream in streams:
        if stream.get("codec_type") == codec_type:
            return stream
    return None


def parse_probe_output(data: Dict[str, Any]) -> VideoMetadata:
    """Convert ffprobe's JSON document into VideoMetadata."""
    fmt = data.get("format") or {}
    streams = data.get("streams") or []

    video = _first_stream(streams, "video")
    audio = _first_stream(streams, "audio")

    duration = _to_float(fmt.get("duration"))
    if duration <= 0 and video:
        duration = _to_float(video.get("duration"))
    if duration <= 0:
        raise ProbeError("Could not determine media duration")

    video_info = None
    if video:
        video_info = VideoStreamInfo(
            codec=video.get("codec_name", ""),
            width=_to_int(video.get("width")),
            height=_to_int(video.get("height")),
            fps=parse_frame_rate(video.get("r_frame_rate") or video.get("avg_frame_rate")),
            bitrate=_to_int(video.get("bit_rate")),
        )

    audio_info = None
    if audio:
        audio_info = AudioStreamInfo(
            codec=audio.get("codec_name", ""),
            sample_rate=_to_int(audio.get("sample_rate")),
            channels=_to_int(audio.get("channels")),
            bitrate=_to_int(audio.get("bit_rate")),
        )

    return VideoMetadata(
        duration=duration,
        bitrate=_to_int(fmt.get("bit_rate")),
        size=_to_int(fmt.get("size")),
        format=fmt.get("format_name", ""),
        video=video_info,
        audio=audio_info,
    )


class MediaProbe:
    """Runs ffprobe against a local path or signed URL."""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        timeout: float = 30.0,
        process_factory: Optional[Callable[..., Any]] = None
    ):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self._process_factory = process_factory or asyncio.create_subprocess_exec

    def build_command(self, source: str) -> List[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            source,
        ]

    async def get_metadata(self, source: str) -> VideoMetadata:
        """
        Probe the source.

        A missing or forbidden object raises NotFoundError or CredentialsError;
        every other failure raises ProbeError.
        """
        cmd = self.build_command(source)
        try:
            process = await self._process_factory(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProbeError(f"Failed to start ffprobe: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            raise ProbeError(f"ffprobe timed out after {self.timeout:.0f}s")

        stderr_text = (stderr or b"").decode("utf-8", errors="ignore")
        if process.returncode != 0:
            details = get_error_classifier().describe(stderr_text, process.returncode)
            logger.warning(f"[Probe] ffprobe failed: {details['description']} ({details['last_line']})")
            error_cls = error_for_category(details, ProbeError)
            raise error_cls(f"ffprobe failed: {details['description']}", details=details)

        try:
            data = json.loads(stdout or b"{}")
        except ValueError as e:
            raise ProbeError(f"ffprobe returned invalid JSON: {e}") from e

        return parse_probe_output(data)
