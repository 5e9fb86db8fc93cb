"""
FFmpeg command building for segment and direct-stream output.
"""

import logging
from typing import List, Optional

from ..config import TranscodingConfig
from ..hardware import EncoderProfile
from .constants import (
    SEGMENT_VIDEO_MAXRATE, SEGMENT_VIDEO_BUFSIZE, SEGMENT_MUXRATE,
    STREAM_VIDEO_BITRATE, STREAM_VIDEO_BUFSIZE,
    AUDIO_CODEC, AUDIO_BITRATE, AUDIO_CHANNELS, AUDIO_SAMPLE_RATE,
    SILENT_AUDIO_SOURCE, KEYFRAME_INTERVAL_SECONDS,
)

logger = logging.getLogger(__name__)


def _fmt_seconds(value: float) -> str:
    return f"{value:.3f}"


class CommandBuilder:
    """Builds FFmpeg commands that write to stdout."""

    def __init__(
        self,
        ffmpeg_path: str,
        profile: EncoderProfile,
        transcoding_config: Optional[TranscodingConfig] = None
    ):
        self.ffmpeg_path = ffmpeg_path
        self.profile = profile
        self.transcoding_config = transcoding_config or TranscodingConfig()

    @property
    def output_size(self) -> str:
        cfg = self.transcoding_config
        return f"{cfg.output_width}x{cfg.output_height}"

    @property
    def gop_size(self) -> int:
        return self.transcoding_config.output_fps * KEYFRAME_INTERVAL_SECONDS

    def _get_protocol_args(self, source: str) -> List[str]:
        """Get protocol options for signed-URL sources."""
        if source.startswith('http://') or source.startswith('https://'):
            return [
                "-reconnect", "1",
                "-reconnect_streamed", "1",
                "-reconnect_delay_max", "5",
                "-rw_timeout", "30000000",
            ]
        return []

    def _get_audio_args(self) -> List[str]:
        return [
            "-c:a", AUDIO_CODEC,
            "-b:a", AUDIO_BITRATE,
            "-ac", str(AUDIO_CHANNELS),
            "-ar", str(AUDIO_SAMPLE_RATE),
        ]

    def build_segment_command(
        self,
        source: str,
        start_time: float,
        duration: float,
        has_audio: bool = True
    ) -> List[str]:
        """
        Build the command for one HLS segment as MPEG-TS on stdout.

        Input seeking keeps long sources fast to enter. Every segment gets
        the same stream layout: when the source has no audio a silent
        stereo track is generated, otherwise players stall at the switch
        between segments.
        """
        cfg = self.transcoding_config
        cmd = [self.ffmpeg_path, "-y", "-hide_banner", "-loglevel", "error"]

        cmd.extend(self._get_protocol_args(source))
        cmd.extend(["-ss", _fmt_seconds(start_time), "-i", source])

        if not has_audio:
            cmd.extend(["-f", "lavfi", "-i", SILENT_AUDIO_SOURCE])

        cmd.extend(["-t", _fmt_seconds(duration)])

        if has_audio:
            cmd.extend(["-map", "0:v:0", "-map", "0:a:0"])
        else:
            cmd.extend(["-map", "0:v:0", "-map", "1:a:0", "-shortest"])

        gop = str(self.gop_size)
        cmd.extend(self.profile.video_args())
        cmd.extend([
            "-maxrate", SEGMENT_VIDEO_MAXRATE,
            "-bufsize", SEGMENT_VIDEO_BUFSIZE,
            "-g", gop,
            "-keyint_min", gop,
            "-sc_threshold", "0",
            "-force_key_frames", f"expr:gte(t,n_forced*{KEYFRAME_INTERVAL_SECONDS})",
            "-r", str(cfg.output_fps),
            "-s", self.output_size,
            "-pix_fmt", "yuv420p",
            "-profile:v", "high",
            "-level", "4.0",
        ])

        cmd.extend(self._get_audio_args())

        # Segment timestamps continue where the previous segment ended
        cmd.extend([
            "-output_ts_offset", _fmt_seconds(start_time),
            "-f", "mpegts",
            "-muxrate", SEGMENT_MUXRATE,
            "-pcr_period", "60",
            "-threads", "0",
            "pipe:1",
        ])

        return cmd

    def build_stream_command(
        self,
        source: str,
        start_time: float = 0,
        duration: Optional[float] = None
    ) -> List[str]:
        """Build the command for a single-shot fragmented MP4 stream on stdout."""
        cfg = self.transcoding_config
        cmd = [self.ffmpeg_path, "-y", "-hide_banner", "-loglevel", "error"]

        cmd.extend(self._get_protocol_args(source))
        if start_time > 0:
            cmd.extend(["-ss", _fmt_seconds(start_time)])
        cmd.extend(["-i", source])

        if duration is not None and duration > 0:
            cmd.extend(["-t", _fmt_seconds(duration)])

        # Optional audio map: sources without audio still stream
        cmd.extend(["-map", "0:v:0", "-map", "0:a:0?"])

        cmd.extend(self.profile.video_args())
        cmd.extend([
            "-b:v", STREAM_VIDEO_BITRATE,
            "-maxrate", STREAM_VIDEO_BITRATE,
            "-bufsize", STREAM_VIDEO_BUFSIZE,
            "-g", str(self.gop_size),
            "-r", str(cfg.output_fps),
            "-s", self.output_size,
            "-pix_fmt", "yuv420p",
        ])

        cmd.extend(self._get_audio_args())

        cmd.extend([
            "-movflags", "frag_keyframe+empty_moov+default_base_moof",
            "-f", "mp4",
            "-avoid_negative_ts", "make_zero",
            "-threads", "0",
            "pipe:1",
        ])

        return cmd
