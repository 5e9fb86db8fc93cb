"""
Tests for FFmpeg command building.
"""

import pytest

from videoreview.config import TranscodingConfig
from videoreview.hardware import HWAccelType
from videoreview.transcoding.commands import CommandBuilder
from videoreview.transcoding.encoders import build_profile


@pytest.fixture
def builder() -> CommandBuilder:
    return CommandBuilder("ffmpeg", build_profile(HWAccelType.SOFTWARE), TranscodingConfig())


def _value(cmd, flag):
    return cmd[cmd.index(flag) + 1]


class TestSegmentCommand:
    """Test MPEG-TS segment commands."""

    def test_input_seek_and_duration(self, builder):
        cmd = builder.build_segment_command("/cache/abc.mp4", 90, 5, has_audio=True)

        assert cmd[0] == "ffmpeg"
        assert cmd.index("-ss") < cmd.index("-i")
        assert _value(cmd, "-ss") == "90.000"
        assert _value(cmd, "-i") == "/cache/abc.mp4"
        assert _value(cmd, "-t") == "5.000"
        assert _value(cmd, "-output_ts_offset") == "90.000"

    def test_output_format(self, builder):
        cmd = builder.build_segment_command("/cache/abc.mp4", 0, 10)

        assert cmd[-1] == "pipe:1"
        assert _value(cmd, "-f") == "mpegts"
        assert _value(cmd, "-s") == "1280x720"
        assert _value(cmd, "-r") == "25"
        assert _value(cmd, "-g") == "50"
        assert _value(cmd, "-c:v") == "libx264"
        assert _value(cmd, "-c:a") == "aac"
        assert _value(cmd, "-pix_fmt") == "yuv420p"

    def test_source_with_audio_maps_it(self, builder):
        cmd = builder.build_segment_command("/cache/abc.mp4", 0, 10, has_audio=True)

        assert "lavfi" not in cmd
        assert "0:a:0" in cmd
        assert "-shortest" not in cmd

    def test_silent_track_when_source_has_no_audio(self, builder):
        cmd = builder.build_segment_command("/cache/abc.mp4", 20, 10, has_audio=False)

        lavfi = cmd.index("lavfi")
        assert cmd[lavfi - 1] == "-f"
        assert cmd[lavfi + 2].startswith("anullsrc")
        assert "1:a:0" in cmd
        assert "0:a:0" not in cmd
        assert "-shortest" in cmd
        # Silent input comes after the seeked source
        assert lavfi > cmd.index("/cache/abc.mp4")

    def test_reconnect_flags_for_signed_url(self, builder):
        url = "https://s3.test/reviews/demo.mp4?X-Amz-Signature=abc"
        cmd = builder.build_segment_command(url, 0, 10)
        assert "-reconnect" in cmd
        assert cmd.index("-reconnect") < cmd.index("-i")

    def test_no_reconnect_flags_for_local_file(self, builder):
        cmd = builder.build_segment_command("/cache/abc.mp4", 0, 10)
        assert "-reconnect" not in cmd

    def test_output_size_from_config(self):
        config = TranscodingConfig(output_width=854, output_height=480, output_fps=30)
        builder = CommandBuilder("ffmpeg", build_profile(HWAccelType.SOFTWARE), config)
        cmd = builder.build_segment_command("/cache/abc.mp4", 0, 10)
        assert _value(cmd, "-s") == "854x480"
        assert _value(cmd, "-g") == "60"


class TestStreamCommand:
    """Test fragmented MP4 stream commands."""

    def test_full_stream(self, builder):
        cmd = builder.build_stream_command("/cache/abc.mp4")

        assert "-ss" not in cmd
        assert "-t" not in cmd
        assert _value(cmd, "-f") == "mp4"
        assert "frag_keyframe" in _value(cmd, "-movflags")
        assert "0:a:0?" in cmd
        assert cmd[-1] == "pipe:1"

    def test_seek_clip(self, builder):
        cmd = builder.build_stream_command("/cache/abc.mp4", 42.5, 30)

        assert _value(cmd, "-ss") == "42.500"
        assert cmd.index("-ss") < cmd.index("-i")
        assert _value(cmd, "-t") == "30.000"
