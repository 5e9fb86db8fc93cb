"""
Constants for segment and stream encoding.
"""

from typing import Tuple


# Segment (HLS, MPEG-TS) rate control
SEGMENT_VIDEO_MAXRATE = "2000k"
SEGMENT_VIDEO_BUFSIZE = "4000k"
SEGMENT_MUXRATE = "2500k"

# Direct stream (fragmented MP4) rate control
STREAM_VIDEO_BITRATE = "1500k"
STREAM_VIDEO_BUFSIZE = "3M"

# Audio is normalised so every segment has the same layout
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "96k"
AUDIO_CHANNELS = 2
AUDIO_SAMPLE_RATE = 44100
SILENT_AUDIO_SOURCE = (
    f"anullsrc=channel_layout=stereo:sample_rate={AUDIO_SAMPLE_RATE}"
)

# Keyframe every 2 seconds of output, plus one forced at each segment start
KEYFRAME_INTERVAL_SECONDS = 2

# Source extensions offered by the storage listing
VIDEO_EXTENSIONS: Tuple[str, ...] = (
    ".mp4", ".mov", ".avi", ".mkv", ".mxf", ".ts", ".m2ts",
)

# Extension used for cached sources whose key has none
DEFAULT_SOURCE_EXTENSION = ".video"

# Subprocess I/O
READ_CHUNK_SIZE = 64 * 1024
STDERR_TAIL_LINES = 100
