"""
Transcoding package for VideoReview

Modules:
- models: Media metadata and segment addressing
- playlist: HLS playlist generation
- encoders: Encoder profile selection
- commands: FFmpeg command building
- probe: ffprobe metadata extraction
- engine: FFmpeg execution as async byte streams
- scheduler: Look-ahead background encoding
- performance: Encode latency tracking
- error_classifier: FFmpeg stderr classification
"""

from .models import VideoMetadata, VideoStreamInfo, AudioStreamInfo, SegmentJobKey
from .playlist import PlaylistBuilder, Playlist, PlaylistSegment, count_segments, split_segments
from .encoders import EncoderSelector, select_profile
from .commands import CommandBuilder
from .probe import MediaProbe, parse_probe_output
from .performance import PerformanceTracker

__all__ = [
    "VideoMetadata",
    "VideoStreamInfo",
    "AudioStreamInfo",
    "SegmentJobKey",
    "PlaylistBuilder",
    "Playlist",
    "PlaylistSegment",
    "count_segments",
    "split_segments",
    "EncoderSelector",
    "select_profile",
    "CommandBuilder",
    "MediaProbe",
    "parse_probe_output",
    "PerformanceTracker",
]
