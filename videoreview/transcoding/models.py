"""
Data models for media metadata and segment addressing.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .playlist import count_segments


@dataclass
class VideoStreamInfo:
    codec: str = ""
    width: int = 0
    height: int = 0
    fps: float = 0.0
    bitrate: int = 0


@dataclass
class AudioStreamInfo:
    codec: str = ""
    sample_rate: int = 0
    channels: int = 0
    bitrate: int = 0


@dataclass
class VideoMetadata:
    """Probed facts about one source object."""
    duration: float
    bitrate: int = 0
    size: int = 0
    format: str = ""
    video: Optional[VideoStreamInfo] = None
    audio: Optional[AudioStreamInfo] = None

    @property
    def has_audio(self) -> bool:
        return self.audio is not None

    def segment_count(self, segment_duration: float) -> int:
        if self.duration <= 0 or segment_duration <= 0:
            return 0
        return count_segments(self.duration, segment_duration)


@dataclass(frozen=True)
class SegmentJobKey:
    """Addressing unit for both the in-flight registry and the segment cache."""
    storage_key: str
    segment_index: int
    segment_duration: float

    @property
    def start_time(self) -> float:
        return self.segment_index * self.segment_duration

    def __str__(self) -> str:
        return f"{self.storage_key}#{self.segment_index}@{self.segment_duration:g}s"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "storage_key": self.storage_key,
            "segment_index": self.segment_index,
            "segment_duration": self.segment_duration,
        }
