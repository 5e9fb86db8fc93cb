"""
API request/response models for VideoReview
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .transcoding.models import VideoMetadata


class CamelModel(BaseModel):
    """Serialised with camelCase keys, which the review UI expects."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VideoStreamResponse(CamelModel):
    codec: str
    width: int
    height: int
    fps: float
    bitrate: int


class AudioStreamResponse(CamelModel):
    codec: str
    sample_rate: int
    channels: int
    bitrate: int


class VideoInfoResponse(CamelModel):
    duration_seconds: float
    bitrate: int = 0
    size: int = 0
    format: str = ""
    video: Optional[VideoStreamResponse] = None
    audio: Optional[AudioStreamResponse] = None

    @classmethod
    def from_metadata(cls, metadata: VideoMetadata) -> "VideoInfoResponse":
        video = None
        if metadata.video:
            v = metadata.video
            video = VideoStreamResponse(
                codec=v.codec, width=v.width, height=v.height, fps=v.fps, bitrate=v.bitrate
            )
        audio = None
        if metadata.audio:
            a = metadata.audio
            audio = AudioStreamResponse(
                codec=a.codec, sample_rate=a.sample_rate, channels=a.channels, bitrate=a.bitrate
            )
        return cls(
            duration_seconds=metadata.duration,
            bitrate=metadata.bitrate,
            size=metadata.size,
            format=metadata.format,
            video=video,
            audio=audio,
        )


class VideoObject(CamelModel):
    key: str
    size: int
    last_modified: Optional[str] = None
    filename: str


class VideoListResponse(CamelModel):
    videos: List[VideoObject] = Field(default_factory=list)
    count: int = 0


class ObjectMetadataResponse(CamelModel):
    size: int
    last_modified: Optional[str] = None
    content_type: Optional[str] = None


class SignedUrlResponse(CamelModel):
    url: str
    expires_in: int


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    uptime_seconds: float
    in_flight_encodes: int = 0


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
