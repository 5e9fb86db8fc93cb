"""
Hardware encoder models for VideoReview
"""

from typing import Dict, List, Any
from dataclasses import dataclass, field
from enum import Enum


class HWAccelType(str, Enum):
    NVENC = "nvenc"
    QSV = "qsv"
    AMF = "amf"
    VIDEOTOOLBOX = "videotoolbox"
    SOFTWARE = "software"


@dataclass(frozen=True)
class EncoderProfile:
    """Encoder configuration chosen once per process."""
    accel: HWAccelType
    encoder_name: str
    quality_args: List[str] = field(default_factory=list)
    preset_args: List[str] = field(default_factory=list)

    @property
    def is_hardware(self) -> bool:
        return self.accel != HWAccelType.SOFTWARE

    def video_args(self) -> List[str]:
        """Encoder selection plus its tuning flags, ready for an ffmpeg command."""
        return ["-c:v", self.encoder_name, *self.quality_args, *self.preset_args]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accel": self.accel.value,
            "encoder": self.encoder_name,
            "quality_args": list(self.quality_args),
            "preset_args": list(self.preset_args),
        }
