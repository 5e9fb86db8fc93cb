"""
Encoder profile selection.

The profile is a pure function of the host platform (plus configuration
overrides). It is evaluated once at startup and reused for every segment.
"""

import logging
import platform as plat
from typing import Dict, List, Optional

from ..hardware import HWAccelType, EncoderProfile
from ..config import HardwareConfig

logger = logging.getLogger(__name__)


# =============================================================================
# ENCODER SETTINGS
# =============================================================================
# Tuned for latency: a reviewer is waiting on every segment.

ENCODER_NAMES: Dict[HWAccelType, str] = {
    HWAccelType.NVENC: "h264_nvenc",
    HWAccelType.QSV: "h264_qsv",
    HWAccelType.AMF: "h264_amf",
    HWAccelType.VIDEOTOOLBOX: "h264_videotoolbox",
    HWAccelType.SOFTWARE: "libx264",
}

QUALITY_ARGS: Dict[HWAccelType, List[str]] = {
    HWAccelType.NVENC: ["-rc", "vbr", "-cq", "28"],
    HWAccelType.QSV: ["-global_quality", "28"],
    HWAccelType.AMF: ["-rc", "vbr_latency", "-qp_i", "28", "-qp_p", "28"],
    HWAccelType.VIDEOTOOLBOX: ["-q:v", "70"],
    HWAccelType.SOFTWARE: ["-crf", "28"],
}

PRESET_ARGS: Dict[HWAccelType, List[str]] = {
    HWAccelType.NVENC: ["-preset", "p1", "-tune", "ll", "-bf", "0"],
    HWAccelType.QSV: ["-preset", "veryfast", "-bf", "0"],
    HWAccelType.AMF: ["-quality", "speed", "-bf", "0"],
    HWAccelType.VIDEOTOOLBOX: ["-realtime", "1", "-allow_sw", "1"],
    HWAccelType.SOFTWARE: ["-preset", "ultrafast", "-tune", "zerolatency"],
}

# Platforms with a known-good accelerated path and no probing required
PLATFORM_ACCEL: Dict[str, HWAccelType] = {
    "darwin": HWAccelType.VIDEOTOOLBOX,
}


def build_profile(accel: HWAccelType) -> EncoderProfile:
    return EncoderProfile(
        accel=accel,
        encoder_name=ENCODER_NAMES[accel],
        quality_args=list(QUALITY_ARGS[accel]),
        preset_args=list(PRESET_ARGS[accel]),
    )


class EncoderSelector:
    """Chooses the encoder profile for this host."""
    
    def __init__(self, hw_config: Optional[HardwareConfig] = None):
        self.hw_config = hw_config or HardwareConfig()
    
    def _resolve_override(self) -> Optional[HWAccelType]:
        if not self.hw_config.accel:
            return None
        try:
            return HWAccelType(self.hw_config.accel.lower())
        except ValueError:
            logger.warning(f"[Encoder] Unknown accel override '{self.hw_config.accel}', ignoring")
            return None
    
    def select_profile(self, platform: str) -> EncoderProfile:
        """Return the encoder profile for the given platform name."""
        override = self._resolve_override()
        if override is not None:
            return build_profile(override)
        
        if not self.hw_config.prefer_hw_accel:
            return build_profile(HWAccelType.SOFTWARE)
        
        accel = PLATFORM_ACCEL.get(platform.lower(), HWAccelType.SOFTWARE)
        return build_profile(accel)


def select_profile(platform: Optional[str] = None, hw_config: Optional[HardwareConfig] = None) -> EncoderProfile:
    """Select the encoder profile; defaults to the running host's platform."""
    platform = platform or plat.system()
    profile = EncoderSelector(hw_config).select_profile(platform)
    logger.info(f"[Encoder] Using {profile.encoder_name} ({profile.accel.value}) on {platform}")
    return profile
