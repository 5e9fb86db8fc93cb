"""
FFmpeg/ffprobe stderr classification.

Turns the tail of a failed process's stderr into a category and a short
description so encode and probe errors are readable in API responses.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Type

from ..errors import CredentialsError, NotFoundError, VideoReviewError

logger = logging.getLogger(__name__)


@dataclass
class FFmpegError:
    """Represents a classified FFmpeg error."""
    pattern: str
    category: str  # 'access', 'missing', 'network', 'hardware', 'input', 'resource'
    description: str


# First match wins, so specific patterns come before generic ones
FFMPEG_ERROR_MAP: List[FFmpegError] = [
    # Signed URL rejected or expired
    FFmpegError("403 forbidden", "access", "Storage denied access to the source"),
    FFmpegError("401 unauthorized", "access", "Storage rejected the credentials"),
    FFmpegError("signaturedoesnotmatch", "access", "Signed URL signature mismatch"),
    FFmpegError("request has expired", "access", "Signed URL expired"),

    # Source missing
    FFmpegError("404 not found", "missing", "Source object not found"),
    FFmpegError("no such file", "missing", "Source file not found"),

    # Network
    FFmpegError("connection refused", "network", "Connection refused"),
    FFmpegError("connection reset", "network", "Connection reset"),
    FFmpegError("connection timed out", "network", "Connection timeout"),
    FFmpegError("network is unreachable", "network", "Network unreachable"),
    FFmpegError("server returned", "network", "HTTP server error"),
    FFmpegError("end of file", "network", "Unexpected end of input"),
    FFmpegError("i/o error", "network", "I/O error reading input"),

    # Encoder
    FFmpegError("videotoolbox", "hardware", "VideoToolbox error"),
    FFmpegError("nvenc", "hardware", "NVENC error"),
    FFmpegError("mfx_err", "hardware", "Intel QSV error"),
    FFmpegError("amf", "hardware", "AMD AMF error"),
    FFmpegError("unknown encoder", "hardware", "Encoder not available in this ffmpeg build"),
    FFmpegError("encoder not found", "hardware", "Encoder not found"),

    # Input
    FFmpegError("moov atom not found", "input", "Invalid or truncated MP4/MOV file"),
    FFmpegError("invalid data found", "input", "Invalid input data"),
    FFmpegError("stream map", "input", "Requested stream not present in source"),
    FFmpegError("matches no streams", "input", "Requested stream not present in source"),
    FFmpegError("decoder not found", "input", "No decoder for source codec"),

    # Resource
    FFmpegError("cannot allocate", "resource", "Memory allocation failed"),
    FFmpegError("out of memory", "resource", "Out of memory"),
    FFmpegError("too many open files", "resource", "File descriptor limit"),
    FFmpegError("no space left", "resource", "No disk space"),
]


def last_error_line(stderr: str) -> str:
    """Last non-empty stderr line, which is usually the actual error."""
    for line in reversed(stderr.strip().splitlines()):
        if line.strip():
            return line.strip()
    return ""


class ErrorClassifier:
    """Classifies FFmpeg stderr output."""

    def __init__(self, error_map: Optional[List[FFmpegError]] = None):
        self.error_map = error_map or FFMPEG_ERROR_MAP

    def classify(self, stderr: str) -> Optional[FFmpegError]:
        error_lower = stderr.lower()
        for error in self.error_map:
            if error.pattern in error_lower:
                return error
        return None

    def describe(self, stderr: str, returncode: Optional[int] = None) -> Dict[str, Any]:
        """Build the `details` payload attached to encode/probe errors."""
        error = self.classify(stderr)
        details: Dict[str, Any] = {
            "category": error.category if error else "unknown",
            "description": error.description if error else "Unknown error",
            "last_line": last_error_line(stderr),
        }
        if returncode is not None:
            details["returncode"] = returncode
        return details


# Categories that mean the storage object itself is unreachable
CATEGORY_ERRORS: Dict[str, Type[VideoReviewError]] = {
    "missing": NotFoundError,
    "access": CredentialsError,
}


def error_for_category(details: Dict[str, Any], fallback: Type[VideoReviewError]) -> Type[VideoReviewError]:
    """Error kind for a classified failure; storage problems keep their own status."""
    return CATEGORY_ERRORS.get(details.get("category", ""), fallback)


_classifier: Optional[ErrorClassifier] = None


def get_error_classifier() -> ErrorClassifier:
    """Get the shared classifier instance."""
    global _classifier
    if _classifier is None:
        _classifier = ErrorClassifier()
    return _classifier
