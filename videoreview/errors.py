"""
Error types for VideoReview.

Every failure a request can hit is a VideoReviewError subclass carrying a
machine-readable code, a human-readable message and the HTTP status the API
layer renders it with. None of them terminate the process.
"""

from typing import Any, Dict, Optional


class VideoReviewError(Exception):
    """Base class for request-scoped failures."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class CredentialsError(VideoReviewError):
    """Object storage rejected our credentials."""

    code = "INVALID_CREDENTIALS"
    status_code = 401


class NotFoundError(VideoReviewError):
    """Bucket or key does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class DownloadError(VideoReviewError):
    """Populating the local source cache failed (network, status or timeout)."""

    code = "DOWNLOAD_FAILED"
    status_code = 502


class ProbeError(VideoReviewError):
    """Metadata extraction with ffprobe failed."""

    code = "PROBE_FAILED"
    status_code = 502


class EncodeError(VideoReviewError):
    """The ffmpeg process failed to start or exited non-zero."""

    code = "ENCODE_FAILED"
    status_code = 500


class CacheIOError(VideoReviewError):
    """Local disk write or eviction failed."""

    code = "CACHE_IO_ERROR"
    status_code = 500
