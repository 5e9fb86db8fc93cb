"""
Video routes: info, HLS playlist and segments, direct stream and seek.

Storage keys may contain slashes; clients send them URL-encoded and the
``path`` converter captures the decoded key.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import StreamingResponse

from ...config import VideoReviewConfig
from ...jobs import SegmentJobManager
from ...models import ErrorResponse, VideoInfoResponse
from ...transcoding.models import SegmentJobKey
from ..deps import get_app_config, get_job_manager

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/video",
    tags=["video"],
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)

PLAYLIST_MEDIA_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_MEDIA_TYPE = "video/mp2t"
STREAM_MEDIA_TYPE = "video/mp4"


def _segment_duration(config: VideoReviewConfig, requested: Optional[float]) -> float:
    if requested is None:
        return float(config.transcoding.segment_duration)
    return requested


@router.get("/{key:path}/info", response_model=VideoInfoResponse)
async def get_video_info(key: str, manager: SegmentJobManager = Depends(get_job_manager)):
    """Probed metadata for one video."""
    metadata = await manager.get_info(key)
    return VideoInfoResponse.from_metadata(metadata)


@router.get("/{key:path}/playlist.m3u8")
async def get_playlist(
    key: str,
    segment_duration: Optional[float] = Query(None, alias="segmentDuration", gt=0),
    manager: SegmentJobManager = Depends(get_job_manager),
    config: VideoReviewConfig = Depends(get_app_config),
):
    """HLS VOD playlist whose entries point at the segment endpoint."""
    playlist = await manager.build_playlist(key, _segment_duration(config, segment_duration))
    return Response(
        content=playlist.manifest,
        media_type=PLAYLIST_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/{key:path}/segment/{index}")
async def get_segment(
    key: str,
    index: int,
    segment_duration: Optional[float] = Query(None, alias="segmentDuration", gt=0),
    manager: SegmentJobManager = Depends(get_job_manager),
    config: VideoReviewConfig = Depends(get_app_config),
):
    """One MPEG-TS segment, from cache or a shared on-demand encode."""
    job_key = SegmentJobKey(key, index, _segment_duration(config, segment_duration))
    body, cache_status = await manager.open_segment(job_key)
    logger.debug(f"[API] Segment {job_key}: {cache_status}")
    return StreamingResponse(
        body,
        media_type=SEGMENT_MEDIA_TYPE,
        headers={
            "Cache-Control": "public, max-age=3600",
            "X-Cache": cache_status,
        },
    )


@router.get("/{key:path}/stream")
async def stream_video(
    key: str,
    start: float = Query(0, ge=0),
    duration: Optional[float] = Query(None, gt=0),
    manager: SegmentJobManager = Depends(get_job_manager),
):
    """Single-shot fragmented MP4 from ``start``; not cached."""
    body = await manager.open_stream(key, start, duration)
    return StreamingResponse(
        body,
        media_type=STREAM_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/{key:path}/seek")
async def seek_video(
    key: str,
    time: float = Query(..., ge=0),
    duration: Optional[float] = Query(None, gt=0),
    manager: SegmentJobManager = Depends(get_job_manager),
    config: VideoReviewConfig = Depends(get_app_config),
):
    """Short fragmented MP4 clip starting at ``time``."""
    clip = duration if duration is not None else config.transcoding.default_seek_duration
    body = await manager.open_stream(key, time, clip)
    return StreamingResponse(
        body,
        media_type=STREAM_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache"},
    )
