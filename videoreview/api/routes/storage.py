"""
Object storage routes: listing, object metadata and signed URLs.
"""

from fastapi import APIRouter, Depends, Query

from ...models import ErrorResponse, ObjectMetadataResponse, SignedUrlResponse, VideoListResponse, VideoObject
from ...storage import StorageClient
from ..deps import get_storage

router = APIRouter(
    prefix="/api/s3",
    tags=["storage"],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)

MAX_URL_EXPIRY = 7 * 24 * 3600  # S3 presign limit


@router.get("/videos", response_model=VideoListResponse)
async def list_videos(prefix: str = "", storage: StorageClient = Depends(get_storage)):
    """Video objects under a prefix."""
    objects = await storage.alist_objects(prefix)
    videos = [VideoObject(**obj) for obj in objects]
    return VideoListResponse(videos=videos, count=len(videos))


@router.get("/video/{key:path}/metadata", response_model=ObjectMetadataResponse)
async def get_object_metadata(key: str, storage: StorageClient = Depends(get_storage)):
    head = await storage.ahead_object(key)
    return ObjectMetadataResponse(**head)


@router.get("/video/{key:path}/url", response_model=SignedUrlResponse)
async def get_signed_url(
    key: str,
    expires: int = Query(3600, gt=0, le=MAX_URL_EXPIRY),
    storage: StorageClient = Depends(get_storage),
):
    return SignedUrlResponse(url=storage.get_signed_url(key, expires), expires_in=expires)
