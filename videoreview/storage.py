"""
Object storage client (S3-compatible) for VideoReview.

Wraps boto3 and translates botocore failures into VideoReview errors so
the API can answer with a status the client can act on.
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, PartialCredentialsError

from .config import StorageConfig
from .errors import CredentialsError, NotFoundError, VideoReviewError
from .transcoding.constants import VIDEO_EXTENSIONS

logger = logging.getLogger(__name__)

CREDENTIAL_ERROR_CODES = {
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "AccessDenied",
    "InvalidToken",
    "ExpiredToken",
}
NOT_FOUND_ERROR_CODES = {"NoSuchBucket", "NoSuchKey", "NotFound", "404"}


def translate_storage_error(exc: Exception, key: Optional[str] = None) -> VideoReviewError:
    """Map a boto3/botocore exception onto a VideoReview error."""
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return CredentialsError("Storage credentials are missing or incomplete")

    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        code = str(err.get("Code") or "")
        message = err.get("Message") or str(exc)
        if code in CREDENTIAL_ERROR_CODES:
            return CredentialsError(
                "Invalid storage credentials. Please check your access key and secret.",
                details={"storage_code": code},
            )
        if code in NOT_FOUND_ERROR_CODES:
            what = f"Object '{key}'" if key and code != "NoSuchBucket" else "Bucket"
            return NotFoundError(f"{what} not found", details={"storage_code": code})
        return VideoReviewError(message, code="STORAGE_ERROR", details={"storage_code": code})

    return VideoReviewError(f"Storage request failed: {exc}", code="STORAGE_ERROR")


def is_video_key(key: str) -> bool:
    return os.path.splitext(key)[1].lower() in VIDEO_EXTENSIONS


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class StorageClient:
    """List, head and sign objects in one bucket."""

    def __init__(self, config: StorageConfig, client: Optional[Any] = None):
        self.config = config
        self.bucket = config.bucket
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.config.endpoint,
                region_name=self.config.region,
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key,
                config=BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path" if self.config.force_path_style else "auto"},
                ),
            )
        return self._client

    def list_objects(self, prefix: str = "") -> List[Dict[str, Any]]:
        """All video objects under ``prefix``."""
        videos: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        try:
            while True:
                response = self.client.list_objects_v2(**kwargs)
                for obj in response.get("Contents", []):
                    key = obj["Key"]
                    if not is_video_key(key):
                        continue
                    videos.append({
                        "key": key,
                        "size": obj.get("Size", 0),
                        "last_modified": _iso(obj.get("LastModified")),
                        "filename": key.rsplit("/", 1)[-1],
                    })
                if not response.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = response["NextContinuationToken"]
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[Storage] list_objects failed for prefix '{prefix}': {e}")
            raise translate_storage_error(e) from e

        logger.debug(f"[Storage] Listed {len(videos)} video(s) under '{prefix}'")
        return videos

    def head_object(self, key: str) -> Dict[str, Any]:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[Storage] head_object failed for {key}: {e}")
            raise translate_storage_error(e, key) from e

        return {
            "size": response.get("ContentLength", 0),
            "last_modified": _iso(response.get("LastModified")),
            "content_type": response.get("ContentType"),
        }

    def get_signed_url(self, key: str, expiry_seconds: Optional[int] = None) -> str:
        """Presigned GET URL; signing is local, no request is made."""
        expiry = expiry_seconds or self.config.signed_url_expiry
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expiry,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[Storage] Signing failed for {key}: {e}")
            raise translate_storage_error(e, key) from e

    async def alist_objects(self, prefix: str = "") -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.list_objects, prefix)

    async def ahead_object(self, key: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self.head_object, key)
