"""
FastAPI dependencies: components live on app.state, built once in the lifespan.
"""

from fastapi import Request

from ..config import VideoReviewConfig
from ..jobs import SegmentJobManager
from ..storage import StorageClient


def get_app_config(request: Request) -> VideoReviewConfig:
    return request.app.state.config


def get_job_manager(request: Request) -> SegmentJobManager:
    return request.app.state.job_manager


def get_storage(request: Request) -> StorageClient:
    return request.app.state.job_manager.storage
