"""
FastAPI application factory for VideoReview
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import VideoReviewConfig, get_config
from ..errors import VideoReviewError
from ..jobs import SegmentJobManager, create_job_manager
from .middleware import api_key_middleware
from .routes import health_router, storage_router, video_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build components once, start them, and drain them on shutdown."""
    config: VideoReviewConfig = app.state.config
    app.state.start_time = time.time()

    if app.state.job_manager is None:
        app.state.job_manager = create_job_manager(config)
    job_manager: SegmentJobManager = app.state.job_manager

    await job_manager.start()
    logger.info(
        f"VideoReview v{__version__} started on {config.server.host}:{config.server.port} "
        f"(bucket={config.storage.bucket}, local cache={'on' if config.cache.local_cache_enabled else 'off'})"
    )

    yield

    logger.info("Shutting down VideoReview...")
    await job_manager.stop()
    logger.info("VideoReview shutdown complete")


async def videoreview_error_handler(request: Request, exc: VideoReviewError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.info(f"[API] {request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    config: Optional[VideoReviewConfig] = None,
    job_manager: Optional[SegmentJobManager] = None
) -> FastAPI:
    """Create the app. A prebuilt job manager may be injected (tests)."""
    config = config or get_config()

    app = FastAPI(
        title="VideoReview",
        description="On-demand HLS transcoding for videos in object storage",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.job_manager = job_manager
    app.state.start_time = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(api_key_middleware)
    app.add_exception_handler(VideoReviewError, videoreview_error_handler)

    app.include_router(health_router)
    app.include_router(storage_router)
    app.include_router(video_router)

    return app
