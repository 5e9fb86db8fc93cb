"""
Health and stats API routes for VideoReview
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ... import __version__
from ...jobs import SegmentJobManager
from ...models import HealthResponse
from ..deps import get_job_manager

router = APIRouter(tags=["health"])


@router.get("/api/health", response_model=HealthResponse)
async def health_check(request: Request, manager: SegmentJobManager = Depends(get_job_manager)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - request.app.state.start_time,
        in_flight_encodes=manager.in_flight_count,
    )


@router.get("/api/stats")
async def get_stats(manager: SegmentJobManager = Depends(get_job_manager)) -> Dict[str, Any]:
    """Cache, encoder and look-ahead statistics."""
    return manager.get_stats()
