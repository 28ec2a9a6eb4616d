"""
Metrics Feed API
Endpoints to control the upstream metrics stream.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from services.platform import MonitoringPlatform

from .deps import get_platform


router = APIRouter(prefix="/feed", tags=["Metrics Feed"])


class StartFeedRequest(BaseModel):
    """Request to start the metrics feed"""
    url: Optional[str] = None


class FeedResponse(BaseModel):
    """Response for feed operations"""
    status: str
    url: Optional[str] = None
    message: Optional[str] = None
    total_messages: Optional[int] = None


@router.post("/start", response_model=FeedResponse)
async def start_feed(request: Optional[StartFeedRequest] = None, platform: MonitoringPlatform = Depends(get_platform)):
    """
    Start consuming the metrics stream.

    Uses the configured URL unless one is given. Each frame is
    evaluated against the alert rules as it arrives.
    """
    result = platform.feed.start(request.url if request else None)
    if result["status"] == "error":
        raise HTTPException(400, result["message"])
    return result


@router.post("/stop", response_model=FeedResponse)
async def stop_feed(platform: MonitoringPlatform = Depends(get_platform)):
    """Stop the metrics stream"""
    return await platform.feed.stop()


@router.get("/status")
async def get_feed_status(platform: MonitoringPlatform = Depends(get_platform)):
    """
    Get current status of the metrics feed.

    Returns:
        Feed statistics including message count, rate, uptime
    """
    feed = platform.feed
    return {
        "status": "running" if feed.is_running else "stopped",
        **feed.stats.to_dict()
    }
