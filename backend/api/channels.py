"""
Channels API
Notification channel management.

Endpoints:
    POST   /api/channels            → Create channel
    GET    /api/channels            → List channels
    GET    /api/channels/{id}       → Get channel
    PUT    /api/channels/{id}       → Replace channel
    DELETE /api/channels/{id}       → Delete channel
    POST   /api/channels/{id}/test  → Send a test alert
    GET    /api/channels/stats      → Delivery statistics
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from core.errors import ChannelNotFoundError
from notifications import ChannelType, NotificationChannel
from services.platform import MonitoringPlatform

from .deps import get_platform

router = APIRouter(prefix="/channels", tags=["Channels"])


class ChannelRequest(BaseModel):
    """Request body for creating or replacing a channel"""
    type: ChannelType
    name: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    config: Dict[str, Any] = {}
    enabled: bool = True

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": "slack",
                "name": "Ops Slack",
                "organization_id": "org-1",
                "config": {"webhook": "https://hooks.slack.com/services/T000/B000/XXX"},
            }
        }
    }

    def to_channel(self, channel_id: str = "") -> NotificationChannel:
        return NotificationChannel(
            id=channel_id,
            type=self.type,
            name=self.name,
            organization_id=self.organization_id,
            config=dict(self.config),
            enabled=self.enabled,
        )


@router.post("")
async def create_channel(request: ChannelRequest, platform: MonitoringPlatform = Depends(get_platform)):
    """
    Create a notification channel.

    Config keys by type:
        email   → recipients
        slack   → webhook
        webhook → url, secret (optional, signs the body)
        sms     → endpoint, phoneNumbers, apiKey (optional)
        push    → endpoint, tokens, apiKey (optional)
    """
    channel = platform.dispatcher.add_channel(request.to_channel())
    return {"message": "Channel created", "channel": channel.to_dict()}


@router.get("")
async def list_channels(
    organization_id: Optional[str] = Query(default=None),
    platform: MonitoringPlatform = Depends(get_platform),
):
    channels = platform.dispatcher.get_channels(organization_id)
    return {
        "count": len(channels),
        "channels": [c.to_dict() for c in channels]
    }


@router.get("/stats")
async def channel_stats(platform: MonitoringPlatform = Depends(get_platform)):
    """Get delivery statistics"""
    return platform.dispatcher.stats()


@router.get("/{channel_id}")
async def get_channel(channel_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    channel = platform.dispatcher.get_channel(channel_id)
    if not channel:
        raise HTTPException(404, f"Channel not found: {channel_id}")
    return {"channel": channel.to_dict()}


@router.put("/{channel_id}")
async def update_channel(
    channel_id: str,
    request: ChannelRequest,
    platform: MonitoringPlatform = Depends(get_platform),
):
    if not platform.dispatcher.get_channel(channel_id):
        raise HTTPException(404, f"Channel not found: {channel_id}")

    channel = platform.dispatcher.update_channel(request.to_channel(channel_id))
    return {"message": f"Channel {channel_id} updated", "channel": channel.to_dict()}


@router.delete("/{channel_id}")
async def delete_channel(channel_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    if not platform.dispatcher.remove_channel(channel_id):
        raise HTTPException(404, f"Channel not found: {channel_id}")
    return {"message": f"Channel {channel_id} deleted"}


@router.post("/{channel_id}/test")
async def test_channel(channel_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    """
    Send a canned info-level alert through the channel.

    Returns success=false when the provider rejects it.
    """
    try:
        success = await platform.dispatcher.test_channel(channel_id)
    except ChannelNotFoundError as e:
        raise HTTPException(404, str(e))

    return {
        "channel_id": channel_id,
        "success": success,
        "message": "Test notification sent" if success else "Test notification failed"
    }
