"""
Realtime API
WebSocket endpoint for dashboards plus HTTP hooks for pushing updates.

Endpoints:
    WS   /ws?token=...                                → Realtime connection
    POST /api/realtime/devices/{device_id}/status     → Push a device status change
    POST /api/realtime/topics/{topic}                 → Publish to a topic
    POST /api/realtime/broadcast                      → Publish to every client
    GET  /api/realtime/stats                          → Connection statistics
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from services.platform import MonitoringPlatform

from .deps import get_platform, get_ws_platform

logger = logging.getLogger('devicewatch.api.realtime')

UNAUTHORIZED_CLOSE_CODE = 4001

router = APIRouter(prefix="/realtime", tags=["Realtime"])
ws_router = APIRouter(tags=["Realtime"])


class DeviceStatusRequest(BaseModel):
    status: str = Field(..., min_length=1)  # online, offline, maintenance, ...


def _extract_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    auth = websocket.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


# =============================================================================
# WebSocket
# =============================================================================

@ws_router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, platform: MonitoringPlatform = Depends(get_ws_platform)):
    """
    Realtime connection.

    Authenticate with ?token= or an "Authorization: Bearer" header.
    Then send JSON messages:
        {"type": "subscribe", "deviceId": "dev-1"}
        {"type": "subscribe", "topic": "alerts"}
        {"type": "unsubscribe", "deviceId": "dev-1"}
        {"type": "ping"}
    """
    await websocket.accept()

    identity = platform.resolve_token(_extract_token(websocket))
    if identity is None:
        logger.warning("Rejected realtime connection without a valid token")
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason="Unauthorized")
        return

    realtime = platform.realtime
    client = await realtime.connect(identity.user_id, identity.organization_id, websocket.send_text)

    try:
        while True:
            raw = await websocket.receive_text()
            await realtime.handle_message(client.id, raw)
    except WebSocketDisconnect as e:
        logger.debug("Client %s closed the socket (code=%s)", client.id, e.code)
    finally:
        realtime.disconnect(client.id)


# =============================================================================
# HTTP hooks
# =============================================================================

@router.post("/devices/{device_id}/status")
async def push_device_status(
    device_id: str,
    request: DeviceStatusRequest,
    platform: MonitoringPlatform = Depends(get_platform),
):
    """Notify subscribers of the device and of the devices topic"""
    delivered = await platform.realtime.broadcast_device_status(device_id, request.status)
    return {"device_id": device_id, "status": request.status, "delivered": delivered}


@router.post("/topics/{topic}")
async def publish_to_topic(
    topic: str,
    message: Dict[str, Any] = Body(..., examples=[{"type": "maintenance", "message": "Window starts at 22:00"}]),
    platform: MonitoringPlatform = Depends(get_platform),
):
    delivered = await platform.realtime.broadcast_to_topic(topic, message)
    return {"topic": topic, "delivered": delivered}


@router.post("/broadcast")
async def broadcast(
    message: Dict[str, Any] = Body(...),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """Send a message to every connected client"""
    delivered = await platform.realtime.broadcast(message)
    return {"delivered": delivered}


@router.get("/stats")
async def realtime_stats(platform: MonitoringPlatform = Depends(get_platform)):
    return platform.realtime.stats()
