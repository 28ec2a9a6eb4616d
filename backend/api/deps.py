from fastapi import Request, WebSocket

from services.platform import MonitoringPlatform


def get_platform(request: Request) -> MonitoringPlatform:
    return request.app.state.platform


def get_ws_platform(websocket: WebSocket) -> MonitoringPlatform:
    return websocket.app.state.platform
