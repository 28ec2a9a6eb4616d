"""
Realtime
Push updates to connected dashboard clients.
"""

from .server import (
    BroadcastServer,
    ClientConnection,
    InboundMessage,
    ALERTS_TOPIC,
    DEVICES_TOPIC,
    EXECUTIONS_TOPIC,
)

__all__ = [
    "BroadcastServer",
    "ClientConnection",
    "InboundMessage",
    "ALERTS_TOPIC",
    "DEVICES_TOPIC",
    "EXECUTIONS_TOPIC",
]
