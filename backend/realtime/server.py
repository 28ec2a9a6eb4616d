"""
Realtime Broadcast Server
Per-connection subscriptions and server-push fan-out.

Each connection subscribes to device ids and/or topics. Two reverse
indices (device → client ids, topic → client ids) mirror those
subscriptions so a broadcast only touches interested connections.

The server is transport-agnostic: a connection is registered with an
async `send(text)` callable (the WebSocket endpoint passes send_text).

Inbound:  {"type": "subscribe" | "unsubscribe" | "ping", "deviceId"?, "topic"?}
Outbound: {"type", "deviceId"?, "topic"?, "data"?, "timestamp"?, ...}
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger('devicewatch.realtime.server')

Sender = Callable[[str], Awaitable[None]]

ALERTS_TOPIC = "alerts"
DEVICES_TOPIC = "devices"
EXECUTIONS_TOPIC = "executions"


@dataclass
class ClientConnection:
    id: str
    user_id: str
    organization_id: str
    send: Sender = field(repr=False)
    subscribed_devices: Set[str] = field(default_factory=set)
    subscribed_topics: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "subscribed_devices": sorted(self.subscribed_devices),
            "subscribed_topics": sorted(self.subscribed_topics),
            "connected_at": self.connected_at.isoformat(),
        }


class InboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    topic: Optional[str] = None


class BroadcastServer:
    """
    Subscription registry and fan-out.

    Index mutation happens in synchronous code on the event loop, so
    concurrent subscribe/unsubscribe calls cannot interleave.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._clients: Dict[str, ClientConnection] = {}
        self._device_subscriptions: Dict[str, Set[str]] = {}
        self._topic_subscriptions: Dict[str, Set[str]] = {}
        self._stats = {
            "messages_sent": 0,
            "send_errors": 0,
        }

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, user_id: str, organization_id: str, send: Sender) -> ClientConnection:
        client = ClientConnection(
            id=f"client_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            organization_id=organization_id,
            send=send,
            connected_at=self._clock(),
        )
        self._clients[client.id] = client
        logger.info("Client connected: %s (user=%s, org=%s)", client.id, user_id, organization_id)

        await self._send(client.id, self._encode({
            "type": "connected",
            "clientId": client.id,
            "message": "Connected to DeviceWatch realtime server",
        }))
        return client

    def disconnect(self, client_id: str) -> bool:
        client = self._clients.pop(client_id, None)
        if client is None:
            return False

        for device_id in client.subscribed_devices:
            self._unindex(self._device_subscriptions, device_id, client_id)
        for topic in client.subscribed_topics:
            self._unindex(self._topic_subscriptions, topic, client_id)

        logger.info("Client disconnected: %s", client_id)
        return True

    def get_client(self, client_id: str) -> Optional[ClientConnection]:
        return self._clients.get(client_id)

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def handle_message(self, client_id: str, raw: str) -> None:
        if client_id not in self._clients:
            return

        try:
            message = InboundMessage.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error("Invalid message from client %s: %s", client_id, e)
            await self._send(client_id, self._encode({
                "type": "error",
                "message": "Invalid message format",
            }))
            return

        if message.type == "subscribe":
            await self._handle_subscribe(client_id, message)
        elif message.type == "unsubscribe":
            await self._handle_unsubscribe(client_id, message)
        elif message.type == "ping":
            await self._send(client_id, self._encode({"type": "pong"}))
        else:
            logger.warning("Unknown message type from client %s: %s", client_id, message.type)

    async def _handle_subscribe(self, client_id: str, message: InboundMessage) -> None:
        if message.device_id:
            self.subscribe(client_id, device_id=message.device_id)
            await self._send(client_id, self._encode({
                "type": "subscribed",
                "deviceId": message.device_id,
                "message": f"Subscribed to device {message.device_id}",
            }))

        if message.topic:
            self.subscribe(client_id, topic=message.topic)
            await self._send(client_id, self._encode({
                "type": "subscribed",
                "topic": message.topic,
                "message": f"Subscribed to topic {message.topic}",
            }))

    async def _handle_unsubscribe(self, client_id: str, message: InboundMessage) -> None:
        if message.device_id:
            self.unsubscribe(client_id, device_id=message.device_id)
            await self._send(client_id, self._encode({
                "type": "unsubscribed",
                "deviceId": message.device_id,
            }))

        if message.topic:
            self.unsubscribe(client_id, topic=message.topic)
            await self._send(client_id, self._encode({
                "type": "unsubscribed",
                "topic": message.topic,
            }))

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, client_id: str, device_id: Optional[str] = None, topic: Optional[str] = None) -> bool:
        client = self._clients.get(client_id)
        if client is None:
            return False

        if device_id:
            client.subscribed_devices.add(device_id)
            self._device_subscriptions.setdefault(device_id, set()).add(client_id)
            logger.info("Client %s subscribed to device %s", client_id, device_id)
        if topic:
            client.subscribed_topics.add(topic)
            self._topic_subscriptions.setdefault(topic, set()).add(client_id)
            logger.info("Client %s subscribed to topic %s", client_id, topic)
        return True

    def unsubscribe(self, client_id: str, device_id: Optional[str] = None, topic: Optional[str] = None) -> bool:
        client = self._clients.get(client_id)
        if client is None:
            return False

        if device_id:
            client.subscribed_devices.discard(device_id)
            self._unindex(self._device_subscriptions, device_id, client_id)
        if topic:
            client.subscribed_topics.discard(topic)
            self._unindex(self._topic_subscriptions, topic, client_id)
        return True

    def device_subscribers(self, device_id: str) -> Set[str]:
        return set(self._device_subscriptions.get(device_id, ()))

    def topic_subscribers(self, topic: str) -> Set[str]:
        return set(self._topic_subscriptions.get(topic, ()))

    @staticmethod
    def _unindex(index: Dict[str, Set[str]], key: str, client_id: str) -> None:
        subscribers = index.get(key)
        if subscribers is None:
            return
        subscribers.discard(client_id)
        if not subscribers:
            del index[key]

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def broadcast_metrics(self, device_id: str, metrics: Dict[str, Any]) -> int:
        subscribers = self.device_subscribers(device_id)
        if not subscribers:
            return 0

        delivered = await self._deliver(subscribers, {
            "type": "metrics",
            "deviceId": device_id,
            "data": metrics,
            "timestamp": self._now(),
        })
        logger.debug("Broadcast metrics for device %s to %d clients", device_id, delivered)
        return delivered

    async def broadcast_alert(self, alert: Any) -> int:
        data = alert.to_dict() if hasattr(alert, "to_dict") else dict(alert)
        device_id = data.get("device_id") or data.get("deviceId")

        # A client subscribed both ways still gets the alert once
        recipients = self.topic_subscribers(ALERTS_TOPIC)
        if device_id:
            recipients |= self.device_subscribers(device_id)

        delivered = await self._deliver(recipients, {
            "type": "alert",
            "deviceId": device_id,
            "data": data,
            "timestamp": self._now(),
        })
        logger.info("Broadcast alert: %s (%d clients)", data.get("message"), delivered)
        return delivered

    async def broadcast_device_status(self, device_id: str, status: str) -> int:
        recipients = self.device_subscribers(device_id) | self.topic_subscribers(DEVICES_TOPIC)

        delivered = await self._deliver(recipients, {
            "type": "device_status",
            "deviceId": device_id,
            "status": status,
            "timestamp": self._now(),
        })
        logger.info("Broadcast device status change: %s -> %s", device_id, status)
        return delivered

    async def broadcast_execution(self, event: str, execution: Any) -> int:
        data = execution.to_dict() if hasattr(execution, "to_dict") else dict(execution)
        device_id = data.get("device_id") or data.get("deviceId")

        recipients = self.topic_subscribers(EXECUTIONS_TOPIC)
        if device_id:
            recipients |= self.device_subscribers(device_id)

        return await self._deliver(recipients, {
            "type": "execution",
            "event": event,
            "deviceId": device_id,
            "data": data,
            "timestamp": self._now(),
        })

    async def broadcast(self, message: Dict[str, Any]) -> int:
        return await self._deliver(list(self._clients), message)

    async def broadcast_to_topic(self, topic: str, message: Dict[str, Any]) -> int:
        subscribers = self.topic_subscribers(topic)
        if not subscribers:
            return 0
        delivered = await self._deliver(subscribers, message)
        logger.debug("Broadcast to topic %s: %d clients", topic, delivered)
        return delivered

    def close_all(self) -> None:
        for client_id in list(self._clients):
            self.disconnect(client_id)

    async def _deliver(self, client_ids: Iterable[str], message: Dict[str, Any]) -> int:
        payload = self._encode(message)
        results = await asyncio.gather(*(self._send(client_id, payload) for client_id in client_ids))
        return sum(1 for ok in results if ok)

    async def _send(self, client_id: str, payload: str) -> bool:
        client = self._clients.get(client_id)
        if client is None:
            return False

        try:
            await client.send(payload)
        except Exception as e:
            self._stats["send_errors"] += 1
            logger.warning("Error sending message to client %s, dropping it: %s", client_id, e)
            self.disconnect(client_id)
            return False

        self._stats["messages_sent"] += 1
        return True

    @staticmethod
    def _encode(message: Dict[str, Any]) -> str:
        return json.dumps(message, default=str)

    def _now(self) -> str:
        return self._clock().isoformat()

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "total_clients": len(self._clients),
            "device_subscriptions": len(self._device_subscriptions),
            "topic_subscriptions": len(self._topic_subscriptions),
            "clients": [c.to_dict() for c in self._clients.values()],
        }
