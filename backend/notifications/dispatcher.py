import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Iterable, Any

from core.errors import ChannelNotFoundError, NotificationError
from core.events import EventBus, NotificationSent, NotificationFailed
from alerts.models import Alert, AlertSeverity

from .adapters import ChannelAdapter
from .models import ChannelType, NotificationChannel, DeliveryOutcome

logger = logging.getLogger('devicewatch.notifications.dispatcher')


class NotificationDispatcher:
    """
    Fans a fired alert out to its notification channels.

    Every channel send for one alert runs concurrently and settles on its
    own; a failing channel never blocks its siblings. Failures are
    reported, not retried.
    """

    def __init__(
        self,
        adapters: Dict[ChannelType, ChannelAdapter],
        bus: Optional[EventBus] = None,
    ):
        self._adapters = dict(adapters)
        self._bus = bus
        self._channels: Dict[str, NotificationChannel] = {}
        self._stats = {
            "dispatches": 0,
            "sent": 0,
            "failed": 0,
            "skipped": 0,
        }

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def load_channels(self, channels: Iterable[NotificationChannel]) -> int:
        """Replace the registry. Disabled channels are not loaded."""
        self._channels = {c.id: c for c in channels if c.enabled}
        logger.info("Loaded %d notification channels", len(self._channels))
        return len(self._channels)

    def add_channel(self, channel: NotificationChannel) -> NotificationChannel:
        self._channels[channel.id] = channel
        return channel

    def update_channel(self, channel: NotificationChannel) -> NotificationChannel:
        self._channels[channel.id] = channel
        return channel

    def remove_channel(self, channel_id: str) -> bool:
        return self._channels.pop(channel_id, None) is not None

    def get_channel(self, channel_id: str) -> Optional[NotificationChannel]:
        return self._channels.get(channel_id)

    def get_channels(self, organization_id: Optional[str] = None) -> List[NotificationChannel]:
        channels = list(self._channels.values())
        if organization_id:
            channels = [c for c in channels if c.organization_id == organization_id]
        return channels

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def dispatch(
        self,
        alert: Alert,
        channel_ids: List[str],
        organization_id: Optional[str] = None,
    ) -> List[DeliveryOutcome]:
        organization_id = organization_id or alert.organization_id
        self._stats["dispatches"] += 1

        outcomes = await asyncio.gather(
            *(self._deliver(alert, channel_id, organization_id) for channel_id in channel_ids)
        )
        return list(outcomes)

    async def _deliver(self, alert: Alert, channel_id: str, organization_id: str) -> DeliveryOutcome:
        channel = self._channels.get(channel_id)

        if (
            channel is None
            or channel.organization_id != organization_id
            or channel.organization_id != alert.organization_id
        ):
            logger.warning("Channel %s not found or organization mismatch", channel_id)
            self._stats["skipped"] += 1
            return DeliveryOutcome(channel_id, None, success=False, skipped=True,
                                   error="channel not found or organization mismatch")

        if not channel.enabled:
            logger.warning("Channel %s is disabled, skipping", channel_id)
            self._stats["skipped"] += 1
            return DeliveryOutcome(channel_id, channel.type.value, success=False, skipped=True,
                                   error="channel disabled")

        try:
            await self._send(alert, channel)
        except Exception as e:
            logger.error("Failed to send notification to %s (%s): %s", channel.type.value, channel_id, e)
            self._stats["failed"] += 1
            self._publish(NotificationFailed(
                alert=alert,
                channel_id=channel_id,
                channel_type=channel.type.value,
                error=str(e),
            ))
            return DeliveryOutcome(channel_id, channel.type.value, success=False, error=str(e))

        self._stats["sent"] += 1
        self._publish(NotificationSent(alert=alert, channel_id=channel_id, channel_type=channel.type.value))
        return DeliveryOutcome(channel_id, channel.type.value, success=True)

    async def _send(self, alert: Alert, channel: NotificationChannel) -> None:
        adapter = self._adapters.get(channel.type)
        if adapter is None:
            raise NotificationError(f"No adapter for channel type {channel.type.value}")
        await adapter.send(alert, channel.config)

    def _publish(self, event) -> None:
        if self._bus is not None:
            self._bus.publish(event)

    # -------------------------------------------------------------------------
    # Test notification
    # -------------------------------------------------------------------------

    async def test_channel(self, channel_id: str) -> bool:
        """Send a canned info alert through the channel. Raises if unknown."""
        channel = self._channels.get(channel_id)
        if channel is None:
            raise ChannelNotFoundError(channel_id)

        test_alert = Alert(
            id="test-alert",
            rule_id="test-rule",
            device_id="test-device",
            metric="cpu",
            severity=AlertSeverity.INFO,
            message="This is a test alert from DeviceWatch",
            current_value=50,
            threshold=80,
            condition="greater than",
            organization_id=channel.organization_id,
            triggered_at=datetime.now(),
        )

        try:
            await self._send(test_alert, channel)
            return True
        except Exception as e:
            logger.error("Channel test failed for %s: %s", channel_id, e)
            return False

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "channels": len(self._channels),
        }
