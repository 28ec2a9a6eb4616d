"""
Monitoring Platform
Builds the engine components and wires them together.

    metric samples → AlertEngine → alert_fired ─┬→ NotificationDispatcher
                                                 └→ BroadcastServer
    execution requests → ExecutionScheduler → execution_* → BroadcastServer

One instance per process, created in the FastAPI lifespan and kept on
app.state. All state is in memory; running several instances side by
side produces duplicate alerts and executions.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from alerts import AlertEngine, AlertRule, Alert
from config import Settings, TokenIdentity, load_seed_file
from core.events import EventBus, EventKind, EXECUTION_EVENTS, AlertFired, ExecutionEvent
from core.models import MetricSample
from executions import ExecutionScheduler, ExecutionTransport, SimulatedTransport, UnconfiguredTransport
from notifications import NotificationDispatcher, NotificationChannel, ChannelAdapter, ChannelType, default_adapters
from realtime import BroadcastServer
from services.metrics_feed import MetricsFeedService

logger = logging.getLogger('devicewatch.services.platform')

TokenResolver = Callable[[str], Optional[TokenIdentity]]


class MonitoringPlatform:

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[ExecutionTransport] = None,
        adapters: Optional[Dict[ChannelType, ChannelAdapter]] = None,
        token_resolver: Optional[TokenResolver] = None,
    ):
        self.settings = settings or Settings()

        if transport is None:
            transport = SimulatedTransport() if self.settings.simulate_executions else UnconfiguredTransport()
        if adapters is None:
            adapters = default_adapters(
                timeout=self.settings.notification_timeout,
                smtp_host=self.settings.smtp_host,
                smtp_port=self.settings.smtp_port,
                smtp_sender=self.settings.smtp_sender,
            )

        self.bus = EventBus()
        self.evaluator = AlertEngine(bus=self.bus, history_size=self.settings.alert_history_size)
        self.dispatcher = NotificationDispatcher(adapters, bus=self.bus)
        self.scheduler = ExecutionScheduler(
            transport,
            bus=self.bus,
            max_concurrent=self.settings.max_concurrent_executions,
            default_timeout=self.settings.default_execution_timeout,
        )
        self.realtime = BroadcastServer()
        self._token_resolver = token_resolver or self._static_token
        self._notification_tasks: Set[asyncio.Task] = set()
        self.feed = MetricsFeedService(
            self,
            url=self.settings.metrics_feed_url,
            reconnect_delay=self.settings.metrics_feed_reconnect_delay,
        )

        self.bus.subscribe([EventKind.ALERT_FIRED], self._on_alert_fired, name="platform.alerts")
        self.bus.subscribe(EXECUTION_EVENTS, self._on_execution_event, name="platform.executions")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self.settings.rules_file:
            rules = [AlertRule.from_dict(r) for r in load_seed_file(self.settings.rules_file, "rules")]
            self.evaluator.load_rules(rules)
        if self.settings.channels_file:
            channels = [
                NotificationChannel.from_dict(c)
                for c in load_seed_file(self.settings.channels_file, "channels")
            ]
            self.dispatcher.load_channels(channels)

        if self.settings.metrics_feed_url and self.settings.metrics_feed_autostart:
            self.feed.start()

        logger.info("Monitoring platform started")

    async def shutdown(self) -> None:
        if self.feed.is_running:
            await self.feed.stop()
        await self.scheduler.shutdown()
        await self.wait_notifications()
        self.realtime.close_all()
        logger.info("Monitoring platform stopped")

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def ingest(self, sample: MetricSample) -> List[Alert]:
        alerts = self.evaluator.evaluate(sample)
        await self.realtime.broadcast_metrics(sample.device_id, {
            **sample.metrics,
            "timestamp": sample.timestamp.isoformat(),
        })
        return alerts

    def resolve_token(self, token: str) -> Optional[TokenIdentity]:
        if not token:
            return None
        return self._token_resolver(token)

    def _static_token(self, token: str) -> Optional[TokenIdentity]:
        return self.settings.realtime_tokens.get(token)

    # -------------------------------------------------------------------------
    # Event wiring
    # -------------------------------------------------------------------------

    async def _on_alert_fired(self, event: AlertFired) -> None:
        alert = event.alert
        if event.channel_ids:
            # Delivery runs on its own so a slow provider never delays the push
            task = asyncio.create_task(
                self.dispatcher.dispatch(alert, event.channel_ids, alert.organization_id)
            )
            self._notification_tasks.add(task)
            task.add_done_callback(self._notification_tasks.discard)
        await self.realtime.broadcast_alert(alert)

    async def _on_execution_event(self, event: ExecutionEvent) -> None:
        await self.realtime.broadcast_execution(event.kind.value, event.execution)

    async def wait_notifications(self) -> None:
        """Wait for in-flight channel deliveries"""
        await self.bus.drain()
        while self._notification_tasks:
            await asyncio.gather(*list(self._notification_tasks), return_exceptions=True)

    def stats(self) -> Dict[str, object]:
        return {
            "alerts": self.evaluator.stats(),
            "notifications": self.dispatcher.stats(),
            "executions": self.scheduler.queue_status(),
            "realtime": {
                k: v for k, v in self.realtime.stats().items() if k != "clients"
            },
            "events": self.bus.stats(),
            "feed": self.feed.stats.to_dict(),
        }
