"""
Metrics Feed Service
Connects to an upstream metrics stream and ingests samples automatically.

Each frame is a JSON object. Metric frames become MetricSamples:
    {"deviceId": "dev-1", "organizationId": "org-1", "cpu": 93.5, "memory": 71}
    {"deviceId": "dev-1", "organizationId": "org-1", "metrics": {"cpu": 93.5}}
Status frames are pushed to realtime subscribers:
    {"type": "status", "deviceId": "dev-1", "status": "offline"}

Usage:
    feed = MetricsFeedService(platform, url="ws://ingest:9000/metrics")
    feed.start()
    # Samples automatically flow into the alert evaluator
    await feed.stop()
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import websockets
from pydantic import ValidationError

from core.models import SampleSource, to_metric_sample

logger = logging.getLogger('devicewatch.services.metrics_feed')


@dataclass
class FeedStats:
    """Metrics feed statistics"""
    is_running: bool = False
    url: Optional[str] = None
    messages_received: int = 0
    samples_ingested: int = 0
    alerts_triggered: int = 0
    messages_per_second: float = 0.0
    last_message_time: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "url": self.url,
            "messages_received": self.messages_received,
            "samples_ingested": self.samples_ingested,
            "alerts_triggered": self.alerts_triggered,
            "messages_per_second": round(self.messages_per_second, 1),
            "last_message_time": self.last_message_time.isoformat() if self.last_message_time else None,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "uptime_seconds": (datetime.now() - self.connected_at).total_seconds() if self.connected_at else 0,
            "errors": self.errors
        }


class MetricsFeedService:
    """
    WebSocket metrics feed client.

    Runs as a task on the application's event loop, reconnecting after
    `reconnect_delay` seconds whenever the stream drops.
    """

    def __init__(self, platform, url: Optional[str] = None, reconnect_delay: float = 5.0,
                 recv_timeout: float = 30.0):
        self._platform = platform
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.recv_timeout = recv_timeout
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = FeedStats(url=url)
        self._message_times: List[float] = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> FeedStats:
        return self._stats

    def start(self, url: Optional[str] = None) -> Dict[str, Any]:
        """
        Start consuming the metrics stream.

        Args:
            url: Stream URL, defaults to the configured one

        Returns:
            Status dict
        """
        if self._running:
            return {"status": "already_running", "url": self.url}

        url = url or self.url
        if not url:
            return {"status": "error", "message": "No metrics feed URL configured"}
        self.url = url

        self._stats = FeedStats(is_running=True, url=url, connected_at=datetime.now())
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Metrics feed started: %s", url)

        return {"status": "started", "url": url}

    async def stop(self) -> Dict[str, Any]:
        """Stop the metrics feed"""
        if not self._running:
            return {"status": "not_running"}

        self._running = False
        self._stats.is_running = False

        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        logger.info("Metrics feed stopped after %d messages", self._stats.messages_received)
        return {
            "status": "stopped",
            "total_messages": self._stats.messages_received
        }

    async def _run(self) -> None:
        while self._running:
            try:
                async with websockets.connect(self.url) as ws:
                    self._stats.connected_at = datetime.now()
                    while self._running:
                        try:
                            message = await asyncio.wait_for(ws.recv(), timeout=self.recv_timeout)
                        except asyncio.TimeoutError:
                            # Keep idle streams alive
                            await ws.ping()
                            continue
                        await self.process_message(message)
            except asyncio.CancelledError:
                raise
            except (OSError, websockets.WebSocketException) as e:
                self._stats.errors += 1
                logger.warning("Metrics feed connection error: %s", e)
            except Exception:
                self._stats.errors += 1
                logger.exception("Metrics feed failed, reconnecting")

            if self._running:
                await asyncio.sleep(self.reconnect_delay)

        self._stats.is_running = False

    async def process_message(self, message) -> None:
        """Handle one stream frame"""
        self._stats.messages_received += 1
        self._stats.last_message_time = datetime.now()
        self._track_rate()

        try:
            data = json.loads(message)
            if not isinstance(data, dict):
                raise ValueError("frame is not a JSON object")

            if data.get("type") == "status":
                device_id = data.get("deviceId") or data.get("device_id")
                if not device_id:
                    raise ValueError("status frame without deviceId")
                await self._platform.realtime.broadcast_device_status(device_id, data["status"])
                return

            sample = to_metric_sample(data, source=SampleSource.FEED)
        except (ValueError, KeyError, ValidationError) as e:
            self._stats.errors += 1
            logger.warning("Dropping malformed metrics frame: %s", e)
            return

        alerts = await self._platform.ingest(sample)
        self._stats.samples_ingested += 1
        self._stats.alerts_triggered += len(alerts)

    def _track_rate(self) -> None:
        now = time.monotonic()
        self._message_times.append(now)
        self._message_times = [t for t in self._message_times if now - t < 1.0]
        self._stats.messages_per_second = len(self._message_times)
