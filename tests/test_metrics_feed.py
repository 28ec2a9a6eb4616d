"""
Tests for the metrics feed frame handling.
"""

import asyncio
import json

from services.metrics_feed import MetricsFeedService


class FakeRealtime:
    def __init__(self):
        self.statuses = []

    async def broadcast_device_status(self, device_id, status):
        self.statuses.append((device_id, status))
        return 0


class FakePlatform:
    def __init__(self, alerts_per_sample=0):
        self.samples = []
        self.realtime = FakeRealtime()
        self.alerts_per_sample = alerts_per_sample

    async def ingest(self, sample):
        self.samples.append(sample)
        return [object()] * self.alerts_per_sample


class TestProcessMessage:

    def test_metric_frame_is_ingested(self):
        platform = FakePlatform(alerts_per_sample=2)
        feed = MetricsFeedService(platform)

        asyncio.run(feed.process_message(json.dumps(
            {"deviceId": "dev-1", "organizationId": "org-1", "cpu": 93.5}
        )))

        assert platform.samples[0].device_id == "dev-1"
        assert platform.samples[0].source.value == "feed"
        assert feed.stats.samples_ingested == 1
        assert feed.stats.alerts_triggered == 2
        assert feed.stats.messages_received == 1

    def test_status_frame_is_broadcast(self):
        platform = FakePlatform()
        feed = MetricsFeedService(platform)

        asyncio.run(feed.process_message('{"type": "status", "deviceId": "dev-1", "status": "offline"}'))

        assert platform.realtime.statuses == [("dev-1", "offline")]
        assert platform.samples == []

    def test_malformed_frames_are_counted(self):
        platform = FakePlatform()
        feed = MetricsFeedService(platform)

        async def scenario():
            await feed.process_message("{not json")
            await feed.process_message("[1, 2]")
            await feed.process_message('{"type": "status", "status": "offline"}')
            await feed.process_message('{"organizationId": "org-1", "cpu": 1}')
            await feed.process_message('{"deviceId": "dev-1", "organizationId": "org-1", "timestamp": 1e300, "cpu": 1}')

        asyncio.run(scenario())

        assert feed.stats.errors == 5
        assert feed.stats.messages_received == 5
        assert platform.samples == []


class TestLifecycle:

    def test_start_without_url(self):
        feed = MetricsFeedService(FakePlatform())

        async def scenario():
            return feed.start()

        result = asyncio.run(scenario())
        assert result["status"] == "error"
        assert feed.is_running is False

    def test_stop_when_not_running(self):
        feed = MetricsFeedService(FakePlatform())
        assert asyncio.run(feed.stop()) == {"status": "not_running"}

    def test_start_and_stop(self):
        async def scenario():
            # Nothing listens on this port; the loop keeps retrying until stopped
            feed = MetricsFeedService(FakePlatform(), url="ws://127.0.0.1:9/metrics", reconnect_delay=0.01)
            assert feed.start()["status"] == "started"
            assert feed.start()["status"] == "already_running"
            await asyncio.sleep(0.05)

            result = await feed.stop()
            assert result["status"] == "stopped"
            assert feed.is_running is False

        asyncio.run(scenario())

    def test_ingest_failure_does_not_end_the_feed(self, monkeypatch):
        connects = []

        class ScriptedSocket:
            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc):
                return False

            async def recv(self):
                return '{"deviceId": "dev-1", "organizationId": "org-1", "cpu": 1}'

            async def ping(self):
                pass

        def connect(url):
            connects.append(url)
            return ScriptedSocket()

        class BrokenPlatform(FakePlatform):
            async def ingest(self, sample):
                raise RuntimeError("evaluator down")

        monkeypatch.setattr("services.metrics_feed.websockets.connect", connect)

        async def scenario():
            feed = MetricsFeedService(BrokenPlatform(), url="ws://feed.test/metrics", reconnect_delay=0.01)
            feed.start()
            await asyncio.sleep(0.05)

            assert feed.is_running is True
            assert not feed._task.done()
            assert feed.stats.errors >= 2
            await feed.stop()

        asyncio.run(scenario())
        assert len(connects) >= 2
