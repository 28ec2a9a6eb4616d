"""
Tests for the event bus: filtering, async handlers, listener queues
and failure isolation.
"""

import asyncio

import pytest

from core.events import (
    EventBus,
    EventKind,
    AlertFired,
    ExecutionEvent,
    NotificationSent,
)
from executions import ScriptExecution

from conftest import make_alert


def alert_event():
    return AlertFired(alert=make_alert(), channel_ids=["c1"])


class TestSubscribe:

    def test_kind_filter(self):
        bus = EventBus()
        alerts, everything = [], []
        bus.subscribe([EventKind.ALERT_FIRED], alerts.append)
        bus.subscribe(None, everything.append)

        bus.publish(alert_event())
        bus.publish(NotificationSent(alert=make_alert(), channel_id="c1", channel_type="slack"))

        assert len(alerts) == 1
        assert len(everything) == 2

    def test_failing_handler_is_isolated(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(None, broken, name="broken")
        bus.subscribe(None, received.append, name="ok")

        bus.publish(alert_event())

        assert len(received) == 1
        assert bus.stats()["handler_errors"] == 1

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        name = bus.subscribe(None, received.append)

        assert bus.unsubscribe(name) is True
        bus.publish(alert_event())

        assert received == []
        assert bus.unsubscribe(name) is False

    def test_async_handlers_are_scheduled(self):
        async def scenario():
            bus = EventBus()
            received = []

            async def handler(event):
                await asyncio.sleep(0)
                received.append(event)

            async def broken(event):
                raise RuntimeError("boom")

            bus.subscribe(None, handler)
            bus.subscribe(None, broken)
            bus.publish(alert_event())
            assert received == []

            await bus.drain()
            assert len(received) == 1
            assert bus.stats()["handler_errors"] == 1
            assert bus.stats()["pending_tasks"] == 0

        asyncio.run(scenario())

    def test_async_handler_without_loop_is_dropped(self):
        bus = EventBus()

        async def handler(event):
            pass

        bus.subscribe(None, handler)
        bus.publish(alert_event())

        assert bus.stats()["pending_tasks"] == 0


class TestListen:

    def test_listener_queue(self):
        async def scenario():
            bus = EventBus()
            queue = bus.listen(name="sse", kinds=[EventKind.ALERT_FIRED])

            bus.publish(alert_event())
            event = await asyncio.wait_for(queue.get(), timeout=1)

            assert event.kind == EventKind.ALERT_FIRED
            assert "sse" in bus.subscribers()

        asyncio.run(scenario())

    def test_full_listener_drops_event(self):
        async def scenario():
            bus = EventBus()
            queue = bus.listen(maxsize=1)

            bus.publish(alert_event())
            bus.publish(alert_event())

            assert queue.qsize() == 1
            assert bus.stats()["dropped"] == 1

        asyncio.run(scenario())


class TestEventTypes:

    def test_execution_event_requires_execution_kind(self):
        execution = ScriptExecution(id="", script_id="s", device_id="d", executed_by="u", organization_id="o")

        with pytest.raises(ValueError):
            ExecutionEvent(kind=EventKind.ALERT_FIRED, execution=execution)

        event = ExecutionEvent(kind=EventKind.EXECUTION_QUEUED, execution=execution)
        assert event.kind == EventKind.EXECUTION_QUEUED
