"""
Shared test helpers: a settable clock, an execution transport the test
drives by hand, a recording channel adapter and a recording socket.
"""

import asyncio
import json
from datetime import datetime, timedelta

import pytest

from alerts import Alert, AlertSeverity
from core.models import MetricSample
from executions import ExecutionOutcome, ExecutionTransport
from notifications import ChannelAdapter


class FakeClock:
    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ControlledTransport(ExecutionTransport):
    """Each execution blocks until the test completes or fails it."""

    def __init__(self):
        self.started = []
        self._futures = {}

    async def execute(self, execution):
        future = asyncio.get_running_loop().create_future()
        self._futures[execution.id] = future
        self.started.append(execution.id)
        return await future

    def complete(self, execution_id, exit_code=0, output="ok", error_output=None):
        self._futures[execution_id].set_result(ExecutionOutcome(exit_code, output, error_output))

    def fail(self, execution_id, exc):
        self._futures[execution_id].set_exception(exc)


class RecordingAdapter(ChannelAdapter):
    """Records sends; raises `error` when set."""

    def __init__(self, error: Exception = None, delay: float = 0):
        self.error = error
        self.delay = delay
        self.sent = []

    async def send(self, alert, config):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append((alert, config))


class RecordingSocket:
    """Stand-in for a WebSocket send_text"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.messages.append(json.loads(text))

    def of_type(self, type_: str):
        return [m for m in self.messages if m.get("type") == type_]


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_sample(device_id="dev-1", organization_id="org-1", **metrics) -> MetricSample:
    return MetricSample(device_id=device_id, organization_id=organization_id, metrics=metrics)


def make_alert(organization_id="org-1", device_id="dev-1") -> Alert:
    return Alert(
        id="",
        rule_id="rule_test",
        device_id=device_id,
        metric="cpu",
        severity=AlertSeverity.CRITICAL,
        message="High CPU: cpu is 95% (greater than 90%)",
        current_value=95,
        threshold=90,
        condition="greater than",
        organization_id=organization_id,
        triggered_at=datetime(2026, 1, 1, 12, 0, 0),
    )


@pytest.fixture
def clock():
    return FakeClock()
