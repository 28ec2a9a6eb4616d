"""
Tests for notification fan-out and the channel adapters.
"""

import asyncio
import hashlib
import hmac
import json

import pytest
import requests

from core.errors import ChannelNotFoundError, NotificationError
from core.events import EventBus, EventKind
from notifications import (
    ChannelType,
    NotificationChannel,
    NotificationDispatcher,
    SlackAdapter,
    WebhookAdapter,
    SmsAdapter,
    PushAdapter,
    EmailAdapter,
)

from conftest import RecordingAdapter, make_alert


def make_channel(channel_id, type_=ChannelType.SLACK, organization_id="org-1", enabled=True, **config):
    return NotificationChannel(
        id=channel_id,
        type=type_,
        name=f"{channel_id} channel",
        organization_id=organization_id,
        config=config,
        enabled=enabled,
    )


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, status_code=200, error=None):
        self.status_code = status_code
        self.error = error
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "body": data, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code)


class TestDispatch:
    """Settle-all fan-out to the alert's channels."""

    def test_one_failure_does_not_block_others(self):
        async def scenario():
            ok = RecordingAdapter()
            broken = RecordingAdapter(error=NotificationError("provider down"))
            dispatcher = NotificationDispatcher({ChannelType.SLACK: ok, ChannelType.SMS: broken})
            dispatcher.add_channel(make_channel("c1", ChannelType.SLACK))
            dispatcher.add_channel(make_channel("c2", ChannelType.SMS))
            dispatcher.add_channel(make_channel("c3", ChannelType.SLACK))

            outcomes = await dispatcher.dispatch(make_alert(), ["c1", "c2", "c3"])

            assert [o.success for o in outcomes] == [True, False, True]
            assert outcomes[1].error == "provider down"
            assert len(ok.sent) == 2
            assert dispatcher.stats()["sent"] == 2
            assert dispatcher.stats()["failed"] == 1

        asyncio.run(scenario())

    def test_sends_run_concurrently(self):
        async def scenario():
            slow = RecordingAdapter(delay=0.2)
            dispatcher = NotificationDispatcher({ChannelType.WEBHOOK: slow})
            for i in range(5):
                dispatcher.add_channel(make_channel(f"c{i}", ChannelType.WEBHOOK))

            loop = asyncio.get_running_loop()
            started = loop.time()
            await dispatcher.dispatch(make_alert(), [f"c{i}" for i in range(5)])

            assert loop.time() - started < 0.6
            assert len(slow.sent) == 5

        asyncio.run(scenario())

    def test_unknown_and_foreign_channels_are_skipped(self):
        async def scenario():
            adapter = RecordingAdapter()
            dispatcher = NotificationDispatcher({ChannelType.SLACK: adapter})
            dispatcher.add_channel(make_channel("foreign", organization_id="org-2"))

            outcomes = await dispatcher.dispatch(make_alert(organization_id="org-1"), ["missing", "foreign"])

            assert all(o.skipped for o in outcomes)
            assert adapter.sent == []
            assert dispatcher.stats()["skipped"] == 2

        asyncio.run(scenario())

    def test_disabled_channel_is_skipped(self):
        async def scenario():
            adapter = RecordingAdapter()
            dispatcher = NotificationDispatcher({ChannelType.SLACK: adapter})
            dispatcher.add_channel(make_channel("off", enabled=False))

            outcomes = await dispatcher.dispatch(make_alert(), ["off"])

            assert outcomes[0].skipped
            assert outcomes[0].error == "channel disabled"
            assert adapter.sent == []

        asyncio.run(scenario())

    def test_missing_adapter_fails_the_channel(self):
        async def scenario():
            dispatcher = NotificationDispatcher({})
            dispatcher.add_channel(make_channel("c1", ChannelType.PUSH))

            outcomes = await dispatcher.dispatch(make_alert(), ["c1"])

            assert outcomes[0].success is False
            assert "No adapter" in outcomes[0].error

        asyncio.run(scenario())

    def test_publishes_sent_and_failed_events(self):
        async def scenario():
            bus = EventBus()
            events = []
            bus.subscribe([EventKind.NOTIFICATION_SENT, EventKind.NOTIFICATION_FAILED], events.append)
            dispatcher = NotificationDispatcher(
                {ChannelType.SLACK: RecordingAdapter(), ChannelType.SMS: RecordingAdapter(error=RuntimeError("boom"))},
                bus=bus,
            )
            dispatcher.add_channel(make_channel("c1", ChannelType.SLACK))
            dispatcher.add_channel(make_channel("c2", ChannelType.SMS))

            await dispatcher.dispatch(make_alert(), ["c1", "c2"])

            kinds = sorted(e.kind.value for e in events)
            assert kinds == ["notification_failed", "notification_sent"]
            failed = next(e for e in events if e.kind == EventKind.NOTIFICATION_FAILED)
            assert failed.channel_id == "c2"
            assert failed.error == "boom"

        asyncio.run(scenario())

    def test_empty_channel_list(self):
        dispatcher = NotificationDispatcher({})
        assert asyncio.run(dispatcher.dispatch(make_alert(), [])) == []


class TestChannelTest:

    def test_unknown_channel_raises(self):
        dispatcher = NotificationDispatcher({})
        with pytest.raises(ChannelNotFoundError, match="Channel nope not found"):
            asyncio.run(dispatcher.test_channel("nope"))

    def test_sends_canned_info_alert(self):
        adapter = RecordingAdapter()
        dispatcher = NotificationDispatcher({ChannelType.SLACK: adapter})
        dispatcher.add_channel(make_channel("c1", webhook="https://hooks.example/x"))

        assert asyncio.run(dispatcher.test_channel("c1")) is True

        alert, config = adapter.sent[0]
        assert alert.metric == "cpu"
        assert alert.current_value == 50
        assert alert.threshold == 80
        assert alert.severity.value == "info"
        assert config == {"webhook": "https://hooks.example/x"}

    def test_failure_returns_false(self):
        dispatcher = NotificationDispatcher({ChannelType.SLACK: RecordingAdapter(error=NotificationError("nope"))})
        dispatcher.add_channel(make_channel("c1"))

        assert asyncio.run(dispatcher.test_channel("c1")) is False


class TestRegistry:

    def test_load_channels_skips_disabled(self):
        dispatcher = NotificationDispatcher({})
        count = dispatcher.load_channels([make_channel("a"), make_channel("b", enabled=False)])

        assert count == 1
        assert dispatcher.get_channel("b") is None

    def test_filter_by_organization(self):
        dispatcher = NotificationDispatcher({})
        dispatcher.add_channel(make_channel("a", organization_id="org-1"))
        dispatcher.add_channel(make_channel("b", organization_id="org-2"))

        assert [c.id for c in dispatcher.get_channels("org-2")] == ["b"]
        assert dispatcher.remove_channel("a") is True
        assert dispatcher.remove_channel("a") is False

    def test_channel_from_dict(self):
        channel = NotificationChannel.from_dict({
            "type": "webhook",
            "name": "Hook",
            "organizationId": "org-1",
            "config": {"url": "https://example.test/hook"},
        })
        assert channel.id.startswith("channel_")
        assert channel.type == ChannelType.WEBHOOK
        assert channel.organization_id == "org-1"


class TestAdapters:
    """Provider payloads, posted through a fake requests session."""

    def test_slack_payload(self):
        session = FakeSession()
        adapter = SlackAdapter(timeout=3, session=session)

        asyncio.run(adapter.send(make_alert(), {"webhook": "https://hooks.slack.test/abc"}))

        call = session.calls[0]
        assert call["url"] == "https://hooks.slack.test/abc"
        assert call["timeout"] == 3
        body = json.loads(call["body"])
        assert body["text"].startswith("High CPU")
        assert body["attachments"][0]["color"] == "#990000"

    def test_slack_requires_webhook(self):
        adapter = SlackAdapter(session=FakeSession())
        with pytest.raises(NotificationError, match="webhook"):
            asyncio.run(adapter.send(make_alert(), {}))

    def test_http_error_becomes_notification_error(self):
        adapter = WebhookAdapter(session=FakeSession(status_code=502))
        with pytest.raises(NotificationError, match="502"):
            asyncio.run(adapter.send(make_alert(), {"url": "https://example.test/hook"}))

    def test_connection_error_becomes_notification_error(self):
        adapter = WebhookAdapter(session=FakeSession(error=requests.exceptions.ConnectionError("refused")))
        with pytest.raises(NotificationError, match="refused"):
            asyncio.run(adapter.send(make_alert(), {"url": "https://example.test/hook"}))

    def test_webhook_signature_matches_body(self):
        session = FakeSession()
        adapter = WebhookAdapter(session=session)

        asyncio.run(adapter.send(make_alert(), {"url": "https://example.test/hook", "secret": "s3cret"}))

        call = session.calls[0]
        expected = hmac.new(b"s3cret", call["body"].encode(), hashlib.sha256).hexdigest()
        assert call["headers"][WebhookAdapter.SIGNATURE_HEADER] == expected
        assert json.loads(call["body"])["alert"]["deviceId"] == "dev-1"

    def test_sms_and_push_use_api_key(self):
        session = FakeSession()
        asyncio.run(SmsAdapter(session=session).send(
            make_alert(), {"endpoint": "https://sms.test", "phoneNumbers": "+100, +200", "apiKey": "k"}
        ))
        asyncio.run(PushAdapter(session=session).send(
            make_alert(), {"endpoint": "https://push.test", "tokens": ["t1"]}
        ))

        sms, push = session.calls
        assert json.loads(sms["body"])["to"] == ["+100", "+200"]
        assert sms["headers"]["Authorization"] == "Bearer k"
        assert json.loads(push["body"])["tokens"] == ["t1"]
        assert "Authorization" not in push["headers"]

    def test_email_without_smtp_host_fails(self):
        adapter = EmailAdapter(smtp_host=None)
        with pytest.raises(NotificationError, match="SMTP"):
            asyncio.run(adapter.send(make_alert(), {"recipients": ["ops@example.test"]}))

    def test_email_message(self):
        adapter = EmailAdapter(smtp_host="localhost", sender="alerts@example.test")
        msg = adapter.build_message(make_alert(), {"recipients": "a@example.test, b@example.test"})

        assert msg["To"] == "a@example.test, b@example.test"
        assert msg["Subject"].startswith("[CRITICAL]")
