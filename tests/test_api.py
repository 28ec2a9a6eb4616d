"""
End-to-end tests through the HTTP and WebSocket surface.
"""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from config import Settings
from executions import ExecutionOutcome, ExecutionTransport
from main import create_app
from notifications import ChannelType
from services import MonitoringPlatform

from conftest import RecordingAdapter


class ScriptedTransport(ExecutionTransport):
    """Finishes immediately with the exit code given in the parameters"""

    async def execute(self, execution):
        code = int(execution.parameters.get("exit_code", 0))
        return ExecutionOutcome(code, output=f"ran {execution.script_id}")


@pytest.fixture
def slack():
    return RecordingAdapter()


@pytest.fixture
def platform(slack):
    settings = Settings(
        realtime_tokens={"tok-1": {"user_id": "user-1", "organization_id": "org-1"}},
        sse_keepalive_sec=0.1,
    )
    return MonitoringPlatform(settings, transport=ScriptedTransport(), adapters={ChannelType.SLACK: slack})


@pytest.fixture
def client(platform):
    with TestClient(create_app(platform=platform)) as client:
        yield client


def eventually(check, attempts=100, delay=0.01):
    for _ in range(attempts):
        result = check()
        if result:
            return result
        time.sleep(delay)
    raise AssertionError("condition not reached")


def create_rule(client, **overrides):
    body = {
        "metric": "cpu",
        "condition": "gt",
        "threshold": 90,
        "organization_id": "org-1",
        "name": "High CPU",
    }
    body.update(overrides)
    resp = client.post("/api/alerts/rules", json=body)
    assert resp.status_code == 200
    return resp.json()["rule"]


def submit(client, devices=("dev-1",), **overrides):
    body = {
        "device_ids": list(devices),
        "executed_by": "user-1",
        "organization_id": "org-1",
    }
    body.update(overrides)
    resp = client.post("/api/scripts/script-1/execute", json=body)
    assert resp.status_code == 200
    return resp.json()["executions"]


def execution_status(client, execution_id):
    return client.get(f"/api/executions/{execution_id}").json()["execution"]["status"]


class TestRoot:

    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["executions"]["max_concurrent"] == 10

    def test_stats(self, client):
        body = client.get("/api/stats").json()
        assert set(body) == {"alerts", "notifications", "executions", "realtime", "events", "feed"}


class TestMetricsAndAlerts:

    def test_sample_fires_rule(self, client):
        create_rule(client)

        resp = client.post("/api/metrics", json={"deviceId": "dev-1", "organizationId": "org-1", "cpu": 95})

        body = resp.json()
        assert body["success"] is True
        assert len(body["alerts"]) == 1
        assert body["alerts"][0]["message"] == "High CPU: cpu is 95% (greater than 90%)"

        history = client.get("/api/alerts/history").json()
        assert history["count"] == 1

    def test_invalid_sample(self, client):
        resp = client.post("/api/metrics", json={"cpu": 95})
        assert resp.status_code == 400

    def test_out_of_range_timestamp_rejected(self, client):
        for ts in (1e20, 1e300):
            resp = client.post("/api/metrics", json={"deviceId": "dev-1", "organizationId": "org-1", "timestamp": ts, "cpu": 5})
            assert resp.status_code == 400

    def test_batch_counts_out_of_range_timestamp(self, client):
        resp = client.post("/api/metrics/batch", json=[
            {"deviceId": "dev-1", "organizationId": "org-1", "timestamp": 1e300, "cpu": 95},
            {"deviceId": "dev-2", "organizationId": "org-1", "cpu": 10},
        ])

        assert resp.status_code == 200
        assert resp.json()["count"] == 1
        assert resp.json()["errors"] == 1

    def test_batch_counts_invalid_samples(self, client):
        create_rule(client)

        resp = client.post("/api/metrics/batch", json=[
            {"deviceId": "dev-1", "organizationId": "org-1", "cpu": 95},
            {"organizationId": "org-1", "cpu": 95},
            {"deviceId": "dev-2", "organizationId": "org-1", "metrics": {"cpu": 10}},
        ])

        body = resp.json()
        assert body["count"] == 2
        assert body["errors"] == 1
        assert len(body["alerts"]) == 1

    def test_invalid_condition(self, client):
        resp = client.post("/api/alerts/rules", json={
            "metric": "cpu", "condition": ">>", "threshold": 1, "organization_id": "org-1",
        })
        assert resp.status_code == 400

    def test_rule_lifecycle(self, client):
        rule = create_rule(client, cooldown=60)
        rule_id = rule["id"]

        resp = client.get(f"/api/alerts/rules/{rule_id}")
        assert resp.json()["state"]["trigger_count"] == 0

        resp = client.put(f"/api/alerts/rules/{rule_id}", json={
            "metric": "cpu", "condition": "gte", "threshold": 80, "organization_id": "org-1",
        })
        assert resp.json()["rule"]["condition"] == "gte"

        device_rules = client.get("/api/alerts/devices/dev-7/rules").json()
        assert device_rules["count"] == 1

        resp = client.put(f"/api/alerts/rules/{rule_id}", json={
            "metric": "cpu", "condition": "gte", "threshold": 80, "organization_id": "org-1", "enabled": False,
        })
        assert resp.json()["active"] is False
        assert client.get(f"/api/alerts/rules/{rule_id}").json()["active"] is False
        assert client.get("/api/alerts/rules").json()["count"] == 0

        assert client.delete(f"/api/alerts/rules/{rule_id}").status_code == 200
        assert client.get(f"/api/alerts/rules/{rule_id}").status_code == 404
        assert client.delete(f"/api/alerts/rules/{rule_id}").status_code == 404

    def test_disabled_rule_can_be_enabled_again(self, client):
        rule_id = create_rule(client, enabled=False)["id"]
        sample = {"deviceId": "dev-1", "organizationId": "org-1", "cpu": 99}

        assert client.post("/api/metrics", json=sample).json()["alerts"] == []
        listed = client.get("/api/alerts/rules", params={"include_disabled": True}).json()
        assert [r["id"] for r in listed["rules"]] == [rule_id]

        resp = client.put(f"/api/alerts/rules/{rule_id}", json={
            "metric": "cpu", "condition": "gt", "threshold": 90, "organization_id": "org-1", "enabled": True,
        })
        assert resp.status_code == 200
        assert resp.json()["active"] is True
        assert len(client.post("/api/metrics", json=sample).json()["alerts"]) == 1

    def test_rules_filtered_by_organization(self, client):
        create_rule(client, organization_id="org-1")
        create_rule(client, organization_id="org-2")

        body = client.get("/api/alerts/rules", params={"organization_id": "org-2"}).json()
        assert body["count"] == 1

    def test_alert_notifies_channel(self, client, slack):
        channel = client.post("/api/channels", json={
            "type": "slack", "name": "Ops", "organization_id": "org-1",
            "config": {"webhook": "https://hooks.slack.test/x"},
        }).json()["channel"]
        create_rule(client, notification_channels=[channel["id"]])

        client.post("/api/metrics", json={"deviceId": "dev-1", "organizationId": "org-1", "cpu": 99})

        eventually(lambda: slack.sent)
        alert, config = slack.sent[0]
        assert alert.device_id == "dev-1"
        assert config["webhook"] == "https://hooks.slack.test/x"

    def test_resolve_alert_from_history(self, client):
        create_rule(client)
        alert = client.post("/api/metrics", json={"deviceId": "dev-1", "organizationId": "org-1", "cpu": 99}).json()["alerts"][0]

        resp = client.post(f"/api/alerts/history/{alert['id']}/resolve", json={"resolved_by": "user-1", "notes": "fan replaced"})
        assert resp.status_code == 200
        assert resp.json()["alert"]["is_resolved"] is True

        fetched = client.get(f"/api/alerts/history/{alert['id']}").json()["alert"]
        assert fetched["resolved_by"] == "user-1"
        assert fetched["notes"] == "fan replaced"
        assert fetched["resolved_at"] is not None

        assert client.get("/api/alerts/history/alert_missing").status_code == 404
        assert client.post("/api/alerts/history/alert_missing/resolve", json={"resolved_by": "user-1"}).status_code == 404

    def test_reset_and_clear_history(self, client):
        create_rule(client, cooldown=600)
        sample = {"deviceId": "dev-1", "organizationId": "org-1", "cpu": 99}

        assert len(client.post("/api/metrics", json=sample).json()["alerts"]) == 1
        assert client.post("/api/metrics", json=sample).json()["alerts"] == []
        client.post("/api/alerts/reset")
        assert len(client.post("/api/metrics", json=sample).json()["alerts"]) == 1

        client.delete("/api/alerts/history")
        assert client.get("/api/alerts/history").json()["count"] == 0


class TestChannels:

    def test_crud_and_test(self, client, slack):
        channel = client.post("/api/channels", json={
            "type": "slack", "name": "Ops", "organization_id": "org-1",
            "config": {"webhook": "https://hooks.slack.test/x"},
        }).json()["channel"]
        channel_id = channel["id"]

        assert client.get(f"/api/channels/{channel_id}").status_code == 200
        assert client.get("/api/channels").json()["count"] == 1

        resp = client.post(f"/api/channels/{channel_id}/test")
        assert resp.json()["success"] is True
        assert slack.sent[0][0].severity.value == "info"

        resp = client.put(f"/api/channels/{channel_id}", json={
            "type": "slack", "name": "Renamed", "organization_id": "org-1",
        })
        assert resp.json()["channel"]["name"] == "Renamed"

        assert client.delete(f"/api/channels/{channel_id}").status_code == 200
        assert client.post(f"/api/channels/{channel_id}/test").status_code == 404

    def test_unsupported_channel_type(self, client):
        resp = client.post("/api/channels", json={"type": "pager", "name": "x", "organization_id": "org-1"})
        assert resp.status_code == 422


class TestExecutions:

    def test_submit_and_complete(self, client):
        created = submit(client, devices=["dev-1", "dev-2"])

        assert [e["status"] for e in created] == ["pending", "pending"]
        for execution in created:
            eventually(lambda: execution_status(client, execution["id"]) == "completed")

        listed = client.get("/api/executions", params={"device_id": "dev-2"}).json()
        assert listed["count"] == 1
        assert listed["executions"][0]["output"] == "ran script-1"

    def test_retry_failed(self, client):
        failed = submit(client, parameters={"exit_code": 1})[0]
        eventually(lambda: execution_status(client, failed["id"]) == "failed")

        resp = client.post(f"/api/executions/{failed['id']}/retry")

        assert resp.status_code == 200
        retried = resp.json()["execution"]
        assert retried["status"] == "pending"
        assert retried["script_id"] == "script-1"
        assert retried["device_id"] == "dev-1"
        assert retried["parameters"] == {"exit_code": 1}

    def test_retry_and_cancel_refused_when_completed(self, client):
        done = submit(client)[0]
        eventually(lambda: execution_status(client, done["id"]) == "completed")

        assert client.post(f"/api/executions/{done['id']}/retry").status_code == 409
        assert client.post(f"/api/executions/{done['id']}/cancel").status_code == 409

    def test_unknown_execution(self, client):
        assert client.get("/api/executions/exec_missing").status_code == 404
        assert client.post("/api/executions/exec_missing/cancel").status_code == 404
        assert client.post("/api/executions/exec_missing/retry").status_code == 404

    def test_validation(self, client):
        resp = client.post("/api/scripts/script-1/execute", json={
            "device_ids": [], "executed_by": "user-1", "organization_id": "org-1",
        })
        assert resp.status_code == 422

    def test_queue_and_purge(self, client):
        done = submit(client)[0]
        eventually(lambda: execution_status(client, done["id"]) == "completed")

        queue = client.get("/api/executions/queue").json()
        assert queue["completed"] == 1
        assert queue["max_concurrent"] == 10

        assert client.post("/api/executions/purge", json={"retention_days": 30}).json()["purged"] == 0
        assert client.post("/api/executions/purge", json={"retention_days": 0}).json()["purged"] == 1


class TestRealtime:

    def test_rejects_missing_or_unknown_token(self, client):
        for url in ("/ws", "/ws?token=nope"):
            with pytest.raises(WebSocketDisconnect) as exc:
                with client.websocket_connect(url) as ws:
                    ws.receive_text()
            assert exc.value.code == 4001

    def test_device_subscription_receives_metrics(self, client):
        with client.websocket_connect("/ws?token=tok-1") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_json({"type": "subscribe", "deviceId": "dev-1"})
            assert ws.receive_json()["type"] == "subscribed"

            client.post("/api/metrics", json={"deviceId": "dev-2", "organizationId": "org-1", "cpu": 10})
            client.post("/api/metrics", json={"deviceId": "dev-1", "organizationId": "org-1", "cpu": 20})

            message = ws.receive_json()
            assert message["type"] == "metrics"
            assert message["deviceId"] == "dev-1"
            assert message["data"]["cpu"] == 20

    def test_bearer_header_and_alert_topic(self, client):
        create_rule(client)

        with client.websocket_connect("/ws", headers={"Authorization": "Bearer tok-1"}) as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topic": "alerts"})
            ws.receive_json()

            client.post("/api/metrics", json={"deviceId": "dev-1", "organizationId": "org-1", "cpu": 99})

            message = ws.receive_json()
            assert message["type"] == "alert"
            assert message["data"]["current_value"] == 99

    def test_ping_and_device_status_hook(self, client):
        with client.websocket_connect("/ws?token=tok-1") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "subscribe", "topic": "devices"})
            ws.receive_json()
            resp = client.post("/api/realtime/devices/dev-5/status", json={"status": "offline"})
            assert resp.json()["delivered"] == 1

            message = ws.receive_json()
            assert message["type"] == "device_status"
            assert message["deviceId"] == "dev-5"
            assert message["status"] == "offline"

            stats = client.get("/api/realtime/stats").json()
            assert stats["total_clients"] == 1

        eventually(lambda: client.get("/api/realtime/stats").json()["total_clients"] == 0)


class TestExportAndFeed:

    def test_export_alerts_csv(self, client):
        create_rule(client)
        client.post("/api/metrics", json={"deviceId": "dev-1", "organizationId": "org-1", "cpu": 99})

        resp = client.get("/api/export/alerts")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        lines = resp.text.strip().splitlines()
        assert lines[0].startswith("triggered_at,alert_id,rule_id")
        assert len(lines) == 2

    def test_export_executions_json(self, client):
        done = submit(client)[0]
        eventually(lambda: execution_status(client, done["id"]) == "completed")

        resp = client.get("/api/export/executions", params={"format": "json"})

        assert resp.json()[0]["id"] == done["id"]

    def test_export_empty(self, client):
        assert client.get("/api/export/alerts").status_code == 404
        assert client.get("/api/export/executions").status_code == 404

    def test_feed_control(self, client):
        assert client.get("/api/feed/status").json()["status"] == "stopped"
        assert client.post("/api/feed/start").status_code == 400
        assert client.post("/api/feed/stop").json()["status"] == "not_running"
