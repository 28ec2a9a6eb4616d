"""
Channel Adapters
One adapter per channel type, all behind send(alert, config).

Adapters format the alert for their provider and deliver it.
Blocking I/O (requests, smtplib) runs in a worker thread so the
event loop never waits on a provider.

Channel config keys:
    email:   recipients (list or comma separated)
    slack:   webhook
    webhook: url, secret (optional, signs the body)
    sms:     endpoint, phoneNumbers, apiKey (optional)
    push:    endpoint, tokens, apiKey (optional)
"""

import asyncio
import hashlib
import hmac
import json
import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime
from email.message import EmailMessage
from typing import Dict, Any, List, Optional

import requests

from core.errors import NotificationError
from alerts.models import Alert

from .models import ChannelType

logger = logging.getLogger('devicewatch.notifications.adapters')

SEVERITY_COLORS = {
    "info": "#0099ff",
    "warning": "#ff9900",
    "error": "#ff0000",
    "critical": "#990000",
}


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def _require(config: Dict[str, Any], key: str) -> Any:
    value = config.get(key)
    if not value:
        raise NotificationError(f"Channel config is missing '{key}'")
    return value


class ChannelAdapter(ABC):
    """Uniform contract for every channel type"""

    channel_type: ChannelType

    @abstractmethod
    async def send(self, alert: Alert, config: Dict[str, Any]) -> None:
        """Deliver alert. Raises NotificationError on failure."""


class HttpChannelAdapter(ChannelAdapter):
    """Base for providers reached with a JSON POST"""

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    async def _post_json(self, url: str, payload: Dict[str, Any], headers: Dict[str, str] = None) -> None:
        await asyncio.to_thread(self._post_blocking, url, payload, headers or {})

    def _post_blocking(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> None:
        body = json.dumps(payload, default=str)
        try:
            resp = self.session.post(
                url,
                data=body,
                headers={"Content-Type": "application/json", **headers},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"{self.channel_type.value} delivery to {url} failed: {e}") from e


# =============================================================================
# Email
# =============================================================================

class EmailAdapter(ChannelAdapter):
    channel_type = ChannelType.EMAIL

    def __init__(self, smtp_host: Optional[str] = None, smtp_port: int = 25,
                 sender: str = "alerts@devicewatch.local", timeout: float = 10.0):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.timeout = timeout

    def build_message(self, alert: Alert, config: Dict[str, Any]) -> EmailMessage:
        recipients = _as_list(config.get("recipients"))
        if not recipients:
            raise NotificationError("Channel config is missing 'recipients'")

        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = f"[{alert.severity.value.upper()}] {alert.message}"
        msg.set_content(alert.message)
        msg.add_alternative(self.format_body(alert), subtype="html")
        return msg

    @staticmethod
    def format_body(alert: Alert) -> str:
        return (
            f"<h2>Alert: {alert.message}</h2>\n"
            f"<p><strong>Severity:</strong> {alert.severity.value.upper()}</p>\n"
            f"<p><strong>Device ID:</strong> {alert.device_id}</p>\n"
            f"<p><strong>Metric:</strong> {alert.metric}</p>\n"
            f"<p><strong>Current Value:</strong> {alert.current_value}</p>\n"
            f"<p><strong>Threshold:</strong> {alert.threshold}</p>\n"
            f"<p><strong>Triggered At:</strong> {alert.triggered_at.isoformat()}</p>\n"
            "<hr>\n"
            "<p>This is an automated alert from DeviceWatch.</p>\n"
        )

    async def send(self, alert: Alert, config: Dict[str, Any]) -> None:
        if not self.smtp_host:
            raise NotificationError("SMTP host is not configured")
        msg = self.build_message(alert, config)
        await asyncio.to_thread(self._send_blocking, msg)

    def _send_blocking(self, msg: EmailMessage) -> None:
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"email delivery via {self.smtp_host} failed: {e}") from e


# =============================================================================
# Slack
# =============================================================================

class SlackAdapter(HttpChannelAdapter):
    channel_type = ChannelType.SLACK

    @staticmethod
    def build_payload(alert: Alert) -> Dict[str, Any]:
        return {
            "text": alert.message,
            "attachments": [
                {
                    "color": SEVERITY_COLORS.get(alert.severity.value, "#999999"),
                    "fields": [
                        {"title": "Device", "value": alert.device_id, "short": True},
                        {"title": "Metric", "value": alert.metric, "short": True},
                        {"title": "Current Value", "value": f"{alert.current_value}", "short": True},
                        {"title": "Threshold", "value": f"{alert.threshold}", "short": True},
                        {"title": "Triggered At", "value": alert.triggered_at.isoformat(), "short": False},
                    ],
                    "footer": "DeviceWatch Alert System",
                    "ts": int(alert.triggered_at.timestamp()),
                }
            ],
        }

    async def send(self, alert: Alert, config: Dict[str, Any]) -> None:
        url = _require(config, "webhook")
        await self._post_json(url, self.build_payload(alert))


# =============================================================================
# Webhook
# =============================================================================

class WebhookAdapter(HttpChannelAdapter):
    channel_type = ChannelType.WEBHOOK

    SIGNATURE_HEADER = "X-DeviceWatch-Signature"

    @staticmethod
    def build_payload(alert: Alert) -> Dict[str, Any]:
        return {
            "event": "alert.triggered",
            "alert": {
                "id": alert.id,
                "ruleId": alert.rule_id,
                "deviceId": alert.device_id,
                "metric": alert.metric,
                "severity": alert.severity.value,
                "message": alert.message,
                "currentValue": alert.current_value,
                "threshold": alert.threshold,
                "triggeredAt": alert.triggered_at.isoformat(),
            },
            "timestamp": datetime.now().isoformat(),
        }

    @staticmethod
    def sign(payload: Dict[str, Any], secret: str) -> str:
        body = json.dumps(payload, default=str).encode()
        return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    async def send(self, alert: Alert, config: Dict[str, Any]) -> None:
        url = _require(config, "url")
        payload = self.build_payload(alert)
        headers = {}
        if config.get("secret"):
            headers[self.SIGNATURE_HEADER] = self.sign(payload, config["secret"])
        await self._post_json(url, payload, headers)


# =============================================================================
# SMS / Push (provider gateways)
# =============================================================================

class SmsAdapter(HttpChannelAdapter):
    channel_type = ChannelType.SMS

    async def send(self, alert: Alert, config: Dict[str, Any]) -> None:
        endpoint = _require(config, "endpoint")
        numbers = _as_list(config.get("phoneNumbers"))
        if not numbers:
            raise NotificationError("Channel config is missing 'phoneNumbers'")
        payload = {
            "to": numbers,
            "body": f"[{alert.severity.value.upper()}] {alert.message}",
        }
        await self._post_json(endpoint, payload, _auth_headers(config))


class PushAdapter(HttpChannelAdapter):
    channel_type = ChannelType.PUSH

    @staticmethod
    def build_payload(alert: Alert, tokens: List[str]) -> Dict[str, Any]:
        return {
            "tokens": tokens,
            "notification": {
                "title": f"{alert.severity.value.upper()} Alert",
                "body": alert.message,
            },
            "data": {
                "alertId": alert.id,
                "deviceId": alert.device_id,
                "severity": alert.severity.value,
            },
        }

    async def send(self, alert: Alert, config: Dict[str, Any]) -> None:
        endpoint = _require(config, "endpoint")
        tokens = _as_list(config.get("tokens"))
        if not tokens:
            raise NotificationError("Channel config is missing 'tokens'")
        await self._post_json(endpoint, self.build_payload(alert, tokens), _auth_headers(config))


def _auth_headers(config: Dict[str, Any]) -> Dict[str, str]:
    if config.get("apiKey"):
        return {"Authorization": f"Bearer {config['apiKey']}"}
    return {}


def default_adapters(
    timeout: float = 10.0,
    smtp_host: Optional[str] = None,
    smtp_port: int = 25,
    smtp_sender: str = "alerts@devicewatch.local",
) -> Dict[ChannelType, ChannelAdapter]:
    if not smtp_host:
        logger.info("No SMTP host configured, email channels will fail to deliver")
    session = requests.Session()
    return {
        ChannelType.EMAIL: EmailAdapter(smtp_host, smtp_port, smtp_sender, timeout),
        ChannelType.SLACK: SlackAdapter(timeout, session),
        ChannelType.WEBHOOK: WebhookAdapter(timeout, session),
        ChannelType.SMS: SmsAdapter(timeout, session),
        ChannelType.PUSH: PushAdapter(timeout, session),
    }
