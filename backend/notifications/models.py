"""
Notification Models
Channel definitions and per-channel delivery outcomes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional
from enum import Enum
import uuid


class ChannelType(str, Enum):
    """Supported notification channel types"""
    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"
    SMS = "sms"
    PUSH = "push"


@dataclass
class NotificationChannel:
    """
    A configured delivery target.

    config is an opaque bag read only by the channel's adapter
    (recipients, webhook URL, provider endpoint, tokens, ...).
    """
    id: str
    type: ChannelType
    name: str
    organization_id: str
    config: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def __post_init__(self):
        if not self.id:
            self.id = f"channel_{uuid.uuid4().hex[:8]}"
        if not isinstance(self.type, ChannelType):
            self.type = ChannelType(self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "config": dict(self.config),
            "enabled": self.enabled,
            "organization_id": self.organization_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationChannel":
        return cls(
            id=data.get("id", ""),
            type=ChannelType(data["type"]),
            name=data.get("name", ""),
            organization_id=data.get("organization_id") or data.get("organizationId"),
            config=dict(data.get("config") or {}),
            enabled=data.get("enabled", True),
        )


@dataclass
class DeliveryOutcome:
    """Result of sending one alert to one channel"""
    channel_id: str
    channel_type: Optional[str]
    success: bool
    error: Optional[str] = None
    skipped: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "channel_type": self.channel_type,
            "success": self.success,
            "error": self.error,
            "skipped": self.skipped,
            "timestamp": self.timestamp.isoformat(),
        }
