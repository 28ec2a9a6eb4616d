"""
Notification System
Delivers fired alerts to email, Slack, webhook, SMS and push channels.

Structure:
    notifications/
    ├── models.py      → NotificationChannel, ChannelType, DeliveryOutcome
    ├── adapters.py    → ChannelAdapter + one adapter per channel type
    └── dispatcher.py  → NotificationDispatcher (registry + fan-out)
"""

from .models import (
    ChannelType,
    NotificationChannel,
    DeliveryOutcome,
)

from .adapters import (
    ChannelAdapter,
    HttpChannelAdapter,
    EmailAdapter,
    SlackAdapter,
    WebhookAdapter,
    SmsAdapter,
    PushAdapter,
    default_adapters,
)

from .dispatcher import NotificationDispatcher

__all__ = [
    # Models
    "ChannelType",
    "NotificationChannel",
    "DeliveryOutcome",
    # Adapters
    "ChannelAdapter",
    "HttpChannelAdapter",
    "EmailAdapter",
    "SlackAdapter",
    "WebhookAdapter",
    "SmsAdapter",
    "PushAdapter",
    "default_adapters",
    # Dispatcher
    "NotificationDispatcher",
]
