"""
Core Module
Shared contracts for the monitoring engine.

Exports:
    Models: MetricSample, SampleSource, IngestionResult
    Converters: to_metric_sample
    Events: EventBus, EventKind, AlertFired, NotificationSent, NotificationFailed, ExecutionEvent
    Errors: DeviceWatchError and subclasses
"""

from .models import (
    MetricSample,
    SampleSource,
    IngestionResult,
    to_metric_sample,
)

from .events import (
    EventBus,
    EventKind,
    EXECUTION_EVENTS,
    AlertFired,
    NotificationSent,
    NotificationFailed,
    ExecutionEvent,
)

from .errors import (
    DeviceWatchError,
    ChannelNotFoundError,
    NotificationError,
    InvalidTransitionError,
)

from .logs import configure_logging

__all__ = [
    # Models
    "MetricSample",
    "SampleSource",
    "IngestionResult",
    "to_metric_sample",
    # Events
    "EventBus",
    "EventKind",
    "EXECUTION_EVENTS",
    "AlertFired",
    "NotificationSent",
    "NotificationFailed",
    "ExecutionEvent",
    # Errors
    "DeviceWatchError",
    "ChannelNotFoundError",
    "NotificationError",
    "InvalidTransitionError",
    # Logging
    "configure_logging",
]
