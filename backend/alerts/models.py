"""
Alert Models
Data structures for alert rules, runtime state, and fired alerts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Union
from enum import Enum
import uuid


class AlertCondition(str, Enum):
    """Rule condition operators"""
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"


class AlertSeverity(str, Enum):
    """Alert severity levels"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


CONDITION_TEXT = {
    "gt": "greater than",
    "gte": "greater than or equal to",
    "lt": "less than",
    "lte": "less than or equal to",
    "eq": "equal to",
}

METRIC_UNITS = {
    "cpu": "%",
    "memory": "%",
    "disk": "%",
    "network": " Mbps",
    "uptime": " seconds",
}


def condition_text(condition: Union[AlertCondition, str]) -> str:
    key = condition.value if isinstance(condition, AlertCondition) else str(condition)
    return CONDITION_TEXT.get(key, key)


def format_number(value: float) -> str:
    """92.0 → "92", 92.5 → "92.5" """
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class AlertRule:
    """
    Threshold rule evaluated against metric samples.

    Example:
        "Alert when cpu > 90 on any device of org-1 for 5 minutes"

    device_id=None scopes the rule to every device of the organization.
    duration and cooldown are in seconds; None or 0 disables them.
    condition stays a plain string when it is not a known operator,
    such rules never fire.
    """
    id: str
    metric: str
    condition: Union[AlertCondition, str]
    threshold: float
    organization_id: str
    severity: AlertSeverity = AlertSeverity.WARNING
    device_id: Optional[str] = None
    duration: Optional[int] = None
    cooldown: Optional[int] = None
    enabled: bool = True
    notification_channels: List[str] = field(default_factory=list)
    name: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"rule_{uuid.uuid4().hex[:8]}"
        if isinstance(self.condition, str) and not isinstance(self.condition, AlertCondition):
            try:
                self.condition = AlertCondition(self.condition)
            except ValueError:
                pass
        if not self.name:
            self.name = f"{self.metric} {condition_text(self.condition)} {format_number(self.threshold)}"

    @property
    def condition_value(self) -> str:
        if isinstance(self.condition, AlertCondition):
            return self.condition.value
        return str(self.condition)

    def applies_to(self, device_id: str, organization_id: str) -> bool:
        if self.organization_id != organization_id:
            return False
        return not self.device_id or self.device_id == device_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "device_id": self.device_id,
            "metric": self.metric,
            "condition": self.condition_value,
            "threshold": self.threshold,
            "duration": self.duration,
            "severity": self.severity.value,
            "enabled": self.enabled,
            "organization_id": self.organization_id,
            "notification_channels": list(self.notification_channels),
            "cooldown": self.cooldown,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRule":
        """Accepts snake_case or the camelCase keys of the management API"""
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        duration = pick("duration")
        cooldown = pick("cooldown")
        return cls(
            id=pick("id", default=""),
            name=pick("name", default=""),
            device_id=pick("device_id", "deviceId"),
            metric=data["metric"],
            condition=data["condition"],
            threshold=float(data["threshold"]),
            duration=int(duration) if duration is not None else None,
            severity=AlertSeverity(pick("severity", default="warning")),
            enabled=bool(pick("enabled", default=True)),
            organization_id=pick("organization_id", "organizationId"),
            notification_channels=list(pick("notification_channels", "notificationChannels", default=[])),
            cooldown=int(cooldown) if cooldown is not None else None,
        )


@dataclass
class RuleState:
    """
    Runtime state for one rule.

    Cooldown is tracked per rule; condition start times are tracked
    per device, keyed by device_id.
    """
    rule_id: str
    last_triggered_at: Optional[datetime] = None
    trigger_count: int = 0
    last_value: Optional[float] = None
    condition_started: Dict[str, datetime] = field(default_factory=dict)

    def in_cooldown(self, cooldown: Optional[int], now: datetime) -> bool:
        """True while the rule fired less than `cooldown` seconds ago"""
        if not cooldown or cooldown <= 0:
            return False
        if self.last_triggered_at is None:
            return False
        elapsed = (now - self.last_triggered_at).total_seconds()
        return elapsed < cooldown

    def duration_met(self, device_id: str, duration: int, now: datetime) -> bool:
        """Start tracking on the first true sample; met once `duration` seconds have passed"""
        started = self.condition_started.get(device_id)
        if started is None:
            self.condition_started[device_id] = now
            return False
        elapsed = (now - started).total_seconds()
        return elapsed >= duration

    def clear_condition(self, device_id: str) -> None:
        """Condition went false for this device"""
        self.condition_started.pop(device_id, None)

    def record_trigger(self, value: float, now: datetime) -> None:
        self.last_triggered_at = now
        self.trigger_count += 1
        self.last_value = value

    def reset(self) -> None:
        self.last_triggered_at = None
        self.trigger_count = 0
        self.last_value = None
        self.condition_started.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "last_triggered": self.last_triggered_at.isoformat() if self.last_triggered_at else None,
            "trigger_count": self.trigger_count,
            "last_value": self.last_value,
            "tracking_devices": sorted(self.condition_started.keys()),
        }


@dataclass
class Alert:
    """
    A fired alert.

    This is what gets dispatched to channels, pushed to clients and kept
    in history. Resolution fields are filled in by the management surface.
    """
    id: str
    rule_id: str
    device_id: str
    metric: str
    severity: AlertSeverity
    message: str
    current_value: float
    threshold: float
    condition: str
    organization_id: str
    triggered_at: datetime = field(default_factory=datetime.now)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: Optional[str] = None
    is_resolved: bool = False

    def __post_init__(self):
        if not self.id:
            self.id = f"alert_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "device_id": self.device_id,
            "metric": self.metric,
            "severity": self.severity.value,
            "message": self.message,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "condition": self.condition,
            "triggered_at": self.triggered_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "notes": self.notes,
            "is_resolved": self.is_resolved,
            "organization_id": self.organization_id,
        }

    @classmethod
    def from_rule(cls, rule: AlertRule, device_id: str, value: float, now: datetime) -> "Alert":
        """Create alert from fired rule"""
        text = condition_text(rule.condition)
        unit = METRIC_UNITS.get(rule.metric, "")
        message = (
            f"{rule.name}: {rule.metric} is {format_number(value)}{unit} "
            f"({text} {format_number(rule.threshold)}{unit})"
        )

        return cls(
            id="",
            rule_id=rule.id,
            device_id=device_id,
            metric=rule.metric,
            severity=rule.severity,
            message=message,
            current_value=value,
            threshold=rule.threshold,
            condition=text,
            organization_id=rule.organization_id,
            triggered_at=now,
        )
