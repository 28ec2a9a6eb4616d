"""
Alert System
Threshold rules evaluated against incoming metric samples.

Structure:
    alerts/
    ├── models.py    → AlertRule, RuleState, Alert
    └── engine.py    → AlertEngine (evaluation + hysteresis state)

Usage:
    from alerts import AlertEngine, AlertRule, AlertCondition

    engine = AlertEngine(bus=bus)

    rule = AlertRule(
        id="",
        metric="cpu",
        condition=AlertCondition.GT,
        threshold=90,
        organization_id="org-1",
        duration=300,
        cooldown=600,
    )
    engine.add_rule(rule)

    # Evaluate (called once per metric sample)
    fired = engine.evaluate(sample)

    # Get history
    history = engine.get_history(limit=20)
"""

from .models import (
    AlertRule,
    RuleState,
    Alert,
    AlertCondition,
    AlertSeverity,
    condition_text,
)

from .engine import AlertEngine

__all__ = [
    # Models
    "AlertRule",
    "RuleState",
    "Alert",
    "AlertCondition",
    "AlertSeverity",
    "condition_text",
    # Engine
    "AlertEngine",
]
