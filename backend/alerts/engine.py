import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Callable, Any, Iterable, Set
from collections import deque

from core.events import EventBus, AlertFired
from core.models import MetricSample

from .models import (
    Alert,
    AlertCondition,
    AlertRule,
    RuleState,
)

logger = logging.getLogger('devicewatch.alerts.engine')

Clock = Callable[[], datetime]


class AlertEngine:
    """
    Stateful rule evaluator.

    Holds the active rule registry plus per-rule hysteresis state.
    All registry and state access goes through one lock, so samples
    for the same rule/device are never evaluated concurrently.
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        history_size: int = 100,
        clock: Clock = datetime.now,
    ):
        self._bus = bus
        self._clock = clock
        self._lock = threading.Lock()
        self._rules: Dict[str, AlertRule] = {}
        self._disabled: Dict[str, AlertRule] = {}
        self._states: Dict[str, RuleState] = {}
        self._history: deque = deque(maxlen=history_size)
        self._warned_conditions: Set[str] = set()
        self._stats = {
            "evaluations": 0,
            "triggers": 0,
            "suppressed": 0,
            "start_time": clock()
        }

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def load_rules(self, rules: Iterable[AlertRule]) -> int:
        """Replace the registry. Disabled rules are catalogued, not evaluated."""
        with self._lock:
            self._rules.clear()
            self._disabled.clear()
            for rule in rules:
                if rule.enabled:
                    self._rules[rule.id] = rule
                else:
                    self._disabled[rule.id] = rule
            for rule_id in list(self._states):
                if rule_id not in self._rules:
                    del self._states[rule_id]
            count = len(self._rules)
        logger.info("Loaded %d active alert rules", count)
        return count

    def add_rule(self, rule: AlertRule) -> AlertRule:
        with self._lock:
            self._put(rule)
        return rule

    def update_rule(self, rule: AlertRule) -> AlertRule:
        with self._lock:
            self._put(rule)
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._drop(rule_id)

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        return self._rules.get(rule_id)

    def find_rule(self, rule_id: str) -> Optional[AlertRule]:
        """Look a rule up whether it is active or disabled"""
        return self._rules.get(rule_id) or self._disabled.get(rule_id)

    def get_disabled_rules(self, organization_id: Optional[str] = None) -> List[AlertRule]:
        rules = list(self._disabled.values())
        if organization_id:
            rules = [r for r in rules if r.organization_id == organization_id]
        return rules

    def get_rules(self, organization_id: Optional[str] = None) -> List[AlertRule]:
        rules = list(self._rules.values())
        if organization_id:
            rules = [r for r in rules if r.organization_id == organization_id]
        return rules

    def get_device_rules(self, device_id: str) -> List[AlertRule]:
        return [r for r in self._rules.values() if not r.device_id or r.device_id == device_id]

    def get_state(self, rule_id: str) -> Optional[RuleState]:
        return self._states.get(rule_id)

    def clear_rules(self) -> None:
        with self._lock:
            self._rules.clear()
            self._disabled.clear()
            self._states.clear()
            self._warned_conditions.clear()

    def _put(self, rule: AlertRule) -> None:
        if not rule.enabled:
            self._drop(rule.id)
            self._disabled[rule.id] = rule
            return
        self._disabled.pop(rule.id, None)
        self._rules[rule.id] = rule
        if rule.id not in self._states:
            self._states[rule.id] = RuleState(rule_id=rule.id)
        self._warned_conditions.discard(rule.id)

    def _drop(self, rule_id: str) -> bool:
        self._states.pop(rule_id, None)
        self._warned_conditions.discard(rule_id)
        removed = self._disabled.pop(rule_id, None) is not None
        return self._rules.pop(rule_id, None) is not None or removed

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate(self, sample: MetricSample) -> List[Alert]:
        triggered = []
        fired_rules = []

        with self._lock:
            now = self._clock()
            self._stats["evaluations"] += 1

            for rule in self._rules.values():
                if not rule.applies_to(sample.device_id, sample.organization_id):
                    continue

                value = sample.get(rule.metric)
                if value is None:
                    continue

                state = self._states.get(rule.id)
                if state is None:
                    state = RuleState(rule_id=rule.id)
                    self._states[rule.id] = state

                if not self._evaluate_condition(rule, value):
                    state.clear_condition(sample.device_id)
                    continue

                if rule.duration and rule.duration > 0:
                    if not state.duration_met(sample.device_id, rule.duration, now):
                        continue

                if state.in_cooldown(rule.cooldown, now):
                    self._stats["suppressed"] += 1
                    continue

                alert = Alert.from_rule(rule, sample.device_id, value, now)
                state.record_trigger(value, now)
                triggered.append(alert)
                fired_rules.append(rule)
                self._history.append(alert)
                self._stats["triggers"] += 1

        # Publish outside the lock; subscribers may call back into the engine
        for alert, rule in zip(triggered, fired_rules):
            logger.info("Alert fired: %s (device=%s)", alert.message, alert.device_id)
            if self._bus is not None:
                self._bus.publish(AlertFired(alert=alert, channel_ids=list(rule.notification_channels)))

        return triggered

    def _evaluate_condition(self, rule: AlertRule, value: float) -> bool:
        condition = rule.condition
        threshold = rule.threshold

        if condition == AlertCondition.GT:
            return value > threshold
        elif condition == AlertCondition.GTE:
            return value >= threshold
        elif condition == AlertCondition.LT:
            return value < threshold
        elif condition == AlertCondition.LTE:
            return value <= threshold
        elif condition == AlertCondition.EQ:
            return value == threshold

        if rule.id not in self._warned_conditions:
            self._warned_conditions.add(rule.id)
            logger.warning("Rule %s has unknown condition %r, it will never fire", rule.id, rule.condition_value)
        return False

    # -------------------------------------------------------------------------
    # History & Stats
    # -------------------------------------------------------------------------

    def get_history(self, limit: int = 50, organization_id: Optional[str] = None) -> List[Alert]:
        history = list(self._history)
        history.reverse()
        if organization_id:
            history = [a for a in history if a.organization_id == organization_id]
        return history[:limit]

    def clear_history(self) -> None:
        self._history.clear()

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        for alert in self._history:
            if alert.id == alert_id:
                return alert
        return None

    def resolve_alert(self, alert_id: str, resolved_by: str, notes: Optional[str] = None) -> Optional[Alert]:
        """Mark an alert in history as resolved. Returns None if it has aged out."""
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert is None:
                return None
            alert.is_resolved = True
            alert.resolved_at = self._clock()
            alert.resolved_by = resolved_by
            if notes is not None:
                alert.notes = notes
        logger.info("Alert %s resolved by %s", alert_id, resolved_by)
        return alert

    def reset_states(self) -> None:
        """Forget all duration and cooldown tracking"""
        with self._lock:
            for state in self._states.values():
                state.reset()

    def stats(self) -> Dict[str, Any]:
        uptime = (self._clock() - self._stats["start_time"]).total_seconds()
        return {
            "evaluations": self._stats["evaluations"],
            "triggers": self._stats["triggers"],
            "suppressed": self._stats["suppressed"],
            "uptime_seconds": round(uptime, 2),
            "rules_count": len(self._rules),
            "history_size": len(self._history),
        }
