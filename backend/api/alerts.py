"""
Alerts API
Endpoints for managing alert rules and streaming alerts.

Endpoints:
    POST   /api/alerts/rules                     → Create alert rule
    GET    /api/alerts/rules                     → List active rules
    GET    /api/alerts/rules/{id}                → Get rule with its state
    PUT    /api/alerts/rules/{id}                → Replace rule
    DELETE /api/alerts/rules/{id}                → Delete rule
    GET    /api/alerts/devices/{device_id}/rules → Rules covering a device
    GET    /api/alerts/history                   → Get alert history
    GET    /api/alerts/history/{id}              → Get one alert from history
    POST   /api/alerts/history/{id}/resolve      → Mark an alert resolved
    DELETE /api/alerts/history                   → Clear alert history
    GET    /api/alerts/stream                    → SSE stream for real-time alerts
    GET    /api/alerts/stats                     → Evaluator statistics
    POST   /api/alerts/reset                     → Clear duration and cooldown state
"""

import asyncio
import json
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from alerts import AlertCondition, AlertRule, AlertSeverity
from core.events import EventKind
from services.platform import MonitoringPlatform

from .deps import get_platform

router = APIRouter(prefix="/alerts", tags=["Alerts"])


# =============================================================================
# Request Models
# =============================================================================

class AlertRuleRequest(BaseModel):
    """Request body for creating or replacing a rule"""
    metric: str = Field(..., min_length=1)  # cpu, memory, disk, network, uptime, ...
    condition: str  # gt, gte, lt, lte, eq
    threshold: float
    organization_id: str = Field(..., min_length=1)
    severity: AlertSeverity = AlertSeverity.WARNING
    device_id: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    cooldown: Optional[int] = Field(default=None, ge=0)
    enabled: bool = True
    notification_channels: List[str] = []
    name: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "metric": "cpu",
                "condition": "gt",
                "threshold": 90,
                "organization_id": "org-1",
                "severity": "critical",
                "duration": 300,
                "cooldown": 600,
                "notification_channels": ["channel_ops"],
                "name": "High CPU",
            }
        }
    }

    def to_rule(self, rule_id: str = "") -> AlertRule:
        try:
            condition = AlertCondition(self.condition)
        except ValueError:
            raise HTTPException(400, f"Invalid condition: {self.condition}. Use: gt, gte, lt, lte, eq")

        return AlertRule(
            id=rule_id,
            metric=self.metric,
            condition=condition,
            threshold=self.threshold,
            organization_id=self.organization_id,
            severity=self.severity,
            device_id=self.device_id,
            duration=self.duration,
            cooldown=self.cooldown,
            enabled=self.enabled,
            notification_channels=list(self.notification_channels),
            name=self.name or "",
        )


class ResolveRequest(BaseModel):
    """Request body for resolving an alert"""
    resolved_by: str = Field(..., min_length=1)
    notes: Optional[str] = None


# =============================================================================
# Rule Management
# =============================================================================

@router.post("/rules")
async def create_rule(request: AlertRuleRequest, platform: MonitoringPlatform = Depends(get_platform)):
    """
    Create a new alert rule.

    Conditions: gt (>), gte (>=), lt (<), lte (<=), eq (==)
    duration and cooldown are in seconds. Disabled rules are kept
    but never enter the active registry until re-enabled.
    """
    rule = platform.evaluator.add_rule(request.to_rule())

    return {
        "message": "Alert rule created" if rule.enabled else "Alert rule created disabled",
        "active": platform.evaluator.get_rule(rule.id) is not None,
        "rule": rule.to_dict()
    }


@router.get("/rules")
async def list_rules(
    organization_id: Optional[str] = Query(default=None),
    include_disabled: bool = Query(default=False),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """Get active alert rules, optionally with the disabled ones"""
    rules = platform.evaluator.get_rules(organization_id)
    if include_disabled:
        rules += platform.evaluator.get_disabled_rules(organization_id)

    return {
        "count": len(rules),
        "rules": [r.to_dict() for r in rules]
    }


@router.get("/rules/{rule_id}")
async def get_rule(rule_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    """Get a specific alert rule, active or disabled"""
    rule = platform.evaluator.find_rule(rule_id)

    if not rule:
        raise HTTPException(404, f"Rule not found: {rule_id}")

    state = platform.evaluator.get_state(rule_id)
    return {
        "active": platform.evaluator.get_rule(rule_id) is not None,
        "rule": rule.to_dict(),
        "state": state.to_dict() if state else None
    }


@router.put("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    request: AlertRuleRequest,
    platform: MonitoringPlatform = Depends(get_platform),
):
    """
    Replace a rule. Hysteresis state is kept across updates;
    setting enabled=false takes the rule out of the active registry
    and enabled=true puts it back.
    """
    if not platform.evaluator.find_rule(rule_id):
        raise HTTPException(404, f"Rule not found: {rule_id}")

    rule = platform.evaluator.update_rule(request.to_rule(rule_id))

    return {
        "message": f"Rule {rule_id} updated" if rule.enabled else f"Rule {rule_id} disabled",
        "active": rule.enabled,
        "rule": rule.to_dict()
    }


@router.delete("/rules/{rule_id}")
async def delete_rule(rule_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    """Delete an alert rule"""
    if not platform.evaluator.remove_rule(rule_id):
        raise HTTPException(404, f"Rule not found: {rule_id}")

    return {"message": f"Rule {rule_id} deleted"}


@router.get("/devices/{device_id}/rules")
async def device_rules(device_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    """Rules targeting this device, plus organization-wide rules"""
    rules = platform.evaluator.get_device_rules(device_id)
    return {
        "device_id": device_id,
        "count": len(rules),
        "rules": [r.to_dict() for r in rules]
    }


# =============================================================================
# Alert History
# =============================================================================

@router.get("/history")
async def get_history(
    limit: int = Query(default=50, le=200),
    organization_id: Optional[str] = Query(default=None),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """Get recent alert history, newest first"""
    history = platform.evaluator.get_history(limit, organization_id)

    return {
        "count": len(history),
        "alerts": [a.to_dict() for a in history]
    }


@router.delete("/history")
async def clear_history(platform: MonitoringPlatform = Depends(get_platform)):
    """Clear alert history"""
    platform.evaluator.clear_history()

    return {"message": "Alert history cleared"}


@router.get("/history/{alert_id}")
async def get_alert(alert_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    """Get one alert from history"""
    alert = platform.evaluator.get_alert(alert_id)

    if not alert:
        raise HTTPException(404, f"Alert not found: {alert_id}")

    return {"alert": alert.to_dict()}


@router.post("/history/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str,
    request: ResolveRequest,
    platform: MonitoringPlatform = Depends(get_platform),
):
    """Mark an alert resolved"""
    alert = platform.evaluator.resolve_alert(alert_id, request.resolved_by, request.notes)

    if not alert:
        raise HTTPException(404, f"Alert not found: {alert_id}")

    return {
        "message": f"Alert {alert_id} resolved",
        "alert": alert.to_dict()
    }


# =============================================================================
# SSE Stream
# =============================================================================

@router.get("/stream")
async def stream_alerts(platform: MonitoringPlatform = Depends(get_platform)):
    """
    Server-Sent Events stream for real-time alerts.

    Connect via EventSource in browser:
        const es = new EventSource('/api/alerts/stream');
        es.onmessage = (e) => console.log(JSON.parse(e.data));
    """
    bus = platform.bus
    keepalive = platform.settings.sse_keepalive_sec
    name = f"sse-{uuid.uuid4().hex[:8]}"
    queue = bus.listen(name=name, kinds=[EventKind.ALERT_FIRED])

    async def event_generator():
        try:
            yield f"data: {json.dumps({'type': 'connected', 'message': 'Alert stream connected'})}\n\n"

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps({'type': 'alert', 'data': event.alert.to_dict()})}\n\n"
        finally:
            bus.unsubscribe(name)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable nginx buffering
        }
    )


# =============================================================================
# Management
# =============================================================================

@router.get("/stats")
async def get_stats(platform: MonitoringPlatform = Depends(get_platform)):
    """Get alert evaluator statistics"""
    return platform.evaluator.stats()


@router.post("/reset")
async def reset_states(platform: MonitoringPlatform = Depends(get_platform)):
    """Reset all rule states (clear pending durations and cooldowns)"""
    platform.evaluator.reset_states()

    return {"message": "Alert states reset"}
