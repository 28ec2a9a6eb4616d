"""
Data Export API
Download endpoints for alert history and execution records.

Formats:
    - CSV (default) — spreadsheet friendly
    - JSON — For programmatic access
"""

import io
import csv
import json
from datetime import datetime
from typing import Any, Iterable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from executions import ExecutionStatus
from services.platform import MonitoringPlatform

from .deps import get_platform

router = APIRouter(prefix="/export", tags=["Export"])


def _download(filename: str, format: str, records: List[dict], header: List[str],
              rows: Iterable[List[Any]]) -> StreamingResponse:
    if format == "json":
        content = json.dumps(records, indent=2, default=str)
        return StreamingResponse(
            io.BytesIO(content.encode()),
            media_type="application/json",
            headers={"Content-Disposition": f"attachment; filename={filename}.json"}
        )

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    for row in rows:
        writer.writerow(row)

    output.seek(0)
    return StreamingResponse(
        io.BytesIO(output.getvalue().encode()),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}.csv"}
    )


# =============================================================================
# Alert History Export
# =============================================================================

@router.get("/alerts")
async def export_alerts(
    format: str = Query(default="csv", description="csv or json"),
    limit: int = Query(default=100, le=1000),
    organization_id: Optional[str] = Query(default=None),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """
    Export alert history.

    Includes all triggered alerts with timestamps and values.
    """
    history = platform.evaluator.get_history(limit, organization_id)

    if not history:
        raise HTTPException(404, "No alert history")

    filename = f"alerts_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    return _download(
        filename,
        format,
        [a.to_dict() for a in history],
        ["triggered_at", "alert_id", "rule_id", "organization_id", "device_id", "metric",
         "value", "threshold", "condition", "severity", "message"],
        (
            [
                a.triggered_at.isoformat(),
                a.id,
                a.rule_id,
                a.organization_id,
                a.device_id,
                a.metric,
                a.current_value,
                a.threshold,
                a.condition,
                a.severity.value,
                a.message,
            ]
            for a in history
        ),
    )


# =============================================================================
# Execution Export
# =============================================================================

@router.get("/executions")
async def export_executions(
    format: str = Query(default="csv", description="csv or json"),
    status: Optional[ExecutionStatus] = Query(default=None),
    organization_id: Optional[str] = Query(default=None),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """
    Export execution records.

    Output and error text are only in the JSON export.
    """
    executions = platform.scheduler.get_all_executions(organization_id)
    if status:
        executions = [e for e in executions if e.status == status]

    if not executions:
        raise HTTPException(404, "No executions")

    filename = f"executions_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    return _download(
        filename,
        format,
        [e.to_dict() for e in executions],
        ["id", "script_id", "device_id", "organization_id", "executed_by", "status",
         "exit_code", "started_at", "completed_at", "duration_ms"],
        (
            [
                e.id,
                e.script_id,
                e.device_id,
                e.organization_id,
                e.executed_by,
                e.status.value,
                "" if e.exit_code is None else e.exit_code,
                e.started_at.isoformat() if e.started_at else "",
                e.completed_at.isoformat() if e.completed_at else "",
                "" if e.duration is None else e.duration,
            ]
            for e in executions
        ),
    )
