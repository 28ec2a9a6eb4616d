"""
Executions API
Script execution submission, queries and control.

Endpoints:
    POST /api/scripts/{script_id}/execute   → Run a script on devices
    GET  /api/executions                    → List executions (filters)
    GET  /api/executions/queue              → Queue status
    POST /api/executions/purge              → Drop old terminal executions
    GET  /api/executions/{id}               → Get execution
    POST /api/executions/{id}/cancel        → Cancel queued or running execution
    POST /api/executions/{id}/retry         → Retry a failed execution
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from executions import ExecutionPriority, ExecutionRequest, ExecutionStatus
from services.platform import MonitoringPlatform

from .deps import get_platform

router = APIRouter(tags=["Executions"])


# =============================================================================
# Request Models
# =============================================================================

class ExecuteScriptRequest(BaseModel):
    """Request body for running a script; the script comes from the path"""
    device_ids: List[str] = Field(..., min_length=1)
    executed_by: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = {}
    timeout: Optional[float] = Field(default=None, gt=0)
    run_as: Optional[str] = None
    priority: ExecutionPriority = ExecutionPriority.NORMAL

    model_config = {
        "json_schema_extra": {
            "example": {
                "device_ids": ["dev-1", "dev-2"],
                "executed_by": "user-42",
                "organization_id": "org-1",
                "parameters": {"service": "nginx"},
                "timeout": 120,
                "priority": "normal",
            }
        }
    }


class PurgeRequest(BaseModel):
    retention_days: Optional[float] = Field(default=None, ge=0)


# =============================================================================
# Submission
# =============================================================================

@router.post("/scripts/{script_id}/execute")
async def execute_script(
    script_id: str,
    request: ExecuteScriptRequest,
    platform: MonitoringPlatform = Depends(get_platform),
):
    """
    Create one execution per device and schedule them.

    High priority executions jump ahead of queued normal ones.
    The returned records show each execution as created.
    """
    created = await platform.scheduler.submit(
        ExecutionRequest(script_id=script_id, **request.model_dump())
    )

    return {
        "message": f"Scheduled {len(created)} execution(s)",
        "count": len(created),
        "executions": [e.to_dict() for e in created]
    }


# =============================================================================
# Queries
# =============================================================================

@router.get("/executions")
async def list_executions(
    device_id: Optional[str] = Query(default=None),
    script_id: Optional[str] = Query(default=None),
    status: Optional[ExecutionStatus] = Query(default=None),
    organization_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """List executions in submission order"""
    scheduler = platform.scheduler

    if device_id:
        executions = scheduler.get_device_executions(device_id)
    elif script_id:
        executions = scheduler.get_script_executions(script_id)
    elif status:
        executions = scheduler.get_executions_by_status(status)
    else:
        executions = scheduler.get_all_executions(organization_id)

    # Remaining filters narrow whichever index was used
    if script_id:
        executions = [e for e in executions if e.script_id == script_id]
    if status:
        executions = [e for e in executions if e.status == status]
    if organization_id:
        executions = [e for e in executions if e.organization_id == organization_id]

    executions = executions[:limit]
    return {
        "count": len(executions),
        "executions": [e.to_dict() for e in executions]
    }


@router.get("/executions/queue")
async def queue_status(platform: MonitoringPlatform = Depends(get_platform)):
    """Waiting, running and terminal counts"""
    return {
        **platform.scheduler.queue_status(),
        "queued_ids": platform.scheduler.queued_ids(),
        "running_ids": platform.scheduler.running_ids(),
    }


@router.post("/executions/purge")
async def purge_executions(
    request: Optional[PurgeRequest] = None,
    platform: MonitoringPlatform = Depends(get_platform),
):
    """Drop terminal executions older than the retention window"""
    retention = platform.settings.execution_retention_days
    if request is not None and request.retention_days is not None:
        retention = request.retention_days

    purged = platform.scheduler.purge(retention)
    return {"purged": purged, "retention_days": retention}


@router.get("/executions/{execution_id}")
async def get_execution(execution_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    execution = platform.scheduler.get_execution(execution_id)
    if not execution:
        raise HTTPException(404, f"Execution not found: {execution_id}")
    return {"execution": execution.to_dict()}


# =============================================================================
# Control
# =============================================================================

@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(execution_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    """Cancel a pending, queued or running execution"""
    execution = platform.scheduler.get_execution(execution_id)
    if not execution:
        raise HTTPException(404, f"Execution not found: {execution_id}")

    if not await platform.scheduler.cancel(execution_id):
        raise HTTPException(409, f"Execution {execution_id} is already {execution.status.value}")

    return {"message": f"Execution {execution_id} cancelled"}


@router.post("/executions/{execution_id}/retry")
async def retry_execution(execution_id: str, platform: MonitoringPlatform = Depends(get_platform)):
    """Re-run a failed execution as a new normal priority execution"""
    execution = platform.scheduler.get_execution(execution_id)
    if not execution:
        raise HTTPException(404, f"Execution not found: {execution_id}")

    retried = await platform.scheduler.retry(execution_id)
    if retried is None:
        raise HTTPException(409, f"Only failed executions can be retried, {execution_id} is {execution.status.value}")

    return {
        "message": f"Execution {execution_id} retried",
        "execution": retried.to_dict()
    }
