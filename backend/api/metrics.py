"""
Metrics API
Entry point for metric samples from the ingestion pipeline.

Endpoints:
    POST /api/metrics        → Ingest one sample
    POST /api/metrics/batch  → Ingest many samples
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from core import IngestionResult, SampleSource, to_metric_sample
from services.platform import MonitoringPlatform

from .deps import get_platform

router = APIRouter(prefix="/metrics", tags=["Metrics"])


@router.post("", response_model=IngestionResult)
async def ingest_sample(
    payload: Dict[str, Any] = Body(..., examples=[{
        "deviceId": "dev-1",
        "organizationId": "org-1",
        "timestamp": "2026-01-01T12:00:00Z",
        "cpu": 92.5,
        "memory": 64.0,
    }]),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """
    Evaluate one metric sample against the active rules.

    Accepts flat metric keys or a nested "metrics" object.
    """
    try:
        sample = to_metric_sample(payload, source=SampleSource.API)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid metric sample: {e.errors()}")

    alerts = await platform.ingest(sample)
    return IngestionResult(
        success=True,
        count=1,
        alerts=[a.to_dict() for a in alerts],
        message=f"{len(alerts)} alert(s) triggered",
    )


@router.post("/batch", response_model=IngestionResult)
async def ingest_batch(
    payload: List[Dict[str, Any]] = Body(...),
    platform: MonitoringPlatform = Depends(get_platform),
):
    """Evaluate samples in order. Invalid samples are counted, not fatal."""
    if not payload:
        return IngestionResult(success=True, count=0, message="No samples")

    alerts = []
    errors = 0
    for item in payload:
        try:
            sample = to_metric_sample(item, source=SampleSource.API)
        except ValidationError:
            errors += 1
            continue
        alerts.extend(await platform.ingest(sample))

    return IngestionResult(
        success=errors == 0,
        count=len(payload) - errors,
        errors=errors,
        alerts=[a.to_dict() for a in alerts],
        message=f"Ingested {len(payload) - errors} samples, {len(alerts)} alert(s) triggered",
    )
