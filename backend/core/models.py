"""
Domain Models
The SINGLE SOURCE OF TRUTH for the metric ingestion format.

After normalization, the evaluator only sees MetricSample.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


# =============================================================================
# Sample Source
# =============================================================================

class SampleSource(str, Enum):
    """Where a sample came from — tagged at entry, never changes"""
    API = "api"
    FEED = "feed"


# =============================================================================
# MetricSample — The Core Data Contract
# =============================================================================

class MetricSample(BaseModel):
    """
    One metric reading for one device.

    This is THE internal representation. Everything converts to this.
    The evaluator never sees JSON payloads or feed frames.

    Fields:
        device_id: Device the reading belongs to
        organization_id: Owning tenant
        timestamp: Parsed datetime
        metrics: Sparse metric name → value mapping (cpu, memory, disk, ...)
        source: Where it came from
    """
    device_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=datetime.now)
    metrics: Dict[str, float] = Field(default_factory=dict)
    source: SampleSource = SampleSource.API

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_timestamp(cls, v):
        """Handle various timestamp formats"""
        if v is None:
            return datetime.now()
        if isinstance(v, datetime):
            return v
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace('Z', '+00:00'))
        if isinstance(v, (int, float)):
            # Unix timestamp (seconds or milliseconds)
            seconds = v / 1000 if v > 1e12 else v
            try:
                return datetime.fromtimestamp(seconds)
            except (OverflowError, OSError) as e:
                raise ValueError(f"timestamp out of range: {v}") from e
        return v

    @field_validator('metrics', mode='before')
    @classmethod
    def drop_non_numeric(cls, v):
        """Keep numeric readings only; booleans and nulls are not metrics"""
        if not isinstance(v, dict):
            return v
        return {
            str(k): float(val)
            for k, val in v.items()
            if isinstance(val, (int, float)) and not isinstance(val, bool)
        }

    def get(self, metric: str) -> Optional[float]:
        return self.metrics.get(metric)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "organization_id": self.organization_id,
            "timestamp": self.timestamp.isoformat(),
            "metrics": dict(self.metrics),
            "source": self.source.value,
        }


# =============================================================================
# API Response Models
# =============================================================================

class IngestionResult(BaseModel):
    """Result of metric ingestion"""
    success: bool = True
    count: int = 0
    errors: int = 0
    alerts: List[dict] = []
    message: str = ""


# =============================================================================
# Converters — External → Internal
# =============================================================================

_ENVELOPE_KEYS = {
    "deviceId", "device_id", "organizationId", "organization_id",
    "timestamp", "ts", "time", "metrics", "type", "source",
}


def to_metric_sample(data: dict, source: SampleSource = SampleSource.API) -> MetricSample:
    """
    Convert an external payload to MetricSample.

    This is the NORMALIZATION POINT.
    All external formats go through here.

    Handles:
    - deviceId/device_id and organizationId/organization_id variants
    - timestamp/ts/time variants
    - nested "metrics" mapping or flat metric keys (cpu=..., memory=...)
    """
    ts = data.get('timestamp') or data.get('ts') or data.get('time')

    metrics = data.get('metrics')
    if metrics is None:
        metrics = {k: v for k, v in data.items() if k not in _ENVELOPE_KEYS}

    return MetricSample(
        device_id=data.get('deviceId') or data.get('device_id') or "",
        organization_id=data.get('organizationId') or data.get('organization_id') or "",
        timestamp=ts,
        metrics=metrics,
        source=source,
    )
