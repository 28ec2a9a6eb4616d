"""
Execution Models
Execution requests, tracked executions, and the execution state machine.

State machine:
    pending → queued → running → completed | failed | timeout | cancelled
    pending | queued → cancelled
    terminal states are absorbing
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional
from enum import Enum
import uuid

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ExecutionPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.TIMEOUT,
    ExecutionStatus.CANCELLED,
})

ALLOWED_TRANSITIONS = {
    ExecutionStatus.PENDING: {ExecutionStatus.QUEUED, ExecutionStatus.CANCELLED},
    ExecutionStatus.QUEUED: {ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED},
    ExecutionStatus.RUNNING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.TIMEOUT,
        ExecutionStatus.CANCELLED,
    },
}

DEFAULT_TIMEOUT_SEC = 300


# =============================================================================
# Request — inbound contract
# =============================================================================

class ExecutionRequest(BaseModel):
    """Run one script on one or more devices"""
    script_id: str = Field(..., min_length=1)
    device_ids: List[str] = Field(..., min_length=1)
    executed_by: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    run_as: Optional[str] = None
    priority: ExecutionPriority = ExecutionPriority.NORMAL


# =============================================================================
# Execution — one script on one device
# =============================================================================

@dataclass
class ScriptExecution:
    id: str
    script_id: str
    device_id: str
    executed_by: str
    organization_id: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.PENDING
    output: Optional[str] = None
    error_output: Optional[str] = None
    exit_code: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[int] = None  # milliseconds
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            self.id = f"exec_{uuid.uuid4().hex[:12]}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def timeout(self) -> float:
        return self.metadata.get("timeout") or DEFAULT_TIMEOUT_SEC

    @property
    def priority(self) -> ExecutionPriority:
        return ExecutionPriority(self.metadata.get("priority", ExecutionPriority.NORMAL.value))

    def can_transition(self, target: ExecutionStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(self.status, set())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "script_id": self.script_id,
            "device_id": self.device_id,
            "executed_by": self.executed_by,
            "parameters": self.parameters,
            "status": self.status.value,
            "output": self.output,
            "error_output": self.error_output,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
            "organization_id": self.organization_id,
            "metadata": self.metadata,
        }


@dataclass
class ExecutionOutcome:
    """What the device agent reported back"""
    exit_code: int
    output: str = ""
    error_output: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0
