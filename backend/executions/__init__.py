"""
Script Executions
Bounded-concurrency scheduling of scripts onto devices.

Structure:
    executions/
    ├── models.py     → ExecutionRequest, ScriptExecution, ExecutionStatus
    ├── transport.py  → ExecutionTransport (device agent seam)
    └── scheduler.py  → ExecutionScheduler (queue, concurrency gate, state)
"""

from .models import (
    ExecutionRequest,
    ExecutionOutcome,
    ExecutionPriority,
    ExecutionStatus,
    ScriptExecution,
    TERMINAL_STATUSES,
)

from .transport import (
    ExecutionTransport,
    SimulatedTransport,
    UnconfiguredTransport,
)

from .scheduler import ExecutionScheduler

__all__ = [
    # Models
    "ExecutionRequest",
    "ExecutionOutcome",
    "ExecutionPriority",
    "ExecutionStatus",
    "ScriptExecution",
    "TERMINAL_STATUSES",
    # Transport
    "ExecutionTransport",
    "SimulatedTransport",
    "UnconfiguredTransport",
    # Scheduler
    "ExecutionScheduler",
]
