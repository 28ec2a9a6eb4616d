import asyncio
import copy
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Callable, Any, Deque

from core.errors import InvalidTransitionError
from core.events import EventBus, EventKind, ExecutionEvent

from .models import (
    ExecutionOutcome,
    ExecutionPriority,
    ExecutionRequest,
    ExecutionStatus,
    ScriptExecution,
    TERMINAL_STATUSES,
    DEFAULT_TIMEOUT_SEC,
)
from .transport import ExecutionTransport

logger = logging.getLogger('devicewatch.executions.scheduler')

Clock = Callable[[], datetime]

_FINISH_EVENTS = {
    ExecutionStatus.COMPLETED: EventKind.EXECUTION_COMPLETED,
    ExecutionStatus.FAILED: EventKind.EXECUTION_FAILED,
    ExecutionStatus.TIMEOUT: EventKind.EXECUTION_TIMEOUT,
    ExecutionStatus.CANCELLED: EventKind.EXECUTION_CANCELLED,
}


class ExecutionScheduler:
    """
    Admission control and bookkeeping for script executions.

    - Two-tier FIFO: high priority goes to the front, everything else to the back
    - At most max_concurrent executions are running
    - A freed slot is refilled immediately

    Queue and running set are touched only from the event loop thread,
    in code without awaits, so no lock is needed. Callers get copies of
    execution records; the live records belong to the scheduler.
    """

    def __init__(
        self,
        transport: ExecutionTransport,
        bus: Optional[EventBus] = None,
        max_concurrent: int = 10,
        default_timeout: float = DEFAULT_TIMEOUT_SEC,
        clock: Clock = datetime.now,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.default_timeout = default_timeout
        self._transport = transport
        self._bus = bus
        self._clock = clock
        self._executions: Dict[str, ScriptExecution] = {}
        self._queue: Deque[str] = deque()
        self._running: Dict[str, asyncio.Task] = {}
        self._closed = False

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def submit(self, request: ExecutionRequest) -> List[ScriptExecution]:
        """Create one execution per device and schedule them. Returns the records as created."""
        created = []
        front = request.priority == ExecutionPriority.HIGH

        for device_id in request.device_ids:
            execution = ScriptExecution(
                id="",
                script_id=request.script_id,
                device_id=device_id,
                executed_by=request.executed_by,
                organization_id=request.organization_id,
                parameters=dict(request.parameters),
                metadata={
                    "timeout": request.timeout or self.default_timeout,
                    "run_as": request.run_as,
                    "priority": request.priority.value,
                },
            )
            self._executions[execution.id] = execution
            created.append(self._snapshot(execution))
            self._enqueue(execution, front=front)

        logger.info("Accepted script %s for %d device(s)", request.script_id, len(created))
        self._pump()
        return created

    async def cancel(self, execution_id: str) -> bool:
        execution = self._executions.get(execution_id)
        if execution is None:
            return False

        if execution.status in (ExecutionStatus.PENDING, ExecutionStatus.QUEUED):
            try:
                self._queue.remove(execution_id)
            except ValueError:
                pass
            self._finish(execution, ExecutionStatus.CANCELLED)
            self._pump()
            return True

        if execution.status == ExecutionStatus.RUNNING:
            # Best effort: the agent may still finish the command
            task = self._running.pop(execution_id, None)
            self._finish(execution, ExecutionStatus.CANCELLED)
            if task is not None:
                task.cancel()
            self._pump()
            return True

        return False

    async def retry(self, execution_id: str) -> Optional[ScriptExecution]:
        """Re-run a failed execution as a new, normal priority execution"""
        original = self._executions.get(execution_id)
        if original is None or original.status != ExecutionStatus.FAILED:
            return None

        metadata = dict(original.metadata)
        metadata["priority"] = ExecutionPriority.NORMAL.value
        metadata["retry_of"] = original.id

        execution = ScriptExecution(
            id="",
            script_id=original.script_id,
            device_id=original.device_id,
            executed_by=original.executed_by,
            organization_id=original.organization_id,
            parameters=copy.deepcopy(original.parameters),
            metadata=metadata,
        )
        self._executions[execution.id] = execution
        created = self._snapshot(execution)
        self._enqueue(execution, front=False)

        logger.info("Retrying execution %s as %s", original.id, execution.id)
        self._pump()
        return created

    async def shutdown(self) -> None:
        """Stop scheduling and cancel running executions"""
        self._closed = True
        tasks = []
        for execution_id in list(self._running):
            task = self._running.pop(execution_id)
            execution = self._executions.get(execution_id)
            if execution is not None:
                self._finish(execution, ExecutionStatus.CANCELLED, error_output="Scheduler shut down")
            if task is not None:
                task.cancel()
                tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Scheduling loop
    # -------------------------------------------------------------------------

    def _enqueue(self, execution: ScriptExecution, front: bool) -> None:
        self._transition(execution, ExecutionStatus.QUEUED)
        if front:
            self._queue.appendleft(execution.id)
        else:
            self._queue.append(execution.id)
        self._emit(EventKind.EXECUTION_QUEUED, execution)

    def _pump(self) -> None:
        if self._closed:
            return

        while self._queue and len(self._running) < self.max_concurrent:
            execution_id = self._queue.popleft()
            execution = self._executions.get(execution_id)
            if execution is None or execution.status != ExecutionStatus.QUEUED:
                continue

            self._transition(execution, ExecutionStatus.RUNNING)
            execution.started_at = self._clock()
            self._running[execution_id] = asyncio.get_running_loop().create_task(self._run(execution))
            self._emit(EventKind.EXECUTION_STARTED, execution)

    async def _run(self, execution: ScriptExecution) -> None:
        timeout = execution.timeout
        try:
            outcome = await asyncio.wait_for(
                self._transport.execute(self._snapshot(execution)),
                timeout,
            )
        except asyncio.TimeoutError:
            self._finish(
                execution,
                ExecutionStatus.TIMEOUT,
                error_output=f"Script execution timed out after {timeout}s",
            )
        except asyncio.CancelledError:
            # cancel() or shutdown() already recorded the outcome and freed the slot
            raise
        except Exception as e:
            logger.error("Script execution %s failed: %s", execution.id, e)
            self._finish(execution, ExecutionStatus.FAILED, error_output=str(e) or e.__class__.__name__)
        else:
            if not isinstance(outcome, ExecutionOutcome):
                logger.error("Transport returned %r for execution %s", outcome, execution.id)
                self._finish(
                    execution,
                    ExecutionStatus.FAILED,
                    error_output=f"Transport returned {type(outcome).__name__}, not an outcome",
                )
            elif outcome.succeeded:
                self._finish(
                    execution,
                    ExecutionStatus.COMPLETED,
                    output=outcome.output,
                    exit_code=outcome.exit_code,
                )
            else:
                self._finish(
                    execution,
                    ExecutionStatus.FAILED,
                    output=outcome.output or None,
                    error_output=outcome.error_output or f"Exited with code {outcome.exit_code}",
                    exit_code=outcome.exit_code,
                )
        finally:
            self._release(execution.id)

    def _release(self, execution_id: str) -> None:
        """Free the slot once. cancel() may have freed it already."""
        if execution_id not in self._running:
            return
        del self._running[execution_id]
        self._pump()

    def _finish(
        self,
        execution: ScriptExecution,
        status: ExecutionStatus,
        output: Optional[str] = None,
        error_output: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        if execution.is_terminal:
            logger.debug("Execution %s already %s, ignoring %s", execution.id, execution.status.value, status.value)
            return

        self._transition(execution, status)
        now = self._clock()
        execution.completed_at = now
        if execution.started_at is not None:
            execution.duration = int((now - execution.started_at).total_seconds() * 1000)
        if output is not None:
            execution.output = output
        if error_output is not None:
            execution.error_output = error_output
        if exit_code is not None:
            execution.exit_code = exit_code

        self._emit(_FINISH_EVENTS[status], execution)

    def _transition(self, execution: ScriptExecution, target: ExecutionStatus) -> None:
        if not execution.can_transition(target):
            raise InvalidTransitionError(execution.id, execution.status.value, target.value)
        execution.status = target

    def _emit(self, kind: EventKind, execution: ScriptExecution) -> None:
        if self._bus is not None:
            self._bus.publish(ExecutionEvent(kind=kind, execution=self._snapshot(execution)))

    @staticmethod
    def _snapshot(execution: ScriptExecution) -> ScriptExecution:
        return copy.deepcopy(execution)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_execution(self, execution_id: str) -> Optional[ScriptExecution]:
        execution = self._executions.get(execution_id)
        return self._snapshot(execution) if execution else None

    def get_device_executions(self, device_id: str) -> List[ScriptExecution]:
        return [self._snapshot(e) for e in self._executions.values() if e.device_id == device_id]

    def get_script_executions(self, script_id: str) -> List[ScriptExecution]:
        return [self._snapshot(e) for e in self._executions.values() if e.script_id == script_id]

    def get_executions_by_status(self, status: ExecutionStatus) -> List[ScriptExecution]:
        return [self._snapshot(e) for e in self._executions.values() if e.status == status]

    def get_all_executions(self, organization_id: Optional[str] = None) -> List[ScriptExecution]:
        executions = self._executions.values()
        if organization_id:
            executions = [e for e in executions if e.organization_id == organization_id]
        return [self._snapshot(e) for e in executions]

    def queued_ids(self) -> List[str]:
        return list(self._queue)

    def running_ids(self) -> List[str]:
        return list(self._running)

    def queue_status(self) -> Dict[str, Any]:
        counts = {status: 0 for status in ExecutionStatus}
        for execution in self._executions.values():
            counts[execution.status] += 1
        return {
            "pending": len(self._queue),
            "running": len(self._running),
            "max_concurrent": self.max_concurrent,
            "total_executions": len(self._executions),
            "completed": counts[ExecutionStatus.COMPLETED],
            "failed": counts[ExecutionStatus.FAILED],
            "timeout": counts[ExecutionStatus.TIMEOUT],
            "cancelled": counts[ExecutionStatus.CANCELLED],
        }

    def purge(self, retention_days: float = 30) -> int:
        """Drop terminal executions completed before the retention window"""
        cutoff = self._clock() - timedelta(days=retention_days)
        stale = [
            execution_id
            for execution_id, e in self._executions.items()
            if e.status in TERMINAL_STATUSES and e.completed_at is not None and e.completed_at < cutoff
        ]
        for execution_id in stale:
            del self._executions[execution_id]
        if stale:
            logger.info("Purged %d executions older than %s days", len(stale), retention_days)
        return len(stale)
