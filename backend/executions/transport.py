"""
Execution Transport
The seam between the scheduler and the device agents.

The scheduler owns admission, ordering and bookkeeping only. Getting a
script onto a device and its output back is the transport's job.

No agent protocol exists yet: SimulatedTransport fakes an agent with a
random delay and an occasional failure so the rest of the pipeline can
run locally. It is opt-in (DEVICEWATCH_SIMULATE_EXECUTIONS) and must not
be used in production.
"""

import asyncio
import json
import logging
import random
from abc import ABC, abstractmethod
from typing import Tuple

from .models import ScriptExecution, ExecutionOutcome

logger = logging.getLogger('devicewatch.executions.transport')


class ExecutionTransport(ABC):

    @abstractmethod
    async def execute(self, execution: ScriptExecution) -> ExecutionOutcome:
        """
        Run the execution on its device and wait for the result.

        Raising marks the execution failed. The scheduler enforces the
        timeout and may cancel the awaiting task.
        """


class UnconfiguredTransport(ExecutionTransport):
    """Default when no agent transport is wired: every execution fails"""

    async def execute(self, execution: ScriptExecution) -> ExecutionOutcome:
        raise RuntimeError("No execution transport configured")


class SimulatedTransport(ExecutionTransport):
    """Local stand-in for a device agent. Development only."""

    def __init__(
        self,
        delay_range: Tuple[float, float] = (1.0, 6.0),
        failure_rate: float = 0.1,
        rng: random.Random = None,
    ):
        self.delay_range = delay_range
        self.failure_rate = failure_rate
        self._rng = rng or random.Random()
        logger.warning("Using simulated script execution, no commands reach real devices")

    async def execute(self, execution: ScriptExecution) -> ExecutionOutcome:
        await asyncio.sleep(self._rng.uniform(*self.delay_range))

        if self._rng.random() < self.failure_rate:
            return ExecutionOutcome(
                exit_code=1,
                error_output="Simulated error: Command not found",
            )

        output = (
            f"Script executed successfully on device {execution.device_id}\n"
            f"Parameters: {json.dumps(execution.parameters or {})}\n"
            f"Exit code: 0\n"
        )
        return ExecutionOutcome(exit_code=0, output=output)
