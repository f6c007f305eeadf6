"""
Compensation Controller.

Turns a saga failure into an ordered compensation plan and runs it through
the Compensation Runner:

    backward  completed steps, newest first          (undo of success)
    forward   steps after the failed one, in order   (pre-registered cleanup)
    mixed     both phases; `mixed_order` picks which runs first

Only steps that declare a compensation action take part; the others are
reported as skipped. The plan is executed phase by phase. Inside a phase the
actions run one after another and the first failure aborts the rest, or,
with `parallel_compensation`, all at once with every failure recorded.

Example:
    >>> controller = CompensationController(ActionRegistry(...))
    >>> result = await controller.compensate(definition, execution, failed_step_id="charge")
    >>> result.success, result.executed
    (True, ['reserve'])
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from sagaflow.core.logger import get_logger
from sagaflow.core.models import SagaDefinition, SagaExecution, SagaStep
from sagaflow.core.ports import CompensationRunner
from sagaflow.types import CompensationStrategy

logger = get_logger(__name__)


@dataclass
class CompensationResult:
    """Result of compensation execution.

    Attributes:
        success: Whether all compensations succeeded
        executed: Step IDs that were compensated successfully, in run order
        failed: Step IDs whose compensation raised
        skipped: Step IDs not compensated (no action, or aborted after a failure)
        errors: Mapping of failed step IDs to their exceptions
        reason: Why the plan failed as a whole (e.g. it exceeds max_compensations)
        execution_time_ms: Total execution time in milliseconds
    """

    success: bool
    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)
    reason: str | None = None
    execution_time_ms: float = 0.0

    def failures(self) -> list[tuple[str, str]]:
        """(step_id, message) for every failed compensation."""
        return [(step_id, str(error) or type(error).__name__) for step_id, error in self.errors.items()]


@dataclass
class _CompensationTracker:
    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)
    should_stop: bool = False


class CompensationController:
    """
    Plans and runs the compensation pass of one failed saga.

    Args:
        runner: Executes compensation actions by name
        timeout: Optional per-action timeout in seconds
    """

    def __init__(self, runner: CompensationRunner, timeout: float | None = None):
        self.runner = runner
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    @staticmethod
    def _backward(definition: SagaDefinition, execution: SagaExecution) -> list[SagaStep]:
        steps = (definition.get_step(step_id) for step_id in reversed(execution.completed_steps))
        return [step for step in steps if step is not None]

    @staticmethod
    def _forward(definition: SagaDefinition, failed_step_id: str | None) -> list[SagaStep]:
        ids = [step.id for step in definition.steps]
        if failed_step_id not in ids:
            return []
        return list(definition.steps[ids.index(failed_step_id) + 1 :])

    def plan(
        self,
        definition: SagaDefinition,
        execution: SagaExecution,
        failed_step_id: str | None,
    ) -> list[list[SagaStep]]:
        """
        Phases to run, in order. Steps without a compensation action are kept
        here and filtered (as skipped) at run time.
        """
        policy = definition.compensation_policy
        backward = self._backward(definition, execution)
        forward = self._forward(definition, failed_step_id)

        if policy.strategy is CompensationStrategy.BACKWARD:
            phases = [backward]
        elif policy.strategy is CompensationStrategy.FORWARD:
            phases = [forward]
        elif policy.mixed_order == "forward_first":
            phases = [forward, backward]
        else:
            phases = [backward, forward]
        return [phase for phase in phases if phase]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def compensate(
        self,
        definition: SagaDefinition,
        execution: SagaExecution,
        failed_step_id: str | None,
    ) -> CompensationResult:
        """
        Run the compensation pass for `execution`.

        Compensation actions receive the saga's accumulated data. The
        execution record is not modified here; the caller applies the result.
        """
        start_time = time.time()
        policy = definition.compensation_policy
        phases = self.plan(definition, execution, failed_step_id)
        tracker = _CompensationTracker()

        runnable = [step for phase in phases for step in phase if step.compensation]
        if policy.max_compensations is not None and len(runnable) > policy.max_compensations:
            reason = (
                f"Compensation plan of {len(runnable)} actions exceeds "
                f"max_compensations={policy.max_compensations}"
            )
            logger.error(f"Saga {execution.id}: {reason}")
            return CompensationResult(
                success=False,
                skipped=[step.id for phase in phases for step in phase],
                reason=reason,
                execution_time_ms=(time.time() - start_time) * 1000,
            )

        logger.info(
            f"Saga {execution.id}: {policy.strategy.value} compensation of "
            f"{len(runnable)} step(s)"
        )
        for phase in phases:
            if tracker.should_stop:
                tracker.skipped.extend(step.id for step in phase)
                continue

            to_run = [step for step in phase if step.compensation]
            tracker.skipped.extend(step.id for step in phase if not step.compensation)

            if policy.parallel_compensation:
                await self._run_parallel(to_run, execution, tracker)
            else:
                await self._run_sequential(to_run, execution, tracker)

        return CompensationResult(
            success=not tracker.failed,
            executed=tracker.executed,
            failed=tracker.failed,
            skipped=tracker.skipped,
            errors=tracker.errors,
            execution_time_ms=(time.time() - start_time) * 1000,
        )

    async def _run_sequential(
        self, steps: list[SagaStep], execution: SagaExecution, tracker: _CompensationTracker
    ) -> None:
        for index, step in enumerate(steps):
            try:
                await self._run_one(step, execution.data)
            except Exception as e:
                self._record_failure(step, e, execution, tracker)
                tracker.skipped.extend(s.id for s in steps[index + 1 :])
                return
            tracker.executed.append(step.id)

    async def _run_parallel(
        self, steps: list[SagaStep], execution: SagaExecution, tracker: _CompensationTracker
    ) -> None:
        if not steps:
            return
        # return_exceptions so one failure does not cancel the other compensations
        outcomes = await asyncio.gather(
            *(self._run_one(step, execution.data) for step in steps), return_exceptions=True
        )
        for step, outcome in zip(steps, outcomes, strict=False):
            if isinstance(outcome, Exception):
                self._record_failure(step, outcome, execution, tracker)
            else:
                tracker.executed.append(step.id)

    async def _run_one(self, step: SagaStep, data: dict[str, Any]) -> None:
        logger.debug(f"Compensating step {step.id} with '{step.compensation}'")
        if self.timeout:
            await asyncio.wait_for(self.runner.run(step.compensation, data), timeout=self.timeout)
        else:
            await self.runner.run(step.compensation, data)

    @staticmethod
    def _record_failure(
        step: SagaStep, error: Exception, execution: SagaExecution, tracker: _CompensationTracker
    ) -> None:
        logger.error(f"Saga {execution.id}: compensation of step {step.id} failed: {error!r}")
        tracker.failed.append(step.id)
        tracker.errors[step.id] = error
        tracker.should_stop = True
