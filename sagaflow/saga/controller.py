"""
Saga Orchestration Controller.

Runs saga steps strictly in definition order. Dependencies only gate whether
a step may run; they never reorder the sequence. The first failing step
stops forward progress and hands the execution to the Compensation
Controller:

    RUNNING ──all steps ok──► COMPLETED
       │
       ├──cancel_saga()────► CANCELLED      (no compensation)
       │
       └──step failed──► FAILED ──► COMPENSATED | COMPENSATION_FAILED

A failed compensation is never absorbed: the execution ends in
`compensation_failed` and CompensationFailedError reaches the caller.

Terminal records leave the ledger when start_saga() returns; their history
lives in the State Store.

Example:
    >>> controller = SagaController(actions)
    >>> execution_id = await controller.start_saga(definition, {"order_id": 7})
    >>> (await controller.get_saga_execution(execution_id)).status
    <SagaStatus.COMPLETED: 'completed'>
"""

import asyncio
from collections.abc import Mapping
from typing import Any

from sagaflow.core.config import EngineConfig, get_config
from sagaflow.core.exceptions import CompensationFailedError, DependencyNotMetError
from sagaflow.core.ledger import ExecutionLedger
from sagaflow.core.logger import get_logger
from sagaflow.core.models import SagaDefinition, SagaExecution, SagaStep
from sagaflow.core.ports import CompensationRunner, SagaStepRunner, StateStore
from sagaflow.execution.validation import validate_saga
from sagaflow.monitoring.logging import bind_execution_context
from sagaflow.notifications.dispatcher import NotificationDispatcher
from sagaflow.saga.compensation import CompensationController, CompensationResult
from sagaflow.types import NotificationType, SagaStatus

logger = get_logger(__name__)


class SagaController:
    """
    Drives saga executions and their compensation.

    Args:
        step_runner: Executes step actions
        compensation_runner: Executes compensation actions (defaults to
            step_runner when it also implements CompensationRunner)
        ledger: Registry of live executions (a fresh one by default)
        state_store: Snapshot persistence (defaults to the configured one)
        notifier: Outbound notifications (defaults to the configured sinks)
        config: Engine settings (defaults to get_config())
    """

    def __init__(
        self,
        step_runner: SagaStepRunner,
        compensation_runner: CompensationRunner | None = None,
        ledger: ExecutionLedger | None = None,
        state_store: StateStore | None = None,
        notifier: NotificationDispatcher | None = None,
        config: EngineConfig | None = None,
    ):
        config = config if config is not None else get_config()
        if compensation_runner is None:
            if not isinstance(step_runner, CompensationRunner):
                msg = "compensation_runner is required when step_runner cannot run compensations"
                raise TypeError(msg)
            compensation_runner = step_runner

        self.step_runner = step_runner
        self.ledger = ledger if ledger is not None else ExecutionLedger()
        self.state_store = state_store if state_store is not None else config.state_store
        self.notifier = notifier if notifier is not None else config.create_dispatcher()
        self.compensator = CompensationController(
            compensation_runner, timeout=config.compensation_timeout
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_saga(
        self, definition: SagaDefinition, initial_data: Mapping[str, Any] | None = None
    ) -> str:
        """
        Execute a saga and return its execution id.

        Returns once the execution is terminal. A step failure followed by a
        successful compensation is not an error for the caller; inspect the
        execution status instead.

        Raises:
            ValidationFailedError: Invalid definition (no record is created)
            CompensationFailedError: A compensation action raised
        """
        validate_saga(definition).raise_if_invalid(definition.id)

        execution = SagaExecution(
            saga_id=definition.id,
            saga_name=definition.name,
            data=dict(initial_data or {}),
        )
        self.ledger.add(execution)
        logger.info(f"Starting saga {definition.name} ({execution.id})")

        try:
            self._notify(
                NotificationType.SAGA_STARTED,
                execution,
                {"steps": [step.id for step in definition.steps]},
            )
            await self._save(execution)

            with bind_execution_context(execution_id=execution.id, saga_id=definition.id):
                failed_step = await self._run_steps(definition, execution)
                if failed_step is not None:
                    await self._compensate(definition, execution, failed_step)
                else:
                    await self._complete(execution)
        except asyncio.CancelledError:
            await self._interrupt(execution)
            raise
        finally:
            self.ledger.remove(execution.id)

        return execution.id

    async def cancel_saga(self, execution_id: str) -> bool:
        """
        Cancel a running saga.

        No-op (returns False) once the saga has left `running`. The saga
        stops before its next step and is not compensated.
        """
        execution = self.ledger.get(execution_id)
        if not isinstance(execution, SagaExecution):
            return False

        async with self.ledger.lock(execution_id):
            if execution.status is not SagaStatus.RUNNING:
                return False
            self.ledger.transition(execution, SagaStatus.CANCELLED)

        logger.info(f"Saga {execution_id} cancelled")
        self._notify(
            NotificationType.SAGA_CANCELLED,
            execution,
            {"completed_steps": list(execution.completed_steps)},
        )
        await self._save(execution)
        return True

    async def get_saga_execution(self, execution_id: str) -> SagaExecution | None:
        """Live record if the saga is still running, else its last snapshot."""
        record = self.ledger.get(execution_id)
        if isinstance(record, SagaExecution):
            return record.snapshot()
        try:
            snapshot = await self.state_store.load_snapshot(execution_id)
        except Exception as e:
            logger.warning(f"Failed to load snapshot of {execution_id}: {e}")
            return None
        return snapshot if isinstance(snapshot, SagaExecution) else None

    def active_sagas(self) -> list[SagaExecution]:
        return [record.snapshot() for record in self.ledger.list("saga")]

    # ------------------------------------------------------------------
    # Forward execution
    # ------------------------------------------------------------------

    async def _run_steps(
        self, definition: SagaDefinition, execution: SagaExecution
    ) -> SagaStep | None:
        """Run steps in order; returns the failed step, or None."""
        for index, step in enumerate(definition.steps):
            if execution.status is not SagaStatus.RUNNING:
                logger.info(f"Saga {execution.id} is {execution.status.value}; stopping")
                return None

            async with self.ledger.lock(execution.id):
                execution.current_step_index = index

            try:
                result = await self._run_action(execution, step)
            except Exception as e:
                if execution.status is not SagaStatus.RUNNING:
                    logger.info(f"Saga {execution.id}: ignoring failure of {step.id} after cancel")
                    return None
                await self._fail(execution, step, e)
                return step

            async with self.ledger.lock(execution.id):
                if result:
                    execution.data.update(result)
                execution.mark_step_completed(step.id)

            logger.debug(f"Saga {execution.id}: step {step.id} completed")
            self._notify(
                NotificationType.SAGA_STEP_COMPLETED,
                execution,
                {"step_id": step.id, "step_name": step.name, "index": index},
            )
            await self._save(execution)
        return None

    async def _run_action(self, execution: SagaExecution, step: SagaStep) -> Mapping[str, Any] | None:
        missing = [dep for dep in step.dependencies if dep not in execution.completed_steps]
        if missing:
            raise DependencyNotMetError(step.id, missing, execution.id)

        with bind_execution_context(step_id=step.id):
            if step.timeout:
                try:
                    return await asyncio.wait_for(
                        self.step_runner.run(step, execution.data), timeout=step.timeout
                    )
                except TimeoutError as e:
                    msg = f"Step '{step.id}' timed out after {step.timeout}s"
                    raise TimeoutError(msg) from e
            return await self.step_runner.run(step, execution.data)

    async def _fail(self, execution: SagaExecution, step: SagaStep, error: Exception) -> None:
        message = str(error) or type(error).__name__
        async with self.ledger.lock(execution.id):
            execution.record_failure(step.id, step.name, message)
            self.ledger.transition(execution, SagaStatus.FAILED, error=message)

        logger.error(f"Saga {execution.id}: step {step.id} failed: {message}")
        self._notify(
            NotificationType.SAGA_FAILED,
            execution,
            {"step_id": step.id, "error": message, "error_type": type(error).__name__},
        )
        await self._save(execution)

    async def _complete(self, execution: SagaExecution) -> None:
        async with self.ledger.lock(execution.id):
            if execution.status is not SagaStatus.RUNNING:
                return
            self.ledger.transition(execution, SagaStatus.COMPLETED)

        logger.info(f"Saga {execution.id} completed")
        self._notify(
            NotificationType.SAGA_COMPLETED,
            execution,
            {"completed_steps": list(execution.completed_steps)},
        )
        await self._save(execution)

    async def _interrupt(self, execution: SagaExecution) -> None:
        """The driving task was cancelled; leave a terminal record behind."""
        message = "Saga interrupted: driving task was cancelled"
        async with self.ledger.lock(execution.id):
            if execution.status is SagaStatus.RUNNING:
                self.ledger.transition(execution, SagaStatus.CANCELLED, error=message)
            elif execution.status is SagaStatus.FAILED:
                self.ledger.transition(execution, SagaStatus.COMPENSATION_FAILED, error=message)
            else:
                return
        logger.error(f"Saga {execution.id}: {message}")
        await self._save(execution)

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------

    async def _compensate(
        self, definition: SagaDefinition, execution: SagaExecution, failed_step: SagaStep
    ) -> CompensationResult:
        result = await self.compensator.compensate(definition, execution, failed_step.id)

        if result.success:
            async with self.ledger.lock(execution.id):
                execution.compensated_steps.extend(result.executed)
                self.ledger.transition(execution, SagaStatus.COMPENSATED)

            logger.info(
                f"Saga {execution.id} compensated "
                f"({len(result.executed)} action(s), {result.execution_time_ms:.1f}ms)"
            )
            self._notify(
                NotificationType.SAGA_COMPENSATED,
                execution,
                {
                    "failed_step": failed_step.id,
                    "compensated_steps": list(result.executed),
                    "skipped": list(result.skipped),
                },
            )
            await self._save(execution)
            return result

        failures = result.failures() or [(failed_step.id, result.reason or "compensation failed")]
        error = CompensationFailedError(failures, execution.id)
        async with self.ledger.lock(execution.id):
            execution.compensated_steps.extend(result.executed)
            for step_id, message in failures:
                step = definition.get_step(step_id)
                execution.record_failure(
                    step_id, step.name if step else step_id, message, phase="compensation"
                )
            self.ledger.transition(execution, SagaStatus.COMPENSATION_FAILED, error=str(error))

        logger.error(f"Saga {execution.id}: {error}")
        self._notify(
            NotificationType.SAGA_COMPENSATION_FAILED,
            execution,
            {
                "failed_step": failed_step.id,
                "compensated_steps": list(result.executed),
                "failures": [{"step_id": s, "error": m} for s, m in failures],
                "error_type": "CompensationFailedError",
            },
        )
        await self._save(execution)

        cause = next(iter(result.errors.values()), None)
        raise error from cause

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _notify(
        self, type: NotificationType, execution: SagaExecution, payload: dict[str, Any]
    ) -> None:
        self.notifier.notify(
            type,
            execution.id,
            {"saga_id": execution.saga_id, "saga_name": execution.saga_name, **payload},
        )

    async def _save(self, execution: SagaExecution) -> None:
        try:
            await self.state_store.save_snapshot(execution)
        except Exception as e:
            logger.warning(f"Failed to save snapshot of {execution.id}: {e}")
