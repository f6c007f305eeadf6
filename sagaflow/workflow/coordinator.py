"""
Workflow Execution Coordinator.

Drives one workflow instance from a triggering event through its step graph
to `completed`, `failed` or `cancelled`:

    lookup ─► validate ─► record PENDING ─► execution.started ─► RUNNING
        ─► start steps (matching triggers, event as input)
        ─► pending queue (successors + dependency-released steps)
        ─► COMPLETED | FAILED | CANCELLED ─► notification

Step failures are recovered locally first: the step's retry policy, then its
error handler, and only then does the failure end the execution.

Cancellation is observed, not preemptive: `cancel_execution()` flips a
running execution to `cancelled` and the walk stops at the next step
boundary. An in-flight Step Runner call is never interrupted.

Example:
    >>> coordinator = WorkflowCoordinator(repository, ActionRegistry(...))
    >>> execution = await coordinator.execute("order-flow", Event("order.created", {"id": 7}))
    >>> execution.status
    <WorkflowStatus.COMPLETED: 'completed'>
"""

import asyncio
from collections import deque
from collections.abc import Mapping
from typing import Any

from sagaflow.core.config import EngineConfig, get_config
from sagaflow.core.exceptions import (
    DependencyNotMetError,
    NoMatchingTriggerError,
    NotFoundError,
    StepExecutionFailedError,
)
from sagaflow.core.ledger import ExecutionLedger
from sagaflow.core.logger import get_logger
from sagaflow.core.models import (
    Event,
    Step,
    StepContext,
    StepResult,
    WorkflowDefinition,
    WorkflowExecution,
)
from sagaflow.core.ports import DefinitionRepository, StateStore, StepRunner
from sagaflow.core.predicates import compile_predicate
from sagaflow.execution.graph import StepGraph
from sagaflow.execution.retry import Sleep, schedule_retry
from sagaflow.execution.validation import validate_workflow
from sagaflow.monitoring.logging import bind_execution_context
from sagaflow.notifications.dispatcher import NotificationDispatcher
from sagaflow.types import NotificationType, StepType, WorkflowStatus

logger = get_logger(__name__)


class WorkflowCoordinator:
    """
    Executes workflow definitions against inbound events.

    Args:
        repository: Where definitions are looked up
        runner: Executes action, loop and unconditioned condition steps
        ledger: Registry of live executions (a fresh one by default)
        state_store: Snapshot persistence (defaults to the configured one)
        notifier: Outbound notifications (defaults to the configured sinks)
        config: Engine settings (defaults to get_config())
        sleep: Awaitable used for delay steps and retry backoff
    """

    def __init__(
        self,
        repository: DefinitionRepository,
        runner: StepRunner,
        ledger: ExecutionLedger | None = None,
        state_store: StateStore | None = None,
        notifier: NotificationDispatcher | None = None,
        config: EngineConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        config = config if config is not None else get_config()
        self.repository = repository
        self.runner = runner
        self.ledger = ledger if ledger is not None else ExecutionLedger()
        self.state_store = state_store if state_store is not None else config.state_store
        self.notifier = notifier if notifier is not None else config.create_dispatcher()
        self.default_step_timeout = config.default_step_timeout
        self._sleep = sleep
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        workflow_id: str,
        trigger_event: Event | Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> WorkflowExecution:
        """
        Run a workflow to a terminal state and return a copy of its record.

        Raises:
            NotFoundError: Unknown definition, or not published and active
            ValidationFailedError: Invalid definition (no record is created)
            NoMatchingTriggerError: No trigger accepted the event
            StepExecutionFailedError: A step failed after retries and error handler
        """
        event = self._coerce_event(trigger_event)
        definition = await self._load_definition(workflow_id)
        execution = self._create_execution(definition, context)
        await self._run(execution, definition, event)
        return execution.snapshot()

    async def start(
        self,
        workflow_id: str,
        trigger_event: Event | Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> WorkflowExecution:
        """
        Fire-and-continue variant of execute().

        Lookup and validation still fail synchronously; the walk itself runs
        in a background task. Poll get_execution() or await drain().
        """
        event = self._coerce_event(trigger_event)
        definition = await self._load_definition(workflow_id)
        execution = self._create_execution(definition, context)

        task = asyncio.create_task(self._run_detached(execution, definition, event))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return execution.snapshot()

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Copy of the live record, or None when the ledger does not hold it."""
        record = self.ledger.get(execution_id)
        if not isinstance(record, WorkflowExecution):
            return None
        return record.snapshot()

    async def list_executions(self, status: WorkflowStatus | None = None) -> list[WorkflowExecution]:
        return [record.snapshot() for record in self.ledger.list("workflow", status)]

    async def cancel_execution(self, execution_id: str) -> bool:
        """
        Cancel a running execution.

        No-op (returns False) for unknown or non-running executions. The walk
        stops at its next step boundary; the running step is not interrupted.
        """
        execution = self.ledger.get(execution_id)
        if not isinstance(execution, WorkflowExecution):
            return False

        async with self.ledger.lock(execution_id):
            if execution.status is not WorkflowStatus.RUNNING:
                return False
            self.ledger.transition(execution, WorkflowStatus.CANCELLED)

        logger.info(f"Workflow execution {execution_id} cancelled")
        self._notify(
            NotificationType.EXECUTION_CANCELLED,
            execution,
            {"current_step": execution.current_step, "duration": execution.duration},
        )
        await self._save(execution)
        return True

    async def cleanup(self, execution_id: str) -> bool:
        """Evict one terminal execution from the ledger."""
        record = self.ledger.get(execution_id)
        if not isinstance(record, WorkflowExecution) or not record.is_terminal:
            return False
        self.ledger.remove(execution_id)
        return True

    async def cleanup_terminal(self) -> list[str]:
        """Evict every terminal workflow execution; returns the evicted ids."""
        return self.ledger.evict_terminal("workflow")

    async def drain(self) -> None:
        """Wait for background executions and pending notifications."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
        await self.notifier.drain()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_event(event: Event | Mapping[str, Any]) -> Event:
        return event if isinstance(event, Event) else Event.from_dict(event)

    async def _load_definition(self, workflow_id: str) -> WorkflowDefinition:
        definition = await self.repository.find_by_id_or_name(workflow_id)
        if definition is None:
            raise NotFoundError("workflow", workflow_id)
        if not definition.is_executable:
            raise NotFoundError("workflow", workflow_id, "not published and active")

        validate_workflow(definition).raise_if_invalid(definition.id)
        return definition

    def _create_execution(
        self, definition: WorkflowDefinition, context: Mapping[str, Any] | None
    ) -> WorkflowExecution:
        execution = WorkflowExecution(workflow_id=definition.id, context=dict(context or {}))
        self.ledger.add(execution)
        logger.info(
            f"Starting workflow execution {execution.id} for {definition.name}@{definition.version}"
        )
        return execution

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _run_detached(
        self, execution: WorkflowExecution, definition: WorkflowDefinition, event: Event
    ) -> None:
        try:
            await self._run(execution, definition, event)
        except Exception as e:
            # already recorded on the execution and announced
            logger.debug(f"Background execution {execution.id} ended with {e!r}")

    async def _run(
        self, execution: WorkflowExecution, definition: WorkflowDefinition, event: Event
    ) -> None:
        self._notify(
            NotificationType.EXECUTION_STARTED,
            execution,
            {
                "workflow_name": definition.name,
                "version": definition.version,
                "event_type": event.type,
                "event_id": event.id,
            },
        )
        async with self.ledger.lock(execution.id):
            self.ledger.transition(execution, WorkflowStatus.RUNNING)
        await self._save(execution)

        try:
            with bind_execution_context(execution_id=execution.id, workflow_id=definition.id):
                await self._walk(execution, definition, event)
        except asyncio.CancelledError:
            await self._fail(execution, "Execution interrupted: driving task was cancelled")
            raise
        except Exception as e:
            if execution.status is WorkflowStatus.CANCELLED:
                logger.info(f"Execution {execution.id} was cancelled; ignoring late failure: {e}")
                return
            await self._fail(execution, str(e), e)
            raise

        await self._complete(execution)

    async def _complete(self, execution: WorkflowExecution) -> None:
        async with self.ledger.lock(execution.id):
            if execution.status is not WorkflowStatus.RUNNING:
                return
            self.ledger.transition(execution, WorkflowStatus.COMPLETED)

        logger.info(
            f"Workflow execution {execution.id} completed in {execution.duration:.3f}s"
        )
        self._notify(
            NotificationType.EXECUTION_COMPLETED,
            execution,
            {
                "current_step": execution.current_step,
                "completed_steps": list(execution.completed_steps),
                "duration": execution.duration,
            },
        )
        await self._save(execution)

    async def _fail(
        self, execution: WorkflowExecution, message: str, error: BaseException | None = None
    ) -> None:
        async with self.ledger.lock(execution.id):
            if execution.status.is_terminal:
                return
            self.ledger.transition(execution, WorkflowStatus.FAILED, error=message)

        logger.error(f"Workflow execution {execution.id} failed: {message}")
        self._notify(
            NotificationType.EXECUTION_FAILED,
            execution,
            {
                "error": message,
                "error_type": type(error).__name__ if error else "CancelledError",
                "step_id": getattr(error, "step_id", None) or execution.current_step,
                "duration": execution.duration,
            },
        )
        await self._save(execution)

    # ------------------------------------------------------------------
    # Graph walk
    # ------------------------------------------------------------------

    @staticmethod
    def _start_steps(definition: WorkflowDefinition, event: Event) -> list[str]:
        steps: list[str] = []
        for trigger in definition.triggers:
            if trigger.matches(event) and trigger.step not in steps:
                steps.append(trigger.step)
        return steps

    async def _walk(
        self, execution: WorkflowExecution, definition: WorkflowDefinition, event: Event
    ) -> None:
        start_steps = self._start_steps(definition, event)
        if not start_steps:
            raise NoMatchingTriggerError(definition.id, event.type, execution.id)

        graph = StepGraph.from_workflow(definition)
        queue: deque[str] = deque(start_steps)
        entry = set(start_steps)
        deferred: list[str] = []

        while queue:
            if execution.status is not WorkflowStatus.RUNNING:
                logger.info(f"Execution {execution.id} is {execution.status.value}; stopping walk")
                return

            step_id = queue.popleft()
            if step_id in execution.completed_steps:
                continue
            if not graph.dependencies_met(step_id, execution.completed_steps):
                if step_id not in deferred:
                    logger.debug(f"Deferring step {step_id}: waiting on dependencies")
                    deferred.append(step_id)
                continue

            step = definition.get_step(step_id)
            step_input = event if step_id in entry else None
            successors = await self._run_step(execution, definition, step, step_input, event)

            # deferred steps first, then the successors the step routed to
            activated = [*deferred, *successors, *graph.dependents(step_id)]
            ready = graph.ready_set(execution.completed_steps, candidates=activated)
            for candidate in dict.fromkeys(activated):
                if candidate in execution.completed_steps or candidate in queue:
                    continue
                if candidate in ready:
                    if candidate in deferred:
                        deferred.remove(candidate)
                    queue.append(candidate)
                elif candidate not in deferred:
                    deferred.append(candidate)

        if deferred:
            logger.warning(
                f"Execution {execution.id}: steps never became ready: {', '.join(deferred)}"
            )

    async def _run_step(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        step: Step,
        step_input: Any,
        event: Event,
    ) -> list[str]:
        """Execute one step (with its recovery) and return the ids to route to."""
        async with self.ledger.lock(execution.id):
            execution.current_step = step.id

        with bind_execution_context(step_id=step.id):
            logger.debug(f"Executing step {step.id} ({step.type.value})")
            handled_by: Step | None = None
            try:
                result = await self._execute_with_retry(
                    execution, definition, step, step_input, event
                )
            except StepExecutionFailedError as error:
                if not step.error_handler:
                    raise
                handled_by = definition.get_step(step.error_handler)
                logger.warning(
                    f"Step {step.id} failed ({error.reason}); running error handler {handled_by.id}"
                )
                handler_input = {
                    "error": error.reason,
                    "failed_step": step.id,
                    "attempts": error.attempts,
                }
                async with self.ledger.lock(execution.id):
                    execution.current_step = handled_by.id
                result = await self._execute_with_retry(
                    execution, definition, handled_by, handler_input, event
                )

        async with self.ledger.lock(execution.id):
            if result.data:
                execution.context.update(result.data)
            execution.result = result.data
            execution.mark_step_completed(step.id)
            if handled_by is not None:
                execution.mark_step_completed(handled_by.id)
        await self._save(execution)

        logger.debug(f"Step {step.id} completed")
        if result.next_steps is not None:
            return list(result.next_steps)
        if handled_by is not None and handled_by.next:
            return list(handled_by.next)
        return list(step.next)

    async def _execute_with_retry(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        step: Step,
        step_input: Any,
        event: Event,
    ) -> StepResult:
        policy = step.retry_policy
        max_attempts = policy.max_attempts if policy else 1
        attempt = 1

        while True:
            try:
                return await self._attempt(execution, definition, step, step_input, event, attempt)
            except StepExecutionFailedError as error:
                if attempt >= max_attempts or execution.status is not WorkflowStatus.RUNNING:
                    if attempt == 1:
                        raise
                    raise StepExecutionFailedError(
                        step.id, error.reason, execution.id, attempts=attempt, cause=error.cause
                    ) from error
                delay = await schedule_retry(policy, attempt, self._sleep)
                logger.warning(
                    f"Step {step.id} attempt {attempt}/{max_attempts} failed: {error.reason}; "
                    f"retried after {delay:.3f}s",
                    extra={"attempt": attempt},
                )
                attempt += 1

    async def _attempt(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        step: Step,
        step_input: Any,
        event: Event,
        attempt: int,
    ) -> StepResult:
        timeout = step.timeout or self.default_step_timeout
        try:
            coro = self._dispatch(execution, definition, step, step_input, event, attempt)
            if timeout:
                result = await asyncio.wait_for(coro, timeout=timeout)
            else:
                result = await coro
        except StepExecutionFailedError:
            raise
        except TimeoutError as e:
            raise StepExecutionFailedError(
                step.id, f"timed out after {timeout}s", execution.id, cause=e
            ) from e
        except Exception as e:
            raise StepExecutionFailedError(
                step.id, str(e) or type(e).__name__, execution.id, cause=e
            ) from e

        if not result.success:
            raise StepExecutionFailedError(
                step.id, result.error or "step reported failure", execution.id
            )
        return result

    # ------------------------------------------------------------------
    # Step types
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        step: Step,
        step_input: Any,
        event: Event,
        attempt: int,
    ) -> StepResult:
        if step.type is StepType.DELAY:
            await self._sleep(float(step.config.get("seconds", 0)))
            return StepResult()

        if step.type is StepType.PARALLEL:
            return await self._run_parallel(execution, definition, step, event)

        if step.type is StepType.CONDITION and "when" in step.config:
            document = {
                "context": execution.context,
                "data": execution.context,
                "event": event.document(),
                "input": step_input,
            }
            matched = compile_predicate(step.config["when"])(document)
            routed = list(step.next) if matched else list(step.otherwise)
            return StepResult(next_steps=routed, metadata={"matched": matched})

        context = StepContext(
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            step_id=step.id,
            data=dict(execution.context),
            input=step_input,
            event=event,
            attempt=attempt,
            metadata={"step_name": step.name, "step_type": step.type.value},
        )
        return StepResult.from_value(await self.runner.run(step, context))

    async def _run_parallel(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        step: Step,
        event: Event,
    ) -> StepResult:
        """Fan out the branches; the first failure cancels the siblings."""
        branches = [definition.get_step(branch_id) for branch_id in step.branches]
        graph = StepGraph.from_workflow(definition)
        for branch in branches:
            missing = graph.missing_dependencies(branch.id, execution.completed_steps)
            if missing:
                raise DependencyNotMetError(branch.id, missing, execution.id)

        tasks = [
            asyncio.create_task(
                self._execute_with_retry(execution, definition, branch, None, event)
            )
            for branch in branches
        ]

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        failed = next(
            (task for task in tasks if task in done and not task.cancelled() and task.exception()),
            None,
        )
        if failed is not None:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)
            error = failed.exception()
            reason = getattr(error, "reason", str(error))
            branch_id = getattr(error, "step_id", None)
            raise StepExecutionFailedError(
                step.id, f"branch '{branch_id}' failed: {reason}", execution.id, cause=error
            )

        merged: dict[str, Any] = {}
        async with self.ledger.lock(execution.id):
            for branch, task in zip(branches, tasks):
                result = task.result()
                if result.data:
                    merged.update(result.data)
                execution.mark_step_completed(branch.id)
        return StepResult(data=merged or None)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _notify(
        self, type: NotificationType, execution: WorkflowExecution, payload: dict[str, Any]
    ) -> None:
        self.notifier.notify(type, execution.id, {"workflow_id": execution.workflow_id, **payload})

    async def _save(self, execution: WorkflowExecution) -> None:
        try:
            await self.state_store.save_snapshot(execution)
        except Exception as e:
            logger.warning(f"Failed to save snapshot of {execution.id}: {e}")
