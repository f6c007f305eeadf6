"""
Dry-run simulation.

Drives the real WorkflowCoordinator / SagaController with no-op actions, so
the preview follows exactly the routing, dependency and compensation rules
a live run would. Failures can be injected per step (and per compensation
action) to preview the failure paths.

Example:
    >>> result = await simulate_saga(definition, fail_steps={"charge"})
    >>> result.status, result.compensations
    ('compensated', ['reserve'])
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sagaflow.core.config import EngineConfig
from sagaflow.core.exceptions import CircularDependencyError, SagaflowError
from sagaflow.core.models import Event, SagaDefinition, SagaStep, Step, StepResult, WorkflowDefinition
from sagaflow.core.ports import CompensationRunner, SagaStepRunner, StepRunner
from sagaflow.execution.graph import StepGraph
from sagaflow.execution.validation import validate_saga, validate_workflow
from sagaflow.notifications.dispatcher import NotificationDispatcher
from sagaflow.notifications.memory import InMemoryNotificationSink
from sagaflow.repository import InMemoryDefinitionRepository
from sagaflow.saga.controller import SagaController
from sagaflow.storage.memory import InMemoryStateStore
from sagaflow.workflow.coordinator import WorkflowCoordinator


class SimulatedFailure(Exception):
    """Raised by DryRunRunner for steps configured to fail."""


@dataclass
class DryRunTraceEvent:
    """One call the engine made into the runner."""

    target: str
    action: str  # "execute", "compensate"
    failed: bool = False


@dataclass
class DryRunResult:
    """
    Outcome of a simulated run.

    `execution_order` lists the steps the engine completed, in order;
    `compensations` the saga steps whose compensation ran.
    """

    kind: str
    success: bool
    status: str | None = None
    validation_errors: list[str] = field(default_factory=list)
    validation_warnings: list[str] = field(default_factory=list)
    parallel_groups: list[list[str]] = field(default_factory=list)
    execution_order: list[str] = field(default_factory=list)
    compensations: list[str] = field(default_factory=list)
    notifications: list[str] = field(default_factory=list)
    trace: list[DryRunTraceEvent] = field(default_factory=list)
    error: str | None = None


class DryRunRunner(StepRunner, SagaStepRunner, CompensationRunner):
    """
    Runner that does nothing but record calls.

    Args:
        fail_steps: Step ids whose action fails
        fail_compensations: Compensation action names that raise
        step_data: Per-step data returned on success
    """

    def __init__(
        self,
        fail_steps: Iterable[str] = (),
        fail_compensations: Iterable[str] = (),
        step_data: Mapping[str, Mapping[str, Any]] | None = None,
    ):
        self.fail_steps = set(fail_steps)
        self.fail_compensations = set(fail_compensations)
        self.step_data = dict(step_data or {})
        self.trace: list[DryRunTraceEvent] = []

    async def run(self, target, payload):
        if isinstance(target, Step):
            failed = target.id in self.fail_steps
            self.trace.append(DryRunTraceEvent(target.id, "execute", failed))
            if failed:
                return StepResult.fail(f"simulated failure of {target.id}")
            return StepResult(data=dict(self.step_data.get(target.id) or {}) or None)

        if isinstance(target, SagaStep):
            failed = target.id in self.fail_steps
            self.trace.append(DryRunTraceEvent(target.id, "execute", failed))
            if failed:
                raise SimulatedFailure(f"simulated failure of {target.id}")
            return self.step_data.get(target.id)

        failed = target in self.fail_compensations
        self.trace.append(DryRunTraceEvent(target, "compensate", failed))
        if failed:
            raise SimulatedFailure(f"simulated failure of compensation {target}")
        return None


def _levels(graph: StepGraph) -> list[list[str]]:
    try:
        return graph.topological_levels()
    except CircularDependencyError:
        return []


async def _no_wait(_seconds: float) -> None:
    return None


def _engine_parts() -> tuple[EngineConfig, NotificationDispatcher, InMemoryNotificationSink]:
    sink = InMemoryNotificationSink()
    config = EngineConfig(state_store=InMemoryStateStore(), logging=False)
    dispatcher = NotificationDispatcher([sink], retry_delay=0)
    return config, dispatcher, sink


async def simulate_workflow(
    definition: WorkflowDefinition,
    event: Event | Mapping[str, Any] | None = None,
    context: Mapping[str, Any] | None = None,
    fail_steps: Iterable[str] = (),
    step_data: Mapping[str, Mapping[str, Any]] | None = None,
) -> DryRunResult:
    """
    Simulate one workflow run.

    Without `event`, the first trigger's event type is fired with no data.
    Delay steps and retry backoff do not wait.
    """
    validation = validate_workflow(definition)
    result = DryRunResult(
        kind="workflow",
        success=False,
        validation_errors=list(validation.errors),
        validation_warnings=list(validation.warnings),
        parallel_groups=_levels(StepGraph.from_workflow(definition)),
    )
    if not validation.is_valid:
        result.error = "; ".join(validation.errors)
        return result

    if event is None:
        event = Event(type=definition.triggers[0].event_type)

    repository = InMemoryDefinitionRepository()
    stored = await repository.register(definition)
    await repository.publish(stored.id)

    runner = DryRunRunner(fail_steps, step_data=step_data)
    config, dispatcher, sink = _engine_parts()
    coordinator = WorkflowCoordinator(
        repository, runner, notifier=dispatcher, config=config, sleep=_no_wait
    )

    try:
        await coordinator.execute(stored.id, event, context)
    except SagaflowError as e:
        result.error = str(e)

    executions = await coordinator.list_executions()
    if executions:
        execution = executions[0]
        result.status = execution.status.value
        result.execution_order = list(execution.completed_steps)
        result.success = execution.status.value == "completed"
    await dispatcher.aclose()

    result.notifications = sink.types()
    result.trace = list(runner.trace)
    return result


async def simulate_saga(
    definition: SagaDefinition,
    data: Mapping[str, Any] | None = None,
    fail_steps: Iterable[str] = (),
    fail_compensations: Iterable[str] = (),
    step_data: Mapping[str, Mapping[str, Any]] | None = None,
) -> DryRunResult:
    """Simulate one saga run, including its compensation pass."""
    validation = validate_saga(definition)
    result = DryRunResult(
        kind="saga",
        success=False,
        validation_errors=list(validation.errors),
        validation_warnings=list(validation.warnings),
        parallel_groups=[[step.id] for step in definition.steps],
    )
    if not validation.is_valid:
        result.error = "; ".join(validation.errors)
        return result

    runner = DryRunRunner(fail_steps, fail_compensations, step_data)
    config, dispatcher, sink = _engine_parts()
    controller = SagaController(runner, notifier=dispatcher, config=config)

    try:
        await controller.start_saga(definition, data)
    except SagaflowError as e:
        result.error = str(e)

    # the record left the ledger; its final snapshot is the only one stored
    snapshots = await config.state_store.list_snapshots(kind="saga", limit=1)
    execution = snapshots[0] if snapshots else None

    if execution is not None:
        result.status = execution.status.value
        result.execution_order = list(execution.completed_steps)
        result.compensations = list(execution.compensated_steps)
        result.success = execution.status.value == "completed"
        if result.error is None and execution.error:
            result.error = execution.error
    await dispatcher.aclose()

    result.notifications = sink.types()
    result.trace = list(runner.trace)
    return result
