"""
Data model shared by the workflow and saga engines.

Definitions (WorkflowDefinition, SagaDefinition and their parts) are frozen:
a running execution can never observe its definition changing underneath it.
Execution records (WorkflowExecution, SagaExecution) are mutable and owned by
the engine driving them; only the ExecutionLedger changes their status.

Every model round-trips through plain mappings (`from_dict` / `to_dict`).
`from_dict` accepts both snake_case and camelCase keys so definitions authored
for JSON APIs load unchanged.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from functools import cached_property
from typing import Any
from uuid import uuid4

from sagaflow.core.exceptions import CircularDependencyError, ValidationFailedError
from sagaflow.types import (
    BackoffStrategy,
    CompensationStrategy,
    DefinitionStatus,
    SagaStatus,
    StepType,
    WorkflowStatus,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def _get(data: Mapping[str, Any], snake: str, camel: str | None = None, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    if camel is not None and camel in data:
        return data[camel]
    return default


def _enum(enum_cls, value: Any, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        msg = f"Invalid {what} '{value}' (expected one of: {allowed})"
        raise ValidationFailedError([msg]) from None


def _id_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _parse_time(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def elapsed_seconds(started_at: datetime, completed_at: datetime) -> float:
    return (completed_at - started_at).total_seconds()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    """An inbound event that may trigger workflows."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("evt"))
    metadata: dict[str, Any] = field(default_factory=dict)
    source: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    correlation_id: str | None = None
    causation_id: str | None = None

    def document(self) -> dict[str, Any]:
        """The mapping trigger predicates are evaluated against."""
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "metadata": self.metadata,
            "source": self.source or self.metadata.get("source"),
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            "causation_id": self.causation_id,
        }

    def to_dict(self) -> dict[str, Any]:
        return self.document()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Event:
        kwargs: dict[str, Any] = {
            "type": data["type"],
            "data": dict(data.get("data") or {}),
            "metadata": dict(data.get("metadata") or {}),
            "source": data.get("source"),
            "correlation_id": _get(data, "correlation_id", "correlationId"),
            "causation_id": _get(data, "causation_id", "causationId"),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        if data.get("timestamp"):
            kwargs["timestamp"] = _parse_time(data["timestamp"])
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Workflow definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy of a workflow step.

    max_attempts counts every attempt, the first one included. Delays are in
    seconds; see `sagaflow.execution.retry.backoff_delay` for the schedule.
    """

    max_attempts: int = 3
    backoff: BackoffStrategy = BackoffStrategy.FIXED
    delay: float = 1.0
    max_delay: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "backoff": self.backoff.value,
            "delay": self.delay,
            "max_delay": self.max_delay,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetryPolicy:
        return cls(
            max_attempts=int(_get(data, "max_attempts", "maxAttempts", 3)),
            backoff=_enum(BackoffStrategy, data.get("backoff", "fixed"), "backoff"),
            delay=float(data.get("delay", 1.0)),
            max_delay=_get(data, "max_delay", "maxDelay"),
        )


@dataclass(frozen=True)
class Trigger:
    """
    Binds an event type (plus optional predicates) to an entry step.

    `filters` and every entry in `conditions` are predicate specs, compiled
    lazily by `sagaflow.core.predicates.compile_predicate`.
    """

    event_type: str
    step: str | None = None
    filters: Any = None
    conditions: tuple[Any, ...] = ()

    @cached_property
    def predicate(self):
        from sagaflow.core.predicates import AllOf, compile_predicate

        parts = [compile_predicate(self.filters)]
        parts.extend(compile_predicate(condition) for condition in self.conditions)
        return AllOf(parts)

    def matches(self, event: Event) -> bool:
        if event.type != self.event_type:
            return False
        return self.predicate(event.document())

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "step": self.step,
            "filters": self.filters,
            "conditions": list(self.conditions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Trigger:
        conditions = data.get("conditions") or ()
        if isinstance(conditions, (str, Mapping)) or callable(conditions):
            conditions = (conditions,)
        return cls(
            event_type=_get(data, "event_type", "eventType", ""),
            # "type" names the entry step in definitions authored for the REST API
            step=data.get("step") or data.get("type"),
            filters=data.get("filters"),
            conditions=tuple(conditions),
        )


@dataclass(frozen=True)
class Step:
    """
    A unit of work in a workflow graph.

    `config` is a caller-defined mapping. The coordinator reads a few keys
    itself: `branches` (parallel), `seconds` (delay), `when` and `otherwise`
    (condition).
    """

    id: str
    type: StepType = StepType.ACTION
    name: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    next: tuple[str, ...] = ()
    error_handler: str | None = None
    retry_policy: RetryPolicy | None = None
    dependencies: tuple[str, ...] = ()
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.id)
        object.__setattr__(self, "next", _id_list(self.next))
        object.__setattr__(self, "dependencies", _id_list(self.dependencies))

    @property
    def branches(self) -> tuple[str, ...]:
        if self.type is not StepType.PARALLEL:
            return ()
        return _id_list(self.config.get("branches"))

    @property
    def otherwise(self) -> tuple[str, ...]:
        if self.type is not StepType.CONDITION:
            return ()
        return _id_list(self.config.get("otherwise"))

    def references(self) -> list[str]:
        """Every step id this step points at, in declaration order."""
        refs = [*self.next, *self.dependencies, *self.branches, *self.otherwise]
        if self.error_handler:
            refs.append(self.error_handler)
        return refs

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "config": dict(self.config),
            "next": list(self.next),
            "error_handler": self.error_handler,
            "retry_policy": self.retry_policy.to_dict() if self.retry_policy else None,
            "dependencies": list(self.dependencies),
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Step:
        retry = _get(data, "retry_policy", "retryPolicy")
        return cls(
            id=data.get("id", ""),
            type=_enum(StepType, data.get("type", "action"), "step type"),
            name=data.get("name") or "",
            config=dict(data.get("config") or {}),
            next=_id_list(data.get("next")),
            error_handler=_get(data, "error_handler", "errorHandler"),
            retry_policy=RetryPolicy.from_dict(retry) if retry else None,
            dependencies=_id_list(data.get("dependencies")),
            timeout=data.get("timeout"),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """A versioned, triggerable step graph."""

    id: str
    name: str
    version: str
    triggers: tuple[Trigger, ...] = ()
    steps: tuple[Step, ...] = ()
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    status: DefinitionStatus = DefinitionStatus.DRAFT
    is_active: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "triggers", tuple(self.triggers))
        object.__setattr__(self, "steps", tuple(self.steps))

    @property
    def is_executable(self) -> bool:
        return self.status is DefinitionStatus.PUBLISHED and self.is_active

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    def get_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def evolve(self, **changes: Any) -> WorkflowDefinition:
        """Copy with changes applied; `updated_at` is refreshed."""
        changes.setdefault("updated_at", utcnow())
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "triggers": [trigger.to_dict() for trigger in self.triggers],
            "steps": [step.to_dict() for step in self.steps],
            "metadata": dict(self.metadata),
            "status": self.status.value,
            "is_active": self.is_active,
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowDefinition:
        name = data.get("name") or ""
        version = str(data.get("version") or "")
        kwargs: dict[str, Any] = {
            "id": data.get("id") or (f"{name}@{version}" if name else new_id("wf")),
            "name": name,
            "version": version,
            "description": data.get("description"),
            "triggers": tuple(Trigger.from_dict(t) for t in data.get("triggers") or ()),
            "steps": tuple(Step.from_dict(s) for s in data.get("steps") or ()),
            "metadata": dict(data.get("metadata") or {}),
            "status": _enum(DefinitionStatus, data.get("status", "draft"), "status"),
            "is_active": bool(_get(data, "is_active", "isActive", False)),
        }
        for key, camel in (("created_at", "createdAt"), ("updated_at", "updatedAt")):
            value = _get(data, key, camel)
            if value:
                kwargs[key] = _parse_time(value)
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Step runner contract
# ---------------------------------------------------------------------------


@dataclass
class StepContext:
    """What a Step Runner receives for one step attempt."""

    execution_id: str
    workflow_id: str
    step_id: str
    data: dict[str, Any]
    input: Any = None
    event: Event | None = None
    attempt: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepResult:
    """
    Outcome reported by a Step Runner.

    `next_steps`, when not None, replaces the step's declared `next` for
    routing; an empty list ends this branch of the walk.
    """

    success: bool = True
    data: dict[str, Any] | None = None
    error: str | None = None
    next_steps: list[str] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None, next_steps: list[str] | None = None) -> StepResult:
        return cls(success=True, data=data, next_steps=next_steps)

    @classmethod
    def fail(cls, error: str) -> StepResult:
        return cls(success=False, error=error)

    @classmethod
    def from_value(cls, value: Any) -> StepResult:
        """Coerce a plain return value (None, mapping, StepResult) into a result."""
        if isinstance(value, StepResult):
            return value
        if value is None:
            return cls()
        if isinstance(value, Mapping):
            if "success" in value:
                return cls(
                    success=bool(value["success"]),
                    data=value.get("data"),
                    error=value.get("error"),
                    next_steps=_get(value, "next_steps", "nextSteps"),
                    metadata=dict(value.get("metadata") or {}),
                )
            return cls(data=dict(value))
        return cls(data={"result": value})


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cycle: list[str] | None = None

    def raise_if_invalid(self, definition_id: str | None = None) -> None:
        if self.is_valid:
            return
        if self.cycle:
            raise CircularDependencyError(self.cycle, definition_id, self.errors, self.warnings)
        raise ValidationFailedError(self.errors, self.warnings, definition_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


# ---------------------------------------------------------------------------
# Workflow executions
# ---------------------------------------------------------------------------


@dataclass
class WorkflowExecution:
    """
    Mutable run record of one workflow instance.

    `duration` is in seconds and is stamped together with `completed_at`
    exactly once, at the terminal transition.
    """

    workflow_id: str
    id: str = field(default_factory=lambda: new_id("exec"))
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_step: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration: float | None = None
    completed_steps: list[str] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return "workflow"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_step_completed(self, step_id: str) -> None:
        if step_id not in self.completed_steps:
            self.completed_steps.append(step_id)

    def snapshot(self) -> WorkflowExecution:
        """Deep copy safe to hand out to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "current_step": self.current_step,
            "context": self.context,
            "result": self.result,
            "error": self.error,
            "started_at": _format_time(self.started_at),
            "completed_at": _format_time(self.completed_at),
            "duration": self.duration,
            "completed_steps": list(self.completed_steps),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowExecution:
        return cls(
            id=data["id"],
            workflow_id=_get(data, "workflow_id", "workflowId"),
            status=WorkflowStatus(data.get("status", "pending")),
            current_step=_get(data, "current_step", "currentStep"),
            context=dict(data.get("context") or {}),
            result=data.get("result"),
            error=data.get("error"),
            started_at=_parse_time(_get(data, "started_at", "startedAt")) or utcnow(),
            completed_at=_parse_time(_get(data, "completed_at", "completedAt")),
            duration=data.get("duration"),
            completed_steps=list(_get(data, "completed_steps", "completedSteps", [])),
        )


# ---------------------------------------------------------------------------
# Sagas
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SagaStep:
    id: str
    action: str
    name: str = ""
    compensation: str | None = None
    dependencies: tuple[str, ...] = ()
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.id)
        object.__setattr__(self, "dependencies", _id_list(self.dependencies))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "action": self.action,
            "compensation": self.compensation,
            "dependencies": list(self.dependencies),
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SagaStep:
        return cls(
            id=data.get("id", ""),
            action=data.get("action", ""),
            name=data.get("name") or "",
            compensation=data.get("compensation"),
            dependencies=_id_list(data.get("dependencies")),
            timeout=data.get("timeout"),
        )


MIXED_ORDERS = ("backward_first", "forward_first")


@dataclass(frozen=True)
class CompensationPolicy:
    """
    How a failed saga is compensated.

    Attributes:
        strategy: backward, forward or mixed
        max_compensations: Upper bound on compensation actions in one pass;
            None means unlimited
        parallel_compensation: Run each compensation phase concurrently
        mixed_order: Phase order for the mixed strategy
    """

    strategy: CompensationStrategy = CompensationStrategy.BACKWARD
    max_compensations: int | None = None
    parallel_compensation: bool = False
    mixed_order: str = "backward_first"

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "max_compensations": self.max_compensations,
            "parallel_compensation": self.parallel_compensation,
            "mixed_order": self.mixed_order,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CompensationPolicy:
        return cls(
            strategy=_enum(CompensationStrategy, data.get("strategy", "backward"), "strategy"),
            max_compensations=_get(data, "max_compensations", "maxCompensations"),
            parallel_compensation=bool(
                _get(data, "parallel_compensation", "parallelCompensation", False)
            ),
            mixed_order=_get(data, "mixed_order", "mixedOrder", "backward_first"),
        )


@dataclass(frozen=True)
class SagaDefinition:
    id: str
    name: str
    steps: tuple[SagaStep, ...] = ()
    compensation_policy: CompensationPolicy = field(default_factory=CompensationPolicy)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))

    def get_step(self, step_id: str) -> SagaStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "steps": [step.to_dict() for step in self.steps],
            "compensation_policy": self.compensation_policy.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SagaDefinition:
        policy = _get(data, "compensation_policy", "compensationPolicy") or {}
        return cls(
            id=data.get("id") or data.get("name") or new_id("saga_def"),
            name=data.get("name") or "",
            steps=tuple(SagaStep.from_dict(s) for s in data.get("steps") or ()),
            compensation_policy=CompensationPolicy.from_dict(policy),
        )


@dataclass
class FailedStep:
    step_id: str
    step_name: str
    error: str
    timestamp: datetime = field(default_factory=utcnow)
    phase: str = "action"

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "error": self.error,
            "timestamp": _format_time(self.timestamp),
            "phase": self.phase,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FailedStep:
        return cls(
            step_id=_get(data, "step_id", "stepId"),
            step_name=_get(data, "step_name", "stepName", ""),
            error=data.get("error", ""),
            timestamp=_parse_time(data.get("timestamp")) or utcnow(),
            phase=data.get("phase", "action"),
        )


@dataclass
class SagaExecution:
    """In-flight state of one saga run."""

    saga_id: str
    saga_name: str
    execution_id: str = field(default_factory=lambda: new_id("saga"))
    status: SagaStatus = SagaStatus.RUNNING
    current_step_index: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    completed_steps: list[str] = field(default_factory=list)
    failed_steps: list[FailedStep] = field(default_factory=list)
    compensated_steps: list[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    error: str | None = None

    @property
    def id(self) -> str:
        return self.execution_id

    @property
    def kind(self) -> str:
        return "saga"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_step_completed(self, step_id: str) -> None:
        if step_id not in self.completed_steps:
            self.completed_steps.append(step_id)

    def record_failure(self, step_id: str, step_name: str, error: str, phase: str = "action") -> None:
        self.failed_steps.append(FailedStep(step_id, step_name, error, phase=phase))

    def snapshot(self) -> SagaExecution:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.execution_id,
            "saga_id": self.saga_id,
            "saga_name": self.saga_name,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "data": self.data,
            "completed_steps": list(self.completed_steps),
            "failed_steps": [failure.to_dict() for failure in self.failed_steps],
            "compensated_steps": list(self.compensated_steps),
            "start_time": _format_time(self.start_time),
            "end_time": _format_time(self.end_time),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SagaExecution:
        return cls(
            execution_id=data.get("id") or _get(data, "execution_id", "executionId"),
            saga_id=_get(data, "saga_id", "sagaId"),
            saga_name=_get(data, "saga_name", "sagaName", ""),
            status=SagaStatus(data.get("status", "running")),
            current_step_index=_get(data, "current_step_index", "currentStepIndex", 0),
            data=dict(data.get("data") or {}),
            completed_steps=list(_get(data, "completed_steps", "completedSteps", [])),
            failed_steps=[
                FailedStep.from_dict(f) for f in _get(data, "failed_steps", "failedSteps", [])
            ],
            compensated_steps=list(_get(data, "compensated_steps", "compensatedSteps", [])),
            start_time=_parse_time(_get(data, "start_time", "startTime")) or utcnow(),
            end_time=_parse_time(_get(data, "end_time", "endTime")),
            error=data.get("error"),
        )
