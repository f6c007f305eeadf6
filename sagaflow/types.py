"""
All enums shared by the workflow and saga engines.

Status enums double as the vocabulary of the execution ledger's transition
tables, so every value here is also a persisted snapshot value.
"""

from enum import Enum


class WorkflowStatus(Enum):
    """Status of a workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _WORKFLOW_TERMINAL


class SagaStatus(Enum):
    """
    Status of a saga execution.

    FAILED is transitional: a failed saga always moves on to COMPENSATED or
    COMPENSATION_FAILED once its compensation pass finishes.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _SAGA_TERMINAL


_WORKFLOW_TERMINAL = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)
_SAGA_TERMINAL = frozenset(
    {
        SagaStatus.COMPLETED,
        SagaStatus.COMPENSATED,
        SagaStatus.COMPENSATION_FAILED,
        SagaStatus.CANCELLED,
    }
)


class StepType(Enum):
    """Kind of workflow step."""

    ACTION = "action"
    CONDITION = "condition"
    LOOP = "loop"
    PARALLEL = "parallel"
    DELAY = "delay"


class BackoffStrategy(Enum):
    """Delay growth between retry attempts"""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


class CompensationStrategy(Enum):
    """Which saga steps get compensated after a failure"""

    FORWARD = "forward"
    """Run compensations of the steps that never executed, in definition order."""

    BACKWARD = "backward"
    """Undo completed steps in reverse completion order."""

    MIXED = "mixed"
    """Backward and forward phases, ordered by the policy's mixed_order."""


class DefinitionStatus(Enum):
    """Lifecycle of a workflow definition in a repository."""

    DRAFT = "draft"
    PUBLISHED = "published"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


class NotificationType(Enum):
    """Lifecycle notifications emitted by both engines."""

    EXECUTION_STARTED = "execution.started"
    EXECUTION_COMPLETED = "execution.completed"
    EXECUTION_FAILED = "execution.failed"
    EXECUTION_CANCELLED = "execution.cancelled"

    SAGA_STARTED = "saga.started"
    SAGA_STEP_COMPLETED = "saga.step.completed"
    SAGA_COMPLETED = "saga.completed"
    SAGA_FAILED = "saga.failed"
    SAGA_COMPENSATED = "saga.compensated"
    SAGA_COMPENSATION_FAILED = "saga.compensation_failed"
    SAGA_CANCELLED = "saga.cancelled"
