"""
Sagaflow - event-triggered workflows and compensating sagas.

Two engines share one data model, one execution ledger and one
notification pipeline:

- WorkflowCoordinator runs a workflow definition from a triggering event
  through its step graph (retries, error handlers, parallel branches,
  conditions, delays).
- SagaController runs saga steps in order and compensates them
  (backward, forward or mixed) when one fails.

Workflow:
    >>> from sagaflow import ActionRegistry, InMemoryDefinitionRepository, WorkflowCoordinator
    >>>
    >>> actions = ActionRegistry()
    >>> repository = InMemoryDefinitionRepository()
    >>> definition = await repository.register(WorkflowDefinition.from_dict(document))
    >>> await repository.publish(definition.id)
    >>>
    >>> coordinator = WorkflowCoordinator(repository, actions)
    >>> execution = await coordinator.execute(definition.id, {"type": "order.created"})

Saga:
    >>> from sagaflow import SagaController, SagaDefinition
    >>>
    >>> controller = SagaController(actions)
    >>> execution_id = await controller.start_saga(SagaDefinition.from_dict(document))
"""

__version__ = "0.1.0"

from sagaflow.core.config import EngineConfig, configure, get_config
from sagaflow.core.exceptions import (
    CircularDependencyError,
    CompensationFailedError,
    DefinitionStateError,
    DependencyNotMetError,
    DuplicateDefinitionError,
    InvalidStateTransitionError,
    NoMatchingTriggerError,
    NotFoundError,
    PredicateError,
    SagaflowError,
    StateStoreError,
    StepExecutionFailedError,
    ValidationFailedError,
)
from sagaflow.core.ledger import ExecutionLedger
from sagaflow.core.models import (
    CompensationPolicy,
    Event,
    RetryPolicy,
    SagaDefinition,
    SagaExecution,
    SagaStep,
    Step,
    StepContext,
    StepResult,
    Trigger,
    ValidationResult,
    WorkflowDefinition,
    WorkflowExecution,
)
from sagaflow.core.predicates import compile_predicate
from sagaflow.dry_run import DryRunRunner, simulate_saga, simulate_workflow
from sagaflow.execution.graph import StepGraph
from sagaflow.execution.validation import validate_saga, validate_workflow
from sagaflow.loader import load_definition, load_definitions
from sagaflow.notifications import (
    InMemoryNotificationSink,
    LoggingNotificationSink,
    Notification,
    NotificationDispatcher,
)
from sagaflow.repository import InMemoryDefinitionRepository
from sagaflow.runners import ActionRegistry
from sagaflow.saga import CompensationController, CompensationResult, SagaController
from sagaflow.storage import FilesystemStateStore, InMemoryStateStore
from sagaflow.types import (
    BackoffStrategy,
    CompensationStrategy,
    DefinitionStatus,
    NotificationType,
    SagaStatus,
    StepType,
    WorkflowStatus,
)
from sagaflow.workflow import WorkflowCoordinator

__all__ = [
    "ActionRegistry",
    "BackoffStrategy",
    "CircularDependencyError",
    "CompensationController",
    "CompensationFailedError",
    "CompensationPolicy",
    "CompensationResult",
    "CompensationStrategy",
    "DefinitionStateError",
    "DefinitionStatus",
    "DependencyNotMetError",
    "DryRunRunner",
    "DuplicateDefinitionError",
    "EngineConfig",
    "Event",
    "ExecutionLedger",
    "FilesystemStateStore",
    "InMemoryDefinitionRepository",
    "InMemoryNotificationSink",
    "InMemoryStateStore",
    "InvalidStateTransitionError",
    "LoggingNotificationSink",
    "NoMatchingTriggerError",
    "NotFoundError",
    "Notification",
    "NotificationDispatcher",
    "NotificationType",
    "PredicateError",
    "RetryPolicy",
    "SagaController",
    "SagaDefinition",
    "SagaExecution",
    "SagaStatus",
    "SagaStep",
    "SagaflowError",
    "StateStoreError",
    "Step",
    "StepContext",
    "StepExecutionFailedError",
    "StepGraph",
    "StepResult",
    "StepType",
    "Trigger",
    "ValidationFailedError",
    "ValidationResult",
    "WorkflowCoordinator",
    "WorkflowDefinition",
    "WorkflowExecution",
    "WorkflowStatus",
    "compile_predicate",
    "configure",
    "get_config",
    "load_definition",
    "load_definitions",
    "simulate_saga",
    "simulate_workflow",
    "validate_saga",
    "validate_workflow",
]
