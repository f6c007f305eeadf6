"""
Core building blocks shared by both engines: data model, errors,
configuration, the execution ledger and the collaborator ports.
"""

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
from sagaflow.core.logger import get_logger, set_logger

__all__ = [
    "CircularDependencyError",
    "CompensationFailedError",
    "DefinitionStateError",
    "DependencyNotMetError",
    "DuplicateDefinitionError",
    "EngineConfig",
    "ExecutionLedger",
    "InvalidStateTransitionError",
    "NoMatchingTriggerError",
    "NotFoundError",
    "PredicateError",
    "SagaflowError",
    "StateStoreError",
    "StepExecutionFailedError",
    "ValidationFailedError",
    "configure",
    "get_config",
    "get_logger",
    "set_logger",
]
