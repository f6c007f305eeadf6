"""
Collaborator interfaces consumed by the engines.

The engines are storage- and transport-agnostic: everything outside the
core (definition storage, business logic, persistence, outbound
notifications) is reached through one of these abstract classes.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from sagaflow.core.ledger import ExecutionRecord
    from sagaflow.core.models import SagaStep, Step, StepContext, StepResult, WorkflowDefinition
    from sagaflow.notifications.base import Notification


class DefinitionRepository(ABC):
    """Source of workflow definitions."""

    @abstractmethod
    async def find_by_id_or_name(self, key: str) -> "WorkflowDefinition | None":
        """
        Look a definition up by id, or by name (latest version).

        Returns:
            The definition or None if nothing matches
        """

    @abstractmethod
    async def list_active(
        self, filters: Mapping[str, Any] | None = None
    ) -> list["WorkflowDefinition"]:
        """Published and active definitions, optionally filtered."""


class StepRunner(ABC):
    """Executes the business logic of one workflow step."""

    @abstractmethod
    async def run(self, step: "Step", context: "StepContext") -> "StepResult":
        """
        Run one step attempt.

        A runner reports failure either by returning a result with
        success=False or by raising; the coordinator treats both alike.
        """


class SagaStepRunner(ABC):
    """Executes the action of one saga step."""

    @abstractmethod
    async def run(self, step: "SagaStep", data: dict[str, Any]) -> Mapping[str, Any] | None:
        """
        Run a saga step action against the accumulated saga data.

        Returns:
            Data to merge into the saga data, or None
        """


class CompensationRunner(ABC):
    """Executes one named compensating action."""

    @abstractmethod
    async def run(self, action: str, data: dict[str, Any]) -> None:
        """Run `action`; raising marks the compensation as failed."""


class StateStore(ABC):
    """Persists execution snapshots so history survives ledger eviction."""

    @abstractmethod
    async def save_snapshot(self, execution: "ExecutionRecord") -> None:
        """Persist the current state of an execution (overwrites)."""

    @abstractmethod
    async def load_snapshot(self, execution_id: str) -> "ExecutionRecord | None":
        """Load the last saved state of an execution."""

    @abstractmethod
    async def delete_snapshot(self, execution_id: str) -> bool:
        """
        Delete a snapshot.

        Returns:
            True if deleted, False if not found
        """

    @abstractmethod
    async def list_snapshots(
        self, kind: str | None = None, status: str | None = None, limit: int = 100
    ) -> list["ExecutionRecord"]:
        """Saved executions, newest first, filtered by kind and status value."""


class NotificationSink(ABC):
    """Outbound receiver of lifecycle notifications."""

    name: str = "sink"

    @abstractmethod
    async def emit(self, notification: "Notification") -> None:
        """Deliver one notification; raising triggers a redelivery attempt."""
