"""
All engine-related exceptions.

Every error raised across an engine boundary carries enough context
(execution id, step id, underlying message) to reconstruct what failed
without re-reading engine state.
"""

from typing import Any


class SagaflowError(Exception):
    """Base error for both engines"""

    def __init__(
        self,
        message: str,
        execution_id: str | None = None,
        step_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.execution_id = execution_id
        self.step_id = step_id

    def context(self) -> dict[str, Any]:
        """Structured view of the error, used in notifications and snapshots."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "execution_id": self.execution_id,
            "step_id": self.step_id,
        }


class NotFoundError(SagaflowError):
    """Unknown definition or execution"""

    def __init__(self, item_type: str, item_id: str, reason: str | None = None):
        self.item_type = item_type
        self.item_id = item_id
        message = f"{item_type.capitalize()} '{item_id}' not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ValidationFailedError(SagaflowError):
    """Definition rejected before any execution record was created"""

    def __init__(
        self,
        errors: list[str],
        warnings: list[str] | None = None,
        definition_id: str | None = None,
    ):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        self.definition_id = definition_id
        subject = f"Definition '{definition_id}'" if definition_id else "Definition"
        super().__init__(f"{subject} failed validation: {'; '.join(self.errors)}")


class CircularDependencyError(ValidationFailedError):
    """Raised when the step graph contains a cycle."""

    def __init__(
        self,
        cycle: list[str],
        definition_id: str | None = None,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
    ):
        self.cycle = list(cycle)
        super().__init__(
            errors or [cycle_message(self.cycle)],
            warnings,
            definition_id=definition_id,
        )


def cycle_message(cycle: list[str]) -> str:
    return f"Circular dependency detected: {' -> '.join(cycle)}"


class PredicateError(ValidationFailedError):
    """Malformed trigger filter, trigger condition or step condition."""

    def __init__(self, message: str):
        super().__init__([message])


class NoMatchingTriggerError(SagaflowError):
    """No trigger of the workflow accepted the incoming event."""

    def __init__(self, workflow_id: str, event_type: str, execution_id: str | None = None):
        self.workflow_id = workflow_id
        self.event_type = event_type
        super().__init__(
            f"No trigger of workflow '{workflow_id}' matches event '{event_type}'",
            execution_id=execution_id,
        )


class DependencyNotMetError(SagaflowError):
    """A step was reached before all of its dependencies completed."""

    def __init__(self, step_id: str, missing: list[str], execution_id: str | None = None):
        self.missing = list(missing)
        super().__init__(
            f"Dependencies not met for step '{step_id}': {', '.join(self.missing)}",
            execution_id=execution_id,
            step_id=step_id,
        )


class StepExecutionFailedError(SagaflowError):
    """Wraps the error reported (or raised) by a step runner."""

    def __init__(
        self,
        step_id: str,
        reason: str,
        execution_id: str | None = None,
        attempts: int = 1,
        cause: BaseException | None = None,
    ):
        self.reason = reason
        self.attempts = attempts
        self.cause = cause
        suffix = f" after {attempts} attempts" if attempts > 1 else ""
        super().__init__(
            f"Step '{step_id}' failed{suffix}: {reason}",
            execution_id=execution_id,
            step_id=step_id,
        )


class CompensationFailedError(SagaflowError):
    """
    A compensation action raised.

    `failures` lists every (step_id, message) pair that failed during the
    compensation pass; the first one is also exposed as `step_id`.
    """

    def __init__(
        self,
        failures: list[tuple[str, str]],
        execution_id: str | None = None,
    ):
        self.failures = list(failures)
        first_step, first_error = self.failures[0] if self.failures else (None, "unknown")
        detail = "; ".join(f"{step}: {err}" for step, err in self.failures)
        super().__init__(
            f"Compensation failed ({detail or first_error})",
            execution_id=execution_id,
            step_id=first_step,
        )


class InvalidStateTransitionError(SagaflowError):
    """Raised when an invalid lifecycle transition is attempted."""

    def __init__(self, execution_id: str, from_status: Any, to_status: Any):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for execution {execution_id}: "
            f"{from_status.value} → {to_status.value}",
            execution_id=execution_id,
        )


class DuplicateDefinitionError(SagaflowError):
    """A definition with the same name and version is already registered."""

    def __init__(self, name: str, version: str):
        self.name = name
        self.version = version
        super().__init__(f"Workflow {name}@{version} already exists")


class DefinitionStateError(SagaflowError):
    """Operation not allowed in the definition's current lifecycle state."""


class StateStoreError(SagaflowError):
    """Snapshot could not be saved or loaded"""
