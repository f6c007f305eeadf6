"""
Definition validators.

Both validators collect every problem they find instead of stopping at the
first one. Errors make a definition unrunnable; warnings (orphaned steps)
are reported but never block execution.
"""

from numbers import Number

from sagaflow.core.exceptions import PredicateError, cycle_message
from sagaflow.core.models import (
    MIXED_ORDERS,
    RetryPolicy,
    SagaDefinition,
    ValidationResult,
    WorkflowDefinition,
)
from sagaflow.core.predicates import compile_predicate
from sagaflow.execution.graph import StepGraph
from sagaflow.types import StepType


def _blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


def _check_retry_policy(step_id: str, policy: RetryPolicy, errors: list[str]) -> None:
    if policy.max_attempts < 1:
        errors.append(f"Step '{step_id}': retry max_attempts must be >= 1")
    if policy.delay < 0:
        errors.append(f"Step '{step_id}': retry delay must be >= 0")
    if policy.max_delay is not None and policy.max_delay < 0:
        errors.append(f"Step '{step_id}': retry max_delay must be >= 0")


def _check_step_config(step, errors: list[str]) -> None:
    if step.timeout is not None and step.timeout <= 0:
        errors.append(f"Step '{step.id}': timeout must be positive")

    if step.type is StepType.PARALLEL and not step.branches:
        errors.append(f"Parallel step '{step.id}' declares no branches")

    if step.type is StepType.DELAY:
        seconds = step.config.get("seconds", 0)
        if not isinstance(seconds, Number) or isinstance(seconds, bool) or seconds < 0:
            errors.append(f"Delay step '{step.id}': seconds must be a non-negative number")

    if step.type is StepType.CONDITION and "when" in step.config:
        try:
            compile_predicate(step.config["when"])
        except PredicateError as e:
            errors.append(f"Condition step '{step.id}': {'; '.join(e.errors)}")


def _reference_errors(graph: StepGraph) -> list[str]:
    errors = []
    for step_id, kind, target in graph.dangling_references():
        if kind == "entry":
            errors.append(f"Trigger entry step '{target}' does not exist")
        else:
            label = kind.replace("_", " ")
            errors.append(f"Step '{step_id}' references unknown {label} '{target}'")
    return errors


def validate_workflow(definition: WorkflowDefinition) -> ValidationResult:
    """Check required fields, references, predicates and acyclicity."""
    errors: list[str] = []
    warnings: list[str] = []

    if _blank(definition.name):
        errors.append("Workflow name is required")
    if _blank(definition.version):
        errors.append("Workflow version is required")
    if not definition.triggers:
        errors.append("At least one trigger is required")
    if not definition.steps:
        errors.append("At least one step is required")

    for index, trigger in enumerate(definition.triggers, start=1):
        if _blank(trigger.event_type):
            errors.append(f"Event type is required for trigger #{index}")
        if _blank(trigger.step):
            errors.append(f"Trigger #{index} has no entry step")
        try:
            trigger.predicate
        except PredicateError as e:
            errors.append(f"Trigger #{index}: {'; '.join(e.errors)}")

    for step in definition.steps:
        if _blank(step.id):
            errors.append("Step ID is required")
            continue
        if not isinstance(step.type, StepType):
            errors.append(f"Step '{step.id}' has invalid type '{step.type}'")
            continue
        if step.retry_policy is not None:
            _check_retry_policy(step.id, step.retry_policy, errors)
        _check_step_config(step, errors)

    graph = StepGraph.from_workflow(definition)
    for duplicate in graph.duplicate_ids():
        errors.append(f"Duplicate step id '{duplicate}'")
    errors.extend(_reference_errors(graph))

    cycle = graph.find_cycle()
    if cycle:
        errors.append(cycle_message(cycle))

    orphans = graph.orphans()
    if orphans:
        warnings.append(f"Orphaned steps found: {', '.join(orphans)}")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings, cycle=cycle)


def validate_saga(definition: SagaDefinition) -> ValidationResult:
    """
    Check a saga definition before it runs.

    A dependency on a step declared later is left to the controller, which
    fails that step with DependencyNotMetError and compensates.
    """
    errors: list[str] = []

    if _blank(definition.id):
        errors.append("Saga id is required")
    if _blank(definition.name):
        errors.append("Saga name is required")
    if not definition.steps:
        errors.append("At least one step is required")

    for step in definition.steps:
        if _blank(step.id):
            errors.append("Step ID is required")
            continue
        if _blank(step.action):
            errors.append(f"Step '{step.id}' has no action")
        if step.timeout is not None and step.timeout <= 0:
            errors.append(f"Step '{step.id}': timeout must be positive")

    graph = StepGraph.from_saga(definition)
    for duplicate in graph.duplicate_ids():
        errors.append(f"Duplicate step id '{duplicate}'")
    errors.extend(_reference_errors(graph))

    cycle = graph.find_cycle()
    if cycle:
        errors.append(cycle_message(cycle))

    policy = definition.compensation_policy
    if policy.max_compensations is not None and policy.max_compensations < 0:
        errors.append("max_compensations must be >= 0")
    if policy.mixed_order not in MIXED_ORDERS:
        errors.append(f"mixed_order must be one of: {', '.join(MIXED_ORDERS)}")

    return ValidationResult(is_valid=not errors, errors=errors, cycle=cycle)
