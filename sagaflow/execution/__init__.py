"""
Dependency Resolver: step graph analysis, definition validation and retry
backoff.
"""

from sagaflow.execution.graph import StepGraph
from sagaflow.execution.retry import backoff_delay, schedule, schedule_retry
from sagaflow.execution.validation import validate_saga, validate_workflow

__all__ = [
    "StepGraph",
    "backoff_delay",
    "schedule",
    "schedule_retry",
    "validate_saga",
    "validate_workflow",
]
