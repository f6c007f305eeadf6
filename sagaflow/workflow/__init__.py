"""Workflow Execution Coordinator."""

from sagaflow.workflow.coordinator import WorkflowCoordinator

__all__ = ["WorkflowCoordinator"]
