"""
Execution Ledger - registry of live workflow and saga executions.

The ledger is the only shared mutable structure inside the engines. It owns
lifecycle transitions of every record it holds and hands out one
asyncio.Lock per execution id, so mutations of one execution are serialized
while different executions never contend.

Workflow lifecycle:

    ┌─────────┐  start   ┌─────────┐
    │ PENDING │ ───────► │ RUNNING │ ──► COMPLETED | FAILED | CANCELLED
    └────┬────┘          └─────────┘
         └──► FAILED  (the walk never started)

Saga lifecycle:

    RUNNING ──► COMPLETED | CANCELLED
       │
       └──► FAILED ──► COMPENSATED | COMPENSATION_FAILED

Terminal states have no exits. Terminal timestamps (and the workflow
duration) are stamped once, by the transition that enters them.

Usage:
    >>> ledger = ExecutionLedger()
    >>> ledger.add(execution)
    >>> async with ledger.lock(execution.id):
    ...     ledger.transition(execution, WorkflowStatus.RUNNING)
"""

from __future__ import annotations

import asyncio
from typing import Union

from sagaflow.core.exceptions import InvalidStateTransitionError
from sagaflow.core.models import SagaExecution, WorkflowExecution, elapsed_seconds, utcnow
from sagaflow.types import SagaStatus, WorkflowStatus

ExecutionRecord = Union[WorkflowExecution, SagaExecution]


class ExecutionLedger:
    """
    In-memory registry of executions keyed by execution id.

    Tests and embedding applications create their own instance; nothing in
    the engines relies on process-wide state.
    """

    WORKFLOW_TRANSITIONS = {
        WorkflowStatus.PENDING: [WorkflowStatus.RUNNING, WorkflowStatus.FAILED],
        WorkflowStatus.RUNNING: [
            WorkflowStatus.COMPLETED,
            WorkflowStatus.FAILED,
            WorkflowStatus.CANCELLED,
        ],
        WorkflowStatus.COMPLETED: [],  # Terminal state
        WorkflowStatus.FAILED: [],  # Terminal state
        WorkflowStatus.CANCELLED: [],  # Terminal state
    }

    SAGA_TRANSITIONS = {
        SagaStatus.RUNNING: [SagaStatus.COMPLETED, SagaStatus.FAILED, SagaStatus.CANCELLED],
        SagaStatus.FAILED: [SagaStatus.COMPENSATED, SagaStatus.COMPENSATION_FAILED],
        SagaStatus.COMPLETED: [],  # Terminal state
        SagaStatus.COMPENSATED: [],  # Terminal state
        SagaStatus.COMPENSATION_FAILED: [],  # Terminal state
        SagaStatus.CANCELLED: [],  # Terminal state
    }

    def __init__(self):
        self._records: dict[str, ExecutionRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def add(self, record: ExecutionRecord) -> ExecutionRecord:
        if record.id in self._records:
            msg = f"Execution {record.id} is already registered"
            raise ValueError(msg)
        self._records[record.id] = record
        return record

    def get(self, execution_id: str) -> ExecutionRecord | None:
        return self._records.get(execution_id)

    def remove(self, execution_id: str) -> ExecutionRecord | None:
        """Forget the record and its lock; a current holder keeps its reference."""
        self._locks.pop(execution_id, None)
        return self._records.pop(execution_id, None)

    def list(self, kind: str | None = None, status=None) -> list[ExecutionRecord]:
        """Records filtered by kind ("workflow" / "saga") and status, oldest first."""
        return [
            record
            for record in self._records.values()
            if (kind is None or record.kind == kind) and (status is None or record.status == status)
        ]

    def __contains__(self, execution_id: object) -> bool:
        return execution_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def lock(self, execution_id: str) -> asyncio.Lock:
        """Mutual exclusion for one execution id, created on first use."""
        lock = self._locks.get(execution_id)
        if lock is None:
            lock = self._locks[execution_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _valid_targets(self, record: ExecutionRecord) -> list:
        if isinstance(record, SagaExecution):
            return self.SAGA_TRANSITIONS.get(record.status, [])
        return self.WORKFLOW_TRANSITIONS.get(record.status, [])

    def can_transition(self, record: ExecutionRecord, target) -> bool:
        return target in self._valid_targets(record)

    def transition(self, record: ExecutionRecord, target, error: str | None = None) -> ExecutionRecord:
        """
        Move a record to `target`, stamping terminal timestamps.

        Raises:
            InvalidStateTransitionError: `target` is not reachable from the
                record's current status.
        """
        if not self.can_transition(record, target):
            raise InvalidStateTransitionError(record.id, record.status, target)

        record.status = target
        if error is not None:
            record.error = error

        if target.is_terminal:
            self._stamp(record)
        return record

    @staticmethod
    def _stamp(record: ExecutionRecord) -> None:
        now = utcnow()
        if isinstance(record, SagaExecution):
            record.end_time = max(now, record.start_time)
            return
        record.completed_at = max(now, record.started_at)
        record.duration = elapsed_seconds(record.started_at, record.completed_at)

    def evict_terminal(self, kind: str | None = None) -> list[str]:
        """Drop terminal records; returns the evicted ids."""
        evicted = [record.id for record in self.list(kind) if record.is_terminal]
        for execution_id in evicted:
            self.remove(execution_id)
        return evicted
