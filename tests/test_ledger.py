"""
Tests for ExecutionLedger: registry, transitions and per-execution locks.
"""

import asyncio
import typing

import pytest

from sagaflow import (
    ExecutionLedger,
    InvalidStateTransitionError,
    SagaExecution,
    SagaStatus,
    WorkflowExecution,
    WorkflowStatus,
)


@pytest.fixture
def ledger():
    return ExecutionLedger()


class TestRegistry:
    """Adding, finding and removing records"""

    def test_add_and_get(self, ledger):
        """Test records are found by id"""
        execution = ledger.add(WorkflowExecution(workflow_id="wf"))

        assert ledger.get(execution.id) is execution
        assert execution.id in ledger
        assert len(ledger) == 1

    def test_duplicate_id_rejected(self, ledger):
        """Test an id can only be registered once"""
        execution = ledger.add(WorkflowExecution(workflow_id="wf"))

        with pytest.raises(ValueError):
            ledger.add(execution)

    def test_list_by_kind_and_status(self, ledger):
        """Test filtering by kind and status"""
        workflow = ledger.add(WorkflowExecution(workflow_id="wf"))
        saga = ledger.add(SagaExecution(saga_id="s", saga_name="s"))

        assert ledger.list("workflow") == [workflow]
        assert ledger.list("saga") == [saga]
        assert ledger.list(status=WorkflowStatus.PENDING) == [workflow]
        assert ledger.list(status=SagaStatus.RUNNING) == [saga]

    def test_remove(self, ledger):
        """Test removal returns the record once"""
        execution = ledger.add(WorkflowExecution(workflow_id="wf"))

        assert ledger.remove(execution.id) is execution
        assert ledger.remove(execution.id) is None
        assert ledger.get(execution.id) is None

    def test_evict_terminal(self, ledger):
        """Test only terminal records are evicted"""
        done = ledger.add(WorkflowExecution(workflow_id="wf"))
        running = ledger.add(WorkflowExecution(workflow_id="wf"))
        ledger.transition(done, WorkflowStatus.RUNNING)
        ledger.transition(done, WorkflowStatus.COMPLETED)
        ledger.transition(running, WorkflowStatus.RUNNING)

        assert ledger.evict_terminal() == [done.id]
        assert ledger.list() == [running]


class TestWorkflowTransitions:
    """Workflow lifecycle"""

    def test_happy_path_stamps_duration(self, ledger):
        """Test the terminal transition stamps completion and duration"""
        execution = ledger.add(WorkflowExecution(workflow_id="wf"))

        ledger.transition(execution, WorkflowStatus.RUNNING)
        assert execution.completed_at is None

        ledger.transition(execution, WorkflowStatus.COMPLETED)
        assert execution.completed_at >= execution.started_at
        assert execution.duration == (execution.completed_at - execution.started_at).total_seconds()

    def test_failure_records_error(self, ledger):
        """Test an error message travels with the transition"""
        execution = ledger.add(WorkflowExecution(workflow_id="wf"))

        ledger.transition(execution, WorkflowStatus.FAILED, error="no trigger")

        assert execution.status == WorkflowStatus.FAILED
        assert execution.error == "no trigger"
        assert execution.duration >= 0

    @pytest.mark.parametrize(
        ("path", "target"),
        [
            ([], WorkflowStatus.COMPLETED),
            ([], WorkflowStatus.CANCELLED),
            ([WorkflowStatus.RUNNING, WorkflowStatus.COMPLETED], WorkflowStatus.FAILED),
            ([WorkflowStatus.RUNNING, WorkflowStatus.CANCELLED], WorkflowStatus.RUNNING),
        ],
    )
    def test_invalid_transitions(self, ledger, path, target):
        """Test unreachable targets raise and leave the record unchanged"""
        execution = ledger.add(WorkflowExecution(workflow_id="wf"))
        for status in path:
            ledger.transition(execution, status)
        before = execution.status

        with pytest.raises(InvalidStateTransitionError):
            ledger.transition(execution, target)

        assert execution.status == before

    def test_terminal_states_have_no_exits(self, ledger):
        """Test every terminal status rejects every target"""
        for status in WorkflowStatus:
            targets = ExecutionLedger.WORKFLOW_TRANSITIONS[status]
            assert (targets == []) is status.is_terminal


class TestSagaTransitions:
    """Saga lifecycle"""

    def test_failed_then_compensated(self, ledger):
        """Test failed is transitional and compensated stamps end_time"""
        saga = ledger.add(SagaExecution(saga_id="s", saga_name="s"))

        ledger.transition(saga, SagaStatus.FAILED, error="declined")
        assert saga.end_time is None
        assert ledger.can_transition(saga, SagaStatus.COMPENSATED)
        assert not ledger.can_transition(saga, SagaStatus.COMPLETED)

        ledger.transition(saga, SagaStatus.COMPENSATED)
        assert saga.end_time >= saga.start_time
        assert saga.error == "declined"

    def test_cancelled_saga_cannot_compensate(self, ledger):
        """Test cancelled is terminal"""
        saga = ledger.add(SagaExecution(saga_id="s", saga_name="s"))
        ledger.transition(saga, SagaStatus.CANCELLED)

        with pytest.raises(InvalidStateTransitionError):
            ledger.transition(saga, SagaStatus.FAILED)


class TestLocks:
    """Per-execution mutual exclusion"""

    def test_same_id_same_lock(self, ledger):
        """Test one lock per id"""
        assert ledger.lock("a") is ledger.lock("a")
        assert ledger.lock("a") is not ledger.lock("b")

    @pytest.mark.asyncio
    async def test_lock_serializes_one_execution(self, ledger):
        """Test critical sections of one execution never interleave"""
        events = []

        async def critical(name):
            async with ledger.lock("exec_1"):
                events.append(f"{name}:enter")
                await asyncio.sleep(0)
                events.append(f"{name}:exit")

        await asyncio.gather(critical("a"), critical("b"))

        assert events == ["a:enter", "a:exit", "b:enter", "b:exit"]

    @pytest.mark.asyncio
    async def test_different_executions_do_not_contend(self, ledger):
        """Test holding one execution's lock does not block another"""
        async with ledger.lock("exec_1"):
            await asyncio.wait_for(ledger.lock("exec_2").acquire(), timeout=1)
            ledger.lock("exec_2").release()

    @pytest.mark.asyncio
    async def test_remove_drops_held_lock(self, ledger):
        """Test removing a record forgets its lock even while it is held"""
        execution = ledger.add(WorkflowExecution(workflow_id="wf"))
        held = ledger.lock(execution.id)

        async with held:
            ledger.remove(execution.id)

        assert ledger.lock(execution.id) is not held


class TestAnnotations:
    """The list() method does not shadow the builtin in signatures"""

    def test_builtin_list_in_signatures(self):
        """Test return annotations after list() resolve to the builtin list"""
        hints = typing.get_type_hints(ExecutionLedger.evict_terminal)

        assert hints["return"] == list[str]
