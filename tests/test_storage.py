"""
Tests for the state store backends.
"""

import json
import os

import pytest

from sagaflow import (
    FilesystemStateStore,
    InMemoryStateStore,
    SagaExecution,
    SagaStatus,
    StateStoreError,
    WorkflowExecution,
    WorkflowStatus,
)
from sagaflow.storage.serialization import loads, snapshot_from_dict


def _workflow(status=WorkflowStatus.PENDING, **context):
    return WorkflowExecution(workflow_id="wf@1", context=context, status=status)


def _saga(status=SagaStatus.RUNNING):
    return SagaExecution(saga_id="checkout", saga_name="checkout", status=status)


class TestInMemoryStateStore:
    """InMemoryStateStore"""

    @pytest.mark.asyncio
    async def test_save_and_load(self):
        """Test a loaded snapshot equals the saved execution"""
        store = InMemoryStateStore()
        execution = _workflow(order_id=7)

        await store.save_snapshot(execution)
        loaded = await store.load_snapshot(execution.id)

        assert loaded == execution
        assert loaded is not execution

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated(self):
        """Test later mutations of the live record do not leak into the snapshot"""
        store = InMemoryStateStore()
        execution = _workflow(items=[1])
        await store.save_snapshot(execution)

        execution.context["items"].append(2)

        loaded = await store.load_snapshot(execution.id)
        assert loaded.context == {"items": [1]}

    @pytest.mark.asyncio
    async def test_missing_and_delete(self):
        """Test unknown ids load as None and delete reports whether it removed"""
        store = InMemoryStateStore()
        execution = _saga()
        await store.save_snapshot(execution)

        assert await store.load_snapshot("nope") is None
        assert await store.delete_snapshot(execution.id) is True
        assert await store.delete_snapshot(execution.id) is False
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_list_newest_first_with_filters(self):
        """Test listing order, kind and status filters, and limit"""
        store = InMemoryStateStore()
        first = _workflow(WorkflowStatus.COMPLETED)
        second = _saga(SagaStatus.COMPENSATED)
        third = _workflow(WorkflowStatus.FAILED)
        for execution in (first, second, third):
            await store.save_snapshot(execution)

        assert [e.id for e in await store.list_snapshots()] == [third.id, second.id, first.id]
        assert [e.id for e in await store.list_snapshots(kind="saga")] == [second.id]
        assert [e.id for e in await store.list_snapshots(status="completed")] == [first.id]
        assert len(await store.list_snapshots(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_resave_moves_to_front(self):
        """Test saving again makes a snapshot the newest"""
        store = InMemoryStateStore()
        first, second = _workflow(), _workflow()
        await store.save_snapshot(first)
        await store.save_snapshot(second)

        first.status = WorkflowStatus.RUNNING
        await store.save_snapshot(first)

        snapshots = await store.list_snapshots()
        assert [e.id for e in snapshots] == [first.id, second.id]
        assert snapshots[0].status == WorkflowStatus.RUNNING


class TestFilesystemStateStore:
    """FilesystemStateStore"""

    @pytest.mark.asyncio
    async def test_layout(self, tmp_path):
        """Test one JSON file per execution under its kind directory"""
        store = FilesystemStateStore(tmp_path)
        workflow, saga = _workflow(), _saga()

        await store.save_snapshot(workflow)
        await store.save_snapshot(saga)

        workflow_file = tmp_path / "workflow" / f"{workflow.id}.json"
        assert workflow_file.exists()
        assert (tmp_path / "saga" / f"{saga.id}.json").exists()
        assert json.loads(workflow_file.read_text())["kind"] == "workflow"
        assert not list(tmp_path.rglob("*.tmp"))

    @pytest.mark.asyncio
    async def test_save_load_delete(self, tmp_path):
        """Test snapshots survive a new store instance"""
        execution = _saga(SagaStatus.COMPENSATED)
        execution.compensated_steps.append("reserve")
        await FilesystemStateStore(tmp_path).save_snapshot(execution)

        store = FilesystemStateStore(tmp_path, pretty_json=False)
        loaded = await store.load_snapshot(execution.id)

        assert loaded == execution
        assert await store.delete_snapshot(execution.id) is True
        assert await store.load_snapshot(execution.id) is None
        assert await store.delete_snapshot(execution.id) is False

    @pytest.mark.asyncio
    async def test_list_by_modification_time(self, tmp_path):
        """Test newest files come first and filters apply"""
        store = FilesystemStateStore(tmp_path)
        old = _workflow(WorkflowStatus.COMPLETED)
        new = _workflow(WorkflowStatus.FAILED)
        await store.save_snapshot(old)
        await store.save_snapshot(new)
        os.utime(tmp_path / "workflow" / f"{old.id}.json", (1_000, 1_000))
        os.utime(tmp_path / "workflow" / f"{new.id}.json", (2_000, 2_000))

        assert [e.id for e in await store.list_snapshots()] == [new.id, old.id]
        assert [e.id for e in await store.list_snapshots(status="completed")] == [old.id]
        assert await store.list_snapshots(kind="saga") == []

    @pytest.mark.asyncio
    async def test_corrupt_file_skipped_in_listing(self, tmp_path):
        """Test an unreadable file does not break listing"""
        store = FilesystemStateStore(tmp_path)
        execution = _workflow()
        await store.save_snapshot(execution)
        (tmp_path / "workflow" / "broken.json").write_text("{not json")

        assert [e.id for e in await store.list_snapshots()] == [execution.id]

        with pytest.raises(StateStoreError):
            await store.load_snapshot("broken")

    @pytest.mark.parametrize("execution_id", ["", "../escape", ".hidden"])
    def test_invalid_ids(self, tmp_path, execution_id):
        """Test ids that are not safe file names are rejected"""
        store = FilesystemStateStore(tmp_path)

        with pytest.raises(StateStoreError):
            store._path("workflow", execution_id)


class TestSerialization:
    """Snapshot documents"""

    def test_unknown_kind(self):
        """Test an unknown kind is rejected"""
        with pytest.raises(StateStoreError, match="Unknown snapshot kind"):
            snapshot_from_dict({"kind": "job"})

    def test_invalid_json(self):
        """Test non-JSON text is a StateStoreError"""
        with pytest.raises(StateStoreError, match="not valid JSON"):
            loads("{")
