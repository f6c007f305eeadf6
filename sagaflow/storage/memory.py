"""
In-memory state store.

Keeps serialized snapshots in a dict. Suitable for tests and single-process
deployments that do not need history across restarts.
"""

import asyncio
from typing import Any

from sagaflow.core.ports import StateStore
from sagaflow.storage.serialization import snapshot_from_dict, snapshot_to_dict


class InMemoryStateStore(StateStore):
    """Snapshots are copied on save and on load, never shared with callers."""

    def __init__(self):
        self._snapshots: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def save_snapshot(self, execution) -> None:
        data = snapshot_to_dict(execution)
        async with self._lock:
            # re-insert so iteration order is save order
            self._snapshots.pop(execution.id, None)
            self._snapshots[execution.id] = data

    async def load_snapshot(self, execution_id: str):
        async with self._lock:
            data = self._snapshots.get(execution_id)
        return snapshot_from_dict(data) if data is not None else None

    async def delete_snapshot(self, execution_id: str) -> bool:
        async with self._lock:
            return self._snapshots.pop(execution_id, None) is not None

    async def list_snapshots(
        self, kind: str | None = None, status: str | None = None, limit: int = 100
    ) -> list:
        async with self._lock:
            documents = list(reversed(self._snapshots.values()))
        matches = [
            snapshot_from_dict(data)
            for data in documents
            if (kind is None or data.get("kind") == kind)
            and (status is None or data.get("status") == status)
        ]
        return matches[:limit]

    async def count(self) -> int:
        async with self._lock:
            return len(self._snapshots)

    async def clear(self) -> None:
        async with self._lock:
            self._snapshots.clear()
