"""
Filesystem state store.

Stores one JSON document per execution:

    base_path/
    ├── workflow/
    │   └── {execution_id}.json
    └── saga/
        └── {execution_id}.json

Writes go to a temporary file first and are moved into place, so a reader
never observes a half-written snapshot.

**Not recommended for multi-process deployments** - files are not locked
across processes.

Example:
    >>> store = FilesystemStateStore("./sagaflow-state")
    >>> await store.save_snapshot(execution)
    >>> await store.load_snapshot(execution.id)
"""

import asyncio
import os
from pathlib import Path

import aiofiles

from sagaflow.core.exceptions import StateStoreError
from sagaflow.core.logger import get_logger
from sagaflow.core.ports import StateStore
from sagaflow.storage.serialization import dumps, loads

logger = get_logger(__name__)

_KINDS = ("workflow", "saga")


class FilesystemStateStore(StateStore):
    def __init__(self, base_path: str | Path = "./sagaflow-state", pretty_json: bool = True):
        """
        Args:
            base_path: Root directory for snapshot files (created if missing)
            pretty_json: Indent JSON documents for readability
        """
        self.base_path = Path(base_path)
        self.pretty_json = pretty_json
        for kind in _KINDS:
            (self.base_path / kind).mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, kind: str, execution_id: str) -> Path:
        if not execution_id or "/" in execution_id or execution_id.startswith("."):
            raise StateStoreError(f"Invalid execution id for a file name: '{execution_id}'")
        return self.base_path / kind / f"{execution_id}.json"

    def _find(self, execution_id: str) -> Path | None:
        for kind in _KINDS:
            path = self._path(kind, execution_id)
            if path.exists():
                return path
        return None

    async def save_snapshot(self, execution) -> None:
        path = self._path(execution.kind, execution.id)
        tmp_path = path.with_suffix(".json.tmp")
        text = dumps(execution, pretty=self.pretty_json)

        async with self._lock:
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(text)
            os.replace(tmp_path, path)

    async def _read(self, path: Path):
        async with aiofiles.open(path) as f:
            return loads(await f.read())

    async def load_snapshot(self, execution_id: str):
        path = self._find(execution_id)
        if path is None:
            return None
        return await self._read(path)

    async def delete_snapshot(self, execution_id: str) -> bool:
        async with self._lock:
            path = self._find(execution_id)
            if path is None:
                return False
            path.unlink()
            return True

    async def list_snapshots(
        self, kind: str | None = None, status: str | None = None, limit: int = 100
    ) -> list:
        kinds = [kind] if kind else list(_KINDS)
        paths = [path for k in kinds for path in (self.base_path / k).glob("*.json")]
        paths.sort(key=lambda p: p.stat().st_mtime, reverse=True)

        results = []
        for path in paths:
            try:
                execution = await self._read(path)
            except StateStoreError as e:
                logger.warning(f"Skipping unreadable snapshot {path.name}: {e}")
                continue
            if status is None or execution.status.value == status:
                results.append(execution)
            if len(results) >= limit:
                break
        return results
