"""
Snapshot (de)serialization shared by the state store backends.

Snapshots are plain JSON documents; the "kind" field tells workflow and saga
records apart.
"""

import json
from collections.abc import Mapping
from typing import Any

from sagaflow.core.exceptions import StateStoreError
from sagaflow.core.models import SagaExecution, WorkflowExecution


def snapshot_to_dict(execution) -> dict[str, Any]:
    # round-trip through JSON so stored snapshots never alias live context data
    return json.loads(json.dumps(execution.to_dict(), default=str))


def snapshot_from_dict(data: Mapping[str, Any]):
    kind = data.get("kind", "workflow")
    try:
        if kind == "saga":
            return SagaExecution.from_dict(data)
        if kind == "workflow":
            return WorkflowExecution.from_dict(data)
    except (KeyError, ValueError, TypeError) as e:
        raise StateStoreError(f"Corrupt {kind} snapshot: {e}") from e
    raise StateStoreError(f"Unknown snapshot kind '{kind}'")


def dumps(execution, pretty: bool = True) -> str:
    return json.dumps(snapshot_to_dict(execution), indent=2 if pretty else None)


def loads(text: str):
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StateStoreError(f"Snapshot is not valid JSON: {e}") from e
    return snapshot_from_dict(data)
