"""State store backends for execution snapshots."""

from sagaflow.storage.filesystem import FilesystemStateStore
from sagaflow.storage.memory import InMemoryStateStore

__all__ = ["FilesystemStateStore", "InMemoryStateStore"]
