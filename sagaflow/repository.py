"""
In-memory workflow definition repository.

Definitions move through a small lifecycle:

    register ─► DRAFT ──publish──► PUBLISHED (active) ──deprecate──► DEPRECATED
                  ▲                    │
                  └────unpublish───────┘            any ──archive──► ARCHIVED

Only drafts can be edited, and only published + active definitions can be
executed. Definitions are immutable values: every change stores a new
instance and the previous one is discarded.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from typing import Any

from sagaflow.core.exceptions import DefinitionStateError, DuplicateDefinitionError, NotFoundError
from sagaflow.core.logger import get_logger
from sagaflow.core.models import ValidationResult, WorkflowDefinition
from sagaflow.core.ports import DefinitionRepository
from sagaflow.execution.validation import validate_workflow
from sagaflow.types import DefinitionStatus

logger = get_logger(__name__)

_EDITABLE_FIELDS = frozenset({"name", "version", "description", "triggers", "steps", "metadata"})


def version_key(version: str) -> tuple:
    """Sort key for version strings: numeric parts compare as numbers."""
    parts = re.split(r"[.\-+]", version or "")
    return tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in parts)


class InMemoryDefinitionRepository(DefinitionRepository):
    """
    Definition storage for tests, the CLI and single-process embedding.

    Definitions are keyed by id; (name, version) pairs are unique.
    """

    def __init__(self):
        self._definitions: dict[str, WorkflowDefinition] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, definition_id: str) -> WorkflowDefinition | None:
        return self._definitions.get(definition_id)

    async def _require(self, definition_id: str) -> WorkflowDefinition:
        definition = self._definitions.get(definition_id)
        if definition is None:
            raise NotFoundError("workflow", definition_id)
        return definition

    async def find_by_name(self, name: str, version: str | None = None) -> WorkflowDefinition | None:
        """Exact version when given, else the latest version of `name`."""
        candidates = [d for d in self._definitions.values() if d.name == name]
        if version is not None:
            return next((d for d in candidates if d.version == version), None)
        if not candidates:
            return None
        # prefer executable versions so a newer draft does not shadow a live one
        executable = [d for d in candidates if d.is_executable]
        pool = executable or candidates
        return max(pool, key=lambda d: version_key(d.version))

    async def find_by_id_or_name(self, key: str) -> WorkflowDefinition | None:
        definition = self._definitions.get(key)
        if definition is not None:
            return definition
        if "@" in key:
            name, _, version = key.rpartition("@")
            found = await self.find_by_name(name, version)
            if found is not None:
                return found
        return await self.find_by_name(key)

    async def list(
        self,
        status: DefinitionStatus | str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> list[WorkflowDefinition]:
        """Definitions matching every given filter, newest first."""
        if isinstance(status, str):
            status = DefinitionStatus(status)
        needle = search.lower() if search else None

        results = [
            definition
            for definition in self._definitions.values()
            if (status is None or definition.status is status)
            and (is_active is None or definition.is_active == is_active)
            and (needle is None or self._matches_search(definition, needle))
        ]
        results.sort(key=lambda d: d.created_at, reverse=True)
        return results

    async def list_active(
        self, filters: Mapping[str, Any] | None = None
    ) -> list[WorkflowDefinition]:
        filters = filters or {}
        results = await self.list(
            status=DefinitionStatus.PUBLISHED, is_active=True, search=filters.get("search")
        )
        if filters.get("name"):
            results = [d for d in results if d.name == filters["name"]]
        return results

    @staticmethod
    def _matches_search(definition: WorkflowDefinition, needle: str) -> bool:
        return needle in definition.name.lower() or needle in (definition.description or "").lower()

    def __len__(self) -> int:
        return len(self._definitions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        return validate_workflow(definition)

    def _check_unique(self, definition: WorkflowDefinition, ignore_id: str | None = None) -> None:
        for existing in self._definitions.values():
            if existing.id == ignore_id:
                continue
            if existing.key == definition.key:
                raise DuplicateDefinitionError(definition.name, definition.version)

    async def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Store a new definition as an inactive draft.

        Raises:
            DuplicateDefinitionError: name@version is already registered
        """
        logger.info(f"Registering workflow: {definition.name}@{definition.version}")
        async with self._lock:
            self._check_unique(definition)
            if definition.id in self._definitions:
                raise DuplicateDefinitionError(definition.name, definition.version)
            stored = definition.evolve(status=DefinitionStatus.DRAFT, is_active=False)
            self._definitions[stored.id] = stored
        return stored

    async def update(self, definition_id: str, **changes: Any) -> WorkflowDefinition:
        """
        Edit a draft. Only name, version, description, triggers, steps and
        metadata can change.
        """
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            msg = f"Cannot update field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        async with self._lock:
            current = await self._require(definition_id)
            if current.status is not DefinitionStatus.DRAFT:
                msg = f"Workflow {definition_id} is {current.status.value}; only drafts can be updated"
                raise DefinitionStateError(msg)
            if "triggers" in changes:
                changes["triggers"] = tuple(changes["triggers"])
            if "steps" in changes:
                changes["steps"] = tuple(changes["steps"])
            updated = current.evolve(**changes)
            self._check_unique(updated, ignore_id=definition_id)
            self._definitions[definition_id] = updated
        logger.info(f"Workflow updated: {definition_id}")
        return updated

    async def _set_status(
        self,
        definition_id: str,
        status: DefinitionStatus,
        is_active: bool,
        allowed_from: tuple[DefinitionStatus, ...] | None = None,
    ) -> WorkflowDefinition:
        async with self._lock:
            current = await self._require(definition_id)
            if allowed_from is not None and current.status not in allowed_from:
                msg = (
                    f"Cannot move workflow {definition_id} from "
                    f"{current.status.value} to {status.value}"
                )
                raise DefinitionStateError(msg)
            updated = current.evolve(status=status, is_active=is_active)
            self._definitions[definition_id] = updated
        logger.info(f"Workflow {definition_id} is now {status.value}")
        return updated

    async def publish(self, definition_id: str) -> WorkflowDefinition:
        return await self._set_status(
            definition_id,
            DefinitionStatus.PUBLISHED,
            True,
            allowed_from=(DefinitionStatus.DRAFT, DefinitionStatus.PUBLISHED),
        )

    async def unpublish(self, definition_id: str) -> WorkflowDefinition:
        return await self._set_status(
            definition_id,
            DefinitionStatus.DRAFT,
            False,
            allowed_from=(DefinitionStatus.PUBLISHED, DefinitionStatus.DRAFT),
        )

    async def deprecate(self, definition_id: str) -> WorkflowDefinition:
        return await self._set_status(
            definition_id,
            DefinitionStatus.DEPRECATED,
            False,
            allowed_from=(DefinitionStatus.PUBLISHED,),
        )

    async def archive(self, definition_id: str) -> WorkflowDefinition:
        return await self._set_status(definition_id, DefinitionStatus.ARCHIVED, False)

    async def delete(self, definition_id: str) -> None:
        async with self._lock:
            if self._definitions.pop(definition_id, None) is None:
                raise NotFoundError("workflow", definition_id)
        logger.info(f"Workflow deleted: {definition_id}")
