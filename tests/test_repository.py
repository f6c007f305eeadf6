"""
Tests for InMemoryDefinitionRepository.
"""

import typing
from datetime import UTC, datetime

import pytest

from sagaflow import (
    DefinitionStateError,
    DefinitionStatus,
    DuplicateDefinitionError,
    NotFoundError,
    Step,
    Trigger,
    WorkflowDefinition,
)
from sagaflow.repository import InMemoryDefinitionRepository, version_key


def _definition(name="order-flow", version="1.0.0", **kwargs):
    return WorkflowDefinition(
        id=f"{name}@{version}",
        name=name,
        version=version,
        triggers=(Trigger("order.created", "a"),),
        steps=(Step(id="a"),),
        **kwargs,
    )


class TestRegister:
    """Registration"""

    @pytest.mark.asyncio
    async def test_stored_as_inactive_draft(self, repository):
        """Test registration ignores the incoming status"""
        stored = await repository.register(
            _definition(status=DefinitionStatus.PUBLISHED, is_active=True)
        )

        assert stored.status is DefinitionStatus.DRAFT
        assert not stored.is_active
        assert await repository.get(stored.id) == stored
        assert len(repository) == 1

    @pytest.mark.asyncio
    async def test_duplicate_name_and_version(self, repository):
        """Test name@version is unique"""
        await repository.register(_definition())

        with pytest.raises(DuplicateDefinitionError, match="order-flow@1.0.0 already exists"):
            await repository.register(_definition().evolve(id="other-id"))


class TestUpdate:
    """Editing drafts"""

    @pytest.mark.asyncio
    async def test_draft_fields_change(self, repository):
        """Test description and steps are replaced"""
        stored = await repository.register(_definition())

        updated = await repository.update(
            stored.id, description="Orders", steps=[Step(id="a"), Step(id="b")]
        )

        assert updated.description == "Orders"
        assert [s.id for s in updated.steps] == ["a", "b"]
        assert isinstance(updated.steps, tuple)

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, repository):
        """Test status can only change through lifecycle operations"""
        stored = await repository.register(_definition())

        with pytest.raises(ValueError, match="Cannot update field\\(s\\): status"):
            await repository.update(stored.id, status=DefinitionStatus.PUBLISHED)

    @pytest.mark.asyncio
    async def test_published_is_read_only(self, repository):
        """Test only drafts can be edited"""
        stored = await repository.register(_definition())
        await repository.publish(stored.id)

        with pytest.raises(DefinitionStateError):
            await repository.update(stored.id, description="changed")

    @pytest.mark.asyncio
    async def test_version_clash_rejected(self, repository):
        """Test renaming into an existing name@version fails"""
        await repository.register(_definition(version="1.0.0"))
        draft = await repository.register(_definition(version="2.0.0"))

        with pytest.raises(DuplicateDefinitionError):
            await repository.update(draft.id, version="1.0.0")

    @pytest.mark.asyncio
    async def test_unknown_id(self, repository):
        """Test updating a missing definition"""
        with pytest.raises(NotFoundError):
            await repository.update("missing", description="x")


class TestLifecycle:
    """publish / unpublish / deprecate / archive / delete"""

    @pytest.mark.asyncio
    async def test_publish_and_unpublish(self, repository):
        """Test publish activates and unpublish returns to an inactive draft"""
        stored = await repository.register(_definition())

        published = await repository.publish(stored.id)
        assert published.is_executable

        draft = await repository.unpublish(stored.id)
        assert draft.status is DefinitionStatus.DRAFT
        assert not draft.is_active

    @pytest.mark.asyncio
    async def test_deprecate_requires_published(self, repository):
        """Test drafts cannot be deprecated"""
        stored = await repository.register(_definition())

        with pytest.raises(DefinitionStateError):
            await repository.deprecate(stored.id)

        await repository.publish(stored.id)
        deprecated = await repository.deprecate(stored.id)
        assert deprecated.status is DefinitionStatus.DEPRECATED
        assert not deprecated.is_executable

    @pytest.mark.asyncio
    async def test_archived_cannot_be_republished(self, repository):
        """Test archive is reachable from anywhere and final for publish"""
        stored = await repository.register(_definition())
        await repository.archive(stored.id)

        with pytest.raises(DefinitionStateError):
            await repository.publish(stored.id)

    @pytest.mark.asyncio
    async def test_delete(self, repository):
        """Test deleting twice fails the second time"""
        stored = await repository.register(_definition())

        await repository.delete(stored.id)

        assert await repository.get(stored.id) is None
        with pytest.raises(NotFoundError):
            await repository.delete(stored.id)


class TestLookup:
    """Lookup by id, name and version"""

    @pytest.mark.asyncio
    async def test_latest_version_compares_numerically(self, repository):
        """Test 1.10.0 is newer than 1.9.0"""
        await repository.register(_definition(version="1.9.0"))
        await repository.register(_definition(version="1.10.0"))

        found = await repository.find_by_name("order-flow")

        assert found.version == "1.10.0"

    @pytest.mark.asyncio
    async def test_executable_version_preferred(self, publish, repository):
        """Test a newer draft does not shadow a published version"""
        await publish(_definition(version="1.0.0"))
        await repository.register(_definition(version="2.0.0"))

        found = await repository.find_by_id_or_name("order-flow")

        assert found.version == "1.0.0"

    @pytest.mark.asyncio
    async def test_find_by_id_or_name(self, repository):
        """Test id, name@version and plain name lookups"""
        await repository.register(_definition(version="1.0.0"))

        assert (await repository.find_by_id_or_name("order-flow@1.0.0")).version == "1.0.0"
        assert (await repository.find_by_id_or_name("order-flow")).version == "1.0.0"
        assert await repository.find_by_id_or_name("order-flow@9") is None
        assert await repository.find_by_id_or_name("unknown") is None
        assert await repository.find_by_name("order-flow", "9") is None

    @pytest.mark.asyncio
    async def test_list_filters(self, publish, repository):
        """Test status, activity and search filters, newest first"""
        older = datetime(2024, 1, 1, tzinfo=UTC)
        newer = datetime(2024, 6, 1, tzinfo=UTC)
        await publish(_definition(name="order-flow", created_at=older))
        await publish(_definition(name="refund-flow", description="Refunds", created_at=newer))
        await repository.register(_definition(name="draft-flow"))

        published = await repository.list(status="published")
        assert [d.name for d in published] == ["refund-flow", "order-flow"]
        assert [d.name for d in await repository.list(is_active=False)] == ["draft-flow"]
        assert [d.name for d in await repository.list(search="REFUND")] == ["refund-flow"]

    @pytest.mark.asyncio
    async def test_list_active(self, publish, repository):
        """Test only published and active definitions, optionally by name"""
        await publish(_definition(name="order-flow"))
        await repository.register(_definition(name="draft-flow"))

        assert [d.name for d in await repository.list_active()] == ["order-flow"]
        assert await repository.list_active({"name": "draft-flow"}) == []

    def test_validate_delegates(self, repository):
        """Test validate reports graph problems"""
        definition = _definition().evolve(steps=(Step(id="a", next="ghost"),))

        result = repository.validate(definition)

        assert not result.is_valid
        assert any("ghost" in error for error in result.errors)


def test_version_key_orders_numbers():
    """Test numeric parts compare as numbers"""
    assert sorted(["1.10.0", "1.2.0", "1.9.1"], key=version_key) == ["1.2.0", "1.9.1", "1.10.0"]


def test_list_active_annotation_is_builtin_list():
    """Test signatures after the list() method resolve to the builtin list"""
    hints = typing.get_type_hints(InMemoryDefinitionRepository.list_active)

    assert hints["return"] == list[WorkflowDefinition]
