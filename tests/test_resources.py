"""Tests for ResourceGraph containment edges."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from accesscore.exceptions import ConflictError, CycleDetectedError, ResolutionFailedError
from accesscore.models import ResourceRef, ResourceRelationship
from accesscore.permissions import ResourceGraph
from accesscore.stores import InMemoryResourceStore

ORG = ResourceRef(type="organization", id="O1")
TEAM = ResourceRef(type="team", id="T1")
PROJECT = ResourceRef(type="project", id="P1")


def _store() -> InMemoryResourceStore:
    store = InMemoryResourceStore()
    store.add_relationship(ORG, TEAM)
    store.add_relationship(TEAM, PROJECT)
    return store


class TestAncestors:
    @pytest.mark.asyncio
    async def test_leaf_to_root(self) -> None:
        graph = ResourceGraph(_store())
        assert await graph.get_resource_ancestors("project", "P1") == [TEAM, ORG]

    @pytest.mark.asyncio
    async def test_root_has_none(self) -> None:
        graph = ResourceGraph(_store())
        assert await graph.get_resource_ancestors("organization", "O1") == []

    @pytest.mark.asyncio
    async def test_unknown_resource_has_none(self) -> None:
        graph = ResourceGraph(_store())
        assert await graph.get_resource_ancestors("project", "P404") == []

    @pytest.mark.asyncio
    async def test_cyclic_store_data_detected(self) -> None:
        store = _store()
        store.add_relationship(PROJECT, ORG)
        graph = ResourceGraph(store)
        with pytest.raises(CycleDetectedError):
            await graph.get_resource_ancestors("project", "P1")

    @pytest.mark.asyncio
    async def test_parent_and_child_relationships(self) -> None:
        graph = ResourceGraph(_store())
        assert [r.parent for r in await graph.get_parent_relationships("project", "P1")] == [TEAM]
        assert await graph.get_parent_relationships("organization", "O1") == []
        assert [r.child for r in await graph.get_child_relationships("organization", "O1")] == [TEAM]

    @pytest.mark.asyncio
    async def test_store_failure_wrapped(self) -> None:
        store = AsyncMock()
        store.get_parent_relationship.side_effect = TimeoutError("slow")
        graph = ResourceGraph(store)
        with pytest.raises(ResolutionFailedError) as exc_info:
            await graph.get_resource_ancestors("project", "P1")
        assert exc_info.value.stage == "resource_store"


class TestCreateRelationship:
    @pytest.mark.asyncio
    async def test_create(self) -> None:
        store = _store()
        graph = ResourceGraph(store)
        p2 = ResourceRef(type="project", id="P2")
        await graph.create_relationship(ResourceRelationship.between(TEAM, p2))
        assert await graph.get_resource_ancestors("project", "P2") == [TEAM, ORG]

    @pytest.mark.asyncio
    async def test_self_edge_rejected(self) -> None:
        graph = ResourceGraph(_store())
        with pytest.raises(CycleDetectedError):
            await graph.create_relationship(ResourceRelationship.between(TEAM, TEAM))

    @pytest.mark.asyncio
    async def test_cycle_rejected(self) -> None:
        """project P1 may not contain its own organization."""
        store = InMemoryResourceStore()
        store.add_relationship(ORG, TEAM)
        store.add_relationship(TEAM, PROJECT)
        graph = ResourceGraph(store)
        # ORG has no parent yet, so this only fails on the cycle check
        with pytest.raises(CycleDetectedError):
            await graph.create_relationship(ResourceRelationship.between(PROJECT, ORG))
        assert await graph.get_resource_ancestors("organization", "O1") == []

    @pytest.mark.asyncio
    async def test_second_parent_conflicts(self) -> None:
        graph = ResourceGraph(_store())
        other_team = ResourceRef(type="team", id="T2")
        with pytest.raises(ConflictError):
            await graph.create_relationship(ResourceRelationship.between(other_team, PROJECT))

    @pytest.mark.asyncio
    async def test_identical_edge_is_noop(self) -> None:
        store = _store()
        store.create_relationship = AsyncMock()  # type: ignore[method-assign]
        graph = ResourceGraph(store)
        await graph.create_relationship(ResourceRelationship.between(TEAM, PROJECT))
        store.create_relationship.assert_not_called()


class TestRemoveRelationship:
    @pytest.mark.asyncio
    async def test_remove_without_cascade(self) -> None:
        graph = ResourceGraph(_store())
        assert await graph.remove_relationship(ResourceRelationship.between(ORG, TEAM))
        assert await graph.get_resource_ancestors("project", "P1") == [TEAM]

    @pytest.mark.asyncio
    async def test_remove_missing_edge(self) -> None:
        graph = ResourceGraph(_store())
        assert not await graph.remove_relationship(ResourceRelationship.between(ORG, PROJECT))
