"""Resource graph: containment edges such as organization → team → project.

Each resource instance has at most one parent edge, so the containment
structure is a forest. Ancestor walks are fetched hop by hop from the
Resource Store and guarded against cycles the same way role chains are.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..exceptions import ConflictError, CycleDetectedError
from ..interfaces import ResourceStore
from ..models import ResourceRef, ResourceRelationship
from ..utils import guarded_call

logger = logging.getLogger(__name__)


class ResourceGraph:
    """Cycle-safe view over the Resource Store.

    Args:
        store: Resource Store collaborator.
        timeout: Seconds allowed for each store call.
    """

    def __init__(self, store: ResourceStore, *, timeout: Optional[float] = None) -> None:
        self._store = store
        self._timeout = timeout
        self._mutation_lock = asyncio.Lock()

    async def _parent_of(self, ref: ResourceRef) -> Optional[ResourceRelationship]:
        return await guarded_call(
            self._store.get_parent_relationship(ref.type, ref.id),
            stage="resource_store",
            timeout=self._timeout,
        )

    async def get_child_relationships(self, parent_type: str, parent_id: str) -> list[ResourceRelationship]:
        return await guarded_call(
            self._store.get_child_relationships(parent_type, parent_id),
            stage="resource_store",
            timeout=self._timeout,
        )

    async def get_parent_relationships(self, child_type: str, child_id: str) -> list[ResourceRelationship]:
        """Parent edges of a resource (zero or one in a forest)."""
        relationship = await self._parent_of(ResourceRef(type=child_type, id=child_id))
        return [relationship] if relationship is not None else []

    async def get_resource_ancestors(self, resource_type: str, resource_id: str) -> list[ResourceRef]:
        """Containing resources of ``(resource_type, resource_id)``, leaf to root.

        The starting resource itself is not included.

        Raises:
            CycleDetectedError: the parent chain revisits a resource.
        """
        start = ResourceRef(type=resource_type, id=resource_id)
        visited = {start}
        ancestors: list[ResourceRef] = []
        current = start

        while True:
            relationship = await self._parent_of(current)
            if relationship is None:
                break
            parent = relationship.parent
            if parent in visited:
                raise CycleDetectedError(
                    f"Resource hierarchy cycle: {parent} reached twice from {start}",
                    resource=str(start),
                    chain=[str(r) for r in (start, *ancestors, parent)],
                )
            visited.add(parent)
            ancestors.append(parent)
            current = parent

        return ancestors

    async def create_relationship(self, relationship: ResourceRelationship) -> None:
        """Attach ``child`` under ``parent``.

        Re-creating an existing identical edge is a no-op.

        Raises:
            CycleDetectedError: the edge is a self edge, or ``child`` already
                contains ``parent``.
            ConflictError: ``child`` already has a different parent.
        """
        parent, child = relationship.parent, relationship.child
        async with self._mutation_lock:
            if parent == child:
                raise CycleDetectedError(f"Resource {child} cannot contain itself", resource=str(child))

            existing = await self._parent_of(child)
            if existing is not None:
                if existing == relationship:
                    return
                raise ConflictError(
                    f"Resource {child} already belongs to {existing.parent}",
                    resource=str(child),
                    parent=str(existing.parent),
                )

            parent_chain = await self.get_resource_ancestors(parent.type, parent.id)
            if child in parent_chain:
                logger.warning("Rejected edge %s -> %s: would create a cycle", parent, child)
                raise CycleDetectedError(
                    f"Placing {child} under {parent} would create a cycle",
                    resource=str(child),
                    parent=str(parent),
                )

            await guarded_call(
                self._store.create_relationship(relationship),
                stage="resource_store",
                timeout=self._timeout,
            )
            logger.info("Resource %s attached under %s", child, parent)

    async def remove_relationship(self, relationship: ResourceRelationship) -> bool:
        """Detach an edge. Descendants of ``child`` simply lose the upper levels."""
        async with self._mutation_lock:
            removed = await guarded_call(
                self._store.remove_relationship(relationship),
                stage="resource_store",
                timeout=self._timeout,
            )
        if removed:
            logger.info("Resource %s detached from %s", relationship.child, relationship.parent)
        return removed


__all__ = ["ResourceGraph"]
