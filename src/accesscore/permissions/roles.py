"""Role graph: role inheritance chains and effective permission sets.

Provides:
- ``walk_role_ancestors()`` — cycle-safe parent chain walk over a role map.
- ``RoleGraph`` — read-mostly snapshot of the Role Store with memoised
  effective permissions and validated parent mutation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Iterable, Mapping, Optional

from ..exceptions import CycleDetectedError, HierarchyDepthError, NotFoundError
from ..interfaces import RoleStore
from ..models import Role
from ..utils import guarded_call

logger = logging.getLogger(__name__)


def walk_role_ancestors(roles: Mapping[str, Role], role_id: str) -> list[Role]:
    """Return the parent chain of ``role_id`` (nearest first, excluding itself).

    Raises:
        NotFoundError: ``role_id`` is not in ``roles``.
        CycleDetectedError: the chain revisits a role.
    """
    role = roles.get(role_id)
    if role is None:
        raise NotFoundError(f"Role '{role_id}' not found", role_id=role_id)

    visited = {role_id}
    ancestors: list[Role] = []
    parent_id = role.parent_role_id

    while parent_id is not None:
        if parent_id in visited:
            raise CycleDetectedError(
                f"Role hierarchy cycle: '{parent_id}' reached twice from '{role_id}'",
                role_id=role_id,
                chain=[role_id, *(r.id for r in ancestors), parent_id],
            )
        parent = roles.get(parent_id)
        if parent is None:
            logger.warning("Role '%s' references missing parent '%s'", ancestors[-1].id if ancestors else role_id, parent_id)
            break
        visited.add(parent_id)
        ancestors.append(parent)
        parent_id = parent.parent_role_id

    return ancestors


class RoleGraph:
    """In-memory view of roles, refreshed from the Role Store.

    The snapshot is reloaded when older than ``refresh_seconds``, after any
    successful ``set_parent_role()``, on an explicit ``refresh()``, and on the
    first query after ``mark_stale()``.
    Traversal itself never suspends: inputs are fetched first, then walked.

    Args:
        store: Role Store collaborator.
        refresh_seconds: Maximum snapshot age.
        max_depth: Optional limit on role chain length (a root role has depth 1).
        timeout: Seconds allowed for each store call.
    """

    def __init__(
        self,
        store: RoleStore,
        *,
        refresh_seconds: float = 30.0,
        max_depth: Optional[int] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._refresh_seconds = refresh_seconds
        self._max_depth = max_depth
        self._timeout = timeout
        self._clock = clock

        self._roles: dict[str, Role] = {}
        self._effective: dict[str, frozenset[str]] = {}
        self._loaded_at: Optional[float] = None
        self._refresh_lock = asyncio.Lock()
        self._mutation_lock = asyncio.Lock()

    # ── Snapshot ────────────────────────────────────────

    def _install(self, roles: Iterable[Role]) -> None:
        self._roles = {role.id: role for role in roles}
        self._effective = {}
        self._loaded_at = self._clock()

    def _is_stale(self) -> bool:
        return self._loaded_at is None or self._clock() - self._loaded_at >= self._refresh_seconds

    def mark_stale(self) -> None:
        """Force a reload on the next query (e.g. after a remote role change)."""
        self._loaded_at = None
        self._effective = {}

    async def refresh(self) -> None:
        """Reload every role from the store."""
        roles = await guarded_call(self._store.list_roles(), stage="role_store", timeout=self._timeout)
        self._install(roles)
        logger.debug("Role graph refreshed: %d roles", len(self._roles))

    async def _snapshot(self, *required: str) -> dict[str, Role]:
        if self._is_stale():
            async with self._refresh_lock:
                if self._is_stale():
                    await self.refresh()

        # A role created since the last refresh forces one early reload
        if any(role_id not in self._roles for role_id in required):
            async with self._refresh_lock:
                if any(role_id not in self._roles for role_id in required):
                    await self.refresh()

        return self._roles

    # ── Queries ─────────────────────────────────────────

    async def get_role(self, role_id: str) -> Role:
        roles = await self._snapshot(role_id)
        role = roles.get(role_id)
        if role is None:
            raise NotFoundError(f"Role '{role_id}' not found", role_id=role_id)
        return role

    async def list_roles(self) -> list[Role]:
        roles = await self._snapshot()
        return list(roles.values())

    async def get_ancestor_roles(self, role_id: str) -> list[Role]:
        """Parent, grandparent, ... of ``role_id``. Raises CycleDetectedError on a loop."""
        roles = await self._snapshot(role_id)
        return walk_role_ancestors(roles, role_id)

    async def get_effective_permissions(self, role_id: str) -> frozenset[str]:
        """Own permissions unioned with every ancestor's permissions."""
        roles = await self._snapshot(role_id)
        return self._effective_permissions(roles, role_id)

    def _effective_permissions(self, roles: Mapping[str, Role], role_id: str) -> frozenset[str]:
        cached = self._effective.get(role_id)
        if cached is not None:
            return cached

        ancestors = walk_role_ancestors(roles, role_id)
        chain = [roles[role_id], *ancestors]

        # Fold root → leaf, reusing any memoised suffix of the chain
        permissions: frozenset[str] = frozenset()
        for role in reversed(chain):
            memo = self._effective.get(role.id)
            if memo is not None:
                permissions = memo
                continue
            permissions = permissions | role.permissions
            self._effective[role.id] = permissions

        return permissions

    async def get_descendant_roles(self, role_id: str) -> list[Role]:
        """Children, grandchildren, ... of ``role_id`` in breadth-first order."""
        roles = await self._snapshot(role_id)
        if role_id not in roles:
            raise NotFoundError(f"Role '{role_id}' not found", role_id=role_id)

        children = self._children_index(roles)
        descendants: list[Role] = []
        visited = {role_id}
        queue = deque([role_id])
        while queue:
            for child in children.get(queue.popleft(), ()):
                if child.id in visited:
                    continue
                visited.add(child.id)
                descendants.append(child)
                queue.append(child.id)
        return descendants

    async def is_descendant(self, candidate_id: str, role_id: str) -> bool:
        """True if ``candidate_id`` inherits (directly or transitively) from ``role_id``."""
        roles = await self._snapshot(candidate_id, role_id)
        return any(r.id == role_id for r in walk_role_ancestors(roles, candidate_id))

    @staticmethod
    def _children_index(roles: Mapping[str, Role]) -> dict[str, list[Role]]:
        index: dict[str, list[Role]] = {}
        for role in roles.values():
            if role.parent_role_id is not None:
                index.setdefault(role.parent_role_id, []).append(role)
        return index

    def _subtree_height(self, roles: Mapping[str, Role], role_id: str) -> int:
        children = self._children_index(roles)
        height = 0
        visited = {role_id}
        frontier = [role_id]
        while frontier:
            next_frontier = []
            for node in frontier:
                for child in children.get(node, ()):
                    if child.id not in visited:
                        visited.add(child.id)
                        next_frontier.append(child.id)
            if next_frontier:
                height += 1
            frontier = next_frontier
        return height

    # ── Mutation ────────────────────────────────────────

    async def set_parent_role(self, child_id: str, parent_id: Optional[str]) -> None:
        """Set or clear the parent of ``child_id``.

        Validation runs against a fresh snapshot before the store is touched;
        on any error the store and the snapshot are left unchanged.

        Raises:
            NotFoundError: either role does not exist.
            CycleDetectedError: ``parent_id`` is ``child_id`` or one of its descendants.
            HierarchyDepthError: the resulting chain would exceed ``max_depth``.
        """
        async with self._mutation_lock:
            await self.refresh()
            roles = self._roles

            if child_id not in roles:
                raise NotFoundError(f"Role '{child_id}' not found", role_id=child_id)

            if parent_id is not None:
                if parent_id not in roles:
                    raise NotFoundError(f"Role '{parent_id}' not found", role_id=parent_id)
                if parent_id == child_id:
                    logger.warning("Rejected self-parent for role '%s'", child_id)
                    raise CycleDetectedError(
                        f"Role '{child_id}' cannot be its own parent",
                        role_id=child_id,
                        parent_id=parent_id,
                    )
                parent_chain = walk_role_ancestors(roles, parent_id)
                if any(r.id == child_id for r in parent_chain):
                    logger.warning("Rejected parent '%s' for role '%s': would create a cycle", parent_id, child_id)
                    raise CycleDetectedError(
                        f"Setting '{parent_id}' as parent of '{child_id}' would create a cycle",
                        role_id=child_id,
                        parent_id=parent_id,
                    )
                if self._max_depth is not None:
                    depth = len(parent_chain) + 2 + self._subtree_height(roles, child_id)
                    if depth > self._max_depth:
                        raise HierarchyDepthError(
                            f"Role chain depth {depth} exceeds limit {self._max_depth}",
                            role_id=child_id,
                            parent_id=parent_id,
                            depth=depth,
                        )

            await guarded_call(
                self._store.set_parent_role(child_id, parent_id),
                stage="role_store",
                timeout=self._timeout,
            )

            updated = dict(roles)
            updated[child_id] = roles[child_id].model_copy(update={"parent_role_id": parent_id})
            self._install(updated.values())
            logger.info("Role '%s' parent set to %r", child_id, parent_id)


__all__ = ["RoleGraph", "walk_role_ancestors"]
