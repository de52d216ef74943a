"""Permission resolver: one decision from roles, resources and assignments.

Decision model (additive only):

1. Load the user's active role assignments.
2. Global (unscoped) assignments contribute their roles' effective
   permissions everywhere.
3. With a resource scope, the resource and each of its ancestors contribute
   the effective permissions of assignments scoped to them, plus any
   permissions granted to the user directly on them.
4. The permission is allowed iff it appears in that union.

There is no deny rule and no precedence between sources: a grant found
anywhere wins, and nothing can revoke a grant made elsewhere. This mirrors
the product's permission model and is intentional.

Store failures surface as ``ResolutionFailedError`` and are never turned
into a denial here; the caller picks fail-open or fail-closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from ..exceptions import NotFoundError
from ..interfaces import ResourceStore, RoleStore
from ..models import PermissionDecision, ResourceRef, UserRoleAssignment
from ..utils import guarded_call
from .resources import ResourceGraph
from .roles import RoleGraph

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _GrantSource:
    """One contributor to a user's permission union."""

    permissions: frozenset[str]
    role_id: Optional[str] = None
    resource: Optional[ResourceRef] = None
    direct: bool = False


def _scope_of(resource_type: Optional[str], resource_id: Optional[str]) -> Optional[ResourceRef]:
    if resource_type and resource_id:
        return ResourceRef(type=resource_type, id=resource_id)
    if resource_type or resource_id:
        raise ValueError("resource_type and resource_id must be given together")
    return None


class PermissionResolver:
    """Composes the role graph, resource graph and assignments into decisions.

    Args:
        roles: Role graph (effective permissions per role).
        resources: Resource graph (ancestor chains).
        role_store: Source of user role assignments.
        resource_store: Source of direct resource grants.
        timeout: Seconds allowed for each store call.
    """

    def __init__(
        self,
        roles: RoleGraph,
        resources: ResourceGraph,
        role_store: RoleStore,
        resource_store: ResourceStore,
        *,
        timeout: Optional[float] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._roles = roles
        self._resources = resources
        self._role_store = role_store
        self._resource_store = resource_store
        self._timeout = timeout
        self._now = now

    async def get_user_roles(self, user_id: str) -> list[UserRoleAssignment]:
        """Active (non-expired) role assignments of ``user_id``."""
        assignments = await guarded_call(
            self._role_store.get_user_role_assignments(user_id),
            stage="role_store",
            timeout=self._timeout,
        )
        now = self._now()
        return [a for a in assignments if a.is_active(now)]

    async def has_role(self, user_id: str, role_name: str) -> bool:
        """True if any active assignment of ``user_id`` is to a role named ``role_name``."""
        for assignment in await self.get_user_roles(user_id):
            try:
                role = await self._roles.get_role(assignment.role_id)
            except NotFoundError:
                continue
            if role.name == role_name:
                return True
        return False

    async def _role_permissions(self, assignment: UserRoleAssignment) -> frozenset[str]:
        try:
            return await self._roles.get_effective_permissions(assignment.role_id)
        except NotFoundError:
            # A deleted role grants nothing
            logger.warning(
                "User '%s' is assigned missing role '%s' — ignoring assignment",
                assignment.user_id,
                assignment.role_id,
            )
            return frozenset()

    async def _grant_sources(
        self,
        user_id: str,
        scope: Optional[ResourceRef],
    ) -> list[_GrantSource]:
        """All contributors for ``user_id`` at ``scope``: global roles first, then leaf to root."""
        assignments = await self.get_user_roles(user_id)
        sources: list[_GrantSource] = []

        scoped: dict[ResourceRef, list[UserRoleAssignment]] = {}
        for assignment in assignments:
            if assignment.scope is None:
                sources.append(_GrantSource(await self._role_permissions(assignment), role_id=assignment.role_id))
            else:
                scoped.setdefault(assignment.scope, []).append(assignment)

        if scope is None:
            return sources

        chain = [scope, *await self._resources.get_resource_ancestors(scope.type, scope.id)]

        grants = await guarded_call(
            self._resource_store.get_resource_permissions(user_id),
            stage="resource_store",
            timeout=self._timeout,
        )
        direct: dict[ResourceRef, set[str]] = {}
        for grant in grants:
            direct.setdefault(grant.resource, set()).add(grant.permission)

        for resource in chain:
            for assignment in scoped.get(resource, ()):
                sources.append(
                    _GrantSource(
                        await self._role_permissions(assignment),
                        role_id=assignment.role_id,
                        resource=resource,
                    )
                )
            if resource in direct:
                sources.append(_GrantSource(frozenset(direct[resource]), resource=resource, direct=True))

        return sources

    async def check(
        self,
        user_id: str,
        permission: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> PermissionDecision:
        """Decide ``permission`` for ``user_id``, recording which grant allowed it.

        Example::

            decision = await resolver.check("u1", "EDIT_PROJECT", "project", "P1")
            decision.allowed                # True
            decision.via_role_id            # "editor"
            decision.via_resource_ancestor  # ResourceRef(type="team", id="T1")
        """
        scope = _scope_of(resource_type, resource_id)
        for source in await self._grant_sources(user_id, scope):
            if permission in source.permissions:
                decision = PermissionDecision(
                    allowed=True,
                    via_role_id=source.role_id,
                    via_resource_ancestor=source.resource,
                    via_direct_grant=source.direct,
                )
                logger.debug("ALLOW %s %s @ %s via %s", user_id, permission, scope, source.role_id or source.resource)
                return decision

        logger.debug("DENY %s %s @ %s", user_id, permission, scope)
        return PermissionDecision.denied()

    async def has_permission(
        self,
        user_id: str,
        permission: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        decision = await self.check(user_id, permission, resource_type, resource_id)
        return decision.allowed

    async def get_effective_permissions(
        self,
        user_id: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> frozenset[str]:
        """Everything ``user_id`` may do, globally or at the given resource."""
        scope = _scope_of(resource_type, resource_id)
        return _union(source.permissions for source in await self._grant_sources(user_id, scope))


def _union(sets: Iterable[frozenset[str]]) -> frozenset[str]:
    result: set[str] = set()
    for permissions in sets:
        result |= permissions
    return frozenset(result)


__all__ = ["PermissionResolver"]
