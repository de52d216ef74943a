"""Dict-backed collaborators for tests and single-process deployments.

Each store satisfies the matching protocol in ``accesscore.interfaces`` and
adds a few synchronous helpers for seeding data.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping, Optional

from ..models import (
    PolicyViolation,
    ResourcePermission,
    ResourceRef,
    ResourceRelationship,
    Role,
    UserRoleAssignment,
)
from ..permissions.constants import DEFAULT_ROLE_DEFINITIONS

logger = logging.getLogger(__name__)


class InMemoryRoleStore:
    """Roles and user role assignments held in dicts."""

    def __init__(self, roles: Iterable[Role] = ()) -> None:
        self._roles: dict[str, Role] = {role.id: role for role in roles}
        self._assignments: dict[str, list[UserRoleAssignment]] = {}

    @classmethod
    def with_default_roles(
        cls,
        definitions: Mapping[str, Iterable[str]] = DEFAULT_ROLE_DEFINITIONS,
    ) -> InMemoryRoleStore:
        """Store seeded with one system role per definition (id = name)."""
        return cls(
            Role(id=name, name=name, permissions=frozenset(perms), is_system_role=True)
            for name, perms in definitions.items()
        )

    # ── Seeding helpers ─────────────────────────────────

    def add_role(
        self,
        role_id: str,
        permissions: Iterable[str] = (),
        *,
        name: Optional[str] = None,
        parent_role_id: Optional[str] = None,
        description: str = "",
    ) -> Role:
        role = Role(
            id=role_id,
            name=name or role_id,
            permissions=frozenset(permissions),
            parent_role_id=parent_role_id,
            description=description,
        )
        self._roles[role_id] = role
        return role

    def grant_permission(self, role_id: str, permission: str) -> Role:
        role = self._roles[role_id]
        updated = role.model_copy(update={"permissions": role.permissions | {permission}})
        self._roles[role_id] = updated
        return updated

    def remove_role(self, role_id: str) -> bool:
        return self._roles.pop(role_id, None) is not None

    def assign_role(
        self,
        user_id: str,
        role_id: str,
        resource: Optional[ResourceRef] = None,
        *,
        expires_at: Optional[datetime] = None,
    ) -> UserRoleAssignment:
        assignment = UserRoleAssignment(
            user_id=user_id,
            role_id=role_id,
            resource_type=resource.type if resource else None,
            resource_id=resource.id if resource else None,
            expires_at=expires_at,
        )
        self._assignments.setdefault(user_id, []).append(assignment)
        return assignment

    def revoke_role(self, user_id: str, role_id: str, resource: Optional[ResourceRef] = None) -> int:
        before = self._assignments.get(user_id, [])
        kept = [a for a in before if not (a.role_id == role_id and a.scope == resource)]
        self._assignments[user_id] = kept
        return len(before) - len(kept)

    # ── RoleStore ───────────────────────────────────────

    async def get_role(self, role_id: str) -> Optional[Role]:
        return self._roles.get(role_id)

    async def list_roles(self) -> list[Role]:
        return list(self._roles.values())

    async def get_user_role_assignments(self, user_id: str) -> list[UserRoleAssignment]:
        return list(self._assignments.get(user_id, ()))

    async def set_parent_role(self, role_id: str, parent_id: Optional[str]) -> None:
        role = self._roles[role_id]
        self._roles[role_id] = role.model_copy(update={"parent_role_id": parent_id})

    async def add_role_permission(self, role_id: str, permission: str) -> None:
        self.grant_permission(role_id, permission)

    async def remove_role_permission(self, role_id: str, permission: str) -> bool:
        role = self._roles[role_id]
        if permission not in role.permissions:
            return False
        self._roles[role_id] = role.model_copy(update={"permissions": role.permissions - {permission}})
        return True


class InMemoryResourceStore:
    """Containment edges (one parent per child) and direct resource grants."""

    def __init__(self) -> None:
        self._parents: dict[ResourceRef, ResourceRelationship] = {}
        self._grants: dict[str, list[ResourcePermission]] = {}

    def add_relationship(self, parent: ResourceRef, child: ResourceRef) -> ResourceRelationship:
        """Insert an edge without validation (for seeding, including bad data)."""
        relationship = ResourceRelationship.between(parent, child)
        self._parents[child] = relationship
        return relationship

    def grant_resource_permission(self, user_id: str, permission: str, resource: ResourceRef) -> ResourcePermission:
        grant = ResourcePermission(
            user_id=user_id,
            permission=permission,
            resource_type=resource.type,
            resource_id=resource.id,
        )
        self._grants.setdefault(user_id, []).append(grant)
        return grant

    # ── ResourceStore ───────────────────────────────────

    async def get_parent_relationship(self, child_type: str, child_id: str) -> Optional[ResourceRelationship]:
        return self._parents.get(ResourceRef(type=child_type, id=child_id))

    async def get_child_relationships(self, parent_type: str, parent_id: str) -> list[ResourceRelationship]:
        parent = ResourceRef(type=parent_type, id=parent_id)
        return [r for r in self._parents.values() if r.parent == parent]

    async def create_relationship(self, relationship: ResourceRelationship) -> None:
        self._parents[relationship.child] = relationship

    async def remove_relationship(self, relationship: ResourceRelationship) -> bool:
        if self._parents.get(relationship.child) != relationship:
            return False
        del self._parents[relationship.child]
        return True

    async def get_resource_permissions(self, user_id: str) -> list[ResourcePermission]:
        return list(self._grants.get(user_id, ()))

    async def add_resource_permission(self, grant: ResourcePermission) -> None:
        grants = self._grants.setdefault(grant.user_id, [])
        if grant not in grants:
            grants.append(grant)

    async def remove_resource_permission(self, grant: ResourcePermission) -> bool:
        grants = self._grants.get(grant.user_id, [])
        if grant not in grants:
            return False
        grants.remove(grant)
        return True


class InMemoryAuditSink:
    """Audit sink that keeps every entry in ``entries``."""

    def __init__(self) -> None:
        self.entries: list[PolicyViolation] = []

    async def append(self, entry: PolicyViolation) -> None:
        self.entries.append(entry)
        logger.debug("Audit entry recorded: %s on %s", entry.permission, entry.role_name or entry.user_id)


__all__ = ["InMemoryAuditSink", "InMemoryResourceStore", "InMemoryRoleStore"]
