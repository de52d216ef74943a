"""Core data models for the access-control engine.

These are Pydantic models shared by the graphs, the resolver, the cache
layer and the store interfaces. Models used as set members or dict keys
are frozen.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceRef(BaseModel):
    """A resource instance, e.g. ``ResourceRef(type="project", id="P1")``."""

    model_config = {"frozen": True}

    type: str
    id: str

    def __str__(self) -> str:
        return f"{self.type}/{self.id}"


class Role(BaseModel):
    """Named bundle of permissions with an optional single parent role."""

    model_config = {"frozen": True}

    id: str
    name: str
    permissions: frozenset[str] = Field(default_factory=frozenset)
    parent_role_id: Optional[str] = None
    description: str = ""
    is_system_role: bool = False


class UserRoleAssignment(BaseModel):
    """A role held by a user, either globally or scoped to one resource.

    Scoped assignments grant the role's permissions on the scope resource and
    on every resource contained in it, never outside that subtree.
    """

    model_config = {"frozen": True}

    user_id: str
    role_id: str
    assigned_at: datetime = Field(default_factory=_utcnow)
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    expires_at: Optional[datetime] = None  # None = never expires

    @property
    def scope(self) -> Optional[ResourceRef]:
        if self.resource_type is None or self.resource_id is None:
            return None
        return ResourceRef(type=self.resource_type, id=self.resource_id)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """An assignment stops granting anything once ``expires_at`` passes."""
        if self.expires_at is None:
            return True
        return (now or _utcnow()) < self.expires_at


class ResourceRelationship(BaseModel):
    """Containment edge: ``parent`` contains ``child``."""

    model_config = {"frozen": True}

    parent_type: str
    parent_id: str
    child_type: str
    child_id: str

    @property
    def parent(self) -> ResourceRef:
        return ResourceRef(type=self.parent_type, id=self.parent_id)

    @property
    def child(self) -> ResourceRef:
        return ResourceRef(type=self.child_type, id=self.child_id)

    @classmethod
    def between(cls, parent: ResourceRef, child: ResourceRef) -> ResourceRelationship:
        return cls(
            parent_type=parent.type,
            parent_id=parent.id,
            child_type=child.type,
            child_id=child.id,
        )


class ResourcePermission(BaseModel):
    """A permission granted directly to a user on one resource."""

    model_config = {"frozen": True}

    user_id: str
    permission: str
    resource_type: str
    resource_id: str

    @property
    def resource(self) -> ResourceRef:
        return ResourceRef(type=self.resource_type, id=self.resource_id)


class PermissionDecision(BaseModel):
    """Derived, cache-only outcome of a permission check."""

    model_config = {"frozen": True}

    allowed: bool
    via_role_id: Optional[str] = None
    via_resource_ancestor: Optional[ResourceRef] = None
    via_direct_grant: bool = False

    @classmethod
    def denied(cls) -> PermissionDecision:
        return cls(allowed=False)


class PolicyViolation(BaseModel):
    """A structurally risky grant, written to the audit sink."""

    model_config = {"frozen": True}

    user_id: str = ""  # Empty for role-level violations
    permission: str
    reason: str
    role_name: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class BulkOperation(BaseModel):
    """One pending (user, permission, role) change in a bulk update."""

    user_id: str
    permission: str
    role_name: str


# ── Decision cache keys ─────────────────────────────────


@dataclass(frozen=True)
class DecisionKey:
    """Composite cache key ``(user_id, permission, resource_type, resource_id)``.

    Components are percent-encoded so ids containing ``:`` round-trip.
    Absent scope components are encoded as empty strings.
    """

    user_id: str
    permission: str
    resource_type: str = ""
    resource_id: str = ""

    def __str__(self) -> str:
        return ":".join(
            quote(part, safe="")
            for part in (self.user_id, self.permission, self.resource_type, self.resource_id)
        )

    @property
    def scoped(self) -> bool:
        return bool(self.resource_type and self.resource_id)

    @classmethod
    def parse(cls, key: str) -> DecisionKey:
        parts = key.split(":")
        if len(parts) != 4:
            raise ValueError(f"Not a decision key: {key!r}")
        return cls(*(unquote(p) for p in parts))


def make_decision_key(
    user_id: str,
    permission: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
) -> str:
    """Build the cache key string for one decision."""
    return str(DecisionKey(user_id, permission, resource_type or "", resource_id or ""))


__all__ = [
    "BulkOperation",
    "DecisionKey",
    "PermissionDecision",
    "PolicyViolation",
    "ResourcePermission",
    "ResourceRef",
    "ResourceRelationship",
    "Role",
    "UserRoleAssignment",
    "make_decision_key",
]
