"""Interfaces of the engine's external collaborators.

The engine never talks to a database, Redis or an audit log directly; it
consumes these narrow protocols. ``EngineServices`` bundles one concrete
implementation of each, resolved once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable

from .models import (
    PolicyViolation,
    ResourcePermission,
    ResourceRelationship,
    Role,
    UserRoleAssignment,
)

# Invalidation handler: receives the raw message published on a channel
MessageHandler = Callable[[str], Awaitable[None]]


@runtime_checkable
class RoleStore(Protocol):
    """CRUD source of truth for roles and user role assignments."""

    async def get_role(self, role_id: str) -> Optional[Role]: ...

    async def list_roles(self) -> list[Role]: ...

    async def get_user_role_assignments(self, user_id: str) -> list[UserRoleAssignment]: ...

    async def set_parent_role(self, role_id: str, parent_id: Optional[str]) -> None: ...

    async def add_role_permission(self, role_id: str, permission: str) -> None: ...

    async def remove_role_permission(self, role_id: str, permission: str) -> bool: ...


@runtime_checkable
class ResourceStore(Protocol):
    """Source of truth for resource containment and direct resource grants."""

    async def get_parent_relationship(self, child_type: str, child_id: str) -> Optional[ResourceRelationship]: ...

    async def get_child_relationships(self, parent_type: str, parent_id: str) -> list[ResourceRelationship]: ...

    async def create_relationship(self, relationship: ResourceRelationship) -> None: ...

    async def remove_relationship(self, relationship: ResourceRelationship) -> bool: ...

    async def get_resource_permissions(self, user_id: str) -> list[ResourcePermission]: ...

    async def add_resource_permission(self, grant: ResourcePermission) -> None: ...

    async def remove_resource_permission(self, grant: ResourcePermission) -> bool: ...


@runtime_checkable
class Subscription(Protocol):
    """Handle returned by ``DistributedCache.subscribe``."""

    @property
    def active(self) -> bool:
        """False while the listener is disconnected or after ``close()``."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class DistributedCache(Protocol):
    """Shared key/value tier with TTL and publish/subscribe."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: float) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def scan(self, prefix: str) -> list[str]: ...

    async def publish(self, channel: str, message: str) -> None: ...

    async def subscribe(self, channel: str, handler: MessageHandler) -> Subscription: ...


@runtime_checkable
class AuditSink(Protocol):
    """Write-only audit log."""

    async def append(self, entry: PolicyViolation) -> None: ...


@dataclass
class EngineServices:
    """Concrete collaborators for one engine instance.

    ``distributed_cache`` may be None, in which case the engine runs with the
    process-local tier only and invalidations stay in-process.
    """

    role_store: RoleStore
    resource_store: ResourceStore
    audit_sink: AuditSink
    distributed_cache: Optional[DistributedCache] = None


__all__ = [
    "AuditSink",
    "DistributedCache",
    "EngineServices",
    "MessageHandler",
    "ResourceStore",
    "RoleStore",
    "Subscription",
]
