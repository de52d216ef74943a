"""Access engine facade.

Wires the role graph, resource graph, resolver, decision cache and policy
auditor around one set of collaborators and exposes the public operations.

Usage::

    services = EngineServices(
        role_store=role_store,
        resource_store=resource_store,
        audit_sink=audit_sink,
        distributed_cache=RedisDistributedCache.from_url(config.redis_url),
    )
    async with AccessEngine(services, config) as engine:
        if await engine.has_permission("u1", "EDIT_PROJECT", "project", "P1"):
            ...

Mutations made through the engine invalidate the affected cached decisions.
Mutations made directly in the stores must be followed by the matching
``invalidate_*`` call (e.g. ``invalidate_user`` after changing a user's
role assignments).
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Union

from .cache import PermissionCache, RedisDistributedCache
from .config import AccessConfig
from .exceptions import ResolutionFailedError
from .interfaces import AuditSink, EngineServices, ResourceStore, RoleStore
from .models import (
    BulkOperation,
    DecisionKey,
    PermissionDecision,
    PolicyViolation,
    ResourcePermission,
    ResourceRef,
    ResourceRelationship,
    Role,
    UserRoleAssignment,
    make_decision_key,
)
from .permissions import PermissionResolver, PolicyAuditor, ResourceGraph, RoleGraph
from .utils import guarded_call

logger = logging.getLogger(__name__)

# Broadcast reason: receivers reload their role graph before evicting keys
ROLES_CHANGED = "roles"


def _decision_key(key: str) -> Optional[DecisionKey]:
    try:
        return DecisionKey.parse(key)
    except ValueError:
        return None


class AccessEngine:
    """Cached, invalidation-aware permission checks over pluggable stores.

    Args:
        services: Store, sink and (optional) distributed cache collaborators.
        config: Engine configuration (defaults to ``AccessConfig()``).
    """

    def __init__(self, services: EngineServices, config: Optional[AccessConfig] = None) -> None:
        self.config = config or AccessConfig()
        self.services = services
        timeout = self.config.cache.operation_timeout_seconds

        self.roles = RoleGraph(
            services.role_store,
            refresh_seconds=self.config.role_refresh_seconds,
            max_depth=self.config.max_hierarchy_depth,
            timeout=timeout,
        )
        self.resources = ResourceGraph(services.resource_store, timeout=timeout)
        self.resolver = PermissionResolver(
            self.roles,
            self.resources,
            services.role_store,
            services.resource_store,
            timeout=timeout,
        )
        self.cache: PermissionCache[PermissionDecision] = PermissionCache(
            services.distributed_cache,
            config=self.config.cache,
            encode=lambda decision: decision.model_dump_json(),
            decode=PermissionDecision.model_validate_json,
        )
        self.auditor = PolicyAuditor.from_config(services.audit_sink, self.config.policy, timeout=timeout)
        self.cache.add_invalidation_listener(self._on_remote_invalidation)

    @classmethod
    def from_config(
        cls,
        role_store: RoleStore,
        resource_store: ResourceStore,
        audit_sink: AuditSink,
        config: Optional[AccessConfig] = None,
    ) -> AccessEngine:
        """Build an engine, attaching a Redis tier when ``config.redis_url`` is set."""
        config = config or AccessConfig()
        distributed = RedisDistributedCache.from_url(config.redis_url) if config.redis_url else None
        if distributed is None:
            logger.info("No REDIS_URL configured — decision cache is process-local only")
        return cls(
            EngineServices(
                role_store=role_store,
                resource_store=resource_store,
                audit_sink=audit_sink,
                distributed_cache=distributed,
            ),
            config,
        )

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        await self.cache.start()

    async def close(self) -> None:
        await self.cache.close()
        distributed = self.services.distributed_cache
        if isinstance(distributed, RedisDistributedCache):
            await distributed.aclose()

    async def __aenter__(self) -> AccessEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ── Checks ──────────────────────────────────────────────────

    async def check_permission(
        self,
        user_id: str,
        permission: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> PermissionDecision:
        """Cached decision for ``permission`` of ``user_id`` (optionally at a resource).

        Raises:
            ValueError: only one of ``resource_type`` and ``resource_id`` is given.
            ResolutionFailedError: a store or cache call failed; nothing is cached.
            CycleDetectedError: the role or resource data is cyclic.
        """
        if bool(resource_type) != bool(resource_id):
            raise ValueError("resource_type and resource_id must be given together")
        key = make_decision_key(user_id, permission, resource_type, resource_id)
        try:
            return await self.cache.get_or_create(
                key,
                lambda: self.resolver.check(user_id, permission, resource_type, resource_id),
            )
        except ResolutionFailedError as e:
            logger.error(
                "Permission resolution failed for %s %s @ %s/%s (stage=%s): %s",
                user_id,
                permission,
                resource_type,
                resource_id,
                e.stage,
                e.message,
            )
            raise

    async def has_permission(
        self,
        user_id: str,
        permission: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        decision = await self.check_permission(user_id, permission, resource_type, resource_id)
        return decision.allowed

    async def has_any_permission(
        self,
        user_id: str,
        permissions: Iterable[str],
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        for permission in permissions:
            if await self.has_permission(user_id, permission, resource_type, resource_id):
                return True
        return False

    async def has_all_permissions(
        self,
        user_id: str,
        permissions: Iterable[str],
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        for permission in permissions:
            if not await self.has_permission(user_id, permission, resource_type, resource_id):
                return False
        return True

    async def get_effective_permissions(
        self,
        user_id: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> frozenset[str]:
        """Uncached union of everything ``user_id`` holds at the given scope."""
        return await self.resolver.get_effective_permissions(user_id, resource_type, resource_id)

    async def get_user_roles(self, user_id: str) -> list[UserRoleAssignment]:
        return await self.resolver.get_user_roles(user_id)

    async def has_role(self, user_id: str, role_name: str) -> bool:
        return await self.resolver.has_role(user_id, role_name)

    async def get_resource_ancestors(self, resource_type: str, resource_id: str) -> list[ResourceRef]:
        return await self.resources.get_resource_ancestors(resource_type, resource_id)

    # ── Mutations ───────────────────────────────────────────────

    async def set_parent_role(self, child_id: str, parent_id: Optional[str]) -> None:
        await self.roles.set_parent_role(child_id, parent_id)
        await self.invalidate_role(child_id)

    async def grant_role_permission(
        self,
        role_id: str,
        permission: str,
        *,
        user_id: str = "",
    ) -> Optional[PolicyViolation]:
        """Add ``permission`` to a role, auditing the grant first.

        A policy violation is reported to the audit sink but does not block
        the grant.

        Args:
            role_id: Role receiving the permission.
            permission: Permission to add.
            user_id: Actor making the change, recorded on any violation.

        Returns:
            The reported violation, if any.

        Raises:
            NotFoundError: the role does not exist.
            ResolutionFailedError: the Role Store write failed.
        """
        role = await self.roles.get_role(role_id)
        violation = await self.audit_role_permission(role, permission, user_id=user_id)
        await guarded_call(
            self.services.role_store.add_role_permission(role_id, permission),
            stage="role_store",
            timeout=self.config.cache.operation_timeout_seconds,
        )
        logger.info("Granted %s to role '%s'", permission, role_id)
        await self.invalidate_role(role_id)
        return violation

    async def revoke_role_permission(self, role_id: str, permission: str) -> bool:
        """Remove ``permission`` from a role. Returns False if the role did not hold it."""
        await self.roles.get_role(role_id)
        removed = await guarded_call(
            self.services.role_store.remove_role_permission(role_id, permission),
            stage="role_store",
            timeout=self.config.cache.operation_timeout_seconds,
        )
        if removed:
            logger.info("Revoked %s from role '%s'", permission, role_id)
            await self.invalidate_role(role_id)
        return removed

    async def grant_resource_permission(
        self,
        user_id: str,
        permission: str,
        resource_type: str,
        resource_id: str,
    ) -> ResourcePermission:
        """Grant ``permission`` to ``user_id`` directly on one resource and its descendants."""
        grant = ResourcePermission(
            user_id=user_id,
            permission=permission,
            resource_type=resource_type,
            resource_id=resource_id,
        )
        await guarded_call(
            self.services.resource_store.add_resource_permission(grant),
            stage="resource_store",
            timeout=self.config.cache.operation_timeout_seconds,
        )
        logger.info("Granted %s to user '%s' on %s/%s", permission, user_id, resource_type, resource_id)
        await self.invalidate_user(user_id)
        return grant

    async def revoke_resource_permission(
        self,
        user_id: str,
        permission: str,
        resource_type: str,
        resource_id: str,
    ) -> bool:
        grant = ResourcePermission(
            user_id=user_id,
            permission=permission,
            resource_type=resource_type,
            resource_id=resource_id,
        )
        removed = await guarded_call(
            self.services.resource_store.remove_resource_permission(grant),
            stage="resource_store",
            timeout=self.config.cache.operation_timeout_seconds,
        )
        if removed:
            await self.invalidate_user(user_id)
        return removed

    async def create_relationship(self, relationship: ResourceRelationship) -> None:
        await self.resources.create_relationship(relationship)
        await self._invalidate_scoped()

    async def remove_relationship(self, relationship: ResourceRelationship) -> bool:
        removed = await self.resources.remove_relationship(relationship)
        if removed:
            await self._invalidate_scoped()
        return removed

    # ── Policy auditing ─────────────────────────────────────────

    async def audit_role_permission(
        self,
        role: Union[Role, str],
        permission: str,
        *,
        user_id: str = "",
    ) -> Optional[PolicyViolation]:
        """Audit hook for a role/permission grant. Reports and returns any violation."""
        violation = self.auditor.check_role_permission_assignment(role, permission, user_id=user_id)
        if violation is not None:
            logger.warning("Policy violation: %s", violation.reason)
            await self.auditor.report_violations([violation])
        return violation

    async def validate_bulk_operations(
        self,
        operations: Iterable[Union[BulkOperation, Mapping[str, str]]],
        *,
        report: bool = True,
    ) -> list[PolicyViolation]:
        violations = self.auditor.validate_bulk_operations(operations)
        if violations and report:
            await self.auditor.report_violations(violations)
        return violations

    async def audit_all_roles(self, *, report: bool = True) -> list[PolicyViolation]:
        """Sweep every role in the store for dangerous grants."""
        violations = self.auditor.audit_roles(await self.roles.list_roles())
        if violations and report:
            await self.auditor.report_violations(violations)
        return violations

    # ── Invalidation ────────────────────────────────────────────

    async def invalidate_user(self, user_id: str) -> int:
        """Drop every cached decision of ``user_id``."""

        def _match(key: str) -> bool:
            decision_key = _decision_key(key)
            return decision_key is not None and decision_key.user_id == user_id

        count = await self.cache.delete_where(_match)
        logger.info("Invalidated %d decision(s) for user '%s'", count, user_id)
        return count

    async def invalidate_role(self, role_id: str) -> int:
        """Reload roles and drop every cached decision.

        Decision keys do not record which role granted them, so a change to
        ``role_id`` (or its chain) can affect any key.
        Other processes reload their role graph when the broadcast arrives.
        """
        await self.roles.refresh()
        count = await self.cache.delete_where(lambda key: _decision_key(key) is not None, reason=ROLES_CHANGED)
        logger.info("Invalidated %d decision(s) after change to role '%s'", count, role_id)
        return count

    async def invalidate_all(self) -> int:
        self.roles.mark_stale()
        count = await self.cache.clear(reason=ROLES_CHANGED)
        logger.info("Invalidated all %d cached decision(s)", count)
        return count

    async def _invalidate_scoped(self) -> int:
        def _match(key: str) -> bool:
            decision_key = _decision_key(key)
            return decision_key is not None and decision_key.scoped

        count = await self.cache.delete_where(_match)
        logger.info("Invalidated %d resource-scoped decision(s)", count)
        return count

    def _on_remote_invalidation(self, reason: str) -> None:
        if reason == ROLES_CHANGED:
            self.roles.mark_stale()
            logger.debug("Role graph marked stale by remote invalidation")

    @property
    def metrics(self) -> dict[str, Any]:
        return self.cache.metrics.as_dict()


__all__ = ["AccessEngine", "ROLES_CHANGED"]
