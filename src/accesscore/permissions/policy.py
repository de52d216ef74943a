"""Policy auditing for role and permission mutations.

Provides:
- ``PolicyAuditor`` — flags structurally dangerous grants (an administrative
  permission on any role other than the privileged sentinel) and writes them
  to the audit sink.

Controls SHOULD (audit), not CAN (authorization): a flagged grant is still
applied by the caller. Auditing is best-effort and never blocks the
mutation that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable, Mapping, Optional, Union

from ..exceptions import AuditWriteFailedError
from ..interfaces import AuditSink
from ..models import BulkOperation, PolicyViolation, Role
from .constants import ADMIN_PERMISSIONS, RoleNames

if TYPE_CHECKING:
    from ..config import PolicyConfig

logger = logging.getLogger(__name__)


class PolicyAuditor:
    """Detects and records risky role/permission combinations.

    Args:
        sink: Audit sink receiving violations.
        privileged_role: Name of the sentinel role allowed to hold admin permissions.
        admin_permissions: Exact permissions treated as administrative.
        admin_prefixes: Permission prefixes treated as administrative.
        timeout: Seconds allowed for each sink write.

    Example::

        auditor = PolicyAuditor(sink)
        auditor.check_role_permission_assignment("MANAGER", "ADMIN_ACCESS")
        # PolicyViolation(permission="ADMIN_ACCESS", role_name="MANAGER", ...)
        auditor.check_role_permission_assignment("SUPER_ADMIN", "ADMIN_ACCESS")
        # None
    """

    def __init__(
        self,
        sink: AuditSink,
        *,
        privileged_role: str = RoleNames.SUPER_ADMIN,
        admin_permissions: Iterable[str] = ADMIN_PERMISSIONS,
        admin_prefixes: Iterable[str] = ("ADMIN_",),
        timeout: Optional[float] = None,
    ) -> None:
        self._sink = sink
        self.privileged_role = privileged_role
        self.admin_permissions = frozenset(admin_permissions)
        self.admin_prefixes = tuple(admin_prefixes)
        self._timeout = timeout

    @classmethod
    def from_config(cls, sink: AuditSink, config: PolicyConfig, *, timeout: Optional[float] = None) -> PolicyAuditor:
        return cls(
            sink,
            privileged_role=config.privileged_role,
            admin_permissions=config.admin_permissions,
            admin_prefixes=config.admin_prefixes,
            timeout=timeout,
        )

    def is_admin_permission(self, permission: str) -> bool:
        return permission in self.admin_permissions or permission.startswith(self.admin_prefixes)

    def check_role_permission_assignment(
        self,
        role: Union[Role, str],
        permission: str,
        *,
        user_id: str = "",
    ) -> Optional[PolicyViolation]:
        """Return a violation if granting ``permission`` to ``role`` is dangerous.

        Args:
            role: Role (or role name) receiving the permission.
            permission: Permission being granted.
            user_id: User affected, for user-level checks (empty for role-level).
        """
        role_name = role.name if isinstance(role, Role) else role
        if role_name == self.privileged_role or not self.is_admin_permission(permission):
            return None
        return PolicyViolation(
            user_id=user_id,
            permission=permission,
            role_name=role_name,
            reason=(
                f"Administrative permission '{permission}' granted to non-privileged role "
                f"'{role_name}' (only '{self.privileged_role}' may hold it)"
            ),
        )

    def validate_bulk_operations(
        self,
        operations: Iterable[Union[BulkOperation, Mapping[str, str]]],
    ) -> list[PolicyViolation]:
        """Run the grant check across a batch before it is committed."""
        violations: list[PolicyViolation] = []
        for op in operations:
            if not isinstance(op, BulkOperation):
                op = BulkOperation.model_validate(op)
            violation = self.check_role_permission_assignment(op.role_name, op.permission, user_id=op.user_id)
            if violation is not None:
                violations.append(violation)
        return violations

    def audit_roles(self, roles: Iterable[Role]) -> list[PolicyViolation]:
        """Sweep every permission of every role."""
        violations: list[PolicyViolation] = []
        for role in roles:
            for permission in sorted(role.permissions):
                violation = self.check_role_permission_assignment(role, permission)
                if violation is not None:
                    violations.append(violation)
        return violations

    async def report_violations(self, violations: Iterable[PolicyViolation]) -> int:
        """Append violations to the audit sink.

        Sink failures are logged and dropped; this never raises.

        Returns:
            Number of violations written.
        """
        written = 0
        for violation in violations:
            try:
                if self._timeout is None:
                    await self._sink.append(violation)
                else:
                    await asyncio.wait_for(self._sink.append(violation), self._timeout)
                written += 1
            except Exception as e:
                err = AuditWriteFailedError(
                    f"Audit sink rejected violation for '{violation.permission}': {e}",
                    permission=violation.permission,
                    role_name=violation.role_name,
                )
                logger.warning("[%s] %s", err.code, err.message)
        if written:
            logger.info("Reported %d policy violation(s)", written)
        return written


__all__ = ["PolicyAuditor"]
