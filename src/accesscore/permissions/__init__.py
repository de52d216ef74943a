"""Permission registry, hierarchy graphs, resolution and policy auditing.

Defines:
- Permissions / RoleNames: built-in permission and role names
- DEFAULT_ROLE_DEFINITIONS: role name → default permission sets
- RoleGraph: role inheritance with cycle-safe traversal
- ResourceGraph: resource containment with cycle-safe traversal
- PermissionResolver: user + permission (+ resource) → decision
- PolicyAuditor: dangerous-grant detection
"""

from .constants import (
    ADMIN_PERMISSIONS,
    DEFAULT_ROLE_DEFINITIONS,
    Permissions,
    RoleNames,
)
from .policy import PolicyAuditor
from .resolver import PermissionResolver
from .resources import ResourceGraph
from .roles import RoleGraph, walk_role_ancestors

__all__ = [
    "ADMIN_PERMISSIONS",
    "DEFAULT_ROLE_DEFINITIONS",
    "PermissionResolver",
    "Permissions",
    "PolicyAuditor",
    "ResourceGraph",
    "RoleGraph",
    "RoleNames",
    "walk_role_ancestors",
]
