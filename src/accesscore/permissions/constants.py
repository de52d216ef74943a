"""Permission constants and default role definitions.

Provides:
- ``Permissions`` — all permission string constants.
- ``RoleNames`` — built-in role names (SUPER_ADMIN is the privileged sentinel).
- ``ADMIN_PERMISSIONS`` — the administrative subset audited by the policy auditor.
- ``DEFAULT_ROLE_DEFINITIONS`` — role name → permissions, for seeding stores.
"""

from __future__ import annotations


class Permissions:
    """Canonical permission constants.

    Permissions are plain upper-case strings. Any string is accepted by the
    engine; these constants cover the built-in registry.
    """

    # ── User Management ─────────────────────────────────
    ADMIN_ACCESS = "ADMIN_ACCESS"
    VIEW_ALL_USER_ACTION_LOGS = "VIEW_ALL_USER_ACTION_LOGS"
    EDIT_USER_PROFILES = "EDIT_USER_PROFILES"
    DELETE_USER_ACCOUNTS = "DELETE_USER_ACCOUNTS"

    # ── Role Management ─────────────────────────────────
    MANAGE_ROLES = "MANAGE_ROLES"

    # ── Analytics & Data ────────────────────────────────
    VIEW_ANALYTICS = "VIEW_ANALYTICS"
    EXPORT_DATA = "EXPORT_DATA"

    # ── System & Organization Settings ──────────────────
    MANAGE_SETTINGS = "MANAGE_SETTINGS"
    MANAGE_API_KEYS = "MANAGE_API_KEYS"
    MANAGE_ORG_SETTINGS = "MANAGE_ORG_SETTINGS"
    CONFIGURE_SSO = "CONFIGURE_SSO"
    MANAGE_DOMAINS = "MANAGE_DOMAINS"

    # ── Team Management ─────────────────────────────────
    INVITE_USERS = "INVITE_USERS"
    MANAGE_TEAMS = "MANAGE_TEAMS"
    INVITE_TEAM_MEMBER = "INVITE_TEAM_MEMBER"
    REMOVE_TEAM_MEMBER = "REMOVE_TEAM_MEMBER"
    UPDATE_MEMBER_ROLE = "UPDATE_MEMBER_ROLE"
    VIEW_TEAM_MEMBERS = "VIEW_TEAM_MEMBERS"

    # ── Billing & Subscription ──────────────────────────
    MANAGE_BILLING = "MANAGE_BILLING"
    MANAGE_SUBSCRIPTIONS = "MANAGE_SUBSCRIPTIONS"
    VIEW_INVOICES = "VIEW_INVOICES"
    UPDATE_SUBSCRIPTION = "UPDATE_SUBSCRIPTION"

    # ── Admin Dashboard ─────────────────────────────────
    ACCESS_ADMIN_DASHBOARD = "ACCESS_ADMIN_DASHBOARD"
    VIEW_ADMIN_DASHBOARD = "VIEW_ADMIN_DASHBOARD"
    VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"

    # ── Project Management ──────────────────────────────
    CREATE_PROJECT = "CREATE_PROJECT"
    DELETE_PROJECT = "DELETE_PROJECT"
    EDIT_PROJECT = "EDIT_PROJECT"
    VIEW_PROJECTS = "VIEW_PROJECTS"

    @classmethod
    def all(cls) -> tuple[str, ...]:
        """All registered permission values, in declaration order."""
        return tuple(
            value
            for name, value in vars(cls).items()
            if not name.startswith("_") and isinstance(value, str)
        )


class RoleNames:
    """Built-in role names."""

    SUPER_ADMIN = "SUPER_ADMIN"  # Privileged sentinel, holds everything
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"
    VIEWER = "VIEWER"
    BILLING_MANAGER = "BILLING_MANAGER"
    MEMBER = "MEMBER"

    ALL = (SUPER_ADMIN, ADMIN, MANAGER, USER, VIEWER, BILLING_MANAGER, MEMBER)


# Grants that only the privileged sentinel role should hold
ADMIN_PERMISSIONS: tuple[str, ...] = (
    Permissions.ADMIN_ACCESS,
    Permissions.DELETE_USER_ACCOUNTS,
    Permissions.MANAGE_ROLES,
    Permissions.MANAGE_SETTINGS,
    Permissions.MANAGE_API_KEYS,
    Permissions.ACCESS_ADMIN_DASHBOARD,
)


DEFAULT_ROLE_DEFINITIONS: dict[str, tuple[str, ...]] = {
    RoleNames.SUPER_ADMIN: Permissions.all(),
    RoleNames.ADMIN: (
        Permissions.ADMIN_ACCESS,
        Permissions.VIEW_ALL_USER_ACTION_LOGS,
        Permissions.EDIT_USER_PROFILES,
        Permissions.DELETE_USER_ACCOUNTS,
        Permissions.MANAGE_ROLES,
        Permissions.VIEW_ANALYTICS,
        Permissions.EXPORT_DATA,
        Permissions.MANAGE_SETTINGS,
        Permissions.MANAGE_API_KEYS,
        Permissions.INVITE_USERS,
        Permissions.MANAGE_TEAMS,
        Permissions.ACCESS_ADMIN_DASHBOARD,
        Permissions.VIEW_ADMIN_DASHBOARD,
        Permissions.INVITE_TEAM_MEMBER,
        Permissions.REMOVE_TEAM_MEMBER,
        Permissions.UPDATE_MEMBER_ROLE,
        Permissions.VIEW_TEAM_MEMBERS,
        Permissions.CREATE_PROJECT,
        Permissions.DELETE_PROJECT,
        Permissions.EDIT_PROJECT,
        Permissions.VIEW_PROJECTS,
    ),
    RoleNames.MANAGER: (
        Permissions.VIEW_ALL_USER_ACTION_LOGS,
        Permissions.EDIT_USER_PROFILES,
        Permissions.VIEW_ANALYTICS,
        Permissions.EXPORT_DATA,
        Permissions.INVITE_USERS,
        Permissions.MANAGE_TEAMS,
        Permissions.VIEW_ADMIN_DASHBOARD,
        Permissions.INVITE_TEAM_MEMBER,
        Permissions.REMOVE_TEAM_MEMBER,
        Permissions.UPDATE_MEMBER_ROLE,
        Permissions.VIEW_TEAM_MEMBERS,
        Permissions.CREATE_PROJECT,
        Permissions.DELETE_PROJECT,
        Permissions.EDIT_PROJECT,
        Permissions.VIEW_PROJECTS,
    ),
    RoleNames.USER: (
        Permissions.VIEW_ANALYTICS,
        Permissions.EXPORT_DATA,
        Permissions.VIEW_TEAM_MEMBERS,
        Permissions.EDIT_PROJECT,
        Permissions.VIEW_PROJECTS,
    ),
    RoleNames.VIEWER: (
        Permissions.VIEW_TEAM_MEMBERS,
        Permissions.VIEW_PROJECTS,
    ),
    RoleNames.BILLING_MANAGER: (
        Permissions.VIEW_TEAM_MEMBERS,
        Permissions.MANAGE_BILLING,
        Permissions.MANAGE_SUBSCRIPTIONS,
        Permissions.VIEW_INVOICES,
        Permissions.UPDATE_SUBSCRIPTION,
        Permissions.VIEW_PROJECTS,
    ),
    RoleNames.MEMBER: (
        Permissions.VIEW_TEAM_MEMBERS,
        Permissions.VIEW_INVOICES,
        Permissions.VIEW_PROJECTS,
        Permissions.EDIT_PROJECT,
        Permissions.CREATE_PROJECT,
    ),
}


__all__ = [
    "ADMIN_PERMISSIONS",
    "DEFAULT_ROLE_DEFINITIONS",
    "Permissions",
    "RoleNames",
]
