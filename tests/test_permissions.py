"""Tests for the permission registry and default role definitions."""

from __future__ import annotations

import pytest

from accesscore.permissions import (
    ADMIN_PERMISSIONS,
    DEFAULT_ROLE_DEFINITIONS,
    Permissions,
    RoleNames,
)
from accesscore.stores import InMemoryRoleStore


class TestPermissions:
    """Tests for Permissions constants."""

    def test_permission_format(self) -> None:
        """All permissions are upper-case identifiers equal to their attribute name."""
        for value in Permissions.all():
            assert value.isupper()
            assert getattr(Permissions, value) == value

    def test_unique_permissions(self) -> None:
        values = Permissions.all()
        assert len(values) == len(set(values))

    def test_admin_permissions_registered(self) -> None:
        assert set(ADMIN_PERMISSIONS) <= set(Permissions.all())


class TestRoleNames:
    def test_all_contains_every_role(self) -> None:
        for attr in ("SUPER_ADMIN", "ADMIN", "MANAGER", "USER", "VIEWER", "BILLING_MANAGER", "MEMBER"):
            assert getattr(RoleNames, attr) in RoleNames.ALL


class TestDefaultRoleDefinitions:
    def test_every_role_defined(self) -> None:
        assert set(DEFAULT_ROLE_DEFINITIONS) == set(RoleNames.ALL)

    def test_super_admin_holds_everything(self) -> None:
        assert set(DEFAULT_ROLE_DEFINITIONS[RoleNames.SUPER_ADMIN]) == set(Permissions.all())

    @pytest.mark.parametrize("role", [r for r in RoleNames.ALL if r != RoleNames.SUPER_ADMIN])
    def test_definitions_use_registered_permissions(self, role: str) -> None:
        assert set(DEFAULT_ROLE_DEFINITIONS[role]) <= set(Permissions.all())

    @pytest.mark.asyncio
    async def test_seeded_store(self) -> None:
        store = InMemoryRoleStore.with_default_roles()
        viewer = await store.get_role(RoleNames.VIEWER)
        assert viewer is not None
        assert viewer.is_system_role
        assert viewer.permissions == {Permissions.VIEW_TEAM_MEMBERS, Permissions.VIEW_PROJECTS}
