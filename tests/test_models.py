"""Tests for accesscore.models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from accesscore.models import (
    BulkOperation,
    DecisionKey,
    PermissionDecision,
    ResourcePermission,
    ResourceRef,
    ResourceRelationship,
    Role,
    UserRoleAssignment,
    make_decision_key,
)


class TestResourceRef:
    def test_str(self) -> None:
        assert str(ResourceRef(type="project", id="P1")) == "project/P1"

    def test_hashable_and_equal(self) -> None:
        refs = {ResourceRef(type="team", id="T1"), ResourceRef(type="team", id="T1")}
        assert len(refs) == 1


class TestRole:
    def test_frozen(self) -> None:
        role = Role(id="viewer", name="viewer", permissions=frozenset({"READ"}))
        with pytest.raises(ValidationError):
            role.name = "other"  # type: ignore[misc]

    def test_permissions_coerced_to_frozenset(self) -> None:
        role = Role(id="r", name="r", permissions=["A", "B", "A"])  # type: ignore[arg-type]
        assert role.permissions == frozenset({"A", "B"})


class TestUserRoleAssignment:
    def test_global_has_no_scope(self) -> None:
        assert UserRoleAssignment(user_id="u1", role_id="viewer").scope is None

    def test_scoped(self) -> None:
        assignment = UserRoleAssignment(user_id="u1", role_id="editor", resource_type="team", resource_id="T1")
        assert assignment.scope == ResourceRef(type="team", id="T1")

    def test_expiry(self) -> None:
        now = datetime.now(timezone.utc)
        assignment = UserRoleAssignment(user_id="u1", role_id="r", expires_at=now + timedelta(hours=1))
        assert assignment.is_active(now)
        assert not assignment.is_active(now + timedelta(hours=2))

    def test_no_expiry_always_active(self) -> None:
        assert UserRoleAssignment(user_id="u1", role_id="r").is_active()


class TestResourceRelationship:
    def test_between(self) -> None:
        parent = ResourceRef(type="organization", id="O1")
        child = ResourceRef(type="team", id="T1")
        rel = ResourceRelationship.between(parent, child)
        assert rel.parent == parent
        assert rel.child == child

    def test_resource_permission_resource(self) -> None:
        grant = ResourcePermission(user_id="u1", permission="READ", resource_type="project", resource_id="P1")
        assert grant.resource == ResourceRef(type="project", id="P1")


class TestPermissionDecision:
    def test_denied(self) -> None:
        decision = PermissionDecision.denied()
        assert decision.allowed is False
        assert decision.via_role_id is None

    def test_json_preserves_ancestor(self) -> None:
        decision = PermissionDecision(
            allowed=True,
            via_role_id="editor",
            via_resource_ancestor=ResourceRef(type="team", id="T1"),
        )
        restored = PermissionDecision.model_validate_json(decision.model_dump_json())
        assert restored == decision


class TestDecisionKey:
    def test_unscoped_key(self) -> None:
        assert make_decision_key("u1", "READ") == "u1:READ::"

    def test_scoped_key(self) -> None:
        key = DecisionKey.parse(make_decision_key("u1", "WRITE", "project", "P1"))
        assert key == DecisionKey("u1", "WRITE", "project", "P1")
        assert key.scoped

    def test_colons_in_ids_are_escaped(self) -> None:
        key = make_decision_key("tenant:u1", "READ", "doc", "a:b")
        assert key.count(":") == 3
        parsed = DecisionKey.parse(key)
        assert parsed.user_id == "tenant:u1"
        assert parsed.resource_id == "a:b"

    def test_parse_rejects_foreign_keys(self) -> None:
        with pytest.raises(ValueError, match="Not a decision key"):
            DecisionKey.parse("something-else")


class TestBulkOperation:
    def test_from_mapping(self) -> None:
        op = BulkOperation.model_validate({"user_id": "u1", "permission": "ADMIN_ACCESS", "role_name": "USER"})
        assert op.role_name == "USER"
