"""Tests for accesscore.security interceptors."""

from __future__ import annotations

import logging
import os
from unittest.mock import AsyncMock, MagicMock, patch

import grpc
import pytest

from accesscore.exceptions import CycleDetectedError, NotFoundError, ResolutionFailedError
from accesscore.permissions import Permissions
from accesscore.security import AuthorizationInterceptor, EnforcementMode
from accesscore.security.interceptors import _extract_rpc_name, _should_skip

_TEST_RPC_MAP = {
    "UpdateProject": Permissions.EDIT_PROJECT,
    "ListProjects": Permissions.VIEW_PROJECTS,
}


def _make_handler_call_details(method: str, metadata: list[tuple[str, str]] | None = None) -> MagicMock:
    """Create a mock HandlerCallDetails."""
    mock = MagicMock()
    mock.method = method
    mock.invocation_metadata = metadata or []
    return mock


def _engine(allowed: bool = True) -> MagicMock:
    engine = MagicMock()
    engine.has_permission = AsyncMock(return_value=allowed)
    return engine


async def _continuation(details):
    return "handler"


def _interceptor(engine, mode=EnforcementMode.ENFORCE, **kwargs) -> AuthorizationInterceptor:
    return AuthorizationInterceptor(engine, _TEST_RPC_MAP, service_name="Test", enforcement=mode, **kwargs)


class TestEnforcementMode:
    @patch.dict(os.environ, {"ACCESS_ENFORCEMENT": "warn"})
    def test_from_env(self) -> None:
        assert EnforcementMode.from_env() is EnforcementMode.WARN

    @patch.dict(os.environ, {}, clear=True)
    def test_default_is_enforce(self) -> None:
        assert EnforcementMode.from_env() is EnforcementMode.ENFORCE

    @patch.dict(os.environ, {"ACCESS_ENFORCEMENT": "maybe"})
    def test_unknown_value_falls_back(self) -> None:
        assert EnforcementMode.from_env() is EnforcementMode.ENFORCE


class TestHelpers:
    def test_extract_rpc_name(self) -> None:
        assert _extract_rpc_name("/projects.ProjectService/UpdateProject") == "UpdateProject"
        assert _extract_rpc_name("UpdateProject") == "UpdateProject"

    def test_should_skip(self) -> None:
        assert _should_skip("/grpc.health.v1.Health/Check")
        assert not _should_skip("/projects.ProjectService/UpdateProject")


class TestAuthorizationInterceptor:
    """Tests for AuthorizationInterceptor."""

    @pytest.mark.asyncio
    async def test_off_passes_through(self) -> None:
        engine = _engine(allowed=False)
        interceptor = _interceptor(engine, EnforcementMode.OFF)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject")
        assert await interceptor.intercept_service(_continuation, details) == "handler"
        engine.has_permission.assert_not_called()

    @pytest.mark.asyncio
    async def test_health_check_skipped(self) -> None:
        engine = _engine(allowed=False)
        interceptor = _interceptor(engine)

        details = _make_handler_call_details("/grpc.health.v1.Health/Check")
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    @pytest.mark.asyncio
    async def test_allowed(self) -> None:
        engine = _engine(allowed=True)
        interceptor = _interceptor(engine)

        details = _make_handler_call_details(
            "/projects.ProjectService/UpdateProject",
            [("x-user-id", "u1"), ("x-resource-type", "project"), ("x-resource-id", "P1")],
        )
        assert await interceptor.intercept_service(_continuation, details) == "handler"
        engine.has_permission.assert_awaited_once_with("u1", Permissions.EDIT_PROJECT, "project", "P1")

    @pytest.mark.asyncio
    async def test_unscoped_check(self) -> None:
        engine = _engine(allowed=True)
        interceptor = _interceptor(engine)

        details = _make_handler_call_details("/projects.ProjectService/ListProjects", [("x-user-id", "u1")])
        await interceptor.intercept_service(_continuation, details)
        engine.has_permission.assert_awaited_once_with("u1", Permissions.VIEW_PROJECTS, None, None)

    @pytest.mark.asyncio
    async def test_denied(self, caplog: pytest.LogCaptureFixture) -> None:
        interceptor = _interceptor(_engine(allowed=False))

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        with caplog.at_level(logging.WARNING):
            result = await interceptor.intercept_service(_continuation, details)

        assert result != "handler"
        assert "DENIED" in caplog.text

    @pytest.mark.asyncio
    async def test_denied_handler_aborts_permission_denied(self) -> None:
        interceptor = _interceptor(_engine(allowed=False))

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        handler = await interceptor.intercept_service(_continuation, details)

        context = MagicMock()
        context.abort = AsyncMock()
        await handler.unary_unary(None, context)
        assert context.abort.await_args.args[0] == grpc.StatusCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_unmapped_rpc_denied(self) -> None:
        engine = _engine(allowed=True)
        interceptor = _interceptor(engine)

        details = _make_handler_call_details("/projects.ProjectService/DropDatabase", [("x-user-id", "u1")])
        result = await interceptor.intercept_service(_continuation, details)
        assert result != "handler"
        engine.has_permission.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_user_unauthenticated(self) -> None:
        interceptor = _interceptor(_engine())

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject")
        handler = await interceptor.intercept_service(_continuation, details)

        context = MagicMock()
        context.abort = AsyncMock()
        await handler.unary_unary(None, context)
        assert context.abort.await_args.args[0] == grpc.StatusCode.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_half_scope_invalid(self) -> None:
        interceptor = _interceptor(_engine())

        details = _make_handler_call_details(
            "/projects.ProjectService/UpdateProject",
            [("x-user-id", "u1"), ("x-resource-type", "project")],
        )
        handler = await interceptor.intercept_service(_continuation, details)

        context = MagicMock()
        context.abort = AsyncMock()
        await handler.unary_unary(None, context)
        assert context.abort.await_args.args[0] == grpc.StatusCode.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_resolution_failure_denied_and_logged_as_error(self, caplog: pytest.LogCaptureFixture) -> None:
        engine = _engine()
        engine.has_permission.side_effect = ResolutionFailedError("store down", stage="role_store")
        interceptor = _interceptor(engine)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        with caplog.at_level(logging.WARNING):
            result = await interceptor.intercept_service(_continuation, details)

        assert result != "handler"
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert errors and "RESOLUTION_FAILED" in errors[0].getMessage()

    @pytest.mark.asyncio
    async def test_fail_open_allows_on_failure(self) -> None:
        engine = _engine()
        engine.has_permission.side_effect = ResolutionFailedError("store down", stage="role_store")
        interceptor = _interceptor(engine, fail_open=True)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    @pytest.mark.asyncio
    async def test_fail_open_still_blocks_denials(self) -> None:
        interceptor = _interceptor(_engine(allowed=False), fail_open=True)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        assert await interceptor.intercept_service(_continuation, details) != "handler"

    @pytest.mark.asyncio
    async def test_structural_error_maps_to_grpc_status(self) -> None:
        engine = _engine()
        engine.has_permission.side_effect = CycleDetectedError("loop")
        interceptor = _interceptor(engine)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        handler = await interceptor.intercept_service(_continuation, details)
        assert handler != "handler"

        context = MagicMock()
        context.abort = AsyncMock()
        await handler.unary_unary(None, context)
        assert context.abort.await_args.args[0] == grpc.StatusCode.FAILED_PRECONDITION

    @pytest.mark.asyncio
    async def test_missing_entity_maps_to_not_found(self) -> None:
        engine = _engine()
        engine.has_permission.side_effect = NotFoundError("no such role")
        interceptor = _interceptor(engine)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        handler = await interceptor.intercept_service(_continuation, details)

        context = MagicMock()
        context.abort = AsyncMock()
        await handler.unary_unary(None, context)
        assert context.abort.await_args.args[0] == grpc.StatusCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_fail_open_does_not_cover_structural_errors(self) -> None:
        engine = _engine()
        engine.has_permission.side_effect = CycleDetectedError("loop")
        interceptor = _interceptor(engine, fail_open=True)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        assert await interceptor.intercept_service(_continuation, details) != "handler"

    @pytest.mark.asyncio
    async def test_warn_mode_allows_but_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        interceptor = _interceptor(_engine(allowed=False), EnforcementMode.WARN)

        details = _make_handler_call_details("/projects.ProjectService/UpdateProject", [("x-user-id", "u1")])
        with caplog.at_level(logging.WARNING):
            result = await interceptor.intercept_service(_continuation, details)

        assert result == "handler"
        assert "WARN_DENIED" in caplog.text
