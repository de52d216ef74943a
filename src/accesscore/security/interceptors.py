"""gRPC interceptor enforcing engine permission checks per RPC.

Provides:
- ``EnforcementMode`` — three-state toggle: off / warn / enforce.
- ``AuthorizationInterceptor`` — server interceptor mapping each RPC to a
  permission and asking the ``AccessEngine`` for a decision.
- ``_extract_rpc_name``, ``_should_skip`` — helper utilities.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

import grpc

from ..exceptions import AccessControlError, ResolutionFailedError, get_grpc_status_code

if TYPE_CHECKING:
    from ..engine import AccessEngine

logger = logging.getLogger(__name__)


# ── Enforcement Mode ────────────────────────────────────────────


class EnforcementMode(str, Enum):
    """Three-state enforcement toggle.

    - ``off``     — no checks, only caller logging.
    - ``warn``    — check permissions, log denials as WARNING, but allow through.
    - ``enforce`` — check permissions, abort on denial (production).

    Set via env ``ACCESS_ENFORCEMENT=off|warn|enforce``.
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"

    @classmethod
    def from_env(cls) -> EnforcementMode:
        """Read from ``ACCESS_ENFORCEMENT`` env var (default: enforce)."""
        import os  # Localized: bootstrap read, the interceptor may be built before config

        raw = os.environ.get("ACCESS_ENFORCEMENT", "enforce").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Unknown ACCESS_ENFORCEMENT=%r, defaulting to 'enforce'", raw)
            return cls.ENFORCE


# Method prefixes that bypass permission checks
_SKIP_PREFIXES = (
    "grpc.health.v1",
    "grpc.reflection.v1",
)

USER_ID_HEADER = "x-user-id"
RESOURCE_TYPE_HEADER = "x-resource-type"
RESOURCE_ID_HEADER = "x-resource-id"


# ── Helpers ──────────────────────────────────────────────────────


def _extract_rpc_name(full_method: str) -> str:
    """``/projects.ProjectService/UpdateProject`` → ``UpdateProject``"""
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


def _should_skip(method: str) -> bool:
    return any(prefix in method for prefix in _SKIP_PREFIXES)


def _denied_handler(status: grpc.StatusCode, message: str) -> grpc.RpcMethodHandler:
    async def _denied(request, context):
        await context.abort(status, message)

    return grpc.unary_unary_rpc_method_handler(_denied)


# ── Interceptor ──────────────────────────────────────────────────


class AuthorizationInterceptor(grpc.aio.ServerInterceptor):
    """Per-RPC permission enforcement backed by ``AccessEngine``.

    For each call:
    1. Skip health checks and reflection.
    2. Map the RPC name to its required permission via ``rpc_permission_map``.
    3. Read the caller from ``x-user-id`` and the optional resource scope from
       ``x-resource-type`` / ``x-resource-id`` metadata.
    4. Ask the engine; abort with ``PERMISSION_DENIED`` / ``UNAUTHENTICATED``.

    Unmapped RPCs are denied. A failed resolution is logged at ERROR (a plain
    denial at WARNING) and denied, unless ``fail_open`` is set.

    Args:
        engine: Access engine answering permission checks.
        rpc_permission_map: Mapping of RPC name → required permission.
        service_name: Human-readable service name for log messages.
        enforcement: Three-state mode; defaults to ``ACCESS_ENFORCEMENT``.
        fail_open: Allow the call when resolution fails (not when denied).

    Usage::

        interceptor = AuthorizationInterceptor(
            engine,
            {"UpdateProject": Permissions.EDIT_PROJECT},
            service_name="Projects",
        )
        server = grpc.aio.server(interceptors=[interceptor])
    """

    def __init__(
        self,
        engine: AccessEngine,
        rpc_permission_map: dict[str, str],
        *,
        service_name: str = "Service",
        enforcement: EnforcementMode | None = None,
        fail_open: bool = False,
    ) -> None:
        self._engine = engine
        self._rpc_map = rpc_permission_map
        self._service_name = service_name
        self._mode = enforcement if enforcement is not None else EnforcementMode.from_env()
        self._fail_open = fail_open

        if self._mode != EnforcementMode.OFF:
            logger.info(
                "%s authorization mode: %s (fail_open=%s)",
                self._service_name,
                self._mode.value,
                self._fail_open,
            )

    async def _decide(self, rpc_name: str, metadata: dict[str, Any]) -> tuple[str | None, grpc.StatusCode]:
        """Return ``(deny_reason, status)``; ``deny_reason`` is None when allowed."""
        required = self._rpc_map.get(rpc_name)
        if required is None:
            return "RPC not mapped to permission", grpc.StatusCode.PERMISSION_DENIED

        user_id = str(metadata.get(USER_ID_HEADER, "")).strip()
        if not user_id:
            return f"no user id (requires {required})", grpc.StatusCode.UNAUTHENTICATED

        resource_type = str(metadata.get(RESOURCE_TYPE_HEADER, "")).strip() or None
        resource_id = str(metadata.get(RESOURCE_ID_HEADER, "")).strip() or None
        if (resource_type is None) != (resource_id is None):
            return "incomplete resource scope", grpc.StatusCode.INVALID_ARGUMENT

        try:
            allowed = await self._engine.has_permission(user_id, required, resource_type, resource_id)
        except ResolutionFailedError as e:
            logger.error(
                "%s resolution FAILED '%s' for user '%s' — [%s] %s",
                self._service_name,
                rpc_name,
                user_id,
                e.code,
                e.message,
            )
            if self._fail_open:
                logger.warning("%s FAIL_OPEN '%s' for user '%s'", self._service_name, rpc_name, user_id)
                return None, grpc.StatusCode.OK
            return f"permission check failed ({e.code})", grpc.StatusCode.PERMISSION_DENIED
        except AccessControlError as e:
            # Structural errors (cyclic data, missing entities) never fail open
            logger.error(
                "%s permission data INVALID for '%s' user '%s' — [%s] %s",
                self._service_name,
                rpc_name,
                user_id,
                e.code,
                e.message,
            )
            return f"permission check failed ({e.code})", get_grpc_status_code(e)

        if not allowed:
            scope = f" on {resource_type}/{resource_id}" if resource_type else ""
            return f"user '{user_id}' lacks {required}{scope}", grpc.StatusCode.PERMISSION_DENIED

        logger.debug("%s ALLOWED '%s' for user '%s'", self._service_name, rpc_name, user_id)
        return None, grpc.StatusCode.OK

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        method = handler_call_details.method or ""

        if _should_skip(method):
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        metadata = dict(handler_call_details.invocation_metadata or [])

        logger.info(
            "%s RPC %s | user=%s",
            self._service_name,
            rpc_name,
            metadata.get(USER_ID_HEADER) or "anonymous",
        )

        if self._mode == EnforcementMode.OFF:
            return await continuation(handler_call_details)

        deny_reason, deny_code = await self._decide(rpc_name, metadata)
        if deny_reason is None:
            return await continuation(handler_call_details)

        if self._mode == EnforcementMode.WARN:
            logger.warning(
                "%s WARN_DENIED '%s' — %s (would block in enforce mode)",
                self._service_name,
                rpc_name,
                deny_reason,
            )
            return await continuation(handler_call_details)

        logger.warning("%s DENIED '%s' — %s", self._service_name, rpc_name, deny_reason)
        return _denied_handler(deny_code, f"{self._service_name}: {rpc_name} denied — {deny_reason}")


__all__ = [
    "AuthorizationInterceptor",
    "EnforcementMode",
    "RESOURCE_ID_HEADER",
    "RESOURCE_TYPE_HEADER",
    "USER_ID_HEADER",
    "_extract_rpc_name",
    "_should_skip",
]

