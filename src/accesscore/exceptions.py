"""Unified exception hierarchy for accesscore.

All engine errors inherit from AccessControlError. This module provides:
- Base exception hierarchy with stable error codes
- gRPC status mapping for the authorization interceptor

Usage:
    from accesscore.exceptions import (
        AccessControlError,
        CycleDetectedError,
        ResolutionFailedError,
    )

Graph-structural errors (CycleDetectedError, NotFoundError) block the
attempted mutation. ResolutionFailedError is raised for I/O failures during a
read decision and carries the failing ``stage``; callers decide whether to
fail open or closed. AuditWriteFailedError is only ever logged.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    # Base hierarchy
    "AccessControlError",
    "ConfigurationError",
    "CycleDetectedError",
    "HierarchyDepthError",
    "NotFoundError",
    "ConflictError",
    "ResolutionFailedError",
    "AuditWriteFailedError",
    # gRPC helpers
    "get_grpc_status_code",
]


# ---- Exception Hierarchy ----------------------------------------------------


class AccessControlError(Exception):
    """Base exception for the access-control engine.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "NOT_FOUND").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AccessControlError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class CycleDetectedError(AccessControlError):
    """A role or resource graph is, or would become, cyclic."""

    code: str = "CYCLE_DETECTED"
    message: str = "Hierarchy cycle detected"


class HierarchyDepthError(AccessControlError):
    """A role chain would exceed the configured depth limit."""

    code: str = "HIERARCHY_DEPTH_EXCEEDED"
    message: str = "Role hierarchy depth limit exceeded"


class NotFoundError(AccessControlError):
    """Referenced role, resource or user does not exist."""

    code: str = "NOT_FOUND"
    message: str = "Referenced entity not found"


class ConflictError(AccessControlError):
    """Structural conflict, e.g. a resource that already has a parent."""

    code: str = "CONFLICT"


class ResolutionFailedError(AccessControlError):
    """Store or cache I/O failure while computing a decision.

    Attributes:
        stage: Which stage failed (``role_store``, ``resource_store``,
            ``distributed_cache`` or ``compute``).
    """

    code: str = "RESOLUTION_FAILED"
    message: str = "Permission resolution failed"

    def __init__(self, message: str | None = None, *, stage: str = "compute", **kwargs: Any) -> None:
        self.stage = stage
        super().__init__(message, stage=stage, **kwargs)


class AuditWriteFailedError(AccessControlError):
    """Audit sink rejected an entry. Never propagated to callers."""

    code: str = "AUDIT_WRITE_FAILED"


# ---- gRPC Status Mapping ----------------------------------------------------


def get_grpc_status_code(error: AccessControlError) -> Any:
    """Map AccessControlError to gRPC status code.

    Structural errors are reported to the caller verbatim; resolution failures
    map to UNAVAILABLE so operators can tell them apart from denials.
    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    error_to_status = {
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "CYCLE_DETECTED": grpc.StatusCode.FAILED_PRECONDITION,
        "HIERARCHY_DEPTH_EXCEEDED": grpc.StatusCode.FAILED_PRECONDITION,
        "NOT_FOUND": grpc.StatusCode.NOT_FOUND,
        "CONFLICT": grpc.StatusCode.ALREADY_EXISTS,
        "RESOLUTION_FAILED": grpc.StatusCode.UNAVAILABLE,
        "AUDIT_WRITE_FAILED": grpc.StatusCode.INTERNAL,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)
