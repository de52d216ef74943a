"""Request authorization for gRPC services.

Usage (in any service)::

    from accesscore.security import AuthorizationInterceptor

    server = grpc.aio.server(
        interceptors=[AuthorizationInterceptor(engine, RPC_PERMISSIONS, service_name="Projects")]
    )

Configuration (env vars)::

    ACCESS_ENFORCEMENT=enforce    # off | warn | enforce (default: enforce)
"""

from .interceptors import (
    RESOURCE_ID_HEADER,
    RESOURCE_TYPE_HEADER,
    USER_ID_HEADER,
    AuthorizationInterceptor,
    EnforcementMode,
)

__all__ = [
    "AuthorizationInterceptor",
    "EnforcementMode",
    "RESOURCE_ID_HEADER",
    "RESOURCE_TYPE_HEADER",
    "USER_ID_HEADER",
]
