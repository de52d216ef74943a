from .config import AccessConfig, CacheConfig, LogLevel, PolicyConfig, load_access_config_from_env
from .exceptions import (
    AccessControlError,
    AuditWriteFailedError,
    ConflictError,
    CycleDetectedError,
    HierarchyDepthError,
    NotFoundError,
    ResolutionFailedError,
)
from .models import (
    PermissionDecision,
    PolicyViolation,
    ResourcePermission,
    ResourceRef,
    ResourceRelationship,
    Role,
    UserRoleAssignment,
)
from .interfaces import AuditSink, DistributedCache, EngineServices, ResourceStore, RoleStore
from .permissions import Permissions, RoleNames
from .cache import InMemoryDistributedCache, PermissionCache, RedisDistributedCache
from .engine import AccessEngine
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    AccessLogFormatter,
    AccessLoggerAdapter,
    setup_logging,
    get_access_logger,
)

__version__ = "0.1.0"

__all__ = [
    'AccessEngine',
    'EngineServices',
    'AccessConfig',
    'CacheConfig',
    'PolicyConfig',
    'LogLevel',
    'load_access_config_from_env',
    'AccessControlError',
    'AuditWriteFailedError',
    'ConflictError',
    'CycleDetectedError',
    'HierarchyDepthError',
    'NotFoundError',
    'ResolutionFailedError',
    'PermissionDecision',
    'PolicyViolation',
    'ResourcePermission',
    'ResourceRef',
    'ResourceRelationship',
    'Role',
    'UserRoleAssignment',
    'AuditSink',
    'DistributedCache',
    'ResourceStore',
    'RoleStore',
    'Permissions',
    'RoleNames',
    'InMemoryDistributedCache',
    'PermissionCache',
    'RedisDistributedCache',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'AccessLogFormatter',
    'AccessLoggerAdapter',
    'setup_logging',
    'get_access_logger',
]
