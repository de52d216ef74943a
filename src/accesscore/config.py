"""Configuration contract for the access-control engine.

This module provides Pydantic-validated configuration models for every
tunable of the engine (logging, Redis, cache tiers, policy auditing).

Direct os.environ/os.getenv usage is FORBIDDEN outside
``load_access_config_from_env()`` for any setting defined here.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError
from .permissions.constants import ADMIN_PERMISSIONS, RoleNames


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheConfig(BaseModel):
    """Two-tier decision cache settings.

    Environment variables:
        ACCESS_CACHE_TTL_SECONDS          — decision TTL in both tiers
        ACCESS_CACHE_LOCAL_MAXSIZE        — LRU bound of the local tier
        ACCESS_CACHE_KEY_PREFIX           — distributed-tier key namespace
        ACCESS_CACHE_CHANNEL              — invalidation pub/sub channel
        ACCESS_OPERATION_TIMEOUT_SECONDS  — timeout for store/cache I/O
    """

    model_config = {"extra": "ignore"}

    ttl_seconds: float = Field(
        default=300.0,
        description="Default TTL for cached decisions",
    )
    local_maxsize: int = Field(
        default=10_000,
        description="Maximum number of entries in the process-local tier",
    )
    local_ttl_seconds: Optional[float] = Field(
        default=None,
        description="Local-tier TTL override (defaults to ttl_seconds)",
    )
    key_prefix: str = Field(
        default="accesscore:perm",
        description="Key namespace in the distributed tier",
    )
    invalidation_channel: str = Field(
        default="accesscore:invalidate",
        description="Pub/sub channel carrying invalidated keys",
    )
    operation_timeout_seconds: float = Field(
        default=2.0,
        description="Timeout for store and distributed-cache calls",
    )

    @field_validator("ttl_seconds", "operation_timeout_seconds", "local_maxsize")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Reject zero or negative sizes and durations."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("local_ttl_seconds")
    @classmethod
    def validate_local_ttl(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def effective_local_ttl(self) -> float:
        return self.local_ttl_seconds or self.ttl_seconds


class PolicyConfig(BaseModel):
    """Policy auditor settings."""

    model_config = {"extra": "ignore"}

    privileged_role: str = Field(
        default=RoleNames.SUPER_ADMIN,
        description="The most-privileged sentinel role, exempt from admin-grant checks",
    )
    admin_permissions: list[str] = Field(
        default_factory=lambda: list(ADMIN_PERMISSIONS),
        description="Permissions treated as administrative",
    )
    admin_prefixes: list[str] = Field(
        default_factory=lambda: ["ADMIN_"],
        description="Permission name prefixes treated as administrative",
    )


class AccessConfig(BaseModel):
    """Root configuration of the access-control engine.

    RULE: All settings MUST come through this config chain.
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Redis (distributed cache tier + invalidation channel)
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (e.g., redis://localhost:6379/0)",
    )

    service_name: Optional[str] = Field(
        default=None,
        description="Service name for log identification",
    )

    # Role graph
    max_hierarchy_depth: Optional[int] = Field(
        default=None,
        description="Maximum role chain length (None = unlimited)",
    )
    role_refresh_seconds: float = Field(
        default=30.0,
        description="Role graph snapshot refresh period",
    )

    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Decision cache configuration",
    )
    policy: PolicyConfig = Field(
        default_factory=PolicyConfig,
        description="Policy auditor configuration",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

    @field_validator("max_hierarchy_depth")
    @classmethod
    def validate_depth(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("max_hierarchy_depth must be at least 1")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",  # Prevent accidental extra fields
    }


def load_access_config_from_env() -> AccessConfig:
    """Load engine configuration from environment variables.

    This is the ONLY place where os.getenv is allowed for engine settings.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - REDIS_URL: Redis connection URL
    - SERVICE_NAME: Service name for log identification
    - ACCESS_MAX_HIERARCHY_DEPTH: Role chain depth limit
    - ACCESS_ROLE_REFRESH_SECONDS: Role graph refresh period
    - ACCESS_CACHE_TTL_SECONDS, ACCESS_CACHE_LOCAL_MAXSIZE,
      ACCESS_CACHE_KEY_PREFIX, ACCESS_CACHE_CHANNEL,
      ACCESS_OPERATION_TIMEOUT_SECONDS: Cache settings
    - ACCESS_PRIVILEGED_ROLE: Sentinel role for the policy auditor

    Returns:
        AccessConfig instance with values from environment or defaults.

    Raises:
        ConfigurationError: a variable is malformed or out of range.
    """
    try:
        return _config_from_env()
    except ValueError as e:
        raise ConfigurationError(f"Invalid access configuration in environment: {e}") from e


def _config_from_env() -> AccessConfig:
    import os

    depth_raw = os.getenv("ACCESS_MAX_HIERARCHY_DEPTH", "").strip()

    cache = CacheConfig(
        ttl_seconds=float(os.getenv("ACCESS_CACHE_TTL_SECONDS", "300")),
        local_maxsize=int(os.getenv("ACCESS_CACHE_LOCAL_MAXSIZE", "10000")),
        key_prefix=os.getenv("ACCESS_CACHE_KEY_PREFIX", "accesscore:perm"),
        invalidation_channel=os.getenv("ACCESS_CACHE_CHANNEL", "accesscore:invalidate"),
        operation_timeout_seconds=float(os.getenv("ACCESS_OPERATION_TIMEOUT_SECONDS", "2.0")),
    )
    policy = PolicyConfig(
        privileged_role=os.getenv("ACCESS_PRIVILEGED_ROLE", RoleNames.SUPER_ADMIN),
    )

    return AccessConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in ("true", "1", "yes"),
        redis_url=os.getenv("REDIS_URL"),
        service_name=os.getenv("SERVICE_NAME"),
        max_hierarchy_depth=int(depth_raw) if depth_raw else None,
        role_refresh_seconds=float(os.getenv("ACCESS_ROLE_REFRESH_SECONDS", "30")),
        cache=cache,
        policy=policy,
    )


__all__ = [
    "AccessConfig",
    "CacheConfig",
    "PolicyConfig",
    "LogLevel",
    "load_access_config_from_env",
]
