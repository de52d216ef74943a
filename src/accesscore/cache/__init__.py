"""Decision cache: process-local tier, distributed tier, invalidation."""

from .distributed import InMemoryDistributedCache, RedisDistributedCache, RedisSubscription
from .layer import CacheMetrics, PermissionCache
from .local import LocalTTLCache

__all__ = [
    "CacheMetrics",
    "InMemoryDistributedCache",
    "LocalTTLCache",
    "PermissionCache",
    "RedisDistributedCache",
    "RedisSubscription",
]
