"""Two-tier decision cache with single-flight and broadcast invalidation.

Read path: local tier → distributed tier → compute. Concurrent misses on
one key share a single in-flight computation; its result (or failure) is
delivered to every waiter. Failed computations are never cached.

Invalidation deletes from both tiers and publishes the affected keys on the
invalidation channel; every subscribed process evicts them from its local
tier. A process whose subscription is down keeps serving local entries
until their TTL expires, which bounds staleness.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from ..config import CacheConfig
from ..exceptions import ResolutionFailedError
from ..interfaces import DistributedCache, Subscription
from ..logging import safe_preview
from ..utils import guarded_call
from .local import LocalTTLCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keys per published invalidation message
BROADCAST_BATCH = 500


@dataclass
class CacheMetrics:
    """Counters for the decision cache."""

    local_hits: int = 0
    local_misses: int = 0
    distributed_hits: int = 0
    distributed_misses: int = 0
    computes: int = 0
    coalesced: int = 0
    invalidations_sent: int = 0
    invalidations_received: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.local_hits + self.local_misses
        if not lookups:
            return 0.0
        return (self.local_hits + self.distributed_hits) / lookups

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data


class PermissionCache(Generic[T]):
    """Local + distributed cache of computed values, keyed by string.

    Args:
        distributed: Shared tier. None = local tier only.
        config: TTLs, key prefix, channel and I/O timeout.
        encode: Serializer for distributed-tier values.
        decode: Deserializer for distributed-tier values.
        clock: Monotonic time source for the local tier.

    Example::

        cache = PermissionCache(InMemoryDistributedCache())
        await cache.start()
        decision = await cache.get_or_create(key, lambda: resolver.check(...))
        await cache.delete(key)
        await cache.close()
    """

    def __init__(
        self,
        distributed: Optional[DistributedCache] = None,
        *,
        config: Optional[CacheConfig] = None,
        encode: Callable[[T], str] = json.dumps,
        decode: Callable[[str], T] = json.loads,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        config = config or CacheConfig()
        self._local: LocalTTLCache[T] = LocalTTLCache(
            maxsize=config.local_maxsize,
            ttl_seconds=config.effective_local_ttl,
            clock=clock,
        )
        self._distributed = distributed
        self._ttl = config.ttl_seconds
        self._prefix = config.key_prefix
        self._channel = config.invalidation_channel
        self._timeout = config.operation_timeout_seconds
        self._encode = encode
        self._decode = decode
        self._pending: dict[str, asyncio.Future] = {}
        # Keys invalidated while their computation was in flight
        self._stale: set[str] = set()
        self._subscription: Optional[Subscription] = None
        self._listeners: list[Callable[[str], None]] = []
        self.instance_id = uuid.uuid4().hex
        self.metrics = CacheMetrics()

    @property
    def local(self) -> LocalTTLCache[T]:
        return self._local

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def add_invalidation_listener(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(reason)`` for remote invalidations that carry a reason.

        Callbacks run before the broadcast keys are evicted locally.
        """
        self._listeners.append(callback)

    def _distributed_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe to the invalidation channel."""
        if self._distributed is None or self._subscription is not None:
            return
        self._subscription = await guarded_call(
            self._distributed.subscribe(self._channel, self._on_invalidation),
            stage="distributed_cache",
            timeout=self._timeout,
        )
        logger.info("Decision cache %s listening on '%s'", self.instance_id[:8], self._channel)

    async def close(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    async def __aenter__(self) -> PermissionCache[T]:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ── Reads ───────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[T]:
        """Look ``key`` up in both tiers without computing."""
        value = self._local.get(key)
        if value is not None:
            self.metrics.local_hits += 1
            return value
        self.metrics.local_misses += 1
        return await self._get_distributed(key)

    async def _get_distributed(self, key: str, timeout: Optional[float] = None) -> Optional[T]:
        if self._distributed is None:
            return None
        try:
            raw = await guarded_call(
                self._distributed.get(self._distributed_key(key)),
                stage="distributed_cache",
                timeout=timeout or self._timeout,
            )
        except ResolutionFailedError as e:
            # Treated as a miss
            self.metrics.errors += 1
            logger.warning("Distributed cache read failed for %s: %s", key, e.message)
            return None
        if raw is None:
            self.metrics.distributed_misses += 1
            return None
        try:
            value = self._decode(raw)
        except (TypeError, ValueError) as e:
            self.metrics.errors += 1
            logger.warning("Discarding undecodable entry %s: %s (%s)", key, safe_preview(raw), e)
            return None
        self.metrics.distributed_hits += 1
        self._local.set(key, value)
        return value

    async def get_or_create(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        *,
        ttl: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> T:
        """Return the cached value for ``key``, computing it at most once.

        Args:
            key: Cache key.
            compute: Zero-argument coroutine factory producing the value.
            ttl: Entry TTL in both tiers (defaults to the configured TTL).
            timeout: Deadline in seconds for the compute.

        Raises:
            ResolutionFailedError: The compute (or its timeout) failed. Every
                concurrent waiter receives the same failure.
        """
        value = self._local.get(key)
        if value is not None:
            self.metrics.local_hits += 1
            return value
        self.metrics.local_misses += 1

        pending = self._pending.get(key)
        if pending is not None:
            self.metrics.coalesced += 1
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        # Mark the failure retrieved when nobody else is waiting
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._pending[key] = future
        try:
            value = await self._load(key, compute, ttl, timeout)
        except asyncio.CancelledError:
            future.set_exception(ResolutionFailedError(f"Computation of {key} was cancelled", stage="compute"))
            raise
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(value)
            return value
        finally:
            self._pending.pop(key, None)
            self._stale.discard(key)

    async def _load(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: Optional[float],
        timeout: Optional[float],
    ) -> T:
        value = await self._get_distributed(key, timeout)
        if value is not None:
            if key in self._stale:
                self._local.delete(key)
            return value

        self.metrics.computes += 1
        value = await guarded_call(compute(), stage="compute", timeout=timeout)

        if key in self._stale:
            logger.debug("Not caching %s: invalidated during computation", key)
            return value
        self._local.set(key, value, ttl)
        if self._distributed is None:
            return value
        try:
            await self._set_distributed(key, value, ttl)
        except ResolutionFailedError as e:
            self.metrics.errors += 1
            logger.error("Distributed cache write failed for %s: %s", key, e.message)
            return value

        # An invalidation that landed during the write must win over it
        if key in self._stale:
            logger.debug("Withdrawing %s: invalidated during distributed write", key)
            self._local.delete(key)
            try:
                await guarded_call(
                    self._distributed.delete(self._distributed_key(key)),
                    stage="distributed_cache",
                    timeout=self._timeout,
                )
            except ResolutionFailedError as e:
                self.metrics.errors += 1
                logger.error("Failed to withdraw invalidated entry %s: %s", key, e.message)
        return value

    # ── Writes ──────────────────────────────────────────────────

    async def _set_distributed(self, key: str, value: T, ttl: Optional[float]) -> None:
        assert self._distributed is not None
        await guarded_call(
            self._distributed.set(self._distributed_key(key), self._encode(value), ttl or self._ttl),
            stage="distributed_cache",
            timeout=self._timeout,
        )

    async def set(self, key: str, value: T, *, ttl: Optional[float] = None) -> None:
        """Write ``value`` to both tiers."""
        self._local.set(key, value, ttl)
        if self._distributed is not None:
            await self._set_distributed(key, value, ttl)

    def _evict_local(self, key: str) -> bool:
        if key in self._pending:
            self._stale.add(key)
        return self._local.delete(key)

    async def delete(self, key: str) -> bool:
        """Remove ``key`` from both tiers and broadcast the eviction.

        Returns:
            True if the key was cached in either tier.
        """
        removed = self._evict_local(key)
        if self._distributed is None:
            return removed
        deleted = await guarded_call(
            self._distributed.delete(self._distributed_key(key)),
            stage="distributed_cache",
            timeout=self._timeout,
        )
        await self._broadcast([key])
        return removed or deleted > 0

    async def delete_where(self, predicate: Callable[[str], bool], *, reason: Optional[str] = None) -> int:
        """Remove every key matching ``predicate`` from both tiers and broadcast.

        Args:
            predicate: Selects the keys to remove.
            reason: Optional tag carried in the broadcast and handed to the
                invalidation listeners of other processes. A tagged broadcast
                is published even when no key matched.

        Returns:
            Number of distinct keys removed.
        """
        removed = set(self._local.delete_where(predicate))
        self._stale.update(key for key in self._pending if predicate(key))
        if self._distributed is None:
            return len(removed)

        scan_prefix = f"{self._prefix}:"
        stored = await guarded_call(
            self._distributed.scan(scan_prefix),
            stage="distributed_cache",
            timeout=self._timeout,
        )
        remote = [k[len(scan_prefix):] for k in stored if predicate(k[len(scan_prefix):])]
        if remote:
            await guarded_call(
                self._distributed.delete(*(self._distributed_key(k) for k in remote)),
                stage="distributed_cache",
                timeout=self._timeout,
            )
        removed.update(remote)
        await self._broadcast(sorted(removed), reason=reason)
        return len(removed)

    async def clear(self, *, reason: Optional[str] = None) -> int:
        return await self.delete_where(lambda _key: True, reason=reason)

    # ── Broadcast ───────────────────────────────────────────────

    async def _broadcast(self, keys: Iterable[str], *, reason: Optional[str] = None) -> None:
        """Publish evicted keys.

        Publish failures are logged, not raised: the distributed tier is
        already clean and remote local tiers converge within their TTL.
        """
        keys = list(keys)
        if self._distributed is None or not (keys or reason):
            return
        batches = [keys[start : start + BROADCAST_BATCH] for start in range(0, len(keys), BROADCAST_BATCH)] or [[]]
        for batch in batches:
            payload: dict[str, Any] = {"origin": self.instance_id, "keys": batch}
            if reason is not None:
                payload["reason"] = reason
            try:
                await guarded_call(
                    self._distributed.publish(self._channel, json.dumps(payload)),
                    stage="distributed_cache",
                    timeout=self._timeout,
                )
                self.metrics.invalidations_sent += len(batch)
            except ResolutionFailedError as e:
                self.metrics.errors += 1
                logger.error("Failed to broadcast %d invalidation(s): %s", len(batch), e.message)

    async def _on_invalidation(self, message: str) -> None:
        """Subscription handler: notify listeners, then evict the broadcast keys locally.

        Never raises; one bad message must not stop the subscription.
        """
        try:
            payload = json.loads(message)
            if payload.get("origin") == self.instance_id:
                return
            keys = payload["keys"]
            reason = payload.get("reason")
            if reason is not None:
                for listener in self._listeners:
                    listener(reason)
            for key in keys:
                self._evict_local(key)
            self.metrics.invalidations_received += len(keys)
        except Exception:
            self.metrics.errors += 1
            logger.exception("Failed to apply invalidation message %s", safe_preview(message))


__all__ = ["BROADCAST_BATCH", "CacheMetrics", "PermissionCache"]
