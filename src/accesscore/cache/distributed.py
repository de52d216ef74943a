"""Distributed cache tier backends.

Provides:
- ``RedisDistributedCache`` — shared tier on Redis (``redis.asyncio``):
  ``SET PX`` for TTL entries, ``SCAN`` for prefix discovery, ``PUBLISH`` /
  pub/sub listener task for invalidation broadcasts.
- ``InMemoryDistributedCache`` — in-process stand-in. Several cache layers
  attached to one instance behave like several processes sharing one Redis.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..interfaces import MessageHandler

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _glob_escape(text: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", text)


# ── Redis ───────────────────────────────────────────────────────


class RedisSubscription:
    """Background listener delivering channel messages to a handler.

    Handler exceptions are logged and never stop the listener. A dropped
    connection is retried with exponential backoff; ``active`` is False
    until the channel is subscribed again. Messages published while the
    connection is down are lost, so local entries may outlive their
    invalidation by up to their TTL.
    """

    def __init__(
        self,
        pubsub: Any,
        channel: str,
        handler: MessageHandler,
        *,
        retry_initial: float = 0.5,
        retry_max: float = 30.0,
    ) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._handler = handler
        self._retry_initial = retry_initial
        self._retry_max = retry_max
        self._task: Optional[asyncio.Task] = None
        self._active = True
        self.reconnects = 0

    @property
    def active(self) -> bool:
        return self._active and self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        delay = self._retry_initial
        while True:
            try:
                if not self._active:
                    await self._pubsub.subscribe(self._channel)
                    self._active = True
                    self.reconnects += 1
                    logger.info("Resubscribed to invalidation channel '%s'", self._channel)
                async for message in self._pubsub.listen():
                    delay = self._retry_initial
                    if message.get("type") != "message":
                        continue
                    data = message.get("data")
                    if isinstance(data, bytes):
                        data = data.decode()
                    try:
                        await self._handler(data)
                    except Exception:
                        logger.exception("Invalidation handler failed on '%s'", self._channel)
                raise ConnectionError("pub/sub stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._active = False
                logger.warning(
                    "Invalidation listener on '%s' lost its connection: %s (retrying in %.1fs)",
                    self._channel,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._retry_max)

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except Exception as e:
            logger.debug("Failed to close pub/sub for '%s': %s", self._channel, e)


class RedisDistributedCache:
    """Distributed tier backed by a ``redis.asyncio`` client.

    Usage::

        cache = RedisDistributedCache.from_url("redis://localhost:6379/0")
        await cache.set("k", "v", ttl=60)
        await cache.aclose()
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client
        self._subscriptions: list[RedisSubscription] = []

    @classmethod
    def from_url(cls, url: str) -> RedisDistributedCache:
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl: float) -> None:
        await self._redis.set(key, value, px=max(1, int(ttl * 1000)))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    async def scan(self, prefix: str) -> list[str]:
        return [key async for key in self._redis.scan_iter(match=f"{_glob_escape(prefix)}*", count=500)]

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, handler: MessageHandler) -> RedisSubscription:
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(channel)
        subscription = RedisSubscription(pubsub, channel, handler)
        subscription.start()
        self._subscriptions.append(subscription)
        logger.info("Subscribed to invalidation channel '%s'", channel)
        return subscription

    async def aclose(self) -> None:
        for subscription in self._subscriptions:
            await subscription.close()
        self._subscriptions.clear()
        await self._redis.aclose()


# ── In-memory ───────────────────────────────────────────────────


class _MemorySubscription:
    def __init__(self, broker: InMemoryDistributedCache, channel: str, handler: MessageHandler) -> None:
        self._broker = broker
        self.channel = channel
        self.handler = handler

    @property
    def active(self) -> bool:
        return self._broker._is_subscribed(self)

    async def close(self) -> None:
        self._broker._unsubscribe(self)


class InMemoryDistributedCache:
    """Shared in-process key/value store with TTL and synchronous pub/sub.

    ``publish()`` awaits every subscriber's handler before returning, so the
    broadcast delivery bound is zero. Handler exceptions are logged. The last
    ``history`` published messages are kept in ``published``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, *, history: int = 1000) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._subscribers: list[_MemorySubscription] = []
        self.published: deque[tuple[str, str]] = deque(maxlen=history)

    async def get(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: float) -> None:
        self._data[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._data.pop(key, None) is not None)

    async def scan(self, prefix: str) -> list[str]:
        now = self._clock()
        return [key for key, (_, expires_at) in self._data.items() if key.startswith(prefix) and now < expires_at]

    async def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, message))
        for subscription in list(self._subscribers):
            if subscription.channel != channel:
                continue
            try:
                await subscription.handler(message)
            except Exception:
                logger.exception("Invalidation handler failed on '%s'", channel)

    async def subscribe(self, channel: str, handler: MessageHandler) -> _MemorySubscription:
        subscription = _MemorySubscription(self, channel, handler)
        self._subscribers.append(subscription)
        return subscription

    def _is_subscribed(self, subscription: _MemorySubscription) -> bool:
        return subscription in self._subscribers

    def _unsubscribe(self, subscription: _MemorySubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


__all__ = [
    "InMemoryDistributedCache",
    "RedisDistributedCache",
    "RedisSubscription",
]
