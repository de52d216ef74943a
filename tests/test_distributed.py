"""Tests for the Redis-backed distributed tier (client mocked)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from accesscore.cache import PermissionCache, RedisDistributedCache, RedisSubscription
from accesscore.cache.distributed import _glob_escape


def _mock_client() -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.delete = AsyncMock(return_value=2)
    client.publish = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client


def _mock_pubsub(messages: list[dict]) -> MagicMock:
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def _listen():
        for message in messages:
            yield message
        await asyncio.Event().wait()  # Stay subscribed until cancelled

    pubsub.listen = _listen
    return pubsub


class TestRedisDistributedCache:
    @pytest.mark.asyncio
    async def test_set_uses_millisecond_ttl(self) -> None:
        client = _mock_client()
        cache = RedisDistributedCache(client)
        await cache.set("accesscore:perm:k", "{}", ttl=1.5)
        client.set.assert_awaited_once_with("accesscore:perm:k", "{}", px=1500)

    @pytest.mark.asyncio
    async def test_get(self) -> None:
        client = _mock_client()
        client.get.return_value = '{"allowed": true}'
        cache = RedisDistributedCache(client)
        assert await cache.get("k") == '{"allowed": true}'

    @pytest.mark.asyncio
    async def test_delete_no_keys_skips_call(self) -> None:
        client = _mock_client()
        cache = RedisDistributedCache(client)
        assert await cache.delete() == 0
        client.delete.assert_not_called()
        assert await cache.delete("a", "b") == 2

    @pytest.mark.asyncio
    async def test_scan_escapes_prefix(self) -> None:
        client = _mock_client()
        seen: dict[str, str] = {}

        async def _scan_iter(match: str, count: int):
            seen["match"] = match
            for key in ("perm[1]:a", "perm[1]:b"):
                yield key

        client.scan_iter = _scan_iter
        cache = RedisDistributedCache(client)

        assert await cache.scan("perm[1]:") == ["perm[1]:a", "perm[1]:b"]
        assert seen["match"] == r"perm\[1\]:*"

    def test_glob_escape(self) -> None:
        assert _glob_escape("a*b?c") == r"a\*b\?c"

    @pytest.mark.asyncio
    async def test_publish(self) -> None:
        client = _mock_client()
        cache = RedisDistributedCache(client)
        await cache.publish("accesscore:invalidate", "msg")
        client.publish.assert_awaited_once_with("accesscore:invalidate", "msg")

    @pytest.mark.asyncio
    async def test_subscription_delivers_and_survives_handler_errors(self) -> None:
        client = _mock_client()
        pubsub = _mock_pubsub(
            [
                {"type": "subscribe", "data": 1},
                {"type": "message", "data": "first"},
                {"type": "message", "data": b"second"},
            ]
        )
        client.pubsub.return_value = pubsub
        cache = RedisDistributedCache(client)

        received: list[str] = []

        async def _handler(message: str) -> None:
            received.append(message)
            if message == "first":
                raise RuntimeError("handler bug")

        subscription = await cache.subscribe("accesscore:invalidate", _handler)
        for _ in range(10):
            await asyncio.sleep(0)

        assert received == ["first", "second"]
        pubsub.subscribe.assert_awaited_once_with("accesscore:invalidate")

        await subscription.close()
        pubsub.unsubscribe.assert_awaited_once_with("accesscore:invalidate")
        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_closes_subscriptions_and_client(self) -> None:
        client = _mock_client()
        pubsub = _mock_pubsub([])
        client.pubsub.return_value = pubsub
        cache = RedisDistributedCache(client)
        await cache.subscribe("ch", AsyncMock())

        await cache.aclose()

        pubsub.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()

    def test_from_url(self) -> None:
        client = _mock_client()
        with patch("redis.asyncio.from_url", return_value=client) as from_url:
            cache = RedisDistributedCache.from_url("redis://localhost:6379/0")
        from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
        assert cache._redis is client


class TestRedisSubscriptionReconnect:
    @pytest.mark.asyncio
    async def test_resubscribes_after_connection_loss(self) -> None:
        pubsub = _mock_pubsub([])
        calls = 0

        async def _listen():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("connection reset by peer")
            yield {"type": "message", "data": "after-reconnect"}
            await asyncio.Event().wait()

        pubsub.listen = _listen
        received: list[str] = []

        async def _handler(message: str) -> None:
            received.append(message)

        subscription = RedisSubscription(pubsub, "accesscore:invalidate", _handler, retry_initial=0)
        subscription.start()
        for _ in range(20):
            await asyncio.sleep(0)

        assert received == ["after-reconnect"]
        assert subscription.reconnects == 1
        assert subscription.active
        pubsub.subscribe.assert_awaited_once_with("accesscore:invalidate")

        await subscription.close()
        assert not subscription.active

    @pytest.mark.asyncio
    async def test_reports_inactive_while_redis_is_down(self) -> None:
        pubsub = _mock_pubsub([])
        pubsub.subscribe.side_effect = ConnectionError("connection refused")

        async def _listen():
            raise ConnectionError("connection reset by peer")
            yield  # Makes this an async generator

        pubsub.listen = _listen
        subscription = RedisSubscription(pubsub, "ch", AsyncMock(), retry_initial=0)
        subscription.start()
        for _ in range(10):
            await asyncio.sleep(0)

        assert not subscription.active
        assert subscription.reconnects == 0
        assert pubsub.subscribe.await_count >= 1

        await subscription.close()

    @pytest.mark.asyncio
    async def test_cache_reports_dropped_listener(self) -> None:
        client = _mock_client()
        pubsub = _mock_pubsub([])
        pubsub.subscribe.side_effect = [None, ConnectionError("connection refused")]

        async def _listen():
            raise ConnectionError("connection reset by peer")
            yield  # Makes this an async generator

        pubsub.listen = _listen
        client.pubsub.return_value = pubsub
        cache: PermissionCache[int] = PermissionCache(RedisDistributedCache(client))

        await cache.start()
        for _ in range(5):
            await asyncio.sleep(0)

        assert not cache.subscribed
        await cache.close()
