"""
Unit tests for the Redis cache client and the intent cache.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from assistant.core.cache import CacheClient, hash_key
from assistant.core.circuit_breaker import CircuitState
from assistant.services.ai.cache import INTENT_CACHE_TTL_SECONDS, cache_intent, get_cached_intent


@pytest.mark.asyncio
async def test_cache_client_get_set():
    mock_redis = AsyncMock()
    cache = CacheClient(redis_client=mock_redis)

    mock_redis.setex = AsyncMock(return_value=True)
    assert await cache.set("test_key", {"data": "value"}, 300) is True
    mock_redis.setex.assert_awaited_once_with("test_key", 300, '{"data": "value"}')

    mock_redis.get = AsyncMock(return_value='{"data": "value"}')
    assert await cache.get("test_key") == {"data": "value"}


@pytest.mark.asyncio
async def test_cache_client_without_redis_is_a_miss():
    with patch("assistant.core.cache.get_redis_client", return_value=None):
        cache = CacheClient()

        assert await cache.get("test_key") is None
        assert await cache.set("test_key", "value", 300) is False


@pytest.mark.asyncio
async def test_cache_client_circuit_breaker_open():
    mock_redis = AsyncMock()
    cache = CacheClient(redis_client=mock_redis)
    cache.circuit_breaker = MagicMock()
    cache.circuit_breaker.state = CircuitState.OPEN

    assert await cache.get("test_key") is None
    assert await cache.set("test_key", "value", 300) is False
    mock_redis.get.assert_not_called()


@pytest.mark.asyncio
async def test_cache_client_redis_error_degrades_to_miss():
    mock_redis = AsyncMock()
    mock_redis.get = AsyncMock(side_effect=RedisConnectionError("down"))
    mock_redis.setex = AsyncMock(side_effect=RedisConnectionError("down"))
    cache = CacheClient(redis_client=mock_redis)

    assert await cache.get("test_key") is None
    assert await cache.set("test_key", "value", 300) is False


def test_hash_key_is_stable():
    assert hash_key("user: hello") == hash_key("user: hello")
    assert hash_key("user: hello") != hash_key("user: bye")


@pytest.mark.asyncio
async def test_intent_cache_operations():
    with patch("assistant.services.ai.cache.get_cache_client") as mock_get_cache:
        mock_cache = AsyncMock()
        mock_get_cache.return_value = mock_cache

        mock_cache.get = AsyncMock(return_value=None)
        assert await get_cached_intent("user: help me debug") is None

        cached = {"intent": "code", "confidence": 0.9}
        mock_cache.get = AsyncMock(return_value=cached)
        assert await get_cached_intent("user: help me debug") == cached

        mock_cache.set = AsyncMock(return_value=True)
        await cache_intent("user: help me debug", cached)
        key, payload, ttl = mock_cache.set.await_args.args
        assert key == f"llm:intent:{hash_key('user: help me debug')}"
        assert payload == cached
        assert ttl == INTENT_CACHE_TTL_SECONDS
