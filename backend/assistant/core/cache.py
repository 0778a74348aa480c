"""
Redis cache client wrapper with circuit breaker.

The cache is strictly best-effort: every failure degrades to a miss
(``get`` returns None, ``set`` returns False). Nothing in the routing core
depends on Redis for correctness.
"""
import hashlib
import json
import os
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from assistant.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: Optional[aioredis.Redis] = None
_cache_circuit_breaker: Optional[CircuitBreaker] = None


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://redis:6379")


async def initialize_redis() -> bool:
    """
    Initialize the Redis connection pool.

    Returns:
        True if Redis answered a PING, False otherwise
    """
    global _redis_client, _cache_circuit_breaker

    try:
        redis_url = get_redis_url()
        logger.info("redis_initializing", url=redis_url)

        _redis_client = aioredis.from_url(
            redis_url,
            max_connections=20,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            decode_responses=True,
        )
        await _redis_client.ping()

        _cache_circuit_breaker = CircuitBreaker(name="redis_cache")

        logger.info("redis_initialized")
        return True

    except Exception as e:
        logger.error(
            "redis_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        _redis_client = None
        return False


async def close_redis() -> None:
    global _redis_client

    if _redis_client:
        try:
            await _redis_client.aclose()
            logger.info("redis_closed")
        except Exception as e:
            logger.error("redis_close_failed", error=str(e))
        finally:
            _redis_client = None


def get_redis_client() -> Optional[aioredis.Redis]:
    return _redis_client


class CacheClient:
    """
    JSON cache-aside client.

    Values are JSON-serialized on ``set`` and decoded on ``get``.
    """

    def __init__(self, redis_client: Optional[aioredis.Redis] = None):
        self._redis = redis_client
        self._circuit_breaker: Optional[CircuitBreaker] = None

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self._circuit_breaker or _cache_circuit_breaker

    @circuit_breaker.setter
    def circuit_breaker(self, breaker: Optional[CircuitBreaker]) -> None:
        self._circuit_breaker = breaker

    @property
    def redis(self) -> Optional[aioredis.Redis]:
        return self._redis if self._redis is not None else get_redis_client()

    def _is_open(self) -> bool:
        return bool(self.circuit_breaker and self.circuit_breaker.state == CircuitState.OPEN)

    async def _call(self, method, *args):
        if self.circuit_breaker:
            return await self.circuit_breaker.call_async(method, *args)
        return await method(*args)

    async def get(self, key: str) -> Optional[Any]:
        """Cached value if found, None on miss or error."""
        client = self.redis
        if client is None or self._is_open():
            return None

        try:
            value = await self._call(client.get, key)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return None
        except RedisError as e:
            logger.warning(
                "cache_get_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, json.JSONDecodeError):
            return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store a JSON-serializable value with a TTL in seconds."""
        client = self.redis
        if client is None or self._is_open():
            return False

        serialized = value if isinstance(value, str) else json.dumps(value)
        try:
            await self._call(client.setex, key, ttl, serialized)
            return True
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return False
        except RedisError as e:
            logger.warning(
                "cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def get_circuit_breaker_metrics(self) -> Optional[Dict]:
        if self.circuit_breaker:
            return self.circuit_breaker.get_metrics()
        return None


_cache_client: Optional[CacheClient] = None


def get_cache_client() -> CacheClient:
    global _cache_client
    if _cache_client is None:
        _cache_client = CacheClient()
    return _cache_client


def hash_key(text: str) -> str:
    """Stable short hash for cache keys."""
    return hashlib.md5(text.encode()).hexdigest()
