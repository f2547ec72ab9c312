"""Redis caching layer with TTL support."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from attrs import field, frozen
from beartype import beartype

from .config import get_settings

__all__ = [
    "Cache",
    "CacheConfig",
    "get_cache",
    "init_redis_pool",
    "close_redis_pool",
    "RedisType",
]

if TYPE_CHECKING:
    from redis.asyncio import Redis as RedisType
else:
    RedisType = redis.Redis


@frozen
class CacheConfig:
    """Immutable cache configuration."""

    url: str = field()
    default_ttl: int = field(default=3600)  # 1 hour
    max_connections: int = field(default=10)
    decode_responses: bool = field(default=True)


class Cache:
    """Redis cache manager with async support.

    An already-created ``redis.asyncio.Redis`` client may be injected, in which
    case :py:meth:`connect` is a no-op. Tests inject a fakeredis client.
    """

    def __init__(
        self,
        redis_client: RedisType | None = None,
        config: CacheConfig | None = None,
    ) -> None:
        """Create a cache wrapper."""
        self._redis: RedisType | None = redis_client
        self._config = config or self._get_config()

    @beartype
    def _get_config(self) -> CacheConfig:
        """Get cache configuration from settings."""
        settings = get_settings()
        return CacheConfig(
            url=settings.redis_url,
            default_ttl=settings.redis_ttl_seconds,
        )

    @property
    def default_ttl(self) -> int:
        """Default TTL in seconds."""
        return self._config.default_ttl

    @beartype
    async def connect(self) -> None:
        """Create Redis connection pool."""
        if self._redis is not None:
            return

        self._redis = redis.from_url(
            self._config.url,
            max_connections=self._config.max_connections,
            decode_responses=self._config.decode_responses,
        )

    @beartype
    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis is None:
            return

        await self._redis.aclose()
        self._redis = None

    def _client(self) -> RedisType:
        if self._redis is None:
            raise RuntimeError("Cache not connected")
        return self._redis

    @beartype
    async def get(self, key: str) -> Any | None:
        """Get a JSON-decoded value from cache."""
        value = await self._client().get(key)
        if value is None:
            return None

        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    @beartype
    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | timedelta | None = None,
    ) -> bool:
        """Set value in cache with optional TTL."""
        if ttl is None:
            ttl = self._config.default_ttl

        if isinstance(ttl, int):
            ttl = timedelta(seconds=ttl)

        if not isinstance(value, (str, int, float, bytes)):
            value = json.dumps(value, default=str)

        result = await self._client().setex(key, ttl, value)
        return bool(result)

    @beartype
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        result = await self._client().delete(key)
        return bool(result > 0)

    @beartype
    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        client = self._client()
        keys = [key async for key in client.scan_iter(match=pattern)]

        if keys:
            result = await client.delete(*keys)
            return int(result)
        return 0

    @property
    def is_connected(self) -> bool:
        """Check if cache is connected."""
        return self._redis is not None


# Global cache instance
_cache: Cache | None = None


@beartype
def get_cache() -> Cache:
    """Get global cache instance."""
    global _cache
    if _cache is None:
        _cache = Cache()
    return _cache


@beartype
async def init_redis_pool() -> None:
    """Initialize the Redis connection pool."""
    await get_cache().connect()


@beartype
async def close_redis_pool() -> None:
    """Close the Redis connection pool."""
    await get_cache().disconnect()
