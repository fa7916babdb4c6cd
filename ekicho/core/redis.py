"""
Redis client protocol and factory for the local key-value store.

Provides a Protocol definition for dependency injection and a factory
function so the client configuration lives in one place.
"""

from typing import Protocol, cast

import redis.asyncio as redis

from ekicho.core.config import settings


class RedisClientProtocol(Protocol):
    """
    Protocol for the Redis async client used by the local store.

    Defines the subset of redis.asyncio.Redis methods used in this package.
    """

    async def get(self, name: str) -> str | None:
        """Get the value at key name."""
        ...

    async def set(self, name: str, value: str) -> bool:
        """Set the value at key name (no expiration)."""
        ...

    async def delete(self, *names: str) -> int:
        """Delete one or more keys."""
        ...

    async def ping(self) -> bool:
        """Ping the Redis server to check connectivity."""
        ...

    async def aclose(self, close_connection_pool: bool = True) -> None:
        """Close the client connection."""
        ...


def get_redis_client() -> RedisClientProtocol:
    """
    Create a Redis client with standard configuration.

    Returns:
        Redis client instance that satisfies RedisClientProtocol

    Note:
        redis.from_url() is not fully typed, so the cast lives here rather
        than at every call site.
    """
    return cast(
        RedisClientProtocol,
        redis.from_url(  # type: ignore[no-untyped-call]
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        ),
    )
