"""
Redis Connection Management

One shared connection for conversation sessions and the notification
queue. Every key the service writes goes through redis_key() so the
whole keyspace sits under APP_PREFIX.
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from dental_scheduler.config import settings

logger = logging.getLogger(__name__)

# Bump the version segment when a stored payload changes shape
APP_PREFIX = "dental:v1:"


def redis_key(*parts: str) -> str:
    """
    Build a namespaced key.

    Example:
        redis_key("chat", "session", "cabinet-1", "abc")
        -> "dental:v1:chat:session:cabinet-1:abc"
    """
    return APP_PREFIX + ":".join(parts)


class RedisClient:
    """
    Process-wide Redis connection.

    A failed connect is remembered for redis_retry_cooldown_seconds so
    callers on the request path degrade immediately instead of waiting on
    a socket timeout each time.
    """

    _client: Optional[Redis] = None
    _connected: bool = False
    _failed_at: Optional[float] = None

    @classmethod
    def _cooling_down(cls) -> bool:
        if cls._failed_at is None:
            return False
        return time.monotonic() - cls._failed_at < settings.redis_retry_cooldown_seconds

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create the client.

        Returns:
            Redis client, or None while Redis is unreachable
        """
        if cls._client is not None and cls._connected:
            return cls._client

        if cls._cooling_down():
            return None

        client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
            retry_on_timeout=True,
            retry=Retry(ExponentialBackoff(), retries=2),
        )

        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis at {settings.redis_url}: {e}")
            cls._client = None
            cls._connected = False
            cls._failed_at = time.monotonic()
            return None

        cls._client = client
        cls._connected = True
        cls._failed_at = None
        logger.info("Redis connection established")
        return client

    @classmethod
    async def close(cls) -> None:
        """Close the connection and forget any recorded failure."""
        client, cls._client = cls._client, None
        cls._connected = False
        cls._failed_at = None

        if client is None:
            return
        try:
            await client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """Shared client, or None in degraded mode."""
    return await RedisClient.get_client()


async def check_redis_health() -> bool:
    """Readiness check: True when Redis answers PING."""
    client = await get_redis()
    if client is None:
        return False

    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.error(f"Redis health check failed: {e}")
        return False
    return True
