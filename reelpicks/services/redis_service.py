from typing import Any

import redis.asyncio as redis
from loguru import logger

from reelpicks.core.config import settings


class RedisService:
    """Shared Redis connection plus the key namespace every Reelpicks key lives under."""

    def __init__(self, url: str | None = None, prefix: str | None = None) -> None:
        self.url = url or settings.REDIS_URL
        self.prefix = prefix or settings.REDIS_KEY_PREFIX
        self._client: redis.Redis | None = None
        if not self.url:
            logger.warning("REDIS_URL is not set. Redis operations will fail until configured.")

    def key(self, *parts: Any) -> str:
        return ":".join([self.prefix, *(str(p) for p in parts)])

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            logger.info("Creating Redis client for RedisService")
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                encoding="utf-8",
                socket_connect_timeout=5,
                socket_timeout=5,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                health_check_interval=30,
                socket_keepalive=True,
            )
        return self._client

    async def get(self, key: str) -> str | None:
        """Get a value by key. Returns None when missing or on error."""
        try:
            client = await self.get_client()
            return await client.get(key)
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to get key '{key}' from Redis: {exc}")
            return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Store a value with optional TTL in seconds. A single SET, so readers see old or new, never a mix.

        Returns:
            True if successful, False otherwise
        """
        try:
            client = await self.get_client()
            if ttl is not None:
                result = await client.setex(key, ttl, value)
            else:
                result = await client.set(key, value)
            return bool(result)
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to set key '{key}' in Redis: {exc}")
            return False

    async def scan_keys(self, pattern: str) -> list[str]:
        """Collect every key matching ``pattern``. Raises on connection errors."""
        client = await self.get_client()
        return [key async for key in client.scan_iter(match=pattern, count=500)]

    async def close(self) -> None:
        """Close and disconnect the Redis client"""
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("RedisService client closed")
            except (redis.RedisError, OSError) as exc:
                logger.warning(f"Failed to close RedisService client: {exc}")
            finally:
                self._client = None


redis_service = RedisService()
