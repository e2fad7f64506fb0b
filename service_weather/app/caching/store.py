"""
Cache store for weather snapshots.

The store is a plain key/value capability with per-entry expiration. It does
not decide what gets cached or for how long; failures surface as exceptions
and the caller decides whether they matter.
"""

from typing import List, Optional, Protocol

import redis.asyncio as redis

from shared.logging import get_logger


class CacheStore(Protocol):
    """Key/value store with per-entry expiration."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCacheStore:
    """Redis-backed cache store."""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 2.0,
        scan_batch_size: int = 500,
    ):
        self.redis_url = redis_url
        self.scan_batch_size = scan_batch_size
        self.logger = get_logger("weather.cache_store")
        self._redis: redis.Redis = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
            health_check_interval=30,
        )

    async def get(self, key: str) -> Optional[str]:
        """Return the cached value or None when absent or expired."""
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value that expires after ``ttl_seconds``."""
        await self._redis.set(key, value, ex=ttl_seconds)
        self.logger.debug("Cached value", key=key, ttl=ttl_seconds)

    async def delete(self, key: str) -> int:
        """Delete one key; deleting an absent key returns 0."""
        return int(await self._redis.delete(key))

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix`` and return how many were removed."""
        removed = 0
        batch: List[str] = []
        async for key in self._redis.scan_iter(match=f"{prefix}*", count=self.scan_batch_size):
            batch.append(key)
            if len(batch) >= self.scan_batch_size:
                removed += int(await self._redis.delete(*batch))
                batch = []

        if batch:
            removed += int(await self._redis.delete(*batch))

        self.logger.info("Cleared cache prefix", prefix=prefix, keys_count=removed)
        return removed

    async def ping(self) -> bool:
        """Return True when Redis responds to a ping."""
        try:
            return bool(await self._redis.ping())
        except Exception as exc:
            self.logger.error("Redis health check failed", error=str(exc))
            return False

    async def close(self) -> None:
        """Close Redis connections."""
        await self._redis.aclose()
