"""Key-value cache used for search results, rate-limit counters and health state."""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueCache(Protocol):
    """Byte-oriented cache interface the engine depends on."""

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        ...

    async def increment(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        ...

    async def list_keys(self, prefix: str) -> List[str]:
        ...

    async def close(self) -> None:
        ...


class InMemoryCache:
    """
    Process-local cache with per-key expiry.

    All mutations happen under one asyncio lock, so ``increment`` and the
    expiry it applies are atomic with respect to concurrent coroutines.
    """

    def __init__(self, now: Callable[[], float] = time.monotonic):
        self._now = now
        self._entries: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _live_entry(self, key: str) -> Optional[Tuple[bytes, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._now() >= expires_at:
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry else None

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[key] = (value, self._now() + ttl_seconds)

    async def increment(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """Increment a counter; ``ttl_seconds`` applies only while it has no expiry."""
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                count, expires_at = 0, None
            else:
                count, expires_at = int(entry[0]), entry[1]
            count += 1
            if expires_at is None and ttl_seconds is not None:
                expires_at = self._now() + ttl_seconds
            self._entries[key] = (str(count).encode(), expires_at)
            return count

    async def list_keys(self, prefix: str) -> List[str]:
        async with self._lock:
            return [key for key in list(self._entries) if key.startswith(prefix) and self._live_entry(key)]

    async def close(self) -> None:
        async with self._lock:
            self._entries.clear()


class RedisCache:
    """Cache backed by Redis via ``redis.asyncio``."""

    def __init__(self, url: str, client: Optional[redis.Redis] = None):
        self.url = url
        self._client = client or redis.from_url(url)

    async def get(self, key: str) -> Optional[bytes]:
        return await self._client.get(key)

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def increment(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        if ttl_seconds is None:
            return int(await self._client.incr(key))
        # EXPIRE NX only touches keys that have no TTL yet
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl_seconds, nx=True)
            count, _ = await pipe.execute()
        return int(count)

    async def list_keys(self, prefix: str) -> List[str]:
        keys = []
        async for key in self._client.scan_iter(match=f"{prefix}*", count=100):
            keys.append(key.decode() if isinstance(key, bytes) else key)
        return keys

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(redis_url: Optional[str] = None) -> KeyValueCache:
    """
    Build the configured cache.

    Args:
        redis_url: Redis connection URL; an in-memory cache is used when unset

    Returns:
        Cache implementation
    """
    if redis_url:
        logger.info(f"Using Redis cache at {redis_url}")
        return RedisCache(redis_url)
    logger.info("Using in-memory cache")
    return InMemoryCache()
