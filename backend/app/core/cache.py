"""
Cache store backends used by the permission cache and the quota counters.

Backends raise ``CacheUnavailableError`` when the store cannot be reached so
callers can decide between failing open and failing over; they never return
stale data silently.
"""

import asyncio
import logging
from typing import Optional

from redis.exceptions import RedisError

from app.core.exceptions import CacheUnavailableError
from app.core.redis_client import RedisClient

logger = logging.getLogger("wfm.cache")


class CacheBackend:
    """Base class for cache backends."""

    name = "base"

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """Atomically increment ``key`` and return the new value, (re)setting its expiry to ``ttl``."""
        raise NotImplementedError

    async def decr(self, key: str) -> int:
        raise NotImplementedError

    async def set_if_greater(self, key: str, value: int, ttl: Optional[int] = None) -> bool:
        """
        Atomically store ``value`` unless ``key`` already holds an integer >= ``value``.

        Returns True when the value was written.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryCache(CacheBackend):
    """
    In-process cache for single-instance deployments and tests.
    Counters are only atomic within one process.
    """

    name = "memory"

    def __init__(self, max_size: int = 10000):
        self._cache: dict[str, tuple[str, Optional[float]]] = {}
        self._max_size = max_size
        self._lock = asyncio.Lock()

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, expiry = entry
        if expiry is not None and expiry <= self._now():
            del self._cache[key]
            return None
        return value

    def _evict_if_full(self) -> None:
        if len(self._cache) < self._max_size:
            return
        now = self._now()
        for key in [k for k, (_, exp) in self._cache.items() if exp is not None and exp <= now]:
            del self._cache[key]
        if len(self._cache) >= self._max_size:
            # Dicts keep insertion order, so this is the oldest entry
            del self._cache[next(iter(self._cache))]

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._live_value(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        async with self._lock:
            self._evict_if_full()
            expiry = self._now() + ttl if ttl else None
            self._cache[key] = (value, expiry)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        async with self._lock:
            current = self._live_value(key)
            if current is None:
                self._evict_if_full()
                expiry = self._now() + ttl if ttl else None
                self._cache[key] = ("1", expiry)
                return 1
            _, expiry = self._cache[key]
            if ttl:
                expiry = self._now() + ttl
            new_value = int(current) + 1
            self._cache[key] = (str(new_value), expiry)
            return new_value

    async def decr(self, key: str) -> int:
        async with self._lock:
            current = self._live_value(key)
            if current is None:
                return 0
            _, expiry = self._cache[key]
            new_value = int(current) - 1
            self._cache[key] = (str(new_value), expiry)
            return new_value

    async def set_if_greater(self, key: str, value: int, ttl: Optional[int] = None) -> bool:
        async with self._lock:
            current = self._live_value(key)
            if current is not None and int(current) >= value:
                return False
            self._evict_if_full()
            expiry = self._now() + ttl if ttl else None
            self._cache[key] = (str(value), expiry)
            return True


# KEYS[1] = key, ARGV[1] = value, ARGV[2] = ttl seconds (0 for none)
_SET_IF_GREATER_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current and tonumber(current) >= tonumber(ARGV[1]) then
    return 0
end
if tonumber(ARGV[2]) > 0 then
    redis.call('SET', KEYS[1], ARGV[1], 'EX', ARGV[2])
else
    redis.call('SET', KEYS[1], ARGV[1])
end
return 1
"""


class RedisCache(CacheBackend):
    """Redis-backed cache sharing the process-wide ``RedisClient``."""

    name = "redis"

    def __init__(self, client: RedisClient):
        self._client = client

    async def get(self, key: str) -> Optional[str]:
        try:
            conn = await self._client.get()
            return await conn.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis GET failed: {e}") from e

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            conn = await self._client.get()
            if ttl:
                await conn.setex(key, ttl, value)
            else:
                await conn.set(key, value)
            return True
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis SET failed: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            conn = await self._client.get()
            return await conn.delete(key) > 0
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis DELETE failed: {e}") from e

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        try:
            conn = await self._client.get()
            async with conn.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                if ttl:
                    pipe.expire(key, ttl)
                results = await pipe.execute()
            return int(results[0])
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis INCR failed: {e}") from e

    async def decr(self, key: str) -> int:
        try:
            conn = await self._client.get()
            return int(await conn.decr(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis DECR failed: {e}") from e

    async def set_if_greater(self, key: str, value: int, ttl: Optional[int] = None) -> bool:
        try:
            conn = await self._client.get()
            written = await conn.eval(_SET_IF_GREATER_SCRIPT, 1, key, str(value), str(ttl or 0))
            return int(written) == 1
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis compare-and-set failed: {e}") from e

    async def ping(self) -> bool:
        return await self._client.ping()


def build_cache_backend(client: Optional[RedisClient]) -> CacheBackend:
    """Redis when a client is configured, otherwise the in-process store."""
    if client is None:
        logger.info("No cache store configured, using in-memory cache")
        return InMemoryCache()
    logger.info(f"Using Redis cache at {client.safe_url}")
    return RedisCache(client)


class CacheTTL:
    """Common cache TTL values (seconds)."""
    SHORT = 30
    MEDIUM = 300
    LONG = 3600
    QUOTA_WINDOW = 2 * 86400  # a day plus slack for clock skew across instances
