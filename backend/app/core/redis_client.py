"""
Process-wide Redis connection for the permission cache and quota counters.

The client is created once in the application lifespan and handed to the
components that need it. It connects lazily on first use, exposes ``ping()``
as a liveness probe, and is closed explicitly on shutdown.
"""

import asyncio
import logging
import ssl
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import Settings

logger = logging.getLogger("wfm.redis")


class RedisClient:
    """Owns one ``redis.asyncio.Redis`` connection pool."""

    def __init__(
        self,
        url: str,
        socket_timeout: float = 2.0,
        tls_ca_cert: Optional[str] = None,
    ):
        self._url = url
        self._socket_timeout = socket_timeout
        self._tls_ca_cert = tls_ca_cert
        self._redis: Optional[aioredis.Redis] = None
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["RedisClient"]:
        """Build a client from settings, or return None when no cache store is configured."""
        url = settings.redis_connection_url
        if not url:
            return None
        return cls(
            url,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            tls_ca_cert=settings.REDIS_TLS_CA_CERT,
        )

    @property
    def safe_url(self) -> str:
        """Connection URL with credentials stripped, for logs."""
        return self._url.split("@")[-1] if "@" in self._url else self._url

    async def get(self) -> aioredis.Redis:
        """Return the underlying connection, creating it on first use."""
        if self._closed:
            raise RuntimeError("RedisClient has been closed")
        if self._redis is not None:
            return self._redis

        async with self._lock:
            if self._redis is None:
                kwargs = {
                    "encoding": "utf-8",
                    "decode_responses": True,
                    "socket_timeout": self._socket_timeout,
                    "socket_connect_timeout": self._socket_timeout,
                }
                if self._tls_ca_cert:
                    kwargs["ssl_ca_certs"] = self._tls_ca_cert
                    kwargs["ssl_cert_reqs"] = ssl.CERT_REQUIRED
                self._redis = aioredis.from_url(self._url, **kwargs)
                logger.info(f"Redis client created for {self.safe_url}")
        return self._redis

    async def ping(self) -> bool:
        """Liveness probe. Never raises."""
        try:
            conn = await self.get()
            return bool(await conn.ping())
        except (RedisError, OSError, RuntimeError) as e:
            logger.debug(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        self._closed = True
        if self._redis is not None:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except (RedisError, OSError) as e:
                logger.warning(f"Error closing Redis connection: {e}")
            finally:
                self._redis = None
