"""
Per-actor daily quota counters (claim creation).

Counting is increment-then-compare on a single atomic counter, never
read-then-write, so concurrent requests at the boundary cannot both observe
"under quota". An increment that overshoots the limit is rolled back.

Quotas fail closed: while the shared store is unreachable no slot can be
counted, so quota-gated requests are refused rather than counted locally.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.core.cache import CacheBackend, CacheTTL
from app.core.exceptions import CacheUnavailableError
from app.core.metrics import quota_store_unavailable_total

logger = logging.getLogger("wfm.quota")


@dataclass(frozen=True)
class QuotaResult:
    allowed: bool
    used: int
    limit: int
    key: Optional[str] = None
    # True when the store could not be reached and the slot was refused unchecked
    unavailable: bool = False


class QuotaCounter:
    """Daily counters keyed by tenant, actor and UTC day."""

    def __init__(self, backend: CacheBackend, window_ttl: int = CacheTTL.QUOTA_WINDOW):
        self._backend = backend
        self._window_ttl = window_ttl

    @staticmethod
    def key(tenant_id: str, actor_ref: str, now: Optional[datetime] = None) -> str:
        day = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).strftime("%Y%m%d")
        return f"quota:claims:{tenant_id}:{actor_ref}:{day}"

    async def acquire(
        self, tenant_id: str, actor_ref: str, limit: int, now: Optional[datetime] = None
    ) -> QuotaResult:
        """
        Consume one slot of today's quota.

        ``limit <= 0`` means unlimited and consumes nothing.
        """
        if limit <= 0:
            return QuotaResult(allowed=True, used=0, limit=0)

        key = self.key(tenant_id, actor_ref, now)
        try:
            used = await self._backend.incr(key, ttl=self._window_ttl)
        except CacheUnavailableError as e:
            return self._unavailable(key, limit, e)
        if used > limit:
            await self._rollback(key)
            logger.info(f"Daily quota reached for {actor_ref} in {tenant_id} ({limit})")
            return QuotaResult(allowed=False, used=used - 1, limit=limit, key=key)
        return QuotaResult(allowed=True, used=used, limit=limit, key=key)

    async def peek(
        self, tenant_id: str, actor_ref: str, limit: int, now: Optional[datetime] = None
    ) -> QuotaResult:
        """Report whether one more slot is available without consuming it."""
        if limit <= 0:
            return QuotaResult(allowed=True, used=0, limit=0)
        key = self.key(tenant_id, actor_ref, now)
        try:
            raw = await self._backend.get(key)
        except CacheUnavailableError as e:
            return self._unavailable(key, limit, e)
        used = int(raw) if raw else 0
        return QuotaResult(allowed=used < limit, used=used, limit=limit, key=key)

    async def release(self, key: str) -> None:
        """Give back a slot consumed by a request whose handler did not complete."""
        await self._rollback(key)

    async def _rollback(self, key: str) -> None:
        try:
            await self._backend.decr(key)
        except CacheUnavailableError as e:
            # The slot stays consumed until the counter expires
            logger.warning(f"Could not return quota slot {key}: {e}")

    @staticmethod
    def _unavailable(key: str, limit: int, cause: Exception) -> QuotaResult:
        quota_store_unavailable_total.inc()
        logger.warning(f"Quota store unavailable, refusing quota-gated request: {cause}", extra={"quota_key": key})
        return QuotaResult(allowed=False, used=0, limit=limit, key=key, unavailable=True)
