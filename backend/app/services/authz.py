"""
Wiring for the authorization core.

One ``AuthzServices`` instance is built per process in the application
lifespan and kept on ``app.state.authz``; request dependencies read it from
there. The Redis client is created and closed here rather than held as a
module-level singleton.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import AuditLogRepository
from app.core.cache import CacheBackend, build_cache_backend
from app.core.redis_client import RedisClient
from app.services.audit_recorder import AuditRecorder
from app.services.permission_cache import PermissionCache
from app.services.permission_evaluator import PermissionEvaluator
from app.services.quota_counter import QuotaCounter
from app.services.role_registry import RoleRegistry

logger = logging.getLogger("wfm.authz")


@dataclass
class AuthzServices:
    registry: RoleRegistry
    cache_backend: CacheBackend
    permission_cache: PermissionCache
    quota: QuotaCounter
    evaluator: PermissionEvaluator
    audit_repository: AuditLogRepository
    recorder: AuditRecorder
    redis_client: Optional[RedisClient] = None

    @classmethod
    def build(
        cls,
        session_factory: Callable[[], AsyncSession],
        redis_client: Optional[RedisClient] = None,
        cache_backend: Optional[CacheBackend] = None,
        **recorder_options: Any,
    ) -> "AuthzServices":
        backend = cache_backend or build_cache_backend(redis_client)
        registry = RoleRegistry(session_factory)
        permission_cache = PermissionCache(backend, registry)
        quota = QuotaCounter(backend)
        audit_repository = AuditLogRepository(session_factory)
        return cls(
            registry=registry,
            cache_backend=backend,
            permission_cache=permission_cache,
            quota=quota,
            evaluator=PermissionEvaluator(permission_cache, quota),
            audit_repository=audit_repository,
            recorder=AuditRecorder(audit_repository, **recorder_options),
            redis_client=redis_client,
        )

    async def start(self) -> None:
        await self.recorder.start()

    async def stop(self) -> None:
        await self.recorder.stop(drain=True)
        await self.cache_backend.close()
        if self.redis_client is not None:
            await self.redis_client.close()
        logger.info("Authorization services stopped")
