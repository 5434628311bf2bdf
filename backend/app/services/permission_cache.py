"""
Permission Cache: version-keyed cache of resolved role permission sets.

Keys:
- ``perm:ver:{tenant}:{role}`` names the role's current version
- ``perm:set:{tenant}:{role}:v{version}`` holds the canonical JSON of that version

A role write moves the version pointer (via the registry's version listener),
so the next resolve misses and rebuilds from the registry instead of relying
on explicit invalidation messages. The pointer is only ever moved forward, so
a resolve that read an older version cannot rewind it. Entries expire after the configured TTL,
which also bounds staleness if a pointer update is lost.

When the cache store is unreachable the cache fails open to a direct registry
read, logs a ``CacheDegraded`` warning, counts the fallback and skips the store
until a liveness probe succeeds.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from app.core.cache import CacheBackend
from app.core.config import settings
from app.core.exceptions import CacheDegraded, CacheUnavailableError
from app.core.metrics import permission_cache_degraded, permission_cache_degraded_total
from app.core.rbac import Action, Capability, Resource
from app.models.role import Role
from app.services.role_registry import RoleRegistry

logger = logging.getLogger("wfm.cache.permissions")


def version_key(tenant_id: str, role_id: str) -> str:
    return f"perm:ver:{tenant_id}:{role_id}"


def set_key(tenant_id: str, role_id: str, version: int) -> str:
    return f"perm:set:{tenant_id}:{role_id}:v{version}"


@dataclass(frozen=True)
class CachedPermissionSet:
    """Flattened, disposable view of one role version. Never authoritative."""
    tenant_id: str
    role_id: str
    role_version: int
    role_level: int
    is_active: bool
    permissions: Dict[str, Tuple[str, ...]]
    capabilities: Dict[str, bool]
    max_claims_per_day: int

    @classmethod
    def from_role(cls, role: Role) -> "CachedPermissionSet":
        return cls(
            tenant_id=role.company_id,
            role_id=role.role_id,
            role_version=role.version,
            role_level=role.role_level,
            is_active=bool(role.is_active),
            permissions={
                resource: tuple(sorted(set(actions)))
                for resource, actions in sorted((role.permissions or {}).items())
            },
            capabilities={flag: bool(v) for flag, v in sorted((role.capabilities or {}).items())},
            max_claims_per_day=role.max_claims_per_day or 0,
        )

    def to_json(self) -> str:
        """Canonical encoding: sorted keys, sorted actions, no whitespace."""
        return json.dumps(
            {
                "tenant_id": self.tenant_id,
                "role_id": self.role_id,
                "role_version": self.role_version,
                "role_level": self.role_level,
                "is_active": self.is_active,
                "permissions": {r: list(a) for r, a in self.permissions.items()},
                "capabilities": self.capabilities,
                "max_claims_per_day": self.max_claims_per_day,
            },
            sort_keys=True,
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: str) -> "CachedPermissionSet":
        data = json.loads(raw)
        return cls(
            tenant_id=data["tenant_id"],
            role_id=data["role_id"],
            role_version=int(data["role_version"]),
            role_level=int(data["role_level"]),
            is_active=bool(data["is_active"]),
            permissions={r: tuple(a) for r, a in data["permissions"].items()},
            capabilities=dict(data["capabilities"]),
            max_claims_per_day=int(data["max_claims_per_day"]),
        )

    def grants(self, resource: Resource, action: Action) -> bool:
        return action.value in self.permissions.get(resource.value, ())

    def has_capability(self, capability: Capability) -> bool:
        return self.capabilities.get(capability.value, False)


class PermissionCache:
    """
    Cache-first resolution of ``(tenant, role)`` to a ``CachedPermissionSet``.

    Subscribes to the registry's version listener on construction.
    """

    def __init__(
        self,
        backend: CacheBackend,
        registry: RoleRegistry,
        ttl: int = settings.PERMISSION_CACHE_TTL_SECONDS,
        probe_interval: float = settings.CACHE_PROBE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self._registry = registry
        self._ttl = ttl
        self._probe_interval = probe_interval
        self._clock = clock
        self._degraded = False
        self._next_probe_at = 0.0
        # Version pointers that could not be written while the store was down
        self._pending_versions: Dict[Tuple[str, str], int] = {}
        registry.add_version_listener(self.on_role_version)

    @property
    def degraded(self) -> bool:
        return self._degraded

    async def resolve(self, tenant_id: str, role_id: str) -> CachedPermissionSet:
        """
        Resolve a role's current permission set.

        Raises:
            RoleNotFound: the role does not exist in ``tenant_id``
        """
        if await self._store_available():
            try:
                return await self._resolve_through_store(tenant_id, role_id)
            except CacheUnavailableError as e:
                self._enter_degraded(e)

        permission_cache_degraded_total.inc()
        role = await self._registry.get_role(tenant_id, role_id)
        return CachedPermissionSet.from_role(role)

    async def on_role_version(self, tenant_id: str, role_id: str, version: int) -> None:
        """Registry listener: point the role at its new version."""
        if self._degraded:
            self._pending_versions[(tenant_id, role_id)] = version
            return
        try:
            await self._backend.set_if_greater(version_key(tenant_id, role_id), version, self._ttl)
        except CacheUnavailableError as e:
            self._pending_versions[(tenant_id, role_id)] = version
            self._enter_degraded(e)

    async def _resolve_through_store(self, tenant_id: str, role_id: str) -> CachedPermissionSet:
        current = await self._backend.get(version_key(tenant_id, role_id))
        if current is not None:
            raw = await self._backend.get(set_key(tenant_id, role_id, int(current)))
            if raw is not None:
                return CachedPermissionSet.from_json(raw)

        permission_set = await self._load(tenant_id, role_id)
        # The pointer only moves forward; a slow read must not rewind it past a newer write
        if not await self._backend.set_if_greater(
            version_key(tenant_id, role_id), permission_set.role_version, self._ttl
        ):
            current = await self._backend.get(version_key(tenant_id, role_id))
            if current is not None and int(current) > permission_set.role_version:
                logger.debug(
                    f"{tenant_id}/{role_id} moved to v{current} while v{permission_set.role_version} was loading"
                )
                permission_set = await self._load(tenant_id, role_id)
        return permission_set

    async def _load(self, tenant_id: str, role_id: str) -> CachedPermissionSet:
        role = await self._registry.get_role(tenant_id, role_id)
        permission_set = CachedPermissionSet.from_role(role)
        await self._backend.set(
            set_key(tenant_id, role_id, permission_set.role_version), permission_set.to_json(), self._ttl
        )
        logger.debug(f"Permission set cached for {tenant_id}/{role_id} v{permission_set.role_version}")
        return permission_set

    async def _store_available(self) -> bool:
        if not self._degraded:
            return True
        now = self._clock()
        if now < self._next_probe_at:
            return False
        if await self._backend.ping() and await self._flush_pending_versions():
            self._degraded = False
            permission_cache_degraded.set(0)
            logger.info("Cache store reachable again, leaving degraded mode")
            return True
        self._next_probe_at = now + self._probe_interval
        return False

    async def _flush_pending_versions(self) -> bool:
        try:
            while self._pending_versions:
                (tenant_id, role_id), version = next(iter(self._pending_versions.items()))
                await self._backend.set_if_greater(version_key(tenant_id, role_id), version, self._ttl)
                del self._pending_versions[(tenant_id, role_id)]
        except CacheUnavailableError as e:
            logger.debug(f"Cache store probe succeeded but pointer flush failed: {e}")
            return False
        return True

    def _enter_degraded(self, cause: Exception) -> None:
        if not self._degraded:
            signal = CacheDegraded(f"Cache store unavailable, resolving permissions from the role registry: {cause}")
            logger.warning(f"{CacheDegraded.__name__}: {signal}", extra={"signal": CacheDegraded.__name__})
        self._degraded = True
        self._next_probe_at = self._clock() + self._probe_interval
        permission_cache_degraded.set(1)
