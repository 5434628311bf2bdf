"""
Tests for app/services/permission_cache.py - version-keyed permission set caching.
"""
import asyncio
import logging
import pytest
from unittest.mock import patch

from prometheus_client import REGISTRY

from app.core.cache import InMemoryCache
from app.core.exceptions import CacheUnavailableError
from conftest import TENANT_A, make_role_spec


class FlakyCache(InMemoryCache):
    """In-memory store that can be switched off to simulate an unreachable cache."""

    def __init__(self):
        super().__init__()
        self.down = False

    def _check(self):
        if self.down:
            raise CacheUnavailableError("store unreachable")

    async def get(self, key):
        self._check()
        return await super().get(key)

    async def set(self, key, value, ttl=None):
        self._check()
        return await super().set(key, value, ttl)

    async def set_if_greater(self, key, value, ttl=None):
        self._check()
        return await super().set_if_greater(key, value, ttl)

    async def ping(self):
        return not self.down


def _degraded_count() -> float:
    return REGISTRY.get_sample_value("wfm_permission_cache_degraded_total") or 0.0


class TestCachedPermissionSet:
    """Test the flattened permission set."""

    @pytest.mark.asyncio
    async def test_json_round_trip(self, registry):
        from app.services.permission_cache import CachedPermissionSet

        role = await registry.upsert_role(TENANT_A, make_role_spec(capabilities={"canExportData": True}))
        permission_set = CachedPermissionSet.from_role(role)

        assert CachedPermissionSet.from_json(permission_set.to_json()) == permission_set

    @pytest.mark.asyncio
    async def test_canonical_encoding(self, registry):
        from app.services.permission_cache import CachedPermissionSet

        role = await registry.upsert_role(TENANT_A, make_role_spec(permissions={"patient": ["View"], "claim": ["View"]}))
        raw = CachedPermissionSet.from_role(role).to_json()

        assert " " not in raw
        assert raw.index('"claim"') < raw.index('"patient"')

    @pytest.mark.asyncio
    async def test_grants_and_capabilities(self, registry):
        from app.core.rbac import Action, Capability, Resource
        from app.services.permission_cache import CachedPermissionSet

        role = await registry.upsert_role(TENANT_A, make_role_spec(capabilities={"canExportData": True}))
        permission_set = CachedPermissionSet.from_role(role)

        assert permission_set.grants(Resource.CLAIM, Action.UPDATE)
        assert not permission_set.grants(Resource.CLAIM, Action.DELETE)
        assert not permission_set.grants(Resource.PATIENT, Action.VIEW)
        assert permission_set.has_capability(Capability.EXPORT_DATA)
        assert not permission_set.has_capability(Capability.APPROVE_WORK)


class TestResolve:
    """Test cache-first resolution."""

    @pytest.mark.asyncio
    async def test_repeated_resolves_are_identical(self, permission_cache, registry):
        """Without a mutation, resolving twice yields byte-identical sets and one registry read."""
        role = await registry.upsert_role(TENANT_A, make_role_spec())

        with patch.object(registry, "get_role", wraps=registry.get_role) as spy:
            first = await permission_cache.resolve(TENANT_A, role.role_id)
            second = await permission_cache.resolve(TENANT_A, role.role_id)

        assert first.to_json() == second.to_json()
        assert spy.await_count == 1

    @pytest.mark.asyncio
    async def test_mutation_invalidates_cached_set(self, permission_cache, registry):
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        before = await permission_cache.resolve(TENANT_A, role.role_id)

        await registry.upsert_role(TENANT_A, make_role_spec(permissions={"claim": ["View"]}), role_id=role.role_id)
        after = await permission_cache.resolve(TENANT_A, role.role_id)

        assert before.role_version == 1
        assert after.role_version == 2
        assert after.permissions == {"claim": ("View",)}

    @pytest.mark.asyncio
    async def test_slow_cold_resolve_does_not_rewind_pointer(self, permission_cache, registry, memory_cache):
        """A resolve that loaded v1 and finishes after the role moved to v2 must not leave v1 cached."""
        from app.services.permission_cache import version_key

        role = await registry.upsert_role(TENANT_A, make_role_spec())
        real_get_role = registry.get_role
        loaded = asyncio.Event()
        release = asyncio.Event()
        versions_read = []

        async def slow_get_role(tenant_id, role_id):
            fetched = await real_get_role(tenant_id, role_id)
            versions_read.append(fetched.version)
            if len(versions_read) == 1:
                loaded.set()
                await release.wait()
            return fetched

        with patch.object(registry, "get_role", new=slow_get_role):
            pending = asyncio.create_task(permission_cache.resolve(TENANT_A, role.role_id))
            await loaded.wait()

            await registry.upsert_role(
                TENANT_A, make_role_spec(capabilities={"canExportData": True}), role_id=role.role_id
            )
            release.set()
            in_flight = await pending

            after = await permission_cache.resolve(TENANT_A, role.role_id)

        assert versions_read[0] == 1
        assert in_flight.role_version == 2
        assert await memory_cache.get(version_key(TENANT_A, role.role_id)) == "2"
        assert after.role_version == 2
        assert after.capabilities.get("canExportData") is True

    @pytest.mark.asyncio
    async def test_deactivation_is_visible_immediately(self, permission_cache, registry):
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        await permission_cache.resolve(TENANT_A, role.role_id)

        await registry.deactivate_role(TENANT_A, role.role_id)

        assert (await permission_cache.resolve(TENANT_A, role.role_id)).is_active is False

    @pytest.mark.asyncio
    async def test_unknown_role(self, permission_cache):
        from app.core.exceptions import RoleNotFound

        with pytest.raises(RoleNotFound):
            await permission_cache.resolve(TENANT_A, "ROLE-MISSING")

    @pytest.mark.asyncio
    async def test_cache_keys(self, permission_cache, registry, memory_cache):
        from app.services.permission_cache import set_key, version_key

        role = await registry.upsert_role(TENANT_A, make_role_spec())
        await permission_cache.resolve(TENANT_A, role.role_id)

        assert await memory_cache.get(version_key(TENANT_A, role.role_id)) == "1"
        assert await memory_cache.get(set_key(TENANT_A, role.role_id, 1)) is not None


class TestDegradedMode:
    """Test behaviour while the cache store is unreachable."""

    @pytest.fixture
    def flaky(self):
        return FlakyCache()

    @pytest.fixture
    def flaky_cache(self, flaky, registry):
        from app.services.permission_cache import PermissionCache
        return PermissionCache(flaky, registry, ttl=30, probe_interval=0)

    @pytest.mark.asyncio
    async def test_unreachable_store_still_resolves(self, flaky, flaky_cache, registry, caplog):
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        flaky.down = True
        degraded_before = _degraded_count()

        with caplog.at_level(logging.WARNING, logger="wfm.cache.permissions"):
            permission_set = await flaky_cache.resolve(TENANT_A, role.role_id)

        assert permission_set.permissions == {"claim": ("Update", "View")}
        assert flaky_cache.degraded is True
        assert _degraded_count() == degraded_before + 1
        degraded_logs = [r for r in caplog.records if getattr(r, "signal", None) == "CacheDegraded"]
        assert len(degraded_logs) == 1
        assert "CacheDegraded" in degraded_logs[0].getMessage()

    @pytest.mark.asyncio
    async def test_degraded_warning_logged_once(self, flaky, flaky_cache, registry, caplog):
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        flaky.down = True

        with caplog.at_level(logging.WARNING, logger="wfm.cache.permissions"):
            await flaky_cache.resolve(TENANT_A, role.role_id)
            await flaky_cache.resolve(TENANT_A, role.role_id)

        assert len([r for r in caplog.records if getattr(r, "signal", None) == "CacheDegraded"]) == 1

    @pytest.mark.asyncio
    async def test_recovers_when_store_returns(self, flaky, flaky_cache, registry):
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        flaky.down = True
        await flaky_cache.resolve(TENANT_A, role.role_id)

        flaky.down = False
        permission_set = await flaky_cache.resolve(TENANT_A, role.role_id)

        assert flaky_cache.degraded is False
        assert permission_set.role_version == 1

    @pytest.mark.asyncio
    async def test_mutation_during_outage_is_not_served_stale(self, flaky, flaky_cache, registry):
        """A role written while the store was down must not resolve to the older cached version afterwards."""
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        await flaky_cache.resolve(TENANT_A, role.role_id)

        flaky.down = True
        await registry.upsert_role(TENANT_A, make_role_spec(permissions={"claim": ["View"]}), role_id=role.role_id)

        flaky.down = False
        permission_set = await flaky_cache.resolve(TENANT_A, role.role_id)

        assert permission_set.role_version == 2
        assert permission_set.permissions == {"claim": ("View",)}

    @pytest.mark.asyncio
    async def test_probe_interval_skips_store(self, flaky, registry):
        from app.services.permission_cache import PermissionCache

        now = [1000.0]
        cache = PermissionCache(flaky, registry, ttl=30, probe_interval=5, clock=lambda: now[0])
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        flaky.down = True
        await cache.resolve(TENANT_A, role.role_id)

        flaky.down = False
        now[0] += 1
        await cache.resolve(TENANT_A, role.role_id)
        assert cache.degraded is True

        now[0] += 5
        await cache.resolve(TENANT_A, role.role_id)
        assert cache.degraded is False
