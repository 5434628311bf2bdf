"""
Tests for app/services/role_registry.py - role validation, writes and versioning.
"""
import pytest
from unittest.mock import AsyncMock

from conftest import TENANT_A, TENANT_B, employee_actor, make_role_spec


class TestValidateRoleSpec:
    """Test write-time validation against the closed vocabulary."""

    def test_valid_spec_is_normalized(self):
        from app.services.role_registry import validate_role_spec

        errors, permissions, capabilities = validate_role_spec(
            make_role_spec(permissions={"Claim": ["update", "View", "view"]}, capabilities={"canExportData": True})
        )

        assert errors == []
        assert permissions == {"claim": ["Update", "View"]}
        assert capabilities["canExportData"] is True
        assert capabilities["canApproveWork"] is False
        assert len(capabilities) == 6

    def test_unknown_resource_and_action(self):
        from app.services.role_registry import validate_role_spec

        errors, _, _ = validate_role_spec(make_role_spec(permissions={"spaceship": ["View"], "claim": ["Fly"]}))

        assert "unknown resource 'spaceship'" in errors
        assert "unknown action 'Fly' for resource 'claim'" in errors

    def test_platform_resource_cannot_be_granted(self):
        from app.services.role_registry import validate_role_spec

        errors, _, _ = validate_role_spec(make_role_spec(permissions={"subscription": ["View"]}))

        assert any("platform-scoped" in e for e in errors)

    def test_unknown_capability(self):
        from app.services.role_registry import validate_role_spec

        errors, _, _ = validate_role_spec(make_role_spec(capabilities={"canLaunchRockets": True}))

        assert "unknown capability 'canLaunchRockets'" in errors

    def test_claim_delete_requires_level_seven(self):
        from app.services.role_registry import validate_role_spec

        low, _, _ = validate_role_spec(make_role_spec(level=6, permissions={"claim": ["Delete"]}))
        high, _, _ = validate_role_spec(make_role_spec(level=7, permissions={"claim": ["Delete"]}))

        assert any("claim Delete" in e for e in low)
        assert high == []

    def test_financials_requires_level_five(self):
        from app.services.role_registry import validate_role_spec

        errors, _, _ = validate_role_spec(make_role_spec(level=4, capabilities={"canViewFinancials": True}))

        assert any("canViewFinancials" in e for e in errors)

    def test_level_bounds_and_quota(self):
        from app.services.role_registry import validate_role_spec

        errors, _, _ = validate_role_spec(make_role_spec(level=11, max_claims_per_day=-1))

        assert any("role_level" in e for e in errors)
        assert any("max_claims_per_day" in e for e in errors)

    def test_blank_name(self):
        from app.services.role_registry import validate_role_spec

        errors, _, _ = validate_role_spec(make_role_spec(name="   "))

        assert "role_name must not be empty" in errors


class TestUpsertRole:
    """Test role creation and replacement."""

    @pytest.mark.asyncio
    async def test_create_role(self, registry):
        role = await registry.upsert_role(TENANT_A, make_role_spec())

        assert role.role_id.startswith("ROLE-")
        assert role.company_id == TENANT_A
        assert role.version == 1
        assert role.permissions == {"claim": ["Update", "View"]}

    @pytest.mark.asyncio
    async def test_invalid_spec_raises_with_all_errors(self, registry):
        from app.core.exceptions import InvalidRoleSpec

        with pytest.raises(InvalidRoleSpec) as exc_info:
            await registry.upsert_role(TENANT_A, make_role_spec(level=42, permissions={"nope": ["View"]}))

        assert len(exc_info.value.errors) == 2
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_update_bumps_version(self, registry):
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        updated = await registry.upsert_role(
            TENANT_A, make_role_spec(permissions={"claim": ["View"]}), role_id=role.role_id
        )

        assert updated.role_id == role.role_id
        assert updated.version == 2
        assert updated.permissions == {"claim": ["View"]}

    @pytest.mark.asyncio
    async def test_names_unique_within_tenant(self, registry):
        from app.core.exceptions import InvalidRoleSpec

        await registry.upsert_role(TENANT_A, make_role_spec(name="Coder"))

        with pytest.raises(InvalidRoleSpec) as exc_info:
            await registry.upsert_role(TENANT_A, make_role_spec(name="Coder"))

        assert "already exists" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_same_name_allowed_across_tenants(self, registry):
        a = await registry.upsert_role(TENANT_A, make_role_spec(name="Coder"))
        b = await registry.upsert_role(TENANT_B, make_role_spec(name="Coder"))

        assert a.role_id != b.role_id

    @pytest.mark.asyncio
    async def test_update_in_other_tenant_is_not_found(self, registry):
        from app.core.exceptions import RoleNotFound

        role = await registry.upsert_role(TENANT_A, make_role_spec())

        with pytest.raises(RoleNotFound):
            await registry.upsert_role(TENANT_B, make_role_spec(), role_id=role.role_id)

    @pytest.mark.asyncio
    async def test_editor_cannot_manage_role_at_or_above_own_level(self, registry):
        from app.core.exceptions import AuthorizationDenied

        editor_role = await registry.upsert_role(TENANT_A, make_role_spec(name="Lead", level=5))
        editor = employee_actor(editor_role.role_id)

        with pytest.raises(AuthorizationDenied) as exc_info:
            await registry.upsert_role(TENANT_A, make_role_spec(name="Peer", level=5), editor=editor)

        assert exc_info.value.reason == "RoleLevelTooHigh"

        lower = await registry.upsert_role(TENANT_A, make_role_spec(name="Junior", level=4), editor=editor)
        assert lower.created_by == "EMP-1"

    @pytest.mark.asyncio
    async def test_editor_cannot_demote_higher_role(self, registry):
        """Editing a role above the editor's level is refused even when lowering it."""
        from app.core.exceptions import AuthorizationDenied

        editor_role = await registry.upsert_role(TENANT_A, make_role_spec(name="Lead", level=5))
        boss = await registry.upsert_role(TENANT_A, make_role_spec(name="Boss", level=8))

        with pytest.raises(AuthorizationDenied):
            await registry.upsert_role(
                TENANT_A, make_role_spec(name="Boss", level=2), role_id=boss.role_id,
                editor=employee_actor(editor_role.role_id),
            )

    @pytest.mark.asyncio
    async def test_editor_without_role(self, registry):
        from app.core.exceptions import AuthorizationDenied

        with pytest.raises(AuthorizationDenied) as exc_info:
            await registry.upsert_role(TENANT_A, make_role_spec(), editor=employee_actor(None))

        assert exc_info.value.reason == "NoRoleAssigned"

    @pytest.mark.asyncio
    async def test_company_admin_editor_has_no_level_limit(self, registry):
        from app.core.rbac import CompanyAdminActor

        role = await registry.upsert_role(
            TENANT_A, make_role_spec(level=10), editor=CompanyAdminActor(tenant_id=TENANT_A)
        )

        assert role.last_modified_by == TENANT_A

    @pytest.mark.asyncio
    async def test_tenant_editors_cannot_grant_view_all_companies(self, registry):
        from app.core.exceptions import AuthorizationDenied
        from app.core.rbac import CompanyAdminActor

        lead = await registry.upsert_role(TENANT_A, make_role_spec(name="Lead", level=9))
        spec = make_role_spec(name="Raider", level=2, capabilities={"canViewAllCompanies": True})

        for editor in (CompanyAdminActor(tenant_id=TENANT_A), employee_actor(lead.role_id)):
            with pytest.raises(AuthorizationDenied) as exc_info:
                await registry.upsert_role(TENANT_A, spec, editor=editor)
            assert exc_info.value.reason == "CapabilityRequired"
            assert "platform administrator" in exc_info.value.detail

        assert [r.role_name for r in await registry.list_roles(TENANT_A)] == ["Lead"]

    @pytest.mark.asyncio
    async def test_platform_admin_may_grant_view_all_companies(self, registry):
        from app.core.rbac import PLATFORM_ADMIN_CAPABILITIES, PlatformAdminActor

        admin = PlatformAdminActor(admin_id="ADMIN-1", email="ops@wfm.example.com", capabilities=PLATFORM_ADMIN_CAPABILITIES)
        spec = make_role_spec(name="Auditor", capabilities={"canViewAllCompanies": True})

        by_admin = await registry.upsert_role(TENANT_A, spec, editor=admin)
        internal = await registry.upsert_role(TENANT_B, spec)

        assert by_admin.capabilities["canViewAllCompanies"] is True
        assert internal.capabilities["canViewAllCompanies"] is True

    @pytest.mark.asyncio
    async def test_concurrent_stale_write_conflicts(self, registry, session_factory):
        """A write based on an old version loses against one that committed first."""
        from sqlalchemy import select
        from app.core.exceptions import RoleVersionConflict
        from app.models.role import Role

        role = await registry.upsert_role(TENANT_A, make_role_spec())

        async with session_factory() as stale_session:
            stale = (await stale_session.execute(select(Role).where(Role.role_id == role.role_id))).scalar_one()

            await registry.upsert_role(TENANT_A, make_role_spec(level=4), role_id=role.role_id)

            stale.role_level = 2
            with pytest.raises(RoleVersionConflict):
                await registry._commit(stale_session, role.role_id, role.role_name)


class TestVersionListeners:
    """Test change notification."""

    @pytest.mark.asyncio
    async def test_listener_receives_each_version(self, registry):
        listener = AsyncMock()
        registry.add_version_listener(listener)

        role = await registry.upsert_role(TENANT_A, make_role_spec())
        await registry.upsert_role(TENANT_A, make_role_spec(level=4), role_id=role.role_id)

        assert [c.args for c in listener.await_args_list] == [
            (TENANT_A, role.role_id, 1),
            (TENANT_A, role.role_id, 2),
        ]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_write(self, registry):
        registry.add_version_listener(AsyncMock(side_effect=RuntimeError("boom")))

        role = await registry.upsert_role(TENANT_A, make_role_spec())

        assert role.version == 1


class TestDeactivateRole:
    """Test soft deactivation."""

    @pytest.mark.asyncio
    async def test_deactivate(self, registry):
        role = await registry.upsert_role(TENANT_A, make_role_spec())

        deactivated = await registry.deactivate_role(TENANT_A, role.role_id)

        assert deactivated.is_active is False
        assert deactivated.version == 2
        assert (await registry.get_role(TENANT_A, role.role_id)).is_active is False

    @pytest.mark.asyncio
    async def test_deactivate_twice_is_noop(self, registry):
        role = await registry.upsert_role(TENANT_A, make_role_spec())
        await registry.deactivate_role(TENANT_A, role.role_id)

        again = await registry.deactivate_role(TENANT_A, role.role_id)

        assert again.version == 2

    @pytest.mark.asyncio
    async def test_list_excludes_inactive_on_request(self, registry):
        active = await registry.upsert_role(TENANT_A, make_role_spec(name="Active"))
        inactive = await registry.upsert_role(TENANT_A, make_role_spec(name="Retired"))
        await registry.deactivate_role(TENANT_A, inactive.role_id)

        all_roles = await registry.list_roles(TENANT_A)
        active_roles = await registry.list_roles(TENANT_A, include_inactive=False)

        assert len(all_roles) == 2
        assert [r.role_id for r in active_roles] == [active.role_id]


class TestSeedDefaultRoles:
    """Test the default role ladder."""

    @pytest.mark.asyncio
    async def test_seed_creates_ladder(self, registry):
        created = await registry.seed_default_roles(TENANT_A)

        assert [r.role_name for r in created] == ["Intern", "Senior Staff", "Team Lead", "Manager", "Owner"]
        assert all(r.is_system_default for r in created)
        assert [r.role_level for r in created] == sorted(r.role_level for r in created)

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, registry):
        await registry.seed_default_roles(TENANT_A)

        assert await registry.seed_default_roles(TENANT_A) == []
        assert len(await registry.list_roles(TENANT_A)) == 5

    def test_default_ladder_is_valid(self):
        from app.services.role_registry import DEFAULT_ROLE_LADDER, validate_role_spec

        for default in DEFAULT_ROLE_LADDER:
            errors, _, _ = validate_role_spec(make_role_spec(
                name=default.name,
                level=default.level,
                permissions=default.permissions,
                capabilities={c.value: True for c in default.capabilities},
            ))
            assert errors == [], default.name

