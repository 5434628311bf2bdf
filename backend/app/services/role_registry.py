"""
Role Registry: tenant-owned role definitions and their validation.

A role is a permission matrix (closed ``Resource`` -> set of ``Action``), a set
of capability flags and a daily claim quota. Every write bumps the role's
``version`` (optimistic lock column) and notifies version listeners so the
permission cache stops serving the previous definition.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import AuthorizationDenied, InvalidRoleSpec, RoleNotFound, RoleVersionConflict
from app.core.rbac import (
    Action,
    Actor,
    Capability,
    DenyReason,
    EmployeeActor,
    PlatformAdminActor,
    ROLE_CAPABILITIES,
    Resource,
    TENANT_RESOURCES,
)
from app.models.role import Role
from app.schemas.role import RoleSpec

logger = logging.getLogger("wfm.rbac.registry")

MIN_ROLE_LEVEL = 0
MAX_ROLE_LEVEL = 10
CLAIM_DELETE_MIN_LEVEL = 7
FINANCIALS_MIN_LEVEL = 5

VersionListener = Callable[[str, str, int], Awaitable[None]]


def generate_role_id() -> str:
    return f"ROLE-{uuid.uuid4().hex[:8].upper()}"


def validate_role_spec(spec: RoleSpec) -> Tuple[List[str], Dict[str, List[str]], Dict[str, bool]]:
    """
    Check a role spec against the closed vocabulary and the level rules.

    Returns:
        (errors, normalized permissions, normalized capabilities). Permissions
        come back with sorted, de-duplicated action names; capabilities always
        carry every role flag.
    """
    errors: List[str] = []

    if not spec.role_name or not spec.role_name.strip():
        errors.append("role_name must not be empty")

    if spec.role_level < MIN_ROLE_LEVEL or spec.role_level > MAX_ROLE_LEVEL:
        errors.append(f"role_level must be between {MIN_ROLE_LEVEL} and {MAX_ROLE_LEVEL}")

    if spec.max_claims_per_day < 0:
        errors.append("max_claims_per_day must be zero (unlimited) or positive")

    permissions: Dict[str, List[str]] = {}
    for resource_name, actions in spec.permissions.items():
        resource = Resource.parse(resource_name)
        if resource is None:
            errors.append(f"unknown resource '{resource_name}'")
            continue
        if resource not in TENANT_RESOURCES:
            errors.append(f"resource '{resource.value}' is platform-scoped and cannot be granted to a role")
            continue
        granted = set()
        for action_name in actions:
            action = Action.parse(action_name)
            if action is None:
                errors.append(f"unknown action '{action_name}' for resource '{resource.value}'")
            else:
                granted.add(action.value)
        if granted:
            permissions[resource.value] = sorted(granted)

    capabilities = {cap.value: False for cap in ROLE_CAPABILITIES}
    role_flags = {cap.value for cap in ROLE_CAPABILITIES}
    for flag, enabled in spec.capabilities.items():
        if flag not in role_flags:
            errors.append(f"unknown capability '{flag}'")
            continue
        capabilities[flag] = bool(enabled)

    if Action.DELETE.value in permissions.get(Resource.CLAIM.value, []) and spec.role_level < CLAIM_DELETE_MIN_LEVEL:
        errors.append(f"claim Delete requires role level {CLAIM_DELETE_MIN_LEVEL} or higher")

    if capabilities[Capability.VIEW_FINANCIALS.value] and spec.role_level < FINANCIALS_MIN_LEVEL:
        errors.append(f"canViewFinancials requires role level {FINANCIALS_MIN_LEVEL} or higher")

    return errors, permissions, capabilities


@dataclass(frozen=True)
class DefaultRole:
    name: str
    level: int
    description: str
    permissions: Dict[str, List[str]]
    capabilities: Tuple[Capability, ...] = ()
    max_claims_per_day: int = 0


_ALL_ACTIONS = [a.value for a in Action]
_READ = ["View"]

DEFAULT_ROLE_LADDER: Tuple[DefaultRole, ...] = (
    DefaultRole(
        name="Intern",
        level=1,
        description="Read-only access to assigned claim work",
        permissions={"claim": _READ, "client": _READ, "patient": _READ, "payer": _READ, "sow": _READ},
        max_claims_per_day=20,
    ),
    DefaultRole(
        name="Senior Staff",
        level=3,
        description="Works and updates claim tasks",
        permissions={
            "claim": ["Create", "Update", "View"],
            "client": _READ,
            "department": _READ,
            "patient": ["Update", "View"],
            "payer": _READ,
            "report": _READ,
            "sow": _READ,
        },
        max_claims_per_day=50,
    ),
    DefaultRole(
        name="Team Lead",
        level=5,
        description="Approves team work and exports reports",
        permissions={
            "claim": ["Approve", "Create", "Update", "View"],
            "client": _READ,
            "department": _READ,
            "employee": _READ,
            "financials": _READ,
            "patient": ["Create", "Update", "View"],
            "payer": _READ,
            "report": ["Export", "View"],
            "sow": _READ,
        },
        capabilities=(Capability.APPROVE_WORK, Capability.EXPORT_DATA, Capability.VIEW_FINANCIALS),
    ),
    DefaultRole(
        name="Manager",
        level=7,
        description="Manages staff, SOWs and claim lifecycle",
        permissions={
            "audit_log": _READ,
            "claim": ["Approve", "Create", "Delete", "Manage", "Update", "View"],
            "client": ["Create", "Update", "View"],
            "department": ["Create", "Update", "View"],
            "employee": ["Create", "Manage", "Update", "View"],
            "financials": _READ,
            "patient": ["Create", "Delete", "Update", "View"],
            "payer": ["Create", "Update", "View"],
            "report": ["Export", "View"],
            "role": _READ,
            "sow": ["Manage", "Update", "View"],
        },
        capabilities=(
            Capability.APPROVE_WORK,
            Capability.CONFIGURE_SOWS,
            Capability.EXPORT_DATA,
            Capability.MANAGE_ALL_EMPLOYEES,
            Capability.VIEW_FINANCIALS,
        ),
    ),
    DefaultRole(
        name="Owner",
        level=9,
        description="Full access within the company",
        permissions={r.value: _ALL_ACTIONS for r in sorted(TENANT_RESOURCES, key=lambda r: r.value)},
        capabilities=tuple(c for c in ROLE_CAPABILITIES if c != Capability.VIEW_ALL_COMPANIES),
    ),
)


class RoleRegistry:
    """
    Owns role rows. Holds a session factory rather than a request session so
    the permission cache can fall back to it outside any request.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory
        self._listeners: List[VersionListener] = []

    def add_version_listener(self, listener: VersionListener) -> None:
        """Register ``listener(tenant_id, role_id, version)``, awaited after every committed role write."""
        self._listeners.append(listener)

    async def _notify(self, role: Role) -> None:
        for listener in self._listeners:
            try:
                await listener(role.company_id, role.role_id, role.version)
            except Exception as e:
                # The cache bounds staleness by TTL when a pointer update is lost
                logger.warning(f"Role version listener failed for {role.role_id} v{role.version}: {e}")

    async def get_role(self, tenant_id: str, role_id: str) -> Role:
        async with self._session_factory() as session:
            role = await self._load(session, tenant_id, role_id)
        return role

    async def list_roles(self, tenant_id: str, include_inactive: bool = True) -> List[Role]:
        stmt = select(Role).where(Role.company_id == tenant_id)
        if not include_inactive:
            stmt = stmt.where(Role.is_active.is_(True))
        stmt = stmt.order_by(Role.role_level, Role.role_name)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def upsert_role(
        self,
        tenant_id: str,
        spec: RoleSpec,
        *,
        role_id: Optional[str] = None,
        editor: Optional[Actor] = None,
        is_system_default: bool = False,
    ) -> Role:
        """
        Create a role, or replace the definition of ``role_id`` within ``tenant_id``.

        Raises:
            InvalidRoleSpec: vocabulary, level or uniqueness violations
            RoleNotFound: ``role_id`` does not exist in this tenant
            AuthorizationDenied: ``editor`` may not manage a role at this level, or may not
                grant canViewAllCompanies
            RoleVersionConflict: a concurrent write won the race
        """
        errors, permissions, capabilities = validate_role_spec(spec)
        if errors:
            raise InvalidRoleSpec(errors)

        self._check_editor_grants(editor, capabilities)

        role_name = spec.role_name.strip()
        editor_ref = editor.actor_ref if editor is not None else None

        async with self._session_factory() as session:
            existing = await self._load(session, tenant_id, role_id) if role_id else None

            await self._check_editor_level(
                session, editor, spec.role_level, existing.role_level if existing else None
            )

            clash = await session.execute(
                select(Role.role_id).where(
                    Role.company_id == tenant_id,
                    Role.role_name == role_name,
                    Role.role_id != (role_id or ""),
                )
            )
            if clash.scalar_one_or_none() is not None:
                raise InvalidRoleSpec([f"role_name '{role_name}' already exists in this company"])

            now = datetime.now(timezone.utc)
            if existing is None:
                role = Role(
                    role_id=role_id or generate_role_id(),
                    company_id=tenant_id,
                    is_system_default=is_system_default,
                    created_by=editor_ref,
                    created_at=now,
                )
                session.add(role)
            else:
                role = existing

            role.role_name = role_name
            role.role_description = spec.role_description
            role.role_level = spec.role_level
            role.permissions = permissions
            role.capabilities = capabilities
            role.max_claims_per_day = spec.max_claims_per_day
            role.is_active = spec.is_active
            role.last_modified_by = editor_ref
            role.updated_at = now

            await self._commit(session, role.role_id, role.role_name)

        logger.info(
            f"Role {role.role_id} '{role.role_name}' saved for tenant {tenant_id} "
            f"(level {role.role_level}, v{role.version})"
        )
        await self._notify(role)
        return role

    async def deactivate_role(self, tenant_id: str, role_id: str, *, editor: Optional[Actor] = None) -> Role:
        """Mark a role inactive. The row and its audit history stay; evaluation denies it from now on."""
        async with self._session_factory() as session:
            role = await self._load(session, tenant_id, role_id)
            await self._check_editor_level(session, editor, role.role_level, role.role_level)
            if not role.is_active:
                return role
            role.is_active = False
            role.last_modified_by = editor.actor_ref if editor is not None else None
            role.updated_at = datetime.now(timezone.utc)
            await self._commit(session, role.role_id, role.role_name)

        logger.info(f"Role {role_id} deactivated for tenant {tenant_id} (v{role.version})")
        await self._notify(role)
        return role

    async def seed_default_roles(self, tenant_id: str, created_by: Optional[Actor] = None) -> List[Role]:
        """Create the system-default role ladder for a tenant, skipping names that already exist."""
        existing = {r.role_name for r in await self.list_roles(tenant_id)}
        created = []
        for default in DEFAULT_ROLE_LADDER:
            if default.name in existing:
                continue
            spec = RoleSpec(
                role_name=default.name,
                role_level=default.level,
                role_description=default.description,
                permissions=default.permissions,
                capabilities={c.value: True for c in default.capabilities},
                max_claims_per_day=default.max_claims_per_day,
            )
            created.append(
                await self.upsert_role(tenant_id, spec, editor=created_by, is_system_default=True)
            )
        return created

    @staticmethod
    async def _load(session: AsyncSession, tenant_id: str, role_id: str) -> Role:
        result = await session.execute(
            select(Role).where(Role.role_id == role_id, Role.company_id == tenant_id)
        )
        role = result.scalar_one_or_none()
        if role is None:
            raise RoleNotFound(f"Role {role_id} not found")
        return role

    @staticmethod
    def _check_editor_grants(editor: Optional[Actor], capabilities: Dict[str, bool]) -> None:
        """Only platform administrators may hand out cross-company visibility."""
        if editor is None or isinstance(editor, PlatformAdminActor):
            return
        if capabilities.get(Capability.VIEW_ALL_COMPANIES.value):
            raise AuthorizationDenied(
                f"{Capability.VIEW_ALL_COMPANIES.value} can only be granted by a platform administrator",
                reason=DenyReason.CAPABILITY_REQUIRED.value,
            )

    async def _check_editor_level(
        self,
        session: AsyncSession,
        editor: Optional[Actor],
        new_level: int,
        current_level: Optional[int],
    ) -> None:
        """Employees may only manage roles strictly below their own level."""
        if not isinstance(editor, EmployeeActor):
            return
        if not editor.role_id:
            raise AuthorizationDenied("Editor has no role", reason=DenyReason.NO_ROLE_ASSIGNED.value)
        editor_role = await self._load(session, editor.tenant_id, editor.role_id)
        target_level = max(new_level, current_level if current_level is not None else new_level)
        if target_level >= editor_role.role_level:
            raise AuthorizationDenied(
                f"Role level {target_level} is not below editor level {editor_role.role_level}",
                reason=DenyReason.ROLE_LEVEL_TOO_HIGH.value,
            )

    @staticmethod
    async def _commit(session: AsyncSession, role_id: str, role_name: str) -> None:
        try:
            await session.commit()
        except StaleDataError as e:
            await session.rollback()
            raise RoleVersionConflict(f"Role {role_id} was modified concurrently; reload and retry") from e
        except IntegrityError as e:
            await session.rollback()
            raise InvalidRoleSpec([f"role_name '{role_name}' already exists in this company"]) from e
