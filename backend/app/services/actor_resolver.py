"""
Tenant/Actor Resolver: verified session claims -> tagged Actor.

Actors are rebuilt on every request and never stored. Employee and company
sessions are checked against the current employee/company rows so that a
suspended company or terminated employee loses access immediately, not when
their token expires.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AccountInactive, AuthenticationError
from app.core.rbac import (
    Actor,
    Capability,
    CompanyAdminActor,
    EmployeeActor,
    PLATFORM_ADMIN_CAPABILITIES,
    PlatformAdminActor,
)
from app.core.security import decode_access_token
from app.models.company import Company
from app.models.employee import Employee
from app.schemas.token import SessionType, TokenPayload

logger = logging.getLogger("wfm.auth")

ACTIVE_SUBSCRIPTION_STATUSES = {"Active", "Trial"}


class ActorResolver:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def verify_session(self, token: Optional[str]) -> Actor:
        """
        Verify a session token and resolve the acting principal.

        Raises:
            AuthenticationError: missing, invalid or expired token, or unknown principal
            AccountInactive: the principal or its company may not act
        """
        if not token:
            raise AuthenticationError("Authentication required", reason="MissingSession")
        claims = decode_access_token(token)
        return await self.resolve(claims)

    async def resolve(self, claims: TokenPayload) -> Actor:
        if claims.type == SessionType.MASTER_ADMIN:
            return self._resolve_platform_admin(claims)
        if claims.type == SessionType.COMPANY:
            company = await self._load_active_company(claims.tenant)
            return CompanyAdminActor(tenant_id=company.company_id, company_name=company.company_name)
        return await self._resolve_employee(claims)

    async def _resolve_employee(self, claims: TokenPayload) -> EmployeeActor:
        result = await self.db.execute(
            select(Employee).where(
                Employee.employee_id == claims.sub,
                Employee.company_id == claims.tenant,
            )
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise AuthenticationError("Employee not found", reason="UnknownPrincipal")
        if employee.employee_status != "Active":
            raise AccountInactive(f"Employee account is {employee.employee_status.lower()}")
        if not employee.is_active:
            raise AccountInactive("Employee account is disabled")

        await self._load_active_company(employee.company_id)
        return EmployeeActor(
            employee_id=employee.employee_id,
            tenant_id=employee.company_id,
            role_id=employee.role_id,
            full_name=employee.full_name,
        )

    async def _load_active_company(self, company_id: Optional[str]) -> Company:
        result = await self.db.execute(select(Company).where(Company.company_id == company_id))
        company = result.scalar_one_or_none()
        if company is None:
            raise AuthenticationError("Company not found", reason="UnknownPrincipal")
        if not company.is_active:
            raise AccountInactive("Company account is deactivated")
        if company.subscription_status not in ACTIVE_SUBSCRIPTION_STATUSES:
            raise AccountInactive("Company subscription is not active", reason="SubscriptionInactive")
        return company

    @staticmethod
    def _resolve_platform_admin(claims: TokenPayload) -> PlatformAdminActor:
        allowed = {e.lower() for e in settings.PLATFORM_ADMIN_EMAILS}
        if not claims.email or claims.email.lower() not in allowed:
            logger.warning(f"Rejected platform admin session for {claims.email!r}")
            raise AuthenticationError("Platform administrator access required", reason="UnknownPrincipal")

        capabilities = PLATFORM_ADMIN_CAPABILITIES
        if claims.capabilities is not None:
            requested = set()
            for name in claims.capabilities:
                try:
                    requested.add(Capability(name))
                except ValueError:
                    continue
            capabilities = frozenset(requested & PLATFORM_ADMIN_CAPABILITIES)

        return PlatformAdminActor(admin_id=claims.sub, email=claims.email, capabilities=capabilities)
