"""
Permission Evaluator: (actor, resource, action, context) -> Decision.

Evaluation order for tenant actors:
1. resolve the role through the permission cache
2. inactive role -> Deny(RoleDeactivated)
3. target tenant differs, unless a View with canViewAllCompanies -> Deny(CrossTenantAccess)
4. no explicit matrix grant -> Deny(PermissionNotGranted)
5. capability-gated pair without the flag -> Deny(CapabilityRequired)
6. quota-gated pair over the daily limit -> QuotaExceeded; quota store down -> Deny(QuotaUnavailable)

Platform administrators skip the tenant role matrix and are checked against
their own capability set. Decisions never write audit entries; callers do.
"""

import logging
from typing import Optional, Union

from app.core.exceptions import RoleNotFound
from app.core.metrics import authz_decisions_total
from app.core.rbac import (
    Action,
    Actor,
    Capability,
    CompanyAdminActor,
    Decision,
    DenyReason,
    EmployeeActor,
    EvaluationContext,
    PLATFORM_RESOURCES,
    PlatformAdminActor,
    QUOTA_GATED,
    Resource,
    TENANT_RESOURCES,
    required_capability,
    required_platform_capability,
)
from app.services.permission_cache import PermissionCache
from app.services.quota_counter import QuotaCounter

logger = logging.getLogger("wfm.rbac")


class PermissionEvaluator:
    def __init__(self, cache: PermissionCache, quota: QuotaCounter):
        self._cache = cache
        self._quota = quota

    async def evaluate(
        self,
        actor: Actor,
        resource: Union[Resource, str],
        action: Union[Action, str],
        context: Optional[EvaluationContext] = None,
    ) -> Decision:
        decision = await self._evaluate(actor, resource, action, context or EvaluationContext())
        authz_decisions_total.labels(
            outcome=decision.outcome.value,
            reason=decision.reason.value if decision.reason else "none",
        ).inc()
        if not decision.allowed:
            logger.info(
                f"{decision.outcome.value} {actor.kind.value}:{actor.actor_ref} {resource}:{action}"
                f" ({decision.reason.value if decision.reason else decision.detail})"
            )
        return decision

    async def release_quota(self, decision: Decision) -> None:
        """Return the quota slot an Allow decision consumed, e.g. when the handler failed."""
        if decision.allowed and decision.quota_key:
            await self._quota.release(decision.quota_key)

    async def _evaluate(
        self,
        actor: Actor,
        resource: Union[Resource, str],
        action: Union[Action, str],
        context: EvaluationContext,
    ) -> Decision:
        parsed_resource = Resource.parse(resource)
        if parsed_resource is None:
            return Decision.deny(DenyReason.UNKNOWN_RESOURCE, f"Unknown resource '{resource}'")
        parsed_action = Action.parse(action)
        if parsed_action is None:
            return Decision.deny(DenyReason.UNKNOWN_ACTION, f"Unknown action '{action}'")

        if isinstance(actor, PlatformAdminActor):
            return self._evaluate_platform_admin(actor, parsed_resource, parsed_action)

        if parsed_resource not in TENANT_RESOURCES:
            return Decision.deny(
                DenyReason.PLATFORM_SCOPE_ONLY, f"'{parsed_resource.value}' is a platform resource"
            )

        if isinstance(actor, CompanyAdminActor):
            return self._evaluate_company_admin(actor, context)

        if isinstance(actor, EmployeeActor):
            return await self._evaluate_employee(actor, parsed_resource, parsed_action, context)

        raise TypeError(f"Unsupported actor type: {type(actor).__name__}")

    @staticmethod
    def _evaluate_platform_admin(actor: PlatformAdminActor, resource: Resource, action: Action) -> Decision:
        if resource in PLATFORM_RESOURCES:
            needed = required_platform_capability(resource, action)
            if needed is None:
                return Decision.deny(
                    DenyReason.PERMISSION_NOT_GRANTED,
                    f"{action.value} on '{resource.value}' is not a platform operation",
                )
            if needed not in actor.capabilities:
                return Decision.deny(DenyReason.CAPABILITY_REQUIRED, f"Requires {needed.value}")
            return Decision.allow()

        # Tenant data: read-only, and only with canViewAllCompanies
        if Capability.VIEW_ALL_COMPANIES not in actor.capabilities or action != Action.VIEW:
            return Decision.deny(
                DenyReason.PLATFORM_SCOPE_ONLY,
                f"Platform administrators cannot {action.value} tenant resource '{resource.value}'",
            )
        needed = required_platform_capability(resource, action)
        if needed is not None and needed not in actor.capabilities:
            return Decision.deny(DenyReason.CAPABILITY_REQUIRED, f"Requires {needed.value}")
        return Decision.allow()

    @staticmethod
    def _evaluate_company_admin(actor: CompanyAdminActor, context: EvaluationContext) -> Decision:
        # Implicit owner of every tenant resource, never across tenants, no quota
        if context.target_tenant_id and context.target_tenant_id != actor.tenant_id:
            return Decision.deny(DenyReason.CROSS_TENANT_ACCESS, "Target belongs to another company")
        return Decision.allow()

    async def _evaluate_employee(
        self,
        actor: EmployeeActor,
        resource: Resource,
        action: Action,
        context: EvaluationContext,
    ) -> Decision:
        if not actor.role_id:
            return Decision.deny(DenyReason.NO_ROLE_ASSIGNED, "No role assigned")

        try:
            permission_set = await self._cache.resolve(actor.tenant_id, actor.role_id)
        except RoleNotFound:
            return Decision.deny(DenyReason.ROLE_NOT_FOUND, f"Role {actor.role_id} not found")

        if not permission_set.is_active:
            return Decision.deny(DenyReason.ROLE_DEACTIVATED, f"Role {actor.role_id} is deactivated")

        if context.target_tenant_id and context.target_tenant_id != actor.tenant_id:
            # canViewAllCompanies lifts tenant isolation for reads only
            if action != Action.VIEW or not permission_set.has_capability(Capability.VIEW_ALL_COMPANIES):
                return Decision.deny(DenyReason.CROSS_TENANT_ACCESS, "Target belongs to another company")

        if not permission_set.grants(resource, action):
            return Decision.deny(
                DenyReason.PERMISSION_NOT_GRANTED, f"{action.value} on '{resource.value}' not granted"
            )

        needed = required_capability(resource, action)
        if needed is not None and not permission_set.has_capability(needed):
            return Decision.deny(DenyReason.CAPABILITY_REQUIRED, f"Requires {needed.value}")

        quota_gated = (resource, action) in QUOTA_GATED or (
            resource == Resource.CLAIM and context.counts_toward_quota
        )
        if quota_gated and permission_set.max_claims_per_day > 0:
            limit = permission_set.max_claims_per_day
            if context.dry_run:
                result = await self._quota.peek(actor.tenant_id, actor.employee_id, limit, context.now)
            else:
                result = await self._quota.acquire(actor.tenant_id, actor.employee_id, limit, context.now)
            if result.unavailable:
                return Decision.deny(DenyReason.QUOTA_UNAVAILABLE, "Daily claim quota cannot be checked right now")
            if not result.allowed:
                return Decision.quota_exceeded(limit, result.used)
            return Decision.allow(
                quota_limit=limit,
                quota_used=result.used,
                quota_key=None if context.dry_run else result.key,
            )

        return Decision.allow()
