"""
Core RBAC vocabulary: resources, actions, capability flags, actors and decisions.

The permission matrix of a role maps a closed set of ``Resource`` values to a
set drawn from the closed ``Action`` enumeration; anything outside those sets
is rejected when a role is written and denied when it is evaluated.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple, Union


class Resource(str, Enum):
    COMPANY = "company"
    EMPLOYEE = "employee"
    CLIENT = "client"
    CLAIM = "claim"
    SOW = "sow"
    PATIENT = "patient"
    PAYER = "payer"
    DEPARTMENT = "department"
    ROLE = "role"
    REPORT = "report"
    FINANCIALS = "financials"
    AUDIT_LOG = "audit_log"
    # Platform-scoped
    SUBSCRIPTION = "subscription"
    PLATFORM_STATS = "platform_stats"

    @classmethod
    def parse(cls, value: Union[str, "Resource"]) -> Optional["Resource"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class Action(str, Enum):
    CREATE = "Create"
    VIEW = "View"
    UPDATE = "Update"
    DELETE = "Delete"
    MANAGE = "Manage"
    # Capability-gated: need both a matrix grant and the matching flag
    EXPORT = "Export"
    APPROVE = "Approve"

    @classmethod
    def parse(cls, value: Union[str, "Action"]) -> Optional["Action"]:
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for action in cls:
            if action.value.lower() == normalized:
                return action
        return None


class Capability(str, Enum):
    # Role capability flags
    VIEW_ALL_COMPANIES = "canViewAllCompanies"
    MANAGE_ALL_EMPLOYEES = "canManageAllEmployees"
    CONFIGURE_SOWS = "canConfigureSOWs"
    VIEW_FINANCIALS = "canViewFinancials"
    EXPORT_DATA = "canExportData"
    APPROVE_WORK = "canApproveWork"
    # Platform administrator capabilities
    MANAGE_SUBSCRIPTIONS = "canManageSubscriptions"
    VIEW_PLATFORM_STATS = "canViewPlatformStats"
    SUSPEND_COMPANIES = "canSuspendCompanies"
    ACCESS_FINANCIALS = "canAccessFinancials"


ROLE_CAPABILITIES: Tuple[Capability, ...] = (
    Capability.VIEW_ALL_COMPANIES,
    Capability.MANAGE_ALL_EMPLOYEES,
    Capability.CONFIGURE_SOWS,
    Capability.VIEW_FINANCIALS,
    Capability.EXPORT_DATA,
    Capability.APPROVE_WORK,
)

PLATFORM_ADMIN_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.VIEW_ALL_COMPANIES,
    Capability.MANAGE_SUBSCRIPTIONS,
    Capability.VIEW_PLATFORM_STATS,
    Capability.SUSPEND_COMPANIES,
    Capability.ACCESS_FINANCIALS,
})

PLATFORM_RESOURCES: FrozenSet[Resource] = frozenset({
    Resource.COMPANY,
    Resource.SUBSCRIPTION,
    Resource.PLATFORM_STATS,
})

TENANT_RESOURCES: FrozenSet[Resource] = frozenset(
    r for r in Resource if r not in (Resource.SUBSCRIPTION, Resource.PLATFORM_STATS)
)

# Actions gated by a capability on any resource
ACTION_CAPABILITY_GATES: Dict[Action, Capability] = {
    Action.EXPORT: Capability.EXPORT_DATA,
    Action.APPROVE: Capability.APPROVE_WORK,
}

# (resource, action) pairs gated by a capability; action None means every action
RESOURCE_CAPABILITY_GATES: Dict[Tuple[Resource, Optional[Action]], Capability] = {
    (Resource.SOW, Action.MANAGE): Capability.CONFIGURE_SOWS,
    (Resource.EMPLOYEE, Action.MANAGE): Capability.MANAGE_ALL_EMPLOYEES,
    (Resource.FINANCIALS, None): Capability.VIEW_FINANCIALS,
}

# Platform administrator requirements per platform resource; action None means every action
PLATFORM_CAPABILITY_GATES: Dict[Tuple[Resource, Optional[Action]], Capability] = {
    (Resource.COMPANY, Action.VIEW): Capability.VIEW_ALL_COMPANIES,
    (Resource.COMPANY, Action.UPDATE): Capability.SUSPEND_COMPANIES,
    (Resource.COMPANY, Action.MANAGE): Capability.SUSPEND_COMPANIES,
    (Resource.SUBSCRIPTION, None): Capability.MANAGE_SUBSCRIPTIONS,
    (Resource.PLATFORM_STATS, Action.VIEW): Capability.VIEW_PLATFORM_STATS,
    (Resource.FINANCIALS, Action.VIEW): Capability.ACCESS_FINANCIALS,
}

QUOTA_GATED: FrozenSet[Tuple[Resource, Action]] = frozenset({
    (Resource.CLAIM, Action.CREATE),
})


def required_capability(resource: Resource, action: Action) -> Optional[Capability]:
    """Capability flag a tenant actor needs on top of the matrix grant, if any."""
    if action in ACTION_CAPABILITY_GATES:
        return ACTION_CAPABILITY_GATES[action]
    return RESOURCE_CAPABILITY_GATES.get((resource, action)) or RESOURCE_CAPABILITY_GATES.get((resource, None))


def required_platform_capability(resource: Resource, action: Action) -> Optional[Capability]:
    return PLATFORM_CAPABILITY_GATES.get((resource, action)) or PLATFORM_CAPABILITY_GATES.get((resource, None))


# ============ Actors ============

class ActorKind(str, Enum):
    EMPLOYEE = "Employee"
    COMPANY = "Company"
    PLATFORM_ADMIN = "PlatformAdmin"


@dataclass(frozen=True)
class EmployeeActor:
    """An employee acting within their own tenant through an assigned role."""
    employee_id: str
    tenant_id: str
    role_id: Optional[str]
    full_name: Optional[str] = None

    kind = ActorKind.EMPLOYEE

    @property
    def actor_ref(self) -> str:
        return self.employee_id


@dataclass(frozen=True)
class CompanyAdminActor:
    """The tenant's own company account. Owns every tenant resource, bounded to its tenant."""
    tenant_id: str
    company_name: Optional[str] = None

    kind = ActorKind.COMPANY

    @property
    def actor_ref(self) -> str:
        return self.tenant_id


@dataclass(frozen=True)
class PlatformAdminActor:
    """Tenant-unscoped platform administrator carrying its own capability set."""
    admin_id: str
    email: str
    capabilities: FrozenSet[Capability] = field(default_factory=lambda: PLATFORM_ADMIN_CAPABILITIES)

    kind = ActorKind.PLATFORM_ADMIN
    tenant_id = None

    @property
    def actor_ref(self) -> str:
        return self.admin_id


Actor = Union[EmployeeActor, CompanyAdminActor, PlatformAdminActor]


# ============ Decisions ============

class DecisionOutcome(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"
    QUOTA_EXCEEDED = "QuotaExceeded"


class DenyReason(str, Enum):
    PERMISSION_NOT_GRANTED = "PermissionNotGranted"
    ROLE_DEACTIVATED = "RoleDeactivated"
    ROLE_NOT_FOUND = "RoleNotFound"
    NO_ROLE_ASSIGNED = "NoRoleAssigned"
    CAPABILITY_REQUIRED = "CapabilityRequired"
    CROSS_TENANT_ACCESS = "CrossTenantAccess"
    PLATFORM_SCOPE_ONLY = "PlatformScopeOnly"
    UNKNOWN_RESOURCE = "UnknownResource"
    UNKNOWN_ACTION = "UnknownAction"
    ROLE_LEVEL_TOO_HIGH = "RoleLevelTooHigh"
    QUOTA_UNAVAILABLE = "QuotaUnavailable"


@dataclass(frozen=True)
class EvaluationContext:
    """Per-call inputs to an evaluation beyond (actor, resource, action)."""
    target_tenant_id: Optional[str] = None
    counts_toward_quota: bool = False
    dry_run: bool = False
    now: Optional[datetime] = None


@dataclass(frozen=True)
class Decision:
    outcome: DecisionOutcome
    reason: Optional[DenyReason] = None
    detail: Optional[str] = None
    quota_limit: Optional[int] = None
    quota_used: Optional[int] = None
    quota_key: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == DecisionOutcome.ALLOW

    @classmethod
    def allow(cls, quota_limit: Optional[int] = None, quota_used: Optional[int] = None,
              quota_key: Optional[str] = None) -> "Decision":
        return cls(DecisionOutcome.ALLOW, quota_limit=quota_limit, quota_used=quota_used, quota_key=quota_key)

    @classmethod
    def deny(cls, reason: DenyReason, detail: Optional[str] = None) -> "Decision":
        return cls(DecisionOutcome.DENY, reason=reason, detail=detail)

    @classmethod
    def quota_exceeded(cls, limit: int, used: int) -> "Decision":
        return cls(
            DecisionOutcome.QUOTA_EXCEEDED,
            detail=f"Daily claim limit of {limit} reached",
            quota_limit=limit,
            quota_used=used,
        )
