# Services Package
# Authorization and audit core

from app.services.actor_resolver import ActorResolver
from app.services.audit_recorder import AlertSink, AuditRecorder
from app.services.authz import AuthzServices
from app.services.permission_cache import CachedPermissionSet, PermissionCache
from app.services.permission_evaluator import PermissionEvaluator
from app.services.quota_counter import QuotaCounter, QuotaResult
from app.services.role_registry import DEFAULT_ROLE_LADDER, RoleRegistry, validate_role_spec

__all__ = [
    "ActorResolver",
    "AlertSink",
    "AuditRecorder",
    "AuthzServices",
    "CachedPermissionSet",
    "PermissionCache",
    "PermissionEvaluator",
    "QuotaCounter",
    "QuotaResult",
    "DEFAULT_ROLE_LADDER",
    "RoleRegistry",
    "validate_role_spec",
]
