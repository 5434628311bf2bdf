import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Callable, Dict, Optional, Union

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.helpers import get_client_ip, get_user_agent
from app.core.audit import ACTION_AUDIT_KINDS, AuditAction, AuditLogEntry, EntityType, RESOURCE_ENTITY_TYPES
from app.core.exceptions import AuthorizationDenied, QuotaExceeded, QuotaUnavailable
from app.core.rbac import Action, Actor, Decision, DecisionOutcome, DenyReason, EvaluationContext, Resource
from app.db.session import AsyncSessionLocal
from app.schemas.token import SESSION_COOKIES
from app.services.actor_resolver import ActorResolver
from app.services.authz import AuthzServices

logger = logging.getLogger("wfm.deps")

# Header is optional so the session cookies can be used instead
bearer_scheme = HTTPBearer(auto_error=False)

TARGET_TENANT_PARAM = "company_id"


async def get_db() -> AsyncGenerator:
    async with AsyncSessionLocal() as session:
        yield session


def get_authz(request: Request) -> AuthzServices:
    """Authorization services built in the application lifespan."""
    authz = getattr(request.app.state, "authz", None)
    if authz is None:
        raise RuntimeError("Authorization services are not initialised")
    return authz


def extract_session_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = None,
) -> Optional[str]:
    """
    Read the session token from the Authorization header, falling back to
    the employee, company and platform admin session cookies in that order.
    """
    if credentials is not None and credentials.credentials:
        return credentials.credentials

    for cookie_name in SESSION_COOKIES.values():
        token = request.cookies.get(cookie_name)
        if not token:
            continue
        # Support "Bearer <token>" stored in the cookie
        if token.lower().startswith("bearer "):
            token = token.split(" ", 1)[1].strip()
        if token:
            return token
    return None


async def get_current_actor(
    request: Request,
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """
    Verify the session and resolve the acting principal.

    Raises:
        AuthenticationError: missing, invalid or expired session
        AccountInactive: the employee or company may not act
    """
    token = extract_session_token(request, credentials)
    actor = await ActorResolver(db).verify_session(token)
    request.state.actor = actor
    return actor


@dataclass
class AuthorizationContext:
    """What a guarded endpoint gets back once its permission check passed."""
    actor: Actor
    resource: Resource
    action: Action
    decision: Decision
    target_tenant_id: Optional[str]
    recorder: Any
    endpoint: Optional[str] = None
    method: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def tenant_id(self) -> Optional[str]:
        """Tenant the request acts on: the explicit target, else the actor's own."""
        return self.target_tenant_id or self.actor.tenant_id

    def entry(
        self,
        *,
        entity_type: EntityType,
        entity_id: str,
        action: AuditAction,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditLogEntry:
        return AuditLogEntry.build(
            actor=self.actor,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            tenant_id=self.tenant_id,
            before=before,
            after=after,
            endpoint=self.endpoint,
            method=self.method,
            client_ip=self.client_ip,
            user_agent=self.user_agent,
            success=success,
            error_message=error_message,
        )

    async def audit(self, **kwargs: Any) -> bool:
        """Build an entry (see ``entry``) and hand it to the audit recorder."""
        return await self.recorder.record(self.entry(**kwargs))


def _target_tenant(request: Request) -> Optional[str]:
    return request.path_params.get(TARGET_TENANT_PARAM) or request.query_params.get(TARGET_TENANT_PARAM)


def require_permission(
    resource: Union[Resource, str],
    action: Union[Action, str],
    *,
    counts_toward_quota: bool = False,
    entity_param: Optional[str] = None,
) -> Callable:
    """
    Dependency factory guarding an endpoint with one (resource, action) check.

    Usage:
        @router.put("/{role_id}")
        async def update_role(
            ctx: AuthorizationContext = Depends(require_permission("role", "Update", entity_param="role_id"))
        ):
            ...

    A Deny ends the request with 403 (503 when the quota store is unreachable)
    and a QuotaExceeded decision with 429. Every refusal is recorded in the
    audit trail with ``success=False`` before the error is raised.
    ``entity_param`` names the path parameter identifying the target entity
    in those entries.

    Args:
        resource: Resource being accessed
        action: Action being performed
        counts_toward_quota: Count this call against the actor's daily claim quota
        entity_param: Path parameter holding the target entity id

    Returns:
        Dependency function returning an ``AuthorizationContext``
    """
    parsed_resource = Resource.parse(resource)
    parsed_action = Action.parse(action)
    if parsed_resource is None or parsed_action is None:
        raise ValueError(f"Unknown permission {resource}:{action}")

    async def permission_checker(
        request: Request,
        actor: Actor = Depends(get_current_actor),
        authz: AuthzServices = Depends(get_authz),
    ) -> AuthorizationContext:
        target_tenant_id = _target_tenant(request)
        decision = await authz.evaluator.evaluate(
            actor,
            parsed_resource,
            parsed_action,
            EvaluationContext(target_tenant_id=target_tenant_id, counts_toward_quota=counts_toward_quota),
        )
        ctx = AuthorizationContext(
            actor=actor,
            resource=parsed_resource,
            action=parsed_action,
            decision=decision,
            target_tenant_id=target_tenant_id,
            recorder=authz.recorder,
            endpoint=request.url.path,
            method=request.method,
            client_ip=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
        if decision.allowed:
            return ctx

        if decision.outcome == DecisionOutcome.QUOTA_EXCEEDED:
            message = f"QuotaExceeded: {decision.detail}"
        else:
            message = f"{decision.reason.value}: {decision.detail}"
        entity_id = request.path_params.get(entity_param) if entity_param else None
        await _record_denial(ctx, entity_id, message)

        if decision.outcome == DecisionOutcome.QUOTA_EXCEEDED:
            raise QuotaExceeded(decision.detail, limit=decision.quota_limit, used=decision.quota_used)
        if decision.reason == DenyReason.QUOTA_UNAVAILABLE:
            raise QuotaUnavailable(decision.detail)
        raise AuthorizationDenied(decision.detail or "Permission denied", reason=decision.reason.value)

    return permission_checker


async def _record_denial(ctx: AuthorizationContext, entity_id: Optional[str], message: str) -> None:
    entity_type = RESOURCE_ENTITY_TYPES.get(ctx.resource)
    if entity_type is None or not entity_id:
        # No specific entity: file it against the company
        entity_type, entity_id = EntityType.COMPANY, ctx.tenant_id or ctx.actor.actor_ref
    await ctx.audit(
        entity_type=entity_type,
        entity_id=entity_id,
        action=ACTION_AUDIT_KINDS[ctx.action],
        success=False,
        error_message=message,
    )
