from fastapi import APIRouter, Depends

from app.api.deps import get_authz, get_current_actor
from app.core.rbac import Actor, EvaluationContext
from app.schemas.role import PermissionCheckRequest, PermissionCheckResponse
from app.services.authz import AuthzServices

router = APIRouter()


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    request: PermissionCheckRequest,
    actor: Actor = Depends(get_current_actor),
    authz: AuthzServices = Depends(get_authz),
):
    """
    Evaluate a permission for the current actor without acting on it.

    Runs as a dry run: quota is reported but not consumed, and nothing is audited.
    """
    decision = await authz.evaluator.evaluate(
        actor,
        request.resource,
        request.action,
        EvaluationContext(target_tenant_id=request.target_tenant_id, dry_run=True),
    )
    return PermissionCheckResponse(
        allowed=decision.allowed,
        outcome=decision.outcome.value,
        reason=decision.reason.value if decision.reason else None,
        detail=decision.detail,
        quota_limit=decision.quota_limit,
        quota_used=decision.quota_used,
    )
