from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import AuthorizationContext, get_authz, require_permission
from app.core.audit import AuditAction, AuditLogEntry, EntityType
from app.schemas.audit import AuditLogListResponse, AuditLogResponse
from app.services.authz import AuthzServices

router = APIRouter()

MAX_PAGE_SIZE = 1000


def _to_response(entry: AuditLogEntry) -> AuditLogResponse:
    return AuditLogResponse(
        log_id=entry.log_id,
        tenant_id=entry.tenant_id,
        actor_ref=entry.actor_ref,
        actor_kind=entry.actor_kind.value,
        entity_type=entry.entity_type.value,
        entity_id=entry.entity_id,
        action=entry.action.value,
        before=entry.before,
        after=entry.after,
        endpoint=entry.endpoint,
        method=entry.method,
        client_ip=entry.client_ip,
        user_agent=entry.user_agent,
        success=entry.success,
        error_message=entry.error_message,
        created_at=entry.created_at,
    )


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    start: Optional[datetime] = Query(None, description="Inclusive lower bound on created_at"),
    end: Optional[datetime] = Query(None, description="Exclusive upper bound on created_at"),
    actor_ref: Optional[str] = Query(None),
    action: Optional[AuditAction] = Query(None),
    entity_type: Optional[EntityType] = Query(None),
    entity_id: Optional[str] = Query(None),
    company_id: Optional[str] = Query(None, description="Target company (platform administrators)"),
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    ctx: AuthorizationContext = Depends(require_permission("audit_log", "View")),
    authz: AuthzServices = Depends(get_authz),
):
    """
    Audit entries for one company, newest first.

    Platform administrators without ``company_id`` see platform-level entries.
    """
    if start is not None and end is not None and start >= end:
        raise HTTPException(status_code=400, detail="start must be before end")

    entries = await authz.audit_repository.query(
        ctx.tenant_id,
        start=start,
        end=end,
        actor_ref=actor_ref,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
        offset=offset,
    )
    return AuditLogListResponse(
        entries=[_to_response(e) for e in entries],
        count=len(entries),
        limit=limit,
        offset=offset,
    )
