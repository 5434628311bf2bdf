"""
Role management endpoints.

Every mutation is written to the audit trail with before/after snapshots.
Role-level refusals raised by the registry are audited like evaluator denials.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import AuthorizationContext, get_authz, require_permission
from app.api.helpers import require_tenant, role_snapshot
from app.core.audit import AuditAction, EntityType
from app.core.exceptions import AuthorizationDenied
from app.schemas.role import RoleListResponse, RoleResponse, RoleSpec
from app.services.authz import AuthzServices

router = APIRouter()


async def _audit_refusal(
    ctx: AuthorizationContext, entity_id: str, action: AuditAction, exc: AuthorizationDenied
) -> None:
    await ctx.audit(
        entity_type=EntityType.ROLE,
        entity_id=entity_id,
        action=action,
        success=False,
        error_message=f"{exc.reason}: {exc.detail}",
    )


@router.get("", response_model=RoleListResponse)
async def list_roles(
    include_inactive: bool = Query(True, description="Include deactivated roles"),
    company_id: Optional[str] = Query(None, description="Target company (platform administrators)"),
    ctx: AuthorizationContext = Depends(require_permission("role", "View")),
    authz: AuthzServices = Depends(get_authz),
):
    """List the roles of the caller's company, lowest level first."""
    tenant_id = require_tenant(ctx.tenant_id)
    roles = await authz.registry.list_roles(tenant_id, include_inactive=include_inactive)
    return RoleListResponse(roles=[RoleResponse.model_validate(r) for r in roles], total=len(roles))


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    company_id: Optional[str] = Query(None, description="Target company (platform administrators)"),
    ctx: AuthorizationContext = Depends(require_permission("role", "View", entity_param="role_id")),
    authz: AuthzServices = Depends(get_authz),
):
    tenant_id = require_tenant(ctx.tenant_id)
    role = await authz.registry.get_role(tenant_id, role_id)
    return RoleResponse.model_validate(role)


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    spec: RoleSpec,
    ctx: AuthorizationContext = Depends(require_permission("role", "Create")),
    authz: AuthzServices = Depends(get_authz),
):
    """
    Create a role.

    Employees may only create roles below their own level.
    """
    tenant_id = require_tenant(ctx.tenant_id)
    try:
        role = await authz.registry.upsert_role(tenant_id, spec, editor=ctx.actor)
    except AuthorizationDenied as e:
        await _audit_refusal(ctx, tenant_id, AuditAction.CREATE, e)
        raise

    await ctx.audit(
        entity_type=EntityType.ROLE,
        entity_id=role.role_id,
        action=AuditAction.CREATE,
        after=role_snapshot(role),
    )
    return RoleResponse.model_validate(role)


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    spec: RoleSpec,
    ctx: AuthorizationContext = Depends(require_permission("role", "Update", entity_param="role_id")),
    authz: AuthzServices = Depends(get_authz),
):
    """Replace a role's definition. The role's version is bumped and cached permission sets stop matching."""
    tenant_id = require_tenant(ctx.tenant_id)
    before = role_snapshot(await authz.registry.get_role(tenant_id, role_id))
    try:
        role = await authz.registry.upsert_role(tenant_id, spec, role_id=role_id, editor=ctx.actor)
    except AuthorizationDenied as e:
        await _audit_refusal(ctx, role_id, AuditAction.UPDATE, e)
        raise

    await ctx.audit(
        entity_type=EntityType.ROLE,
        entity_id=role_id,
        action=AuditAction.UPDATE,
        before=before,
        after=role_snapshot(role),
    )
    return RoleResponse.model_validate(role)


@router.post("/{role_id}/deactivate", response_model=RoleResponse)
async def deactivate_role(
    role_id: str,
    ctx: AuthorizationContext = Depends(require_permission("role", "Delete", entity_param="role_id")),
    authz: AuthzServices = Depends(get_authz),
):
    """
    Deactivate a role. Roles are never removed; employees holding a
    deactivated role are denied everything until reassigned.
    """
    tenant_id = require_tenant(ctx.tenant_id)
    before = role_snapshot(await authz.registry.get_role(tenant_id, role_id))
    try:
        role = await authz.registry.deactivate_role(tenant_id, role_id, editor=ctx.actor)
    except AuthorizationDenied as e:
        await _audit_refusal(ctx, role_id, AuditAction.DELETE, e)
        raise

    await ctx.audit(
        entity_type=EntityType.ROLE,
        entity_id=role_id,
        action=AuditAction.DELETE,
        before=before,
        after=role_snapshot(role),
    )
    return RoleResponse.model_validate(role)
