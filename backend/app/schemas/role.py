from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ============ Role Schemas ============

class RoleSpec(BaseModel):
    """
    Role definition as submitted by a tenant administrator.

    Field shapes are checked here; the closed resource/action vocabulary,
    level rules and per-tenant name uniqueness are enforced by the role
    registry, which reports them together as ``InvalidRoleSpec``.
    """
    role_name: str
    role_level: int
    role_description: Optional[str] = None
    permissions: Dict[str, List[str]] = Field(default_factory=dict)
    capabilities: Dict[str, bool] = Field(default_factory=dict)
    max_claims_per_day: int = 0
    is_active: bool = True


class RoleResponse(BaseModel):
    role_id: str
    company_id: str
    role_name: str
    role_description: Optional[str] = None
    role_level: int
    permissions: Dict[str, List[str]]
    capabilities: Dict[str, bool]
    max_claims_per_day: int
    is_active: bool
    is_system_default: bool
    version: int
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoleListResponse(BaseModel):
    roles: List[RoleResponse]
    total: int


# ============ Permission check Schemas ============

class PermissionCheckRequest(BaseModel):
    resource: str
    action: str
    target_tenant_id: Optional[str] = None


class PermissionCheckResponse(BaseModel):
    allowed: bool
    outcome: str
    reason: Optional[str] = None
    detail: Optional[str] = None
    quota_limit: Optional[int] = None
    quota_used: Optional[int] = None
