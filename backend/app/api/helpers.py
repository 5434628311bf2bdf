"""
Common API Helper Functions

Request metadata extraction and snapshot helpers shared by the routers and
the permission dependencies.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from app.models.role import Role
from app.schemas.role import RoleResponse

USER_AGENT_MAX_LENGTH = 512


def get_client_ip(request: Request) -> Optional[str]:
    """
    Get the client IP address.

    Checks X-Forwarded-For first (left-most entry is the original client),
    then falls back to the direct peer address.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    user_agent = request.headers.get("User-Agent")
    return user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None


def role_snapshot(role: Role) -> Dict[str, Any]:
    """JSON-safe copy of a role for audit before/after state."""
    return RoleResponse.model_validate(role).model_dump(mode="json")


def require_tenant(tenant_id: Optional[str]) -> str:
    """
    Tenant-scoped endpoints need a tenant; platform administrators must name
    one with ``company_id``.

    Raises:
        HTTPException: 400 if no tenant could be determined
    """
    if not tenant_id:
        raise HTTPException(status_code=400, detail="company_id is required")
    return tenant_id
