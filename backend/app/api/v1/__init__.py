from fastapi import APIRouter

from app.api.v1 import audit_logs, permissions, roles

api_router = APIRouter()
api_router.include_router(roles.router, prefix="/roles", tags=["roles"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit"])
api_router.include_router(permissions.router, prefix="/permissions", tags=["permissions"])
