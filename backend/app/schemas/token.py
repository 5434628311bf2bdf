from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class SessionType(str, Enum):
    EMPLOYEE = "employee"
    COMPANY = "company"
    MASTER_ADMIN = "master_admin"


# Cookie each session type is read from when no Authorization header is sent
SESSION_COOKIES = {
    SessionType.EMPLOYEE: "employeeToken",
    SessionType.COMPANY: "companyToken",
    SessionType.MASTER_ADMIN: "masterAdminToken",
}


class TokenPayload(BaseModel):
    sub: str
    type: SessionType
    tenant: Optional[str] = None
    email: Optional[str] = None
    # Platform admin sessions may narrow their capability set
    capabilities: Optional[List[str]] = None
    exp: Optional[int] = None
