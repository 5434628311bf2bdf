from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError
from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.schemas.token import SessionType, TokenPayload


def create_access_token(
    subject: str | Any,
    token_type: SessionType | str,
    tenant_id: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create a JWT session token.

    Args:
        subject: Principal id (employee id, company id or platform admin id)
        token_type: employee, company or master_admin
        tenant_id: Owning company for employee and company sessions
        expires_delta: Optional expiration time delta
        extra_claims: Additional claims (e.g. ``email`` for platform admins)

    Returns:
        Encoded JWT token
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode: Dict[str, Any] = dict(extra_claims or {})
    to_encode.update({"exp": expire, "sub": str(subject), "type": SessionType(token_type).value})
    if tenant_id is not None:
        to_encode["tenant"] = tenant_id
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """
    Verify signature and expiry and return the typed claims.

    Raises:
        AuthenticationError: malformed, expired or incomplete token
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise AuthenticationError(f"Invalid session token: {e}", reason="InvalidSession") from e

    try:
        claims = TokenPayload(**payload)
    except ValidationError as e:
        raise AuthenticationError("Session token is missing required claims", reason="InvalidSession") from e

    if claims.type in (SessionType.EMPLOYEE, SessionType.COMPANY) and not claims.tenant:
        raise AuthenticationError("Tenant session token has no tenant claim", reason="InvalidSession")
    return claims
