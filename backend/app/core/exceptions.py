"""
Error taxonomy for the authorization and audit core.

Authentication, authorization and quota failures are terminal for the request
and carry a stable ``reason`` code that the HTTP layer returns verbatim.
Cache and audit failures are absorbed internally and only surface through
logs and metrics.
"""
from typing import Any, Dict, List, Optional


class AuthzError(Exception):
    """Base class for errors that end a request with a machine-readable reason."""

    status_code: int = 400
    default_reason: str = "Error"

    def __init__(self, detail: str, reason: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.reason = reason or self.default_reason

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.__class__.__name__, "reason": self.reason, "detail": self.detail}


class AuthenticationError(AuthzError):
    """Session token missing, malformed, expired, or pointing at an inactive principal."""

    status_code = 401
    default_reason = "InvalidSession"


class AccountInactive(AuthenticationError):
    """Valid session for an employee or company that may no longer act."""

    status_code = 403
    default_reason = "AccountInactive"


class AuthorizationDenied(AuthzError):
    """The permission evaluator returned Deny."""

    status_code = 403
    default_reason = "PermissionNotGranted"


class QuotaExceeded(AuthzError):
    """A quota-gated action hit the actor's daily limit."""

    status_code = 429
    default_reason = "DailyClaimQuotaReached"

    def __init__(self, detail: str, limit: int, used: int):
        super().__init__(detail)
        self.limit = limit
        self.used = used

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"limit": self.limit, "used": self.used})
        return data


class QuotaUnavailable(AuthorizationDenied):
    """The quota store could not be reached, so a quota-gated action is refused."""

    status_code = 503
    default_reason = "QuotaUnavailable"


class RoleNotFound(AuthzError):
    status_code = 404
    default_reason = "RoleNotFound"


class RoleVersionConflict(AuthzError):
    """Another writer changed the role between read and write."""

    status_code = 409
    default_reason = "RoleVersionConflict"


class InvalidRoleSpec(AuthzError):
    """Role registry validation failure. Only fatal to the mutating admin request."""

    status_code = 422
    default_reason = "InvalidRoleSpec"

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class CacheUnavailableError(Exception):
    """Raised by cache backends when the store cannot be reached."""


class CacheDegraded(Warning):
    """
    Signal emitted when permission resolution bypasses an unreachable cache store.
    Logged as a warning and counted; never raised to a request.
    """


class AuditWriteFailure(Exception):
    """An audit entry could not be persisted after every retry."""

    def __init__(self, log_id: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(f"Audit entry {log_id} dropped after {attempts} attempts: {cause}")
        self.log_id = log_id
        self.attempts = attempts
        self.cause = cause
