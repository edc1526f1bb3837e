"""Custom exception hierarchy for TierGate."""

from __future__ import annotations

from datetime import datetime
from typing import Any


class GateBaseError(Exception):
    """Base exception for all TierGate errors.

    ``code`` is the machine-readable identifier sent to clients and
    ``status_code`` the HTTP status the API layer renders it with.
    """

    code: str = "GATE_ERROR"
    status_code: int = 500
    title: str = "Internal Error"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.context: dict[str, Any] = context or {}

    def wire_extras(self) -> dict[str, Any]:
        """Extra fields merged into the structured error body."""
        return {}


# ── Authentication ───────────────────────────────────────────────

class AuthenticationRequiredError(GateBaseError):
    """No valid caller identity on a protected call."""

    code = "AUTH_REQUIRED"
    status_code = 401
    title = "Unauthorized"


class AccountInactiveError(GateBaseError):
    """Caller's account is missing or deactivated."""

    code = "ACCOUNT_INACTIVE"
    status_code = 403
    title = "Account Inactive"


# ── Project access ───────────────────────────────────────────────

class ProjectNotFoundError(GateBaseError):
    """Project missing or inactive. The message does not say which."""

    code = "PROJECT_NOT_FOUND"
    status_code = 403
    title = "Project Access Denied"


class AccessDeniedError(GateBaseError):
    """Caller neither owns the project nor holds an active membership."""

    code = "PROJECT_ACCESS_DENIED"
    status_code = 403
    title = "Project Access Denied"


class PermissionInsufficientError(GateBaseError):
    """Membership exists but lacks the required permission."""

    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403
    title = "Insufficient Permissions"

    def __init__(
        self,
        message: str,
        required_permission: str,
        access_level: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.required_permission = required_permission
        self.access_level = access_level

    def wire_extras(self) -> dict[str, Any]:
        return {
            "required_permission": self.required_permission,
            "access_level": self.access_level,
        }


class FeatureDeniedError(GateBaseError):
    """Tier does not include a premium capability."""

    code = "FEATURE_ACCESS_DENIED"
    status_code = 403
    title = "Feature Access Denied"

    def __init__(
        self,
        message: str,
        required_feature: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.required_feature = required_feature

    def wire_extras(self) -> dict[str, Any]:
        return {"required_feature": self.required_feature}


# ── Quota & load ─────────────────────────────────────────────────

class _QuotaError(GateBaseError):
    status_code = 429

    def __init__(
        self,
        message: str,
        remaining: int | str | None = None,
        reset_time: datetime | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.remaining = remaining
        self.reset_time = reset_time

    def wire_extras(self) -> dict[str, Any]:
        return {"remaining": self.remaining, "reset_time": self.reset_time}


class QuotaExceededError(_QuotaError):
    """Daily quota exhausted."""

    code = "RATE_LIMIT_EXCEEDED"
    title = "Rate Limit Exceeded"


class RequestTooLargeError(_QuotaError):
    """Single call exceeds the per-call token ceiling."""

    code = "REQUEST_TOO_LARGE"
    title = "Request Too Large"


class ConcurrencyExceededError(_QuotaError):
    """Too many in-flight calls for the tier."""

    code = "CONCURRENCY_LIMIT_EXCEEDED"
    title = "Too Many Concurrent Requests"


# ── Infrastructure ───────────────────────────────────────────────

class DependencyUnavailableError(GateBaseError):
    """A repository or store needed for an authorization decision failed."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    title = "Service Unavailable"


# ── Management operations ────────────────────────────────────────

class AccountNotFoundError(GateBaseError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 404
    title = "Account Not Found"


class MemberNotFoundError(GateBaseError):
    code = "MEMBER_NOT_FOUND"
    status_code = 404
    title = "Member Not Found"


class MemberConflictError(GateBaseError):
    """Target account already has access to the project."""

    code = "MEMBER_EXISTS"
    status_code = 409
    title = "Member Exists"


class AccountExistsError(GateBaseError):
    code = "ACCOUNT_EXISTS"
    status_code = 409
    title = "Account Exists"
