"""JWT authentication for FastAPI routes and the gate middleware."""

from __future__ import annotations

from typing import Any

from fastapi import Cookie, HTTPException, Request, status

from config.settings import get_settings
from src.core.constants import AUTH_COOKIE
from src.core.logging import get_logger
from src.saas.tokens import IdentityTokens, IssuedToken

log = get_logger(__name__)

_tokens: IdentityTokens | None = None


def get_identity_tokens() -> IdentityTokens:
    """Lazy-init singleton built from settings."""
    global _tokens  # noqa: PLW0603
    if _tokens is None:
        settings = get_settings()
        _tokens = IdentityTokens(
            secret=settings.gate_jwt_secret.get_secret_value(),
            expiry_hours=settings.gate_jwt_expiry_hours,
        )
    return _tokens


def issue_token(account_id: str, extra: dict[str, str] | None = None) -> IssuedToken:
    return get_identity_tokens().issue(account_id, extra_claims=extra)


def create_jwt(account_id: str, extra: dict[str, str] | None = None) -> str:
    """Signed token string for the given account."""
    return issue_token(account_id, extra).token


def verify_jwt(token: str) -> dict[str, Any] | None:
    """Verified claims, or None."""
    return get_identity_tokens().verify(token)


def extract_token(request: Request, cookie_token: str | None = None) -> str | None:
    """Token from the auth cookie, falling back to ``Authorization: Bearer``."""
    token = cookie_token or request.cookies.get(AUTH_COOKIE)
    if token:
        return token

    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def account_id_from_request(request: Request) -> str | None:
    """Verified ``sub`` of the caller, or None when unauthenticated."""
    token = extract_token(request)
    if not token:
        return None
    payload = verify_jwt(token)
    if payload is None:
        return None
    return payload["sub"]


async def get_current_user(
    request: Request,
    gate_token: str | None = Cookie(default=None),
) -> dict[str, Any]:
    """Extract and verify the JWT from the cookie or Authorization header.

    Returns the JWT payload dict with at least 'sub' (account_id).
    """
    token = extract_token(request, gate_token)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = verify_jwt(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    return payload
