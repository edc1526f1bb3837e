"""Caller identity tokens. The gate only trusts ``sub``; everything else is advisory."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import jwt

from src.core.logging import get_logger
from src.core.types import utcnow

log = get_logger(__name__)

ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["sub", "exp", "iat"]


@dataclass(frozen=True)
class IssuedToken:
    account_id: str
    token: str
    expires_at: datetime


class IdentityTokens:
    """Issues account tokens for the admin flow and verifies them at the gate."""

    def __init__(
        self,
        secret: str,
        expiry_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret
        self._ttl = timedelta(hours=expiry_hours)
        self._clock = clock

    def issue(self, account_id: str, extra_claims: dict[str, str] | None = None) -> IssuedToken:
        if not account_id:
            msg = "account_id is required to issue a token"
            raise ValueError(msg)

        issued_at = self._clock()
        expires_at = issued_at + self._ttl
        payload: dict[str, Any] = dict(extra_claims or {})
        payload.update(sub=account_id, iat=issued_at, exp=expires_at)

        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        return IssuedToken(account_id=account_id, token=token, expires_at=expires_at)

    def verify(self, token: str) -> dict[str, Any] | None:
        """Decoded claims, or None for a bad signature, expiry or missing ``sub``."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            log.debug("token_expired")
            return None
        except jwt.InvalidTokenError as exc:
            log.warning("token_rejected", reason=type(exc).__name__)
            return None

        if not isinstance(claims.get("sub"), str) or not claims["sub"]:
            log.warning("token_rejected", reason="EmptySubject")
            return None
        return claims
