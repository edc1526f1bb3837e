"""Tests for IdentityTokens — issuing and verifying caller tokens."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from src.saas.tokens import ALGORITHM, IdentityTokens

SECRET = "unit-test-secret-0123456789abcdef"
OTHER_SECRET = "another-secret-0123456789abcdef!!"


class TestIssue:
    def test_issue_and_verify(self) -> None:
        tokens = IdentityTokens(secret=SECRET, expiry_hours=1)
        issued = tokens.issue("acct-123")

        claims = tokens.verify(issued.token)
        assert claims is not None
        assert claims["sub"] == "acct-123"
        assert issued.account_id == "acct-123"

    def test_expiry_follows_clock(self) -> None:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        tokens = IdentityTokens(secret=SECRET, expiry_hours=2, clock=lambda: now)
        issued = tokens.issue("a1")
        assert issued.expires_at == now + timedelta(hours=2)

        claims = jwt.decode(issued.token, SECRET, algorithms=[ALGORITHM])
        assert claims["exp"] == int(issued.expires_at.timestamp())

    def test_extra_claims_cannot_override_subject(self) -> None:
        tokens = IdentityTokens(secret=SECRET)
        issued = tokens.issue("a1", extra_claims={"sub": "someone-else", "role": "admin"})
        claims = tokens.verify(issued.token)
        assert claims is not None
        assert claims["sub"] == "a1"
        assert claims["role"] == "admin"

    def test_empty_account_rejected(self) -> None:
        with pytest.raises(ValueError):
            IdentityTokens(secret=SECRET).issue("")


class TestVerify:
    def test_zero_expiry_is_expired(self) -> None:
        tokens = IdentityTokens(secret=SECRET, expiry_hours=0)
        assert tokens.verify(tokens.issue("acct-123").token) is None

    def test_expired_by_clock(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(days=2)
        tokens = IdentityTokens(secret=SECRET, expiry_hours=1, clock=lambda: past)
        assert tokens.verify(tokens.issue("a1").token) is None

    def test_wrong_secret(self) -> None:
        token = IdentityTokens(secret=SECRET).issue("acct-123").token
        assert IdentityTokens(secret=OTHER_SECRET).verify(token) is None

    def test_malformed(self) -> None:
        tokens = IdentityTokens(secret=SECRET)
        assert tokens.verify("not.a.valid.token.format") is None
        assert tokens.verify("") is None
        assert tokens.verify("abc") is None

    def test_missing_subject_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"iat": now, "exp": now + timedelta(hours=1)}, SECRET, algorithm=ALGORITHM,
        )
        assert IdentityTokens(secret=SECRET).verify(token) is None

    def test_missing_expiry_rejected(self) -> None:
        token = jwt.encode(
            {"sub": "a1", "iat": datetime.now(timezone.utc)}, SECRET, algorithm=ALGORITHM,
        )
        assert IdentityTokens(secret=SECRET).verify(token) is None

    def test_other_algorithm_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "a1", "iat": now, "exp": now + timedelta(hours=1)},
            SECRET,
            algorithm="HS512",
        )
        assert IdentityTokens(secret=SECRET).verify(token) is None
