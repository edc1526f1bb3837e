"""Tests for core type definitions."""

from __future__ import annotations

from datetime import date

import pytest

from src.core.types import (
    UNLIMITED,
    Account,
    AccessLevel,
    Limited,
    Tier,
    Unlimited,
    limit_from_storage,
    limit_to_storage,
)


class TestTierOrder:
    def test_total_order_matches_upgrade_path(self) -> None:
        expected = [
            "GUEST", "STARTER", "BASIC", "STANDARD", "PROFESSIONAL",
            "BUSINESS", "ENTERPRISE", "PREMIUM", "VIP", "ADMIN",
        ]
        assert [t.name for t in sorted(Tier)] == expected

    def test_ordinals_are_stable(self) -> None:
        assert Tier.GUEST == 0
        assert Tier.ADMIN == 9
        assert Tier.BASIC < Tier.STANDARD < Tier.ADMIN

    def test_parse_name_and_ordinal(self) -> None:
        assert Tier.parse("admin") is Tier.ADMIN
        assert Tier.parse("VIP") is Tier.VIP
        assert Tier.parse(3) is Tier.STANDARD
        assert Tier.parse("2") is Tier.BASIC

    def test_parse_unknown_raises(self) -> None:
        with pytest.raises(ValueError):
            Tier.parse("platinum")
        with pytest.raises(ValueError):
            Tier.parse(42)


class TestAccessLevelOrder:
    def test_total_order(self) -> None:
        assert (
            AccessLevel.VIEWER
            < AccessLevel.CONTRIBUTOR
            < AccessLevel.EDITOR
            < AccessLevel.MANAGER
            < AccessLevel.OWNER
        )
        assert len(AccessLevel) == 5

    def test_parse(self) -> None:
        assert AccessLevel.parse("editor") is AccessLevel.EDITOR
        assert AccessLevel.parse(3) is AccessLevel.MANAGER
        with pytest.raises(ValueError):
            AccessLevel.parse("superuser")


class TestLimit:
    def test_limited_exceeded_by(self) -> None:
        limit = Limited(1000)
        assert limit.exceeded_by(1001) is True
        assert limit.exceeded_by(1000) is False
        assert limit.is_unlimited is False

    def test_zero_is_not_unlimited(self) -> None:
        zero = Limited(0)
        assert zero.is_unlimited is False
        assert zero.exceeded_by(1) is True
        assert zero != UNLIMITED

    def test_unlimited_never_exceeded(self) -> None:
        assert UNLIMITED.exceeded_by(10**12) is False
        assert UNLIMITED.is_unlimited is True
        assert Unlimited() == UNLIMITED

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            Limited(-1)

    def test_wire_format(self) -> None:
        assert Limited(5).to_wire() == 5
        assert UNLIMITED.to_wire() == "unlimited"

    def test_storage_mapping(self) -> None:
        assert limit_from_storage(None) == UNLIMITED
        assert limit_from_storage(100) == Limited(100)
        assert limit_to_storage(UNLIMITED) is None
        assert limit_to_storage(Limited(7)) == 7


class TestAccount:
    def test_negative_usage_rejected(self) -> None:
        with pytest.raises(ValueError):
            Account(account_id="a", tier=Tier.GUEST, daily_limit=Limited(10), daily_used=-1)

    def test_admin_is_unlimited(self) -> None:
        account = Account(account_id="a", tier=Tier.ADMIN, daily_limit=Limited(10))
        assert account.is_unlimited is True

    def test_unlimited_limit_is_unlimited(self) -> None:
        account = Account(
            account_id="a",
            tier=Tier.STARTER,
            daily_limit=UNLIMITED,
            reset_date=date(2026, 1, 1),
        )
        assert account.is_unlimited is True
