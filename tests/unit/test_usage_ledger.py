"""Tests for UsageLedger — quota checks, lazy daily reset, usage log, tiers."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from src.core.exceptions import AccountNotFoundError
from src.core.types import UNLIMITED, Account, Limit, Limited, Tier, UsageOutcome
from src.saas.memory import InMemoryAccountRepository, InMemoryUsageLogSink
from src.saas.usage import DenialReason, UsageLedger, estimate_cost, next_reset_time


class _YieldingAccounts(InMemoryAccountRepository):
    """Yields to the loop before every call, like a networked store."""

    async def get(self, account_id: str) -> Account | None:
        await asyncio.sleep(0)
        return await super().get(account_id)

    async def save(self, account: Account) -> None:
        await asyncio.sleep(0)
        await super().save(account)

    async def increment_daily_used(self, account_id: str) -> None:
        await asyncio.sleep(0)
        await super().increment_daily_used(account_id)

    async def reset_daily(self, account_id: str, today: date) -> bool:
        await asyncio.sleep(0)
        return await super().reset_daily(account_id, today)

    async def set_tier(
        self, account_id: str, tier: Tier, daily_limit: Limit, upgraded_at: datetime,
    ) -> None:
        await asyncio.sleep(0)
        await super().set_tier(account_id, tier, daily_limit, upgraded_at)


class _Clock:
    """Settable clock for day-boundary tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


NOON = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> _Clock:
    return _Clock(NOON)


@pytest.fixture
def accounts() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def logs() -> InMemoryUsageLogSink:
    return InMemoryUsageLogSink()


@pytest.fixture
def ledger(
    accounts: InMemoryAccountRepository,
    logs: InMemoryUsageLogSink,
    clock: _Clock,
) -> UsageLedger:
    return UsageLedger(accounts, logs, clock=clock)


async def _set_used(accounts: InMemoryAccountRepository, account_id: str, used: int) -> None:
    account = await accounts.get(account_id)
    assert account is not None
    account.daily_used = used
    await accounts.save(account)


class TestHelpers:
    def test_next_reset_is_next_utc_midnight(self) -> None:
        assert next_reset_time(NOON) == datetime(2026, 3, 11, tzinfo=timezone.utc)

    def test_next_reset_at_midnight_moves_a_full_day(self) -> None:
        midnight = datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert next_reset_time(midnight) == datetime(2026, 3, 11, tzinfo=timezone.utc)

    def test_estimate_cost_known_and_default(self) -> None:
        assert estimate_cost("claude-3-opus", 2000) == pytest.approx(0.03)
        assert estimate_cost("unknown", 1000) == pytest.approx(0.00025)


class TestCreateAccount:
    @pytest.mark.asyncio
    async def test_defaults_to_guest(self, ledger: UsageLedger) -> None:
        account = await ledger.create_account("u1")
        assert account.tier is Tier.GUEST
        assert account.daily_limit == Limited(10)
        assert account.daily_used == 0
        assert account.reset_date == date(2026, 3, 10)

    @pytest.mark.asyncio
    async def test_explicit_tier(self, ledger: UsageLedger) -> None:
        account = await ledger.create_account("u1", tier=Tier.BASIC)
        assert account.daily_limit == Limited(100)


class TestCheckRateLimit:
    @pytest.mark.asyncio
    async def test_unknown_account_denied(self, ledger: UsageLedger) -> None:
        decision = await ledger.check_rate_limit("ghost")
        assert decision.allowed is False
        assert decision.reason is DenialReason.ACCOUNT_NOT_FOUND
        assert decision.remaining == Limited(0)

    @pytest.mark.asyncio
    async def test_inactive_account_denied(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1")
        account = await accounts.get("u1")
        assert account is not None
        account.is_active = False
        await accounts.save(account)

        decision = await ledger.check_rate_limit("u1")
        assert decision.allowed is False
        assert decision.reason is DenialReason.ACCOUNT_INACTIVE

    @pytest.mark.asyncio
    async def test_check_does_not_consume_quota(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1")
        for _ in range(5):
            assert (await ledger.check_rate_limit("u1")).allowed is True
        account = await accounts.get("u1")
        assert account is not None
        assert account.daily_used == 0

    @pytest.mark.asyncio
    async def test_quota_exhausted_after_daily_limit_successes(self, ledger: UsageLedger) -> None:
        await ledger.create_account("u1", tier=Tier.GUEST)
        for _ in range(10):
            assert (await ledger.check_rate_limit("u1")).allowed is True
            await ledger.increment_usage("u1", "ai", "/api/ai/chat", 100, 5.0)

        decision = await ledger.check_rate_limit("u1")
        assert decision.allowed is False
        assert decision.reason is DenialReason.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_ninety_nine_of_one_hundred(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1", tier=Tier.BASIC)
        await _set_used(accounts, "u1", 99)

        first = await ledger.check_rate_limit("u1")
        assert first.allowed is True
        assert first.remaining == Limited(1)

        await ledger.increment_usage("u1", "ai", "/api/ai/chat", 100, 5.0)
        account = await accounts.get("u1")
        assert account is not None
        assert account.daily_used == 100

        second = await ledger.check_rate_limit("u1")
        assert second.allowed is False
        assert second.remaining == Limited(0)
        assert second.reset_time == datetime(2026, 3, 11, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_request_too_large_with_zero_usage(self, ledger: UsageLedger) -> None:
        await ledger.create_account("u1", tier=Tier.GUEST)
        decision = await ledger.check_rate_limit("u1", tokens_requested=1001)
        assert decision.allowed is False
        assert decision.reason is DenialReason.REQUEST_TOO_LARGE
        assert decision.remaining == Limited(10)

    @pytest.mark.asyncio
    async def test_token_ceiling_is_inclusive(self, ledger: UsageLedger) -> None:
        await ledger.create_account("u1", tier=Tier.GUEST)
        decision = await ledger.check_rate_limit("u1", tokens_requested=1000)
        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_admin_never_quota_denied(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("root", tier=Tier.ADMIN)
        await _set_used(accounts, "root", 1_000_000)
        decision = await ledger.check_rate_limit("root", tokens_requested=10**9)
        assert decision.allowed is True
        assert decision.remaining == UNLIMITED

    @pytest.mark.asyncio
    async def test_unlimited_daily_limit_never_quota_denied(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1", tier=Tier.STARTER)
        account = await accounts.get("u1")
        assert account is not None
        account.daily_limit = UNLIMITED
        account.daily_used = 50_000
        await accounts.save(account)

        decision = await ledger.check_rate_limit("u1")
        assert decision.allowed is True
        assert decision.remaining == UNLIMITED


class TestLazyReset:
    @pytest.mark.asyncio
    async def test_prior_day_resets_before_evaluation(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1", tier=Tier.GUEST)
        account = await accounts.get("u1")
        assert account is not None
        account.daily_used = 10
        account.reset_date = date(2026, 3, 9)
        await accounts.save(account)

        decision = await ledger.check_rate_limit("u1")
        assert decision.allowed is True
        assert decision.remaining == Limited(10)

        account = await accounts.get("u1")
        assert account is not None
        assert account.daily_used == 0
        assert account.reset_date == date(2026, 3, 10)

    @pytest.mark.asyncio
    async def test_reset_is_idempotent_within_day(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1", tier=Tier.GUEST)
        account = await accounts.get("u1")
        assert account is not None
        account.reset_date = date(2026, 3, 9)
        await accounts.save(account)

        await ledger.check_rate_limit("u1")
        await ledger.increment_usage("u1", "ai", "/api/ai/x", 10, 1.0)
        await ledger.check_rate_limit("u1")

        account = await accounts.get("u1")
        assert account is not None
        assert account.daily_used == 1

    @pytest.mark.asyncio
    async def test_day_rollover_via_clock(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository, clock: _Clock,
    ) -> None:
        await ledger.create_account("u1", tier=Tier.GUEST)
        await _set_used(accounts, "u1", 10)
        assert (await ledger.check_rate_limit("u1")).allowed is False

        clock.now = NOON + timedelta(days=1)
        decision = await ledger.check_rate_limit("u1")
        assert decision.allowed is True
        assert decision.reset_time == datetime(2026, 3, 12, tzinfo=timezone.utc)


class TestIncrementUsage:
    @pytest.mark.asyncio
    async def test_success_counts_and_logs(
        self, ledger: UsageLedger, logs: InMemoryUsageLogSink,
    ) -> None:
        await ledger.create_account("u1", tier=Tier.BASIC)
        entry = await ledger.increment_usage(
            "u1", "rfp_analysis", "/api/rfp/analyze", 2000, 12.5, ip_address="10.0.0.1",
        )
        assert entry is not None
        assert entry.outcome is UsageOutcome.SUCCESS
        assert entry.tier is Tier.BASIC
        assert entry.cost_usd == pytest.approx(0.006)
        assert entry.ip_address == "10.0.0.1"
        assert logs.entries == [entry]

    @pytest.mark.asyncio
    async def test_failed_and_rate_limited_do_not_count(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository, logs: InMemoryUsageLogSink,
    ) -> None:
        await ledger.create_account("u1")
        await ledger.increment_usage("u1", "ai", "/api/ai/x", 10, 1.0, outcome=UsageOutcome.FAILED)
        await ledger.increment_usage("u1", "rate_limit", "/api/ai/x", 0, 1.0, outcome=UsageOutcome.RATE_LIMITED)

        account = await accounts.get("u1")
        assert account is not None
        assert account.daily_used == 0
        assert [e.outcome for e in logs.entries] == [UsageOutcome.FAILED, UsageOutcome.RATE_LIMITED]

    @pytest.mark.asyncio
    async def test_unknown_account_returns_none(
        self, ledger: UsageLedger, logs: InMemoryUsageLogSink,
    ) -> None:
        assert await ledger.increment_usage("ghost", "ai", "/api/ai/x", 10, 1.0) is None
        assert logs.entries == []

    @pytest.mark.asyncio
    async def test_admin_usage_not_counted(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("root", tier=Tier.ADMIN)
        await ledger.increment_usage("root", "ai", "/api/ai/x", 10, 1.0)
        account = await accounts.get("root")
        assert account is not None
        assert account.daily_used == 0


class TestFeatures:
    @pytest.mark.asyncio
    async def test_feature_by_tier(self, ledger: UsageLedger) -> None:
        await ledger.create_account("basic", tier=Tier.BASIC)
        assert await ledger.check_feature_access("basic", "rfp_analysis") is True
        assert await ledger.check_feature_access("basic", "proposal_generation") is False

    @pytest.mark.asyncio
    async def test_admin_has_every_feature(self, ledger: UsageLedger) -> None:
        await ledger.create_account("root", tier=Tier.ADMIN)
        assert await ledger.check_feature_access("root", "custom_features") is True

    @pytest.mark.asyncio
    async def test_unknown_account_has_none(self, ledger: UsageLedger) -> None:
        assert await ledger.check_feature_access("ghost", "basic_analysis") is False
        assert await ledger.get_policy("ghost") is None

    @pytest.mark.asyncio
    async def test_feature_denial_reasons(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("basic", tier=Tier.BASIC)
        assert await ledger.feature_denial("ghost", "rfp_analysis") is DenialReason.ACCOUNT_NOT_FOUND
        assert await ledger.feature_denial("basic", "rfp_analysis") is None
        assert await ledger.feature_denial("basic", "proposal_generation") is DenialReason.FEATURE_NOT_IN_TIER

        account = await accounts.get("basic")
        assert account is not None
        account.is_active = False
        await accounts.save(account)
        assert await ledger.feature_denial("basic", "rfp_analysis") is DenialReason.ACCOUNT_INACTIVE


class TestUpdateTier:
    @pytest.mark.asyncio
    async def test_changes_limits_and_appends_history(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1")
        record = await ledger.update_tier("u1", Tier.STANDARD, changed_by="root", reason="upgrade")

        assert record.old_tier is Tier.GUEST
        assert record.new_tier is Tier.STANDARD
        account = await accounts.get("u1")
        assert account is not None
        assert account.tier is Tier.STANDARD
        assert account.daily_limit == Limited(300)
        assert account.tier_upgraded_at == NOON

    @pytest.mark.asyncio
    async def test_history_newest_first(self, ledger: UsageLedger, clock: _Clock) -> None:
        await ledger.create_account("u1")
        await ledger.update_tier("u1", Tier.BASIC, changed_by="root", reason="first")
        clock.now = NOON + timedelta(hours=1)
        await ledger.update_tier("u1", Tier.VIP, changed_by="root", reason="second")

        history = await ledger.get_tier_history("u1")
        assert [r.reason for r in history] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_same_tier_still_recorded(self, ledger: UsageLedger) -> None:
        await ledger.create_account("u1")
        await ledger.update_tier("u1", Tier.GUEST, changed_by="root", reason="noop")
        assert len(await ledger.get_tier_history("u1")) == 1

    @pytest.mark.asyncio
    async def test_unknown_account_raises(self, ledger: UsageLedger) -> None:
        with pytest.raises(AccountNotFoundError):
            await ledger.update_tier("ghost", Tier.VIP, changed_by="root", reason="x")


class TestReporting:
    @pytest.mark.asyncio
    async def test_usage_snapshot(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("u1", tier=Tier.BASIC)
        await _set_used(accounts, "u1", 40)

        snapshot = await ledger.get_usage("u1")
        assert snapshot.remaining == Limited(60)
        assert snapshot.max_tokens_per_request == Limited(4000)
        assert "rfp_analysis" in snapshot.features

    @pytest.mark.asyncio
    async def test_usage_snapshot_unknown_account(self, ledger: UsageLedger) -> None:
        with pytest.raises(AccountNotFoundError):
            await ledger.get_usage("ghost")

    @pytest.mark.asyncio
    async def test_usage_stats_window(self, ledger: UsageLedger, clock: _Clock) -> None:
        await ledger.create_account("u1", tier=Tier.BASIC)
        clock.now = NOON - timedelta(days=10)
        await ledger.increment_usage("u1", "ai", "/api/ai/old", 10, 1.0)
        clock.now = NOON
        await ledger.increment_usage("u1", "ai", "/api/ai/new", 10, 1.0)

        entries = await ledger.get_usage_stats("u1", days=7)
        assert [e.endpoint for e in entries] == ["/api/ai/new"]

    @pytest.mark.asyncio
    async def test_system_stats(
        self, ledger: UsageLedger, accounts: InMemoryAccountRepository,
    ) -> None:
        await ledger.create_account("a", tier=Tier.BASIC)
        await ledger.create_account("b", tier=Tier.STANDARD)
        await ledger.create_account("c", tier=Tier.VIP)
        account = await accounts.get("c")
        assert account is not None
        account.is_active = False
        await accounts.save(account)
        await ledger.increment_usage("a", "claude-3-opus", "/api/ai/x", 1000, 1.0)

        stats = await ledger.get_system_stats()
        assert stats.total_accounts == 3
        assert stats.active_accounts == 2
        assert stats.api_calls_today == 1
        assert stats.cost_today_usd == pytest.approx(0.015)
        assert stats.average_tier == pytest.approx(2.5)


class TestInterleavedWrites:
    @pytest.fixture
    def yielding(self) -> _YieldingAccounts:
        return _YieldingAccounts()

    @pytest.fixture
    def slow_ledger(
        self, yielding: _YieldingAccounts, logs: InMemoryUsageLogSink, clock: _Clock,
    ) -> UsageLedger:
        return UsageLedger(yielding, logs, clock=clock)

    @pytest.mark.asyncio
    async def test_usage_during_tier_change_keeps_new_tier(
        self, slow_ledger: UsageLedger, yielding: _YieldingAccounts,
    ) -> None:
        await slow_ledger.create_account("u1", tier=Tier.GUEST)

        await asyncio.gather(
            slow_ledger.update_tier("u1", Tier.VIP, changed_by="root", reason="deal"),
            slow_ledger.increment_usage("u1", "ai", "/api/ai/x", 10, 1.0),
        )

        account = await yielding.get("u1")
        assert account is not None
        assert account.tier is Tier.VIP
        assert account.daily_limit == Limited(10_000)
        assert account.daily_used == 1
        history = await slow_ledger.get_tier_history("u1")
        assert [r.new_tier for r in history] == [Tier.VIP]

    @pytest.mark.asyncio
    async def test_reset_during_tier_change_keeps_new_tier(
        self, slow_ledger: UsageLedger, yielding: _YieldingAccounts,
    ) -> None:
        await slow_ledger.create_account("u1", tier=Tier.GUEST)
        account = await yielding.get("u1")
        assert account is not None
        account.daily_used = 7
        account.reset_date = date(2026, 3, 9)
        await yielding.save(account)

        await asyncio.gather(
            slow_ledger.check_rate_limit("u1"),
            slow_ledger.update_tier("u1", Tier.BASIC, changed_by="root", reason="upgrade"),
        )

        account = await yielding.get("u1")
        assert account is not None
        assert account.tier is Tier.BASIC
        assert account.daily_used == 0
        assert account.reset_date == date(2026, 3, 10)

    @pytest.mark.asyncio
    async def test_concurrent_successes_all_count(
        self, slow_ledger: UsageLedger, yielding: _YieldingAccounts,
    ) -> None:
        await slow_ledger.create_account("u1", tier=Tier.BASIC)

        await asyncio.gather(*(
            slow_ledger.increment_usage("u1", "ai", "/api/ai/x", 10, 1.0) for _ in range(5)
        ))

        account = await yielding.get("u1")
        assert account is not None
        assert account.daily_used == 5

    @pytest.mark.asyncio
    async def test_reset_daily_only_once_per_day(self, accounts: InMemoryAccountRepository) -> None:
        await accounts.add(Account(
            account_id="u1", tier=Tier.GUEST, daily_limit=Limited(10),
            daily_used=4, reset_date=date(2026, 3, 9),
        ))
        assert await accounts.reset_daily("u1", date(2026, 3, 10)) is True
        await accounts.increment_daily_used("u1")
        assert await accounts.reset_daily("u1", date(2026, 3, 10)) is False

        account = await accounts.get("u1")
        assert account is not None
        assert account.daily_used == 1
