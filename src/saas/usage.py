"""Usage ledger and rate limiter — per-account daily quotas with lazy reset.

Tracks:
- Daily call counters on the account record (reset lazily on first use each day)
- An append-only usage log (every attempt, including denied ones)
- Administrative tier changes with an append-only history

``check_rate_limit`` and ``increment_usage`` are separate round trips with no
transactional isolation between them. Two concurrent calls on one account can
both see ``remaining > 0`` before either increments, so the daily quota may
be overshot by the number of racing calls. Strict enforcement would need an
atomic "decrement if positive" against the counter store instead.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum

from src.core.constants import API_COSTS, DEFAULT_API_COST
from src.core.exceptions import AccountNotFoundError
from src.core.interfaces import BaseAccountRepository, BaseUsageLogSink
from src.core.logging import get_logger
from src.core.types import (
    UNLIMITED,
    Account,
    Limit,
    Limited,
    Tier,
    TierChangeRecord,
    UsageLogEntry,
    UsageOutcome,
    utcnow,
)
from src.saas.tiers import TierPolicy, get_tier_policy

log = get_logger(__name__)

Clock = Callable[[], datetime]


class DenialReason(str, Enum):
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_INACTIVE = "account_inactive"
    QUOTA_EXCEEDED = "quota_exceeded"
    REQUEST_TOO_LARGE = "request_too_large"
    FEATURE_NOT_IN_TIER = "feature_not_in_tier"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a quota check."""

    allowed: bool
    remaining: Limit
    reset_time: datetime
    message: str
    reason: DenialReason | None = None
    tier: Tier | None = None


@dataclass(frozen=True)
class UsageSnapshot:
    """Current quota position of one account."""

    account_id: str
    tier: Tier
    daily_used: int
    daily_limit: Limit
    remaining: Limit
    reset_time: datetime
    max_tokens_per_request: Limit
    concurrent_requests: Limit
    features: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class SystemStats:
    total_accounts: int
    active_accounts: int
    api_calls_today: int
    cost_today_usd: float
    average_tier: float


def next_reset_time(now: datetime) -> datetime:
    """Start of the next UTC calendar day."""
    tomorrow = now.astimezone(timezone.utc).date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)


def estimate_cost(call_type: str, tokens_used: int) -> float:
    pricing = API_COSTS.get(call_type, API_COSTS[DEFAULT_API_COST])
    return (tokens_used / 1000) * pricing["input"]


class UsageLedger:
    """Decides admit/deny for a call and records what happened."""

    def __init__(
        self,
        accounts: BaseAccountRepository,
        usage_logs: BaseUsageLogSink,
        clock: Clock = utcnow,
        default_tier: Tier = Tier.GUEST,
    ) -> None:
        self._accounts = accounts
        self._usage_logs = usage_logs
        self._clock = clock
        self._default_tier = default_tier

    def today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    # ── Accounts ─────────────────────────────────────────────────

    async def create_account(self, account_id: str, tier: Tier | None = None) -> Account:
        """Signup: the account starts on the default tier's daily limit."""
        tier = self._default_tier if tier is None else tier
        policy = get_tier_policy(tier)
        account = Account(
            account_id=account_id,
            tier=tier,
            daily_limit=policy.daily_requests,
            reset_date=self.today(),
            created_at=self._clock(),
        )
        await self._accounts.add(account)
        log.info("account_created", account_id=account_id, tier=tier.name)
        return account

    async def _reset_if_new_day(self, account: Account) -> Account:
        today = self.today()
        if account.reset_date != today:
            if await self._accounts.reset_daily(account.account_id, today):
                log.info("daily_counter_reset", account_id=account.account_id, reset_date=today.isoformat())
            account.daily_used = 0
            account.reset_date = today
        return account

    # ── Rate limiting ────────────────────────────────────────────

    async def check_rate_limit(self, account_id: str, tokens_requested: int = 0) -> RateLimitDecision:
        """Check whether the account may make one more call of ``tokens_requested``.

        Never mutates ``daily_used`` except for the lazy daily reset.
        """
        now = self._clock()
        reset_time = next_reset_time(now)

        account = await self._accounts.get(account_id)
        if account is None:
            return RateLimitDecision(
                allowed=False,
                remaining=Limited(0),
                reset_time=reset_time,
                message="Account not found",
                reason=DenialReason.ACCOUNT_NOT_FOUND,
            )

        account = await self._reset_if_new_day(account)

        if not account.is_active:
            return RateLimitDecision(
                allowed=False,
                remaining=Limited(0),
                reset_time=reset_time,
                message="Account is inactive",
                reason=DenialReason.ACCOUNT_INACTIVE,
                tier=account.tier,
            )

        policy = get_tier_policy(account.tier)

        if account.is_unlimited or policy.daily_requests.is_unlimited:
            return RateLimitDecision(
                allowed=True,
                remaining=UNLIMITED,
                reset_time=reset_time,
                message="Unlimited usage",
                tier=account.tier,
            )

        assert isinstance(account.daily_limit, Limited)
        remaining = account.daily_limit.value - account.daily_used

        if remaining <= 0:
            log.warning(
                "quota_exceeded",
                account_id=account_id,
                tier=account.tier.name,
                daily_used=account.daily_used,
            )
            return RateLimitDecision(
                allowed=False,
                remaining=Limited(0),
                reset_time=reset_time,
                message="Daily API quota exceeded",
                reason=DenialReason.QUOTA_EXCEEDED,
                tier=account.tier,
            )

        if policy.max_tokens_per_request.exceeded_by(tokens_requested):
            log.warning(
                "request_too_large",
                account_id=account_id,
                tokens_requested=tokens_requested,
                max_tokens=policy.max_tokens_per_request.to_wire(),
            )
            return RateLimitDecision(
                allowed=False,
                remaining=Limited(remaining),
                reset_time=reset_time,
                message=(
                    f"Requested tokens exceed the per-request limit "
                    f"(requested: {tokens_requested}, limit: {policy.max_tokens_per_request.to_wire()})"
                ),
                reason=DenialReason.REQUEST_TOO_LARGE,
                tier=account.tier,
            )

        return RateLimitDecision(
            allowed=True,
            remaining=Limited(remaining),
            reset_time=reset_time,
            message="API usage allowed",
            tier=account.tier,
        )

    async def increment_usage(
        self,
        account_id: str,
        call_type: str,
        endpoint: str,
        tokens_used: int,
        latency_ms: float,
        outcome: UsageOutcome = UsageOutcome.SUCCESS,
        ip_address: str | None = None,
    ) -> UsageLogEntry | None:
        """Append a usage log entry; bump the daily counter on success.

        Returns the appended entry, or None when the account does not exist.
        """
        account = await self._accounts.get(account_id)
        if account is None:
            log.warning("usage_for_unknown_account", account_id=account_id)
            return None

        if outcome is UsageOutcome.SUCCESS and not account.is_unlimited:
            await self._accounts.increment_daily_used(account_id)

        entry = UsageLogEntry(
            account_id=account_id,
            call_type=call_type,
            endpoint=endpoint,
            tokens_used=tokens_used,
            cost_usd=estimate_cost(call_type, tokens_used),
            latency_ms=latency_ms,
            outcome=outcome,
            tier=account.tier,
            ip_address=ip_address,
            requested_at=self._clock(),
        )
        await self._usage_logs.append(entry)

        log.debug(
            "usage_recorded",
            account_id=account_id,
            call_type=call_type,
            tokens=tokens_used,
            outcome=outcome.value,
        )
        return entry

    # ── Features & tiers ─────────────────────────────────────────

    async def check_feature_access(self, account_id: str, feature: str) -> bool:
        return await self.feature_denial(account_id, feature) is None

    async def feature_denial(self, account_id: str, feature: str) -> DenialReason | None:
        """None when the account may use ``feature``, otherwise why not."""
        account = await self._accounts.get(account_id)
        if account is None:
            return DenialReason.ACCOUNT_NOT_FOUND
        if not account.is_active:
            return DenialReason.ACCOUNT_INACTIVE
        if account.tier is Tier.ADMIN or get_tier_policy(account.tier).allows_feature(feature):
            return None
        return DenialReason.FEATURE_NOT_IN_TIER

    async def get_policy(self, account_id: str) -> TierPolicy | None:
        account = await self._accounts.get(account_id)
        return get_tier_policy(account.tier) if account else None

    async def update_tier(
        self,
        account_id: str,
        new_tier: Tier,
        changed_by: str,
        reason: str,
    ) -> TierChangeRecord:
        """Change an account's tier and limits. Always appends a history record."""
        account = await self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(
                f"Account {account_id} not found",
                context={"account_id": account_id},
            )

        old_tier = account.tier
        now = self._clock()
        await self._accounts.set_tier(
            account_id,
            new_tier,
            get_tier_policy(new_tier).daily_requests,
            upgraded_at=now,
        )

        record = TierChangeRecord(
            account_id=account_id,
            old_tier=old_tier,
            new_tier=new_tier,
            changed_by=changed_by,
            reason=reason,
            changed_at=now,
        )
        await self._accounts.append_tier_change(record)

        log.info(
            "tier_updated",
            account_id=account_id,
            old=old_tier.name,
            new=new_tier.name,
            changed_by=changed_by,
        )
        return record

    async def get_tier_history(self, account_id: str) -> list[TierChangeRecord]:
        return await self._accounts.tier_history(account_id)

    # ── Reporting ────────────────────────────────────────────────

    async def get_usage(self, account_id: str) -> UsageSnapshot:
        account = await self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(
                f"Account {account_id} not found",
                context={"account_id": account_id},
            )
        account = await self._reset_if_new_day(account)
        policy = get_tier_policy(account.tier)

        remaining: Limit
        if account.is_unlimited or policy.daily_requests.is_unlimited:
            remaining = UNLIMITED
        else:
            assert isinstance(account.daily_limit, Limited)
            remaining = Limited(max(account.daily_limit.value - account.daily_used, 0))

        return UsageSnapshot(
            account_id=account_id,
            tier=account.tier,
            daily_used=account.daily_used,
            daily_limit=account.daily_limit,
            remaining=remaining,
            reset_time=next_reset_time(self._clock()),
            max_tokens_per_request=policy.max_tokens_per_request,
            concurrent_requests=policy.concurrent_requests,
            features=policy.premium_features,
        )

    async def get_usage_stats(self, account_id: str, days: int = 7) -> list[UsageLogEntry]:
        """Usage log entries for the last ``days`` days, newest first."""
        since = self._clock() - timedelta(days=days)
        return await self._usage_logs.list_since(since, account_id=account_id)

    async def get_system_stats(self) -> SystemStats:
        accounts = await self._accounts.list_accounts()
        active = [a for a in accounts if a.is_active]

        start_of_day = datetime.combine(self.today(), time.min, tzinfo=timezone.utc)
        today_entries = await self._usage_logs.list_since(start_of_day)

        average_tier = sum(int(a.tier) for a in active) / len(active) if active else 0.0
        return SystemStats(
            total_accounts=len(accounts),
            active_accounts=len(active),
            api_calls_today=len(today_entries),
            cost_today_usd=sum(e.cost_usd for e in today_entries),
            average_tier=average_tier,
        )
