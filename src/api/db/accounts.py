"""DB-backed account repository and usage-log sink."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.interfaces import BaseAccountRepository, BaseUsageLogSink
from src.core.logging import get_logger
from src.core.types import (
    Account,
    Limit,
    Tier,
    TierChangeRecord,
    UsageLogEntry,
    UsageOutcome,
    limit_from_storage,
    limit_to_storage,
)

log = get_logger(__name__)


class AccountRepository(BaseAccountRepository):
    """Async PostgreSQL-backed account storage."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, account_id: str) -> Account | None:
        """Look up an account by ID."""
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text("SELECT * FROM accounts WHERE account_id = :aid"),
                {"aid": account_id},
            )
            r = row.mappings().first()
            if r is None:
                return None
            return self._row_to_account(r)

    async def add(self, account: Account) -> Account:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO accounts
                        (account_id, tier, daily_used, daily_limit, reset_date,
                         is_active, created_at, tier_upgraded_at)
                    VALUES
                        (:aid, :tier, :used, :limit, :reset,
                         :active, :created, :upgraded)
                    """
                ),
                self._account_params(account),
            )
        log.info("account_inserted", account_id=account.account_id, tier=account.tier.name)
        return account

    async def save(self, account: Account) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    UPDATE accounts SET
                        tier = :tier,
                        daily_used = :used,
                        daily_limit = :limit,
                        reset_date = :reset,
                        is_active = :active,
                        tier_upgraded_at = :upgraded
                    WHERE account_id = :aid
                    """
                ),
                self._account_params(account),
            )

    async def increment_daily_used(self, account_id: str) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    "UPDATE accounts SET daily_used = daily_used + 1 "
                    "WHERE account_id = :aid"
                ),
                {"aid": account_id},
            )

    async def reset_daily(self, account_id: str, today: date) -> bool:
        async with self._engine.begin() as conn:
            result = await conn.execute(
                text(
                    "UPDATE accounts SET daily_used = 0, reset_date = :today "
                    "WHERE account_id = :aid AND reset_date <> :today"
                ),
                {"aid": account_id, "today": today},
            )
            return result.rowcount > 0

    async def set_tier(
        self,
        account_id: str,
        tier: Tier,
        daily_limit: Limit,
        upgraded_at: datetime,
    ) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    UPDATE accounts SET
                        tier = :tier,
                        daily_limit = :limit,
                        tier_upgraded_at = :upgraded
                    WHERE account_id = :aid
                    """
                ),
                {
                    "aid": account_id,
                    "tier": int(tier),
                    "limit": limit_to_storage(daily_limit),
                    "upgraded": upgraded_at,
                },
            )

    async def list_accounts(self, active_only: bool = False) -> list[Account]:
        query = "SELECT * FROM accounts"
        if active_only:
            query += " WHERE is_active = true"
        async with self._engine.begin() as conn:
            rows = await conn.execute(text(query))
            return [self._row_to_account(r) for r in rows.mappings().all()]

    async def append_tier_change(self, record: TierChangeRecord) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO tier_history
                        (record_id, account_id, old_tier, new_tier,
                         changed_by, reason, changed_at)
                    VALUES
                        (:rid, :aid, :old, :new, :by, :reason, :at)
                    """
                ),
                {
                    "rid": record.record_id,
                    "aid": record.account_id,
                    "old": int(record.old_tier),
                    "new": int(record.new_tier),
                    "by": record.changed_by,
                    "reason": record.reason,
                    "at": record.changed_at,
                },
            )

    async def tier_history(self, account_id: str) -> list[TierChangeRecord]:
        async with self._engine.begin() as conn:
            rows = await conn.execute(
                text(
                    "SELECT * FROM tier_history WHERE account_id = :aid "
                    "ORDER BY changed_at DESC"
                ),
                {"aid": account_id},
            )
            return [
                TierChangeRecord(
                    account_id=r["account_id"],
                    old_tier=Tier(r["old_tier"]),
                    new_tier=Tier(r["new_tier"]),
                    changed_by=r["changed_by"],
                    reason=r["reason"],
                    changed_at=r["changed_at"],
                    record_id=r["record_id"],
                )
                for r in rows.mappings().all()
            ]

    @staticmethod
    def _account_params(account: Account) -> dict[str, object]:
        return {
            "aid": account.account_id,
            "tier": int(account.tier),
            "used": account.daily_used,
            "limit": limit_to_storage(account.daily_limit),
            "reset": account.reset_date,
            "active": account.is_active,
            "created": account.created_at,
            "upgraded": account.tier_upgraded_at,
        }

    @staticmethod
    def _row_to_account(r: object) -> Account:
        """Convert a DB row mapping to an Account dataclass."""
        try:
            tier = Tier(r["tier"])  # type: ignore[index]
        except ValueError:
            log.warning("unknown_tier_in_storage", account_id=r["account_id"], tier=r["tier"])  # type: ignore[index]
            tier = Tier.GUEST

        return Account(
            account_id=r["account_id"],  # type: ignore[index]
            tier=tier,
            daily_used=r["daily_used"] or 0,  # type: ignore[index]
            daily_limit=limit_from_storage(r["daily_limit"]),  # type: ignore[index]
            reset_date=r["reset_date"],  # type: ignore[index]
            is_active=r["is_active"],  # type: ignore[index]
            created_at=r["created_at"],  # type: ignore[index]
            tier_upgraded_at=r.get("tier_upgraded_at"),  # type: ignore[union-attr]
        )


class UsageLogRepository(BaseUsageLogSink):
    """Append-only ``usage_logs`` table. Rows are never updated."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def append(self, entry: UsageLogEntry) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO usage_logs
                        (log_id, account_id, call_type, endpoint, tokens_used,
                         cost_usd, latency_ms, outcome, tier, ip_address, requested_at)
                    VALUES
                        (:lid, :aid, :ctype, :endpoint, :tokens,
                         :cost, :latency, :outcome, :tier, :ip, :at)
                    """
                ),
                {
                    "lid": entry.log_id,
                    "aid": entry.account_id,
                    "ctype": entry.call_type,
                    "endpoint": entry.endpoint,
                    "tokens": entry.tokens_used,
                    "cost": entry.cost_usd,
                    "latency": entry.latency_ms,
                    "outcome": entry.outcome.value,
                    "tier": int(entry.tier),
                    "ip": entry.ip_address,
                    "at": entry.requested_at,
                },
            )

    async def list_since(
        self,
        since: datetime,
        account_id: str | None = None,
    ) -> list[UsageLogEntry]:
        query = "SELECT * FROM usage_logs WHERE requested_at >= :since"
        params: dict[str, object] = {"since": since}
        if account_id is not None:
            query += " AND account_id = :aid"
            params["aid"] = account_id
        query += " ORDER BY requested_at DESC"

        async with self._engine.begin() as conn:
            rows = await conn.execute(text(query), params)
            return [self._row_to_entry(r) for r in rows.mappings().all()]

    @staticmethod
    def _row_to_entry(r: object) -> UsageLogEntry:
        return UsageLogEntry(
            account_id=r["account_id"],  # type: ignore[index]
            call_type=r["call_type"],  # type: ignore[index]
            endpoint=r["endpoint"],  # type: ignore[index]
            tokens_used=r["tokens_used"],  # type: ignore[index]
            cost_usd=r["cost_usd"],  # type: ignore[index]
            latency_ms=r["latency_ms"],  # type: ignore[index]
            outcome=UsageOutcome(r["outcome"]),  # type: ignore[index]
            tier=Tier(r["tier"]),  # type: ignore[index]
            ip_address=r.get("ip_address"),  # type: ignore[union-attr]
            requested_at=r["requested_at"],  # type: ignore[index]
            log_id=r["log_id"],  # type: ignore[index]
        )
