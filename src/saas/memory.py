"""In-memory storage — single-process backends for development and tests.

Replace with the PostgreSQL repositories in ``src.api.db`` for production.
Stored objects are copied on the way in and out so callers cannot mutate
state behind the repository's back.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

from src.core.interfaces import (
    BaseAccountRepository,
    BaseCounterStore,
    BaseMembershipRepository,
    BaseProjectRepository,
    BaseUsageLogSink,
)
from src.core.logging import get_logger
from src.core.types import (
    Account,
    Limit,
    Membership,
    Project,
    Tier,
    TierChangeRecord,
    UsageLogEntry,
)

log = get_logger(__name__)


class InMemoryAccountRepository(BaseAccountRepository):

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._tier_history: list[TierChangeRecord] = []

    async def get(self, account_id: str) -> Account | None:
        account = self._accounts.get(account_id)
        return replace(account) if account else None

    async def add(self, account: Account) -> Account:
        self._accounts[account.account_id] = replace(account)
        log.debug("account_added", account_id=account.account_id, tier=account.tier.name)
        return account

    async def save(self, account: Account) -> None:
        self._accounts[account.account_id] = replace(account)

    async def increment_daily_used(self, account_id: str) -> None:
        stored = self._accounts.get(account_id)
        if stored is not None:
            stored.daily_used += 1

    async def reset_daily(self, account_id: str, today: date) -> bool:
        stored = self._accounts.get(account_id)
        if stored is None or stored.reset_date == today:
            return False
        stored.daily_used = 0
        stored.reset_date = today
        return True

    async def set_tier(
        self,
        account_id: str,
        tier: Tier,
        daily_limit: Limit,
        upgraded_at: datetime,
    ) -> None:
        stored = self._accounts.get(account_id)
        if stored is not None:
            stored.tier = tier
            stored.daily_limit = daily_limit
            stored.tier_upgraded_at = upgraded_at

    async def list_accounts(self, active_only: bool = False) -> list[Account]:
        accounts = [replace(a) for a in self._accounts.values()]
        if active_only:
            accounts = [a for a in accounts if a.is_active]
        return accounts

    async def append_tier_change(self, record: TierChangeRecord) -> None:
        self._tier_history.append(record)

    async def tier_history(self, account_id: str) -> list[TierChangeRecord]:
        records = [r for r in self._tier_history if r.account_id == account_id]
        return sorted(records, key=lambda r: r.changed_at, reverse=True)


class InMemoryUsageLogSink(BaseUsageLogSink):

    def __init__(self) -> None:
        self._entries: list[UsageLogEntry] = []

    async def append(self, entry: UsageLogEntry) -> None:
        self._entries.append(entry)

    async def list_since(
        self,
        since: datetime,
        account_id: str | None = None,
    ) -> list[UsageLogEntry]:
        entries = [
            e for e in self._entries
            if e.requested_at >= since and (account_id is None or e.account_id == account_id)
        ]
        return sorted(entries, key=lambda e: e.requested_at, reverse=True)

    @property
    def entries(self) -> list[UsageLogEntry]:
        return list(self._entries)


class InMemoryProjectRepository(BaseProjectRepository):

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}

    async def get(self, project_id: str) -> Project | None:
        project = self._projects.get(project_id)
        return replace(project) if project else None

    async def add(self, project: Project) -> Project:
        self._projects[project.project_id] = replace(project)
        return project

    async def save(self, project: Project) -> None:
        self._projects[project.project_id] = replace(project)

    async def list_owned(self, owner_id: str) -> list[Project]:
        return [
            replace(p) for p in self._projects.values()
            if p.owner_id == owner_id and p.is_active
        ]


class InMemoryMembershipRepository(BaseMembershipRepository):

    def __init__(self) -> None:
        self._members: dict[str, Membership] = {}

    async def find_active(self, account_id: str, project_id: str) -> Membership | None:
        rows = [
            m for m in self._members.values()
            if m.account_id == account_id and m.project_id == project_id and m.is_active
        ]
        if not rows:
            return None
        return replace(max(rows, key=lambda m: m.joined_at))

    async def get(self, member_id: str) -> Membership | None:
        member = self._members.get(member_id)
        return replace(member) if member else None

    async def add(self, membership: Membership) -> Membership:
        self._members[membership.member_id] = replace(membership)
        return membership

    async def save(self, membership: Membership) -> None:
        self._members[membership.member_id] = replace(membership)

    async def list_for_project(self, project_id: str, active_only: bool = True) -> list[Membership]:
        members = [
            replace(m) for m in self._members.values()
            if m.project_id == project_id and (m.is_active or not active_only)
        ]
        return sorted(members, key=lambda m: m.joined_at, reverse=True)

    async def list_for_account(self, account_id: str, active_only: bool = True) -> list[Membership]:
        return [
            replace(m) for m in self._members.values()
            if m.account_id == account_id and (m.is_active or not active_only)
        ]


class InMemoryCounterStore(BaseCounterStore):
    """Process-local counters. Each instance enforces its own ceilings."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    async def get(self, key: str) -> int:
        return self._counts.get(key, 0)

    async def incr(self, key: str) -> int:
        value = self._counts.get(key, 0) + 1
        self._counts[key] = value
        return value

    async def decr(self, key: str) -> int:
        value = self._counts.get(key, 0) - 1
        if value <= 0:
            self._counts.pop(key, None)
            return 0
        self._counts[key] = value
        return value

    def snapshot(self) -> dict[str, int]:
        return dict(self._counts)
