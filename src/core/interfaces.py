"""Abstract base classes — storage contracts the gating core depends on.

The core never talks to a storage engine directly. Each contract has an
in-memory implementation (``src.saas.memory``) and a PostgreSQL one
(``src.api.db``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime

from src.core.types import (
    Account,
    Limit,
    Membership,
    Project,
    Tier,
    TierChangeRecord,
    UsageLogEntry,
)


class BaseAccountRepository(ABC):
    """Read/update access to quota-bearing accounts."""

    @abstractmethod
    async def get(self, account_id: str) -> Account | None:
        ...

    @abstractmethod
    async def add(self, account: Account) -> Account:
        ...

    @abstractmethod
    async def save(self, account: Account) -> None:
        """Overwrite the whole row. Not used on the request path."""
        ...

    @abstractmethod
    async def increment_daily_used(self, account_id: str) -> None:
        """``daily_used += 1`` in storage; touches no other column."""
        ...

    @abstractmethod
    async def reset_daily(self, account_id: str, today: date) -> bool:
        """Zero ``daily_used`` unless ``reset_date`` is already ``today``.

        Returns True when this call performed the reset.
        """
        ...

    @abstractmethod
    async def set_tier(
        self,
        account_id: str,
        tier: Tier,
        daily_limit: Limit,
        upgraded_at: datetime,
    ) -> None:
        """Write only the tier columns."""
        ...

    @abstractmethod
    async def list_accounts(self, active_only: bool = False) -> list[Account]:
        ...

    @abstractmethod
    async def append_tier_change(self, record: TierChangeRecord) -> None:
        ...

    @abstractmethod
    async def tier_history(self, account_id: str) -> list[TierChangeRecord]:
        """Newest first."""
        ...


class BaseUsageLogSink(ABC):
    """Append-only usage log."""

    @abstractmethod
    async def append(self, entry: UsageLogEntry) -> None:
        ...

    @abstractmethod
    async def list_since(
        self,
        since: datetime,
        account_id: str | None = None,
    ) -> list[UsageLogEntry]:
        """Entries at or after ``since``, newest first."""
        ...


class BaseProjectRepository(ABC):

    @abstractmethod
    async def get(self, project_id: str) -> Project | None:
        ...

    @abstractmethod
    async def add(self, project: Project) -> Project:
        ...

    @abstractmethod
    async def save(self, project: Project) -> None:
        ...

    @abstractmethod
    async def list_owned(self, owner_id: str) -> list[Project]:
        """Active projects owned by the account."""
        ...


class BaseMembershipRepository(ABC):

    @abstractmethod
    async def find_active(self, account_id: str, project_id: str) -> Membership | None:
        ...

    @abstractmethod
    async def get(self, member_id: str) -> Membership | None:
        """Fetch by id regardless of ``is_active`` (audit reads)."""
        ...

    @abstractmethod
    async def add(self, membership: Membership) -> Membership:
        ...

    @abstractmethod
    async def save(self, membership: Membership) -> None:
        ...

    @abstractmethod
    async def list_for_project(self, project_id: str, active_only: bool = True) -> list[Membership]:
        ...

    @abstractmethod
    async def list_for_account(self, account_id: str, active_only: bool = True) -> list[Membership]:
        ...


class BaseCounterStore(ABC):
    """Per-key integer counters backing the concurrency guard."""

    @abstractmethod
    async def get(self, key: str) -> int:
        ...

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Increment and return the new value."""
        ...

    @abstractmethod
    async def decr(self, key: str) -> int:
        """Decrement, delete the key at zero, and return the new value."""
        ...
