"""System-wide shared types — the single source of truth for all data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum

from uuid_extensions import uuid7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────

class Tier(IntEnum):
    """Service tier. Values are persisted; order is the upgrade order."""

    GUEST = 0
    STARTER = 1
    BASIC = 2
    STANDARD = 3
    PROFESSIONAL = 4
    BUSINESS = 5
    ENTERPRISE = 6
    PREMIUM = 7
    VIP = 8
    ADMIN = 9

    @classmethod
    def parse(cls, raw: int | str) -> Tier:
        """Accept a stored ordinal (9, "9") or a tier name ("admin")."""
        if isinstance(raw, str) and not raw.isdigit():
            try:
                return cls[raw.upper()]
            except KeyError:
                msg = f"unknown tier: {raw!r}"
                raise ValueError(msg) from None
        return cls(int(raw))


class AccessLevel(IntEnum):
    """Project-scoped role. Ownership is a Project field, never a membership row."""

    VIEWER = 0
    CONTRIBUTOR = 1
    EDITOR = 2
    MANAGER = 3
    OWNER = 4

    @classmethod
    def parse(cls, raw: int | str) -> AccessLevel:
        if isinstance(raw, str) and not raw.isdigit():
            try:
                return cls[raw.upper()]
            except KeyError:
                msg = f"unknown access level: {raw!r}"
                raise ValueError(msg) from None
        return cls(int(raw))


class UsageOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


# ── Limits ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class Limited:
    """A finite ceiling."""

    value: int

    def __post_init__(self) -> None:
        if self.value < 0:
            msg = f"limit cannot be negative: {self.value}"
            raise ValueError(msg)

    @property
    def is_unlimited(self) -> bool:
        return False

    def exceeded_by(self, amount: int) -> bool:
        return amount > self.value

    def to_wire(self) -> int:
        return self.value


@dataclass(frozen=True)
class Unlimited:
    """No ceiling. Distinct from every finite value, including zero."""

    @property
    def is_unlimited(self) -> bool:
        return True

    def exceeded_by(self, amount: int) -> bool:
        return False

    def to_wire(self) -> str:
        return "unlimited"


UNLIMITED = Unlimited()

Limit = Limited | Unlimited


def limit_from_storage(raw: int | None) -> Limit:
    """NULL columns mean unlimited."""
    if raw is None:
        return UNLIMITED
    return Limited(int(raw))


def limit_to_storage(limit: Limit) -> int | None:
    if isinstance(limit, Unlimited):
        return None
    return limit.value


# ── Accounts & usage ─────────────────────────────────────────────

@dataclass
class Account:
    """Quota-bearing account. ``reset_date`` only ever moves lazily."""

    account_id: str
    tier: Tier
    daily_limit: Limit
    daily_used: int = 0
    reset_date: date = field(default_factory=lambda: utcnow().date())
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    tier_upgraded_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.daily_used < 0:
            msg = f"daily_used cannot be negative: {self.daily_used}"
            raise ValueError(msg)

    @property
    def is_unlimited(self) -> bool:
        return self.tier is Tier.ADMIN or self.daily_limit.is_unlimited


@dataclass(frozen=True)
class UsageLogEntry:
    """Append-only audit record of one gated call attempt."""

    account_id: str
    call_type: str
    endpoint: str
    tokens_used: int
    cost_usd: float
    latency_ms: float
    outcome: UsageOutcome
    tier: Tier
    ip_address: str | None = None
    requested_at: datetime = field(default_factory=utcnow)
    log_id: str = field(default_factory=lambda: str(uuid7()))


@dataclass(frozen=True)
class TierChangeRecord:
    """Append-only history of administrative tier changes."""

    account_id: str
    old_tier: Tier
    new_tier: Tier
    changed_by: str
    reason: str
    changed_at: datetime = field(default_factory=utcnow)
    record_id: str = field(default_factory=lambda: str(uuid7()))


# ── Projects ─────────────────────────────────────────────────────

@dataclass
class Project:
    project_id: str
    owner_id: str
    name: str = ""
    description: str = ""
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Membership:
    """Binds an account to a project. Removal flips ``is_active``; rows are kept."""

    account_id: str
    project_id: str
    access_level: AccessLevel
    invited_by: str | None = None
    is_active: bool = True
    joined_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None
    member_id: str = field(default_factory=lambda: str(uuid7()))
