"""Pydantic V2 request/response schemas for the TierGate API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.types import AccessLevel, Tier


# ── Errors ───────────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    """Structured denial body. Optional fields are omitted when unset."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    message: str
    code: str
    remaining: int | str | None = None
    reset_time: datetime | None = Field(default=None, alias="resetTime")
    required_permission: str | None = Field(default=None, alias="requiredPermission")
    required_feature: str | None = Field(default=None, alias="requiredFeature")
    access_level: str | None = Field(default=None, alias="accessLevel")


# ── Health ───────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "dev"


# ── Usage ────────────────────────────────────────────────────────

class UsageOut(BaseModel):
    """Current quota position of the caller."""

    account_id: str
    tier: int
    tier_name: str
    daily_used: int
    daily_limit: int | str
    remaining: int | str
    reset_time: datetime
    max_tokens_per_request: int | str
    concurrent_requests: int | str
    features: list[str] = Field(default_factory=list)


class UsageLogOut(BaseModel):
    log_id: str
    call_type: str
    endpoint: str
    tokens_used: int
    cost_usd: float
    latency_ms: float
    outcome: str
    tier: int
    requested_at: datetime


# ── Projects ─────────────────────────────────────────────────────

def _access_level(raw: object) -> AccessLevel:
    if isinstance(raw, AccessLevel):
        return raw
    if isinstance(raw, (int, str)):
        return AccessLevel.parse(raw)
    msg = f"invalid access level: {raw!r}"
    raise ValueError(msg)


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""


class ProjectOut(BaseModel):
    project_id: str
    owner_id: str
    name: str
    description: str = ""
    created_at: datetime


class UserProjectOut(ProjectOut):
    access_level: str
    permissions: list[str]
    is_owner: bool
    joined_at: datetime


class MemberCreate(BaseModel):
    account_id: str = Field(..., min_length=1)
    access_level: AccessLevel = AccessLevel.VIEWER

    @field_validator("access_level", mode="before")
    @classmethod
    def _parse_level(cls, v: object) -> AccessLevel:
        return _access_level(v)


class MemberUpdate(BaseModel):
    access_level: AccessLevel

    @field_validator("access_level", mode="before")
    @classmethod
    def _parse_level(cls, v: object) -> AccessLevel:
        return _access_level(v)


class MemberOut(BaseModel):
    member_id: str
    account_id: str
    project_id: str
    access_level: str
    invited_by: str | None = None
    is_active: bool
    joined_at: datetime
    updated_at: datetime | None = None


class OwnershipTransfer(BaseModel):
    new_owner_id: str = Field(..., min_length=1)


# ── Admin ────────────────────────────────────────────────────────

class AccountCreate(BaseModel):
    account_id: str = Field(..., min_length=1)
    tier: Tier | None = None

    @field_validator("tier", mode="before")
    @classmethod
    def _parse_tier(cls, v: object) -> Tier | None:
        if v is None or isinstance(v, Tier):
            return v
        return Tier.parse(v)  # type: ignore[arg-type]


class TierUpdate(BaseModel):
    tier: Tier
    reason: str = Field(default="", max_length=500)

    @field_validator("tier", mode="before")
    @classmethod
    def _parse_tier(cls, v: object) -> Tier:
        if isinstance(v, Tier):
            return v
        return Tier.parse(v)  # type: ignore[arg-type]


class AccountOut(BaseModel):
    account_id: str
    tier: int
    tier_name: str
    daily_used: int
    daily_limit: int | str
    is_active: bool
    tier_upgraded_at: datetime | None = None


class TokenOut(BaseModel):
    account_id: str
    token: str
    expires_at: datetime


class TierChangeOut(BaseModel):
    account_id: str
    old_tier: str
    new_tier: str
    changed_by: str
    reason: str
    changed_at: datetime


class SystemStatsOut(BaseModel):
    total_accounts: int
    active_accounts: int
    api_calls_today: int
    cost_today_usd: float
    average_tier: float
