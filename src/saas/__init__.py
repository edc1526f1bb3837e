"""Gating layer — tier policies, usage quotas, concurrency and project access."""

from src.saas.access import ACCESS_POLICIES, AccessControlResolver, ProjectAccess, UserProject
from src.saas.concurrency import ConcurrencyGuard, ConcurrencySlot, RedisCounterStore
from src.saas.gate import GateAdmission, GateRequest, RequestGate
from src.saas.tiers import TIER_POLICIES, TierPolicy, get_tier_policy
from src.saas.tokens import IdentityTokens, IssuedToken
from src.saas.usage import RateLimitDecision, SystemStats, UsageLedger, UsageSnapshot

__all__ = [
    "ACCESS_POLICIES",
    "AccessControlResolver",
    "ProjectAccess",
    "UserProject",
    "ConcurrencyGuard",
    "ConcurrencySlot",
    "RedisCounterStore",
    "GateAdmission",
    "GateRequest",
    "RequestGate",
    "TIER_POLICIES",
    "TierPolicy",
    "get_tier_policy",
    "IdentityTokens",
    "IssuedToken",
    "RateLimitDecision",
    "SystemStats",
    "UsageLedger",
    "UsageSnapshot",
]
