"""Tier policy table — static limits per service tier."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from src.core.types import UNLIMITED, Limit, Limited, Tier

WILDCARD_FEATURE = "*"


@dataclass(frozen=True)
class TierPolicy:
    """Immutable limits for one tier."""

    tier: Tier
    display_name: str
    daily_requests: Limit
    max_tokens_per_request: Limit
    concurrent_requests: Limit
    premium_features: frozenset[str] = frozenset()

    def allows_feature(self, feature: str) -> bool:
        return WILDCARD_FEATURE in self.premium_features or feature in self.premium_features


def _features(*names: str) -> frozenset[str]:
    return frozenset(names)


_BASE = ("basic_analysis",)
_RFP = (*_BASE, "rfp_analysis")
_MARKET = (*_RFP, "market_research")
_PERSONA = (*_MARKET, "persona_analysis")
_PROPOSAL = (*_PERSONA, "proposal_generation")
_ANALYTICS = (*_PROPOSAL, "advanced_analytics")
_SUPPORT = (*_ANALYTICS, "priority_support")
_CUSTOM = (*_SUPPORT, "custom_features")

TIER_POLICIES: MappingProxyType[Tier, TierPolicy] = MappingProxyType({
    Tier.GUEST: TierPolicy(
        Tier.GUEST, "GUEST", Limited(10), Limited(1_000), Limited(1), _features(),
    ),
    Tier.STARTER: TierPolicy(
        Tier.STARTER, "STARTER", Limited(50), Limited(2_000), Limited(2), _features(*_BASE),
    ),
    Tier.BASIC: TierPolicy(
        Tier.BASIC, "BASIC", Limited(100), Limited(4_000), Limited(3), _features(*_RFP),
    ),
    Tier.STANDARD: TierPolicy(
        Tier.STANDARD, "STANDARD", Limited(300), Limited(6_000), Limited(5), _features(*_MARKET),
    ),
    Tier.PROFESSIONAL: TierPolicy(
        Tier.PROFESSIONAL, "PROFESSIONAL", Limited(500), Limited(8_000), Limited(8),
        _features(*_PERSONA),
    ),
    Tier.BUSINESS: TierPolicy(
        Tier.BUSINESS, "BUSINESS", Limited(1_000), Limited(10_000), Limited(10),
        _features(*_PROPOSAL),
    ),
    Tier.ENTERPRISE: TierPolicy(
        Tier.ENTERPRISE, "ENTERPRISE", Limited(2_000), Limited(15_000), Limited(15),
        _features(*_ANALYTICS),
    ),
    Tier.PREMIUM: TierPolicy(
        Tier.PREMIUM, "PREMIUM", Limited(5_000), Limited(20_000), Limited(20),
        _features(*_SUPPORT),
    ),
    Tier.VIP: TierPolicy(
        Tier.VIP, "VIP", Limited(10_000), Limited(30_000), Limited(30), _features(*_CUSTOM),
    ),
    Tier.ADMIN: TierPolicy(
        Tier.ADMIN, "ADMIN", UNLIMITED, UNLIMITED, UNLIMITED, _features(WILDCARD_FEATURE),
    ),
})


def get_tier_policy(tier: Tier) -> TierPolicy:
    return TIER_POLICIES[tier]
