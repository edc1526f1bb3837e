"""Usage endpoints — the caller's quota position and recent call log."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from src.api.deps import GateServices, get_services, require_auth
from src.api.models.schemas import UsageLogOut, UsageOut

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("", response_model=UsageOut)
async def get_usage(
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> UsageOut:
    """Get current usage and limits for the authenticated account."""
    snapshot = await services.ledger.get_usage(account_id)
    return UsageOut(
        account_id=snapshot.account_id,
        tier=int(snapshot.tier),
        tier_name=snapshot.tier.name,
        daily_used=snapshot.daily_used,
        daily_limit=snapshot.daily_limit.to_wire(),
        remaining=snapshot.remaining.to_wire(),
        reset_time=snapshot.reset_time,
        max_tokens_per_request=snapshot.max_tokens_per_request.to_wire(),
        concurrent_requests=snapshot.concurrent_requests.to_wire(),
        features=sorted(snapshot.features),
    )


@router.get("/history", response_model=list[UsageLogOut])
async def get_usage_history(
    days: int = Query(default=7, ge=1, le=90),
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> list[UsageLogOut]:
    """Usage log entries of the last ``days`` days, newest first."""
    entries = await services.ledger.get_usage_stats(account_id, days=days)
    return [
        UsageLogOut(
            log_id=e.log_id,
            call_type=e.call_type,
            endpoint=e.endpoint,
            tokens_used=e.tokens_used,
            cost_usd=e.cost_usd,
            latency_ms=e.latency_ms,
            outcome=e.outcome.value,
            tier=int(e.tier),
            requested_at=e.requested_at,
        )
        for e in entries
    ]
