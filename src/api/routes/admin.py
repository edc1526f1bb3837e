"""Admin endpoints — accounts, tier changes and system statistics. ADMIN tier only."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.api.deps import GateServices, get_services, require_admin
from src.api.middleware import issue_token
from src.api.models.schemas import (
    AccountCreate,
    AccountOut,
    SystemStatsOut,
    TierChangeOut,
    TierUpdate,
    TokenOut,
)
from src.core.exceptions import AccountExistsError, AccountNotFoundError
from src.core.logging import get_logger
from src.core.types import Account

log = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _account_out(account: Account) -> AccountOut:
    return AccountOut(
        account_id=account.account_id,
        tier=int(account.tier),
        tier_name=account.tier.name,
        daily_used=account.daily_used,
        daily_limit=account.daily_limit.to_wire(),
        is_active=account.is_active,
        tier_upgraded_at=account.tier_upgraded_at,
    )


@router.get("/stats", response_model=SystemStatsOut)
async def system_stats(
    _admin_id: str = Depends(require_admin),
    services: GateServices = Depends(get_services),
) -> SystemStatsOut:
    stats = await services.ledger.get_system_stats()
    return SystemStatsOut(
        total_accounts=stats.total_accounts,
        active_accounts=stats.active_accounts,
        api_calls_today=stats.api_calls_today,
        cost_today_usd=stats.cost_today_usd,
        average_tier=stats.average_tier,
    )


@router.post("/accounts", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
async def create_account(
    body: AccountCreate,
    _admin_id: str = Depends(require_admin),
    services: GateServices = Depends(get_services),
) -> AccountOut:
    if await services.accounts.get(body.account_id) is not None:
        raise AccountExistsError(
            "Account already exists",
            context={"account_id": body.account_id},
        )
    account = await services.ledger.create_account(body.account_id, tier=body.tier)
    return _account_out(account)


@router.put("/accounts/{account_id}/tier", response_model=AccountOut)
async def update_tier(
    account_id: str,
    body: TierUpdate,
    admin_id: str = Depends(require_admin),
    services: GateServices = Depends(get_services),
) -> AccountOut:
    await services.ledger.update_tier(
        account_id, body.tier, changed_by=admin_id, reason=body.reason,
    )
    account = await services.accounts.get(account_id)
    if account is None:
        raise AccountNotFoundError(f"Account {account_id} not found")
    return _account_out(account)


@router.get("/accounts/{account_id}/tier-history", response_model=list[TierChangeOut])
async def tier_history(
    account_id: str,
    _admin_id: str = Depends(require_admin),
    services: GateServices = Depends(get_services),
) -> list[TierChangeOut]:
    records = await services.ledger.get_tier_history(account_id)
    return [
        TierChangeOut(
            account_id=r.account_id,
            old_tier=r.old_tier.name,
            new_tier=r.new_tier.name,
            changed_by=r.changed_by,
            reason=r.reason,
            changed_at=r.changed_at,
        )
        for r in records
    ]


@router.post("/accounts/{account_id}/token", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
async def issue_account_token(
    account_id: str,
    admin_id: str = Depends(require_admin),
    services: GateServices = Depends(get_services),
) -> TokenOut:
    """Mint a caller token for an existing account."""
    account = await services.accounts.get(account_id)
    if account is None:
        raise AccountNotFoundError(
            f"Account {account_id} not found",
            context={"account_id": account_id},
        )
    issued = issue_token(account_id)
    log.info("token_issued", account_id=account_id, issued_by=admin_id)
    return TokenOut(account_id=issued.account_id, token=issued.token, expires_at=issued.expires_at)
