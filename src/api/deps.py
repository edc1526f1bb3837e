"""FastAPI dependency injection — shared gate services for routes and middleware."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import Settings, get_settings
from src.api.middleware import get_current_user
from src.core.exceptions import (
    AccountInactiveError,
    DependencyUnavailableError,
    PermissionInsufficientError,
)
from src.core.interfaces import (
    BaseAccountRepository,
    BaseCounterStore,
    BaseMembershipRepository,
    BaseProjectRepository,
    BaseUsageLogSink,
)
from src.core.logging import get_logger
from src.core.types import Tier
from src.saas.access import AccessControlResolver
from src.saas.concurrency import ConcurrencyGuard, RedisCounterStore
from src.saas.gate import RequestGate
from src.saas.memory import (
    InMemoryAccountRepository,
    InMemoryCounterStore,
    InMemoryMembershipRepository,
    InMemoryProjectRepository,
    InMemoryUsageLogSink,
)
from src.saas.usage import UsageLedger

log = get_logger(__name__)


# ── Service container ─────────────────────────────────────────────


@dataclass
class GateServices:
    """Everything a request needs, wired once per application."""

    accounts: BaseAccountRepository
    usage_logs: BaseUsageLogSink
    projects: BaseProjectRepository
    memberships: BaseMembershipRepository
    counters: BaseCounterStore
    ledger: UsageLedger
    guard: ConcurrencyGuard
    resolver: AccessControlResolver
    gate: RequestGate
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        if isinstance(self.counters, RedisCounterStore):
            await self.counters.close()


def assemble_services(
    accounts: BaseAccountRepository,
    usage_logs: BaseUsageLogSink,
    projects: BaseProjectRepository,
    memberships: BaseMembershipRepository,
    counters: BaseCounterStore,
    settings: Settings | None = None,
    engine: AsyncEngine | None = None,
) -> GateServices:
    settings = settings or get_settings()
    ledger = UsageLedger(
        accounts,
        usage_logs,
        default_tier=Tier.parse(settings.gate_default_tier),
    )
    guard = ConcurrencyGuard(
        counters,
        release_after_seconds=settings.gate_concurrency_release_seconds,
    )
    resolver = AccessControlResolver(projects, memberships)
    return GateServices(
        accounts=accounts,
        usage_logs=usage_logs,
        projects=projects,
        memberships=memberships,
        counters=counters,
        ledger=ledger,
        guard=guard,
        resolver=resolver,
        gate=RequestGate(ledger, guard, resolver),
        engine=engine,
    )


def build_in_memory_services(settings: Settings | None = None) -> GateServices:
    """Process-local services, used for dev and tests."""
    return assemble_services(
        InMemoryAccountRepository(),
        InMemoryUsageLogSink(),
        InMemoryProjectRepository(),
        InMemoryMembershipRepository(),
        InMemoryCounterStore(),
        settings=settings,
    )


async def build_services(settings: Settings | None = None) -> GateServices:
    """Wire the backends selected by ``gate_storage_backend``/``gate_counter_backend``."""
    settings = settings or get_settings()

    if settings.gate_counter_backend == "redis":
        redis_store = RedisCounterStore(settings.redis_url.get_secret_value())
        await redis_store.connect()
        counters: BaseCounterStore = redis_store
    else:
        counters = InMemoryCounterStore()

    if settings.gate_storage_backend == "postgres":
        from src.api.db.accounts import AccountRepository, UsageLogRepository
        from src.api.db.projects import MembershipRepository, ProjectRepository
        from src.data.db import get_engine

        engine = await get_engine()
        services = assemble_services(
            AccountRepository(engine),
            UsageLogRepository(engine),
            ProjectRepository(engine),
            MembershipRepository(engine),
            counters,
            settings=settings,
            engine=engine,
        )
    else:
        services = assemble_services(
            InMemoryAccountRepository(),
            InMemoryUsageLogSink(),
            InMemoryProjectRepository(),
            InMemoryMembershipRepository(),
            counters,
            settings=settings,
        )

    log.info(
        "gate_services_built",
        storage=settings.gate_storage_backend,
        counters=settings.gate_counter_backend,
    )
    return services


# ── Request dependencies ──────────────────────────────────────────


def services_from_app(request: Request) -> GateServices:
    services: GateServices | None = getattr(request.app.state, "services", None)
    if services is None:
        raise DependencyUnavailableError("Gate services are not initialised")
    return services


async def get_services(request: Request) -> GateServices:
    """Provide the application's GateServices."""
    return services_from_app(request)


# ── Auth dependency ───────────────────────────────────────────────


async def require_auth(
    user: dict[str, str] = Depends(get_current_user),
    services: GateServices = Depends(get_services),
) -> str:
    """Return the account_id of the authenticated caller.

    Also verifies that the account still exists and is active, so a
    deactivated account cannot keep using a stale JWT.
    """
    account_id = user["sub"]

    account = await services.accounts.get(account_id)
    if account is None or not account.is_active:
        raise AccountInactiveError(
            "Account not found or inactive",
            context={"account_id": account_id},
        )

    return account_id


async def require_admin(
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> str:
    """Like ``require_auth`` but only for the ADMIN tier."""
    account = await services.accounts.get(account_id)
    if account is None or account.tier is not Tier.ADMIN:
        raise PermissionInsufficientError(
            "Admin tier required",
            required_permission="admin",
        )
    return account_id
