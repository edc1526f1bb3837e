#!/usr/bin/env python3
"""Initialize the TierGate database schema and optionally seed an admin account."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.api.db.accounts import AccountRepository, UsageLogRepository
from src.core.logging import setup_logging, get_logger
from src.core.types import Tier
from src.data.db import init_schema, close_engine, get_engine
from src.saas.usage import UsageLedger

log = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TierGate schema setup")
    parser.add_argument(
        "--admin-account",
        default=None,
        help="Account id to create on the ADMIN tier (skipped if it exists)",
    )
    return parser.parse_args()


async def seed_admin(account_id: str) -> None:
    engine = await get_engine()
    accounts = AccountRepository(engine)
    if await accounts.get(account_id) is not None:
        log.info("admin_account_exists", account_id=account_id)
        return
    ledger = UsageLedger(accounts, UsageLogRepository(engine))
    await ledger.create_account(account_id, tier=Tier.ADMIN)


async def main(args: argparse.Namespace) -> None:
    setup_logging()
    log.info("starting_schema_initialization")

    try:
        await init_schema()
        if args.admin_account:
            await seed_admin(args.admin_account)
        log.info("schema_initialization_complete")
    except Exception as exc:
        log.error("schema_initialization_failed", error=str(exc))
        raise
    finally:
        await close_engine()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
