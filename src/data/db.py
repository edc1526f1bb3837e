"""PostgreSQL connection and schema definitions."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)

metadata = MetaData()

# ── Tables ───────────────────────────────────────────────────────

# daily_limit NULL means unlimited
accounts = Table(
    "accounts",
    metadata,
    Column("account_id", String, primary_key=True),
    Column("tier", Integer, nullable=False, index=True),
    Column("daily_used", Integer, nullable=False, default=0),
    Column("daily_limit", Integer, nullable=True),
    Column("reset_date", Date, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("tier_upgraded_at", DateTime(timezone=True)),
)

usage_logs = Table(
    "usage_logs",
    metadata,
    Column("log_id", String, primary_key=True),
    Column("account_id", String, nullable=False, index=True),
    Column("call_type", String, nullable=False),
    Column("endpoint", String, nullable=False),
    Column("tokens_used", Integer, nullable=False),
    Column("cost_usd", Float, nullable=False),
    Column("latency_ms", Float, nullable=False),
    Column("outcome", String, nullable=False),
    Column("tier", Integer, nullable=False),
    Column("ip_address", String),
    Column("requested_at", DateTime(timezone=True), nullable=False, index=True),
)

tier_history = Table(
    "tier_history",
    metadata,
    Column("record_id", String, primary_key=True),
    Column("account_id", String, nullable=False, index=True),
    Column("old_tier", Integer, nullable=False),
    Column("new_tier", Integer, nullable=False),
    Column("changed_by", String, nullable=False),
    Column("reason", Text, nullable=False),
    Column("changed_at", DateTime(timezone=True), nullable=False),
)

projects = Table(
    "projects",
    metadata,
    Column("project_id", String, primary_key=True),
    Column("owner_id", String, nullable=False, index=True),
    Column("name", String, nullable=False, default=""),
    Column("description", Text, nullable=False, default=""),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

project_members = Table(
    "project_members",
    metadata,
    Column("member_id", String, primary_key=True),
    Column("account_id", String, nullable=False, index=True),
    Column("project_id", String, nullable=False, index=True),
    Column("access_level", Integer, nullable=False),
    Column("invited_by", String),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("joined_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True)),
)


# ── Engine ───────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


async def get_engine() -> AsyncEngine:
    """Get or create the async database engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        db_url = settings.database_url.get_secret_value()
        _engine = create_async_engine(
            db_url,
            echo=False,
            pool_size=10,
            max_overflow=20,
        )
        log.info("database_engine_created", host=db_url.split("@")[-1].split("?")[0])
    return _engine


async def init_schema() -> None:
    """Create all tables."""
    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    log.info("schema_initialized", tables=sorted(metadata.tables))


async def close_engine() -> None:
    """Dispose the database engine."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        log.info("database_engine_closed")
