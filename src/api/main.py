"""TierGate FastAPI application — entry point for the API server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from src.api.deps import GateServices, build_services
from src.api.errors import gate_error_handler
from src.api.gating import GateMiddleware
from src.core.exceptions import GateBaseError
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown lifecycle — wire gate services, close backends on exit."""
    log.info("api_starting")
    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = await build_services()
    yield
    if owns_services:
        services: GateServices = app.state.services
        await services.close()
        if services.engine is not None:
            await close_engine()
    log.info("api_shutdown")


def create_app(services: GateServices | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    ``services`` pre-wires the gate (tests, embedding); otherwise the
    lifespan builds them from settings.
    """
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="TierGate API",
        description="Tiered quotas, concurrency limits and project access control",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_exception_handler(GateBaseError, gate_error_handler)

    # Gate runs inside CORS so denials still carry CORS headers
    app.add_middleware(GateMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    from src.api.routes.admin import router as admin_router
    from src.api.routes.health import router as health_router
    from src.api.routes.projects import router as projects_router
    from src.api.routes.usage import router as usage_router

    app.include_router(health_router, prefix="/api")
    app.include_router(usage_router, prefix="/api")
    app.include_router(projects_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    return app


app = create_app()
