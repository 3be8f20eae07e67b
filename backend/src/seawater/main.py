"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from seawater import __version__
from seawater.adapters.inbound.rest.routers import health_router, sources_router
from seawater.config import Settings, get_settings
from seawater.dependencies import build_orchestrator
from seawater.shared.errors import register_exception_handlers
from seawater.shared.middleware import AccessLogMiddleware, RequestIdMiddleware
from seawater.shared.observability import configure_logging
from seawater.shared.providers import SourceOrchestrator

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — build the orchestrator, start probes, tear down."""
    settings: Settings = app.state.settings
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.use_json_logs,
    )
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        monitoring=settings.monitoring_enabled,
    )

    orchestrator: SourceOrchestrator | None = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = build_orchestrator(settings)
        app.state.orchestrator = orchestrator
    await orchestrator.start(monitoring=settings.monitoring_enabled)

    try:
        yield
    finally:
        await orchestrator.aclose()
        logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    orchestrator: SourceOrchestrator | None = None,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance.

    Tests pass a pre-built ``orchestrator``; otherwise one is assembled from
    ``settings`` during startup.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Seawater Data Sources",
        description=(
            "Operational API for the hazard data-source orchestration layer: "
            "provider status, health probes, circuit control and metrics."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings
    if orchestrator is not None:
        app.state.orchestrator = orchestrator

    # ── Middleware (order matters: last added = outermost) ───
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "PUT", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── REST routers (versioned) ─────────────────────────────
    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(sources_router, prefix=api_v1)

    return app


def run() -> None:
    """Console entry-point: serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "seawater.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        log_config=None,
    )
