"""Health, metrics and source administration — REST routers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from seawater import __version__
from seawater.application.dtos import (
    ActionResponse,
    HealthResponse,
    SetEnabledRequest,
    SourceHealthResponse,
    SourceStatusResponse,
    UpdatePriorityRequest,
)
from seawater.config import Settings
from seawater.dependencies import get_app_settings, get_orchestrator, require_admin_key
from seawater.domain.exceptions import SourceNotFoundError
from seawater.shared.providers import SourceOrchestrator


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> HealthResponse:
    cache = orchestrator.cache
    if not settings.redis_url:
        redis_status = "disabled"
    elif await cache.durable_available():
        redis_status = "connected"
    else:
        redis_status = "disconnected"

    summary: dict[str, Any] = {}
    if orchestrator.monitor is not None:
        summary = orchestrator.monitor.get_system_summary()

    # The volatile tier keeps serving when Redis is down.
    overall = "ok" if redis_status != "disconnected" else "degraded"
    if summary.get("overall_status") == "unhealthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        environment=settings.app_env.value,
        services={"redis": redis_status},
        sources=summary,
        stats=orchestrator.get_stats(),
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Sources
# ═══════════════════════════════════════════════════════════════
sources_router = APIRouter(prefix="/sources", tags=["Data Sources"])


@sources_router.get("", response_model=list[SourceStatusResponse])
async def list_sources(
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> list[SourceStatusResponse]:
    return [
        SourceStatusResponse.model_validate(status)
        for status in orchestrator.get_all_source_status()
    ]


@sources_router.get("/stats")
async def source_stats(
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return orchestrator.get_stats()


@sources_router.get("/{source_id}", response_model=SourceStatusResponse)
async def get_source(
    source_id: str,
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> SourceStatusResponse:
    return SourceStatusResponse.model_validate(orchestrator.get_source_status(source_id))


@sources_router.get("/{source_id}/health", response_model=SourceHealthResponse)
async def get_source_health(
    source_id: str,
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> SourceHealthResponse:
    health = orchestrator.get_source_status(source_id).health
    if health is None:
        raise SourceNotFoundError(source_id)
    return SourceHealthResponse.model_validate(health)


@sources_router.post(
    "/{source_id}/health/check",
    response_model=SourceHealthResponse,
    dependencies=[Depends(require_admin_key)],
)
async def check_source_health(
    source_id: str,
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> SourceHealthResponse:
    """Admin: run the provider's health probe now."""
    if orchestrator.monitor is None:
        raise SourceNotFoundError(source_id)
    return SourceHealthResponse.model_validate(await orchestrator.monitor.check_now(source_id))


@sources_router.put(
    "/{source_id}/enabled",
    response_model=SourceStatusResponse,
    dependencies=[Depends(require_admin_key)],
)
async def set_source_enabled(
    source_id: str,
    body: SetEnabledRequest,
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> SourceStatusResponse:
    """Admin: take a provider in or out of rotation (probe included)."""
    orchestrator.set_source_enabled(source_id, body.enabled)
    return SourceStatusResponse.model_validate(orchestrator.get_source_status(source_id))


@sources_router.put(
    "/{source_id}/priority",
    response_model=SourceStatusResponse,
    dependencies=[Depends(require_admin_key)],
)
async def update_source_priority(
    source_id: str,
    body: UpdatePriorityRequest,
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> SourceStatusResponse:
    orchestrator.update_source_priority(source_id, body.priority, category=body.category)
    return SourceStatusResponse.model_validate(orchestrator.get_source_status(source_id))


@sources_router.post(
    "/{source_id}/circuit/reset",
    response_model=ActionResponse,
    dependencies=[Depends(require_admin_key)],
)
async def reset_circuit(
    source_id: str,
    orchestrator: SourceOrchestrator = Depends(get_orchestrator),
) -> ActionResponse:
    """Admin: force the provider's circuit breaker closed."""
    orchestrator.reset_circuit_breaker(source_id)
    return ActionResponse(status="reset", source_id=source_id)
