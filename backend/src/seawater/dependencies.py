"""Composition root and request dependencies.

``build_orchestrator`` wires adapters to ports once per process; the
instance lives on ``app.state`` and route handlers receive it through
``Depends(get_orchestrator)``.
"""

from __future__ import annotations

import secrets

import structlog
from fastapi import Depends, Request

from seawater.adapters.outbound.cache import RedisDurableStore
from seawater.adapters.outbound.event_bus import InProcessEventBus
from seawater.config import Settings
from seawater.domain.exceptions import AuthenticationError
from seawater.ports.outbound import DurableStorePort, EventBusPort
from seawater.shared.observability.subscribers import register_subscribers
from seawater.shared.providers import (
    AvailabilityMonitor,
    HttpTransport,
    QuotaGovernor,
    ResponseCache,
    SourceOrchestrator,
)
from seawater.shared.providers.defaults import default_probes, default_sources

logger = structlog.get_logger(__name__)


# ── Composition root ─────────────────────────────────────────
def build_orchestrator(
    settings: Settings,
    *,
    event_bus: EventBusPort | None = None,
    durable: DurableStorePort | None = None,
    transport: HttpTransport | None = None,
    register_defaults: bool = True,
) -> SourceOrchestrator:
    """Assemble transport, cache, quota, monitor and orchestrator from settings."""
    bus = event_bus or InProcessEventBus()
    register_subscribers(bus, metrics_enabled=settings.prometheus_enabled)

    if durable is None and settings.redis_url:
        durable = RedisDurableStore(
            settings.redis_url,
            settings.redis_max_connections,
            socket_timeout_s=settings.redis_socket_timeout_s,
        )
    elif durable is None:
        logger.warning("durable_cache_disabled", reason="redis_url is empty")

    transport = transport or HttpTransport(
        event_bus=bus,
        default_timeout_s=settings.http_timeout_s,
        max_attempts=settings.http_max_attempts,
        backoff_base_s=settings.http_backoff_base_s,
        backoff_cap_s=settings.http_backoff_cap_s,
        jitter=settings.http_backoff_jitter,
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_max_keepalive_connections,
        user_agent=settings.http_user_agent,
    )
    cache = ResponseCache(
        durable,
        key_prefix=settings.cache_key_prefix,
        default_ttl_s=settings.cache_default_ttl_s,
        volatile_max_entries=settings.cache_volatile_max_entries,
        event_bus=bus,
    )
    quota = QuotaGovernor(
        event_bus=bus,
        poll_interval_s=settings.quota_poll_interval_s,
        warning_threshold=settings.quota_warning_threshold,
    )
    monitor = AvailabilityMonitor(
        transport,
        event_bus=bus,
        initial_delay_s=settings.monitor_initial_delay_s,
        window_size=settings.monitor_window_size,
        latency_threshold_ms=settings.monitor_latency_threshold_ms,
    )
    orchestrator = SourceOrchestrator(
        transport=transport,
        cache=cache,
        quota=quota,
        monitor=monitor,
        event_bus=bus,
        breaker_threshold=settings.circuit_breaker_failure_threshold,
        breaker_window_s=settings.circuit_breaker_window_seconds,
        breaker_cooldown_s=settings.circuit_breaker_cooldown_seconds,
        premium_ttl_multiplier=settings.premium_ttl_multiplier,
        housekeeping_interval_s=settings.housekeeping_interval_s,
    )

    if register_defaults:
        probes = {p.source_id: p for p in default_probes(settings)}
        for config in default_sources(settings):
            orchestrator.register_source(config, probe=probes.get(config.source_id))
    return orchestrator


# ── Request dependencies ─────────────────────────────────────
def get_orchestrator(request: Request) -> SourceOrchestrator:
    return request.app.state.orchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def require_admin_key(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Guard admin routes with the configured API key header (open when unset)."""
    if not settings.admin_api_key:
        return
    supplied = request.headers.get(settings.api_key_header, "")
    if not secrets.compare_digest(supplied, settings.admin_api_key):
        logger.warning("admin_key_rejected", path=request.url.path)
        raise AuthenticationError()
