"""Event consumers that turn core events into metrics and alert logs."""

from __future__ import annotations

import structlog

from seawater.domain.events import (
    AllSourcesFailed,
    CacheHit,
    CacheMiss,
    CircuitStateChanged,
    DataFetched,
    DomainEvent,
    HealthAlertRaised,
    HealthRestored,
    ProbeCompleted,
    QuotaDenied,
    SourceCallFailed,
    TransportAttemptRetried,
    TransportAttemptStarted,
    TransportFailed,
)
from seawater.ports.outbound import EventBusPort
from seawater.shared.observability import metrics

logger = structlog.get_logger(__name__)

_CIRCUIT_LEVEL = {"closed": 0, "half_open": 1, "open": 2}


class MetricsConsumer:
    """Feeds Prometheus collectors from the observer channel."""

    def __init__(self) -> None:
        self._alerting: set[str] = set()

    def register(self, bus: EventBusPort) -> None:
        bus.subscribe("DATA_FETCHED", self.on_data_fetched)
        bus.subscribe("SOURCE_CALL_FAILED", self.on_source_failed)
        bus.subscribe("ALL_SOURCES_FAILED", self.on_exhausted)
        bus.subscribe("CACHE_HIT", self.on_cache_lookup)
        bus.subscribe("CACHE_MISS", self.on_cache_lookup)
        bus.subscribe("CIRCUIT_STATE_CHANGED", self.on_circuit_changed)
        bus.subscribe("QUOTA_DENIED", self.on_quota_denied)
        bus.subscribe("TRANSPORT_ATTEMPT_STARTED", self.on_transport_event)
        bus.subscribe("TRANSPORT_ATTEMPT_RETRIED", self.on_transport_event)
        bus.subscribe("TRANSPORT_FAILED", self.on_transport_event)
        bus.subscribe("PROBE_COMPLETED", self.on_probe_completed)
        bus.subscribe("HEALTH_ALERT_RAISED", self.on_alert_changed)
        bus.subscribe("HEALTH_RESTORED", self.on_alert_changed)

    def on_data_fetched(self, event: DataFetched) -> None:
        outcome = "fallback_success" if event.fallback else "success"
        metrics.FETCHES_TOTAL.labels(event.category, event.source_id, outcome).inc()
        metrics.FETCH_LATENCY.labels(event.category, event.source_id).observe(
            event.response_time_ms / 1000
        )

    def on_source_failed(self, event: SourceCallFailed) -> None:
        metrics.SOURCE_FAILURES.labels(
            event.category, event.source_id, str(event.transient).lower()
        ).inc()

    def on_exhausted(self, event: AllSourcesFailed) -> None:
        metrics.EXHAUSTED_TOTAL.labels(event.category).inc()

    def on_cache_lookup(self, event: DomainEvent) -> None:
        if isinstance(event, CacheHit):
            metrics.CACHE_LOOKUPS.labels(f"{event.tier}_hit").inc()
        elif isinstance(event, CacheMiss):
            metrics.CACHE_LOOKUPS.labels("miss").inc()

    def on_circuit_changed(self, event: CircuitStateChanged) -> None:
        metrics.CIRCUIT_TRANSITIONS.labels(event.source_id, event.state).inc()
        metrics.CIRCUIT_STATE.labels(event.source_id).set(_CIRCUIT_LEVEL.get(event.state, 0))

    def on_quota_denied(self, event: QuotaDenied) -> None:
        metrics.QUOTA_DENIALS.labels(event.source_id, event.reason).inc()

    def on_transport_event(self, event: DomainEvent) -> None:
        if isinstance(event, TransportAttemptStarted):
            metrics.TRANSPORT_ATTEMPTS.labels(event.purpose).inc()
        elif isinstance(event, TransportAttemptRetried):
            metrics.TRANSPORT_RETRIES.labels(event.purpose).inc()
        elif isinstance(event, TransportFailed):
            metrics.TRANSPORT_FAILURES.labels(event.purpose, str(event.transient).lower()).inc()

    def on_probe_completed(self, event: ProbeCompleted) -> None:
        metrics.PROBES_TOTAL.labels(
            event.source_id, "success" if event.success else "failure"
        ).inc()
        metrics.PROBE_LATENCY.labels(event.source_id).observe(event.latency_ms / 1000)
        for status in ("healthy", "degraded", "unhealthy", "unknown"):
            metrics.SOURCE_HEALTH.labels(event.source_id, status).set(
                1 if status == event.health_status else 0
            )

    def on_alert_changed(self, event: DomainEvent) -> None:
        if isinstance(event, HealthAlertRaised):
            self._alerting.add(event.source_id)
        elif isinstance(event, HealthRestored):
            self._alerting.discard(event.source_id)
        metrics.ACTIVE_ALERTS.set(len(self._alerting))


class AlertLogConsumer:
    """Writes operator-facing alert lines for health transitions and outages."""

    def register(self, bus: EventBusPort) -> None:
        bus.subscribe("HEALTH_ALERT_RAISED", self.on_alert_raised)
        bus.subscribe("HEALTH_RESTORED", self.on_restored)
        bus.subscribe("CIRCUIT_STATE_CHANGED", self.on_circuit_changed)

    def on_alert_raised(self, event: HealthAlertRaised) -> None:
        logger.error(
            "source_health_alert",
            source=event.source_id,
            name=event.source_name,
            error=event.error,
            uptime_pct=event.uptime_pct,
            error_rate_pct=event.error_rate_pct,
            consecutive_failures=event.consecutive_failures,
            average_latency_ms=event.average_latency_ms,
        )

    def on_restored(self, event: HealthRestored) -> None:
        logger.info("source_health_recovered", source=event.source_id, name=event.source_name)

    def on_circuit_changed(self, event: CircuitStateChanged) -> None:
        if event.state == "open":
            logger.error(
                "source_circuit_alert",
                source=event.source_id,
                consecutive_failures=event.consecutive_failures,
                retry_after_s=event.retry_after_s,
                reason=event.reason,
            )


def register_subscribers(bus: EventBusPort, *, metrics_enabled: bool = True) -> None:
    if metrics_enabled:
        MetricsConsumer().register(bus)
    AlertLogConsumer().register(bus)
