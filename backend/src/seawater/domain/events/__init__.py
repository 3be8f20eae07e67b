"""Domain events — typed records of things that happened in the core.

Events are published on the observer channel (``EventBusPort``) after the
state change they describe, so logging, metrics and alerting can subscribe
instead of being hard-wired into the components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all domain events."""

    event_type: str = "DOMAIN_EVENT"
    occurred_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


# ── Transport events ─────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class TransportAttemptStarted(DomainEvent):
    event_type: str = "TRANSPORT_ATTEMPT_STARTED"
    request_id: str = ""
    method: str = "GET"
    url: str = ""
    attempt: int = 1
    purpose: str = "fetch"


@dataclass(frozen=True, slots=True)
class TransportAttemptRetried(DomainEvent):
    event_type: str = "TRANSPORT_ATTEMPT_RETRIED"
    request_id: str = ""
    url: str = ""
    attempt: int = 1
    delay_s: float = 0.0
    error: str = ""
    purpose: str = "fetch"


@dataclass(frozen=True, slots=True)
class TransportSucceeded(DomainEvent):
    event_type: str = "TRANSPORT_SUCCEEDED"
    request_id: str = ""
    url: str = ""
    status_code: int = 0
    attempts: int = 1
    elapsed_ms: float = 0.0
    purpose: str = "fetch"


@dataclass(frozen=True, slots=True)
class TransportFailed(DomainEvent):
    event_type: str = "TRANSPORT_FAILED"
    request_id: str = ""
    url: str = ""
    attempts: int = 1
    error: str = ""
    transient: bool = False
    purpose: str = "fetch"


# ── Cache events ─────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class CacheHit(DomainEvent):
    event_type: str = "CACHE_HIT"
    key: str = ""
    tier: str = "durable"


@dataclass(frozen=True, slots=True)
class CacheMiss(DomainEvent):
    event_type: str = "CACHE_MISS"
    key: str = ""


# ── Quota events ─────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class QuotaDenied(DomainEvent):
    event_type: str = "QUOTA_DENIED"
    source_id: str = ""
    reason: str = ""
    retry_after_s: float = 0.0
    tokens_available: float = 0.0
    active_requests: int = 0


# ── Circuit breaker events ───────────────────────────────────
@dataclass(frozen=True, slots=True)
class CircuitStateChanged(DomainEvent):
    event_type: str = "CIRCUIT_STATE_CHANGED"
    source_id: str = ""
    previous_state: str = ""
    state: str = ""
    consecutive_failures: int = 0
    retry_after_s: float | None = None
    reason: str = ""


# ── Orchestration events ─────────────────────────────────────
@dataclass(frozen=True, slots=True)
class DataFetched(DomainEvent):
    event_type: str = "DATA_FETCHED"
    request_id: str = ""
    category: str = ""
    source_id: str = ""
    response_time_ms: float = 0.0
    data_size: int = 0
    fallback: bool = False


@dataclass(frozen=True, slots=True)
class SourceCallFailed(DomainEvent):
    event_type: str = "SOURCE_CALL_FAILED"
    request_id: str = ""
    category: str = ""
    source_id: str = ""
    error: str = ""
    transient: bool = False


@dataclass(frozen=True, slots=True)
class AllSourcesFailed(DomainEvent):
    event_type: str = "ALL_SOURCES_FAILED"
    request_id: str = ""
    category: str = ""
    attempted_sources: tuple[str, ...] = ()
    final_error: str | None = None


# ── Availability monitor events ──────────────────────────────
@dataclass(frozen=True, slots=True)
class ProbeCompleted(DomainEvent):
    event_type: str = "PROBE_COMPLETED"
    source_id: str = ""
    success: bool = True
    status_code: int | None = None
    latency_ms: float = 0.0
    error: str | None = None
    health_status: str = "unknown"


@dataclass(frozen=True, slots=True)
class HealthAlertRaised(DomainEvent):
    event_type: str = "HEALTH_ALERT_RAISED"
    source_id: str = ""
    source_name: str = ""
    error: str = ""
    uptime_pct: float = 0.0
    error_rate_pct: float = 0.0
    consecutive_failures: int = 0
    average_latency_ms: float = 0.0
    health_status: str = "unhealthy"


@dataclass(frozen=True, slots=True)
class HealthRestored(DomainEvent):
    event_type: str = "HEALTH_RESTORED"
    source_id: str = ""
    source_name: str = ""
    health_status: str = "healthy"
