"""Core types for the data-source orchestration layer."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping


class SourceType(str, enum.Enum):
    """Commercial class of a provider; premium data is cached longer."""

    GOVERNMENT = "government"
    PREMIUM = "premium"


class HealthStatus(str, enum.Enum):
    """Probe-derived health of a provider."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class RequestPurpose(str, enum.Enum):
    """Why a request hits the wire; probes are accounted apart from business traffic."""

    FETCH = "fetch"
    PROBE = "probe"


@dataclass(frozen=True)
class SourceConfig:
    """Static registration of a single provider.

    Attributes:
        source_id:          Unique identifier (e.g. "USGS_Earthquake").
        name:               Human-readable name.
        categories:         Risk categories this provider can answer.
        source_type:        government / premium.
        base_url:           Endpoint used by the default query-string adapter.
        priority:           Lower = tried earlier.
        category_priority:  Per-category override of ``priority``.
        reliability:        Declared reliability estimate in [0, 1].
        cost_per_call:      Price of one call in USD.
        concurrency_ceiling: Max in-flight calls.
        timeout_s:          Per-attempt request timeout in seconds.
        retry_budget:       Transport attempts per call (1 = no retry).
        enabled:            Whether the provider takes traffic.
        rate_limit:         Token bucket capacity.
        rate_window_s:      Seconds for a full bucket refill.
        daily_cost_ceiling: Max USD per UTC day (None = unlimited).
        avg_response_ms:    Seed for the response-time average.
        api_key:            Credential attached to every request, if any.
        auth_header:        Header carrying ``api_key`` (bearer when "Authorization").
        auth_param:         Query parameter carrying ``api_key`` instead of a header.
        requires_key:       Provider is unusable without ``api_key``.
        headers:            Extra headers for every request.
    """

    source_id: str
    name: str = ""
    categories: tuple[str, ...] = ()
    source_type: SourceType = SourceType.GOVERNMENT
    base_url: str = ""
    priority: int = 10
    category_priority: Mapping[str, int] = field(default_factory=dict)
    reliability: float = 0.9
    cost_per_call: float = 0.0
    concurrency_ceiling: int = 10
    timeout_s: float = 30.0
    retry_budget: int = 3
    enabled: bool = True
    rate_limit: int = 1000
    rate_window_s: float = 3600.0
    daily_cost_ceiling: float | None = None
    avg_response_ms: float = 2000.0
    api_key: str = ""
    auth_header: str = "Authorization"
    auth_param: str | None = None
    requires_key: bool = False
    headers: Mapping[str, str] = field(default_factory=dict)

    def serves(self, category: str) -> bool:
        return category in self.categories

    def priority_for(self, category: str) -> int:
        return self.category_priority.get(category, self.priority)

    @property
    def has_credentials(self) -> bool:
        return not self.requires_key or bool(self.api_key.strip())


# ── Wire-level request / response ────────────────────────────
@dataclass(frozen=True)
class HttpRequest:
    """A single outbound request, as handed to the transport."""

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] | None = None
    json_body: Any = None
    content: bytes | str | None = None
    timeout_s: float | None = None
    purpose: RequestPurpose = RequestPurpose.FETCH
    raise_for_status: bool = True


@dataclass
class HttpResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None
    elapsed_ms: float = 0.0
    request_id: str = ""
    attempts: int = 1


@dataclass(frozen=True)
class SourceRequest:
    """What a provider adapter wants sent for a query."""

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] | None = None
    json_body: Any = None


# ── Fetch contract ───────────────────────────────────────────
@dataclass(frozen=True)
class FetchOptions:
    skip_cache: bool = False
    max_cost: float | None = None
    source_type: SourceType | None = None
    timeout_s: float | None = None


@dataclass
class FetchResult:
    payload: Any
    source_used: str
    attempted_sources: list[str] = field(default_factory=list)
    request_id: str = ""
    response_time_ms: float = 0.0
    from_cache: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


# ── Read-only snapshots ──────────────────────────────────────
@dataclass
class QuotaStatus:
    source_id: str
    tokens_available: float
    capacity: int
    active_requests: int
    concurrency_ceiling: int
    queue_length: int = 0
    today_cost: float = 0.0
    daily_cost_ceiling: float | None = None
    utilization_pct: float = 0.0


@dataclass
class HealthSnapshot:
    """Probe-derived health record of one provider."""

    source_id: str
    name: str = ""
    status: HealthStatus = HealthStatus.UNKNOWN
    enabled: bool = True
    probe_state: str = "unconfigured"
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    consecutive_failures: int = 0
    uptime_pct: float = 100.0
    error_rate: float = 0.0
    average_latency_ms: float = 0.0
    last_success: float | None = None
    last_failure: float | None = None
    last_error: str | None = None
    alert_active: bool = False
    alert_count: int = 0
    interval_s: float = 0.0


@dataclass
class SourceStatus:
    """Operational view of one provider as seen by the orchestrator."""

    source_id: str
    name: str
    source_type: str
    enabled: bool
    categories: list[str]
    priority: int
    reliability: float
    cost_per_call: float
    circuit_state: str = "closed"
    consecutive_failures: int = 0
    retry_after_s: float | None = None
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    success_rate: float = 0.0
    average_response_ms: float = 0.0
    last_used: float | None = None
    quota: QuotaStatus | None = None
    health: HealthSnapshot | None = None
