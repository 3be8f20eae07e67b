"""Data Transfer Objects — Pydantic models for the operational API.

Responses are built straight from the core's snapshot dataclasses via
``from_attributes``; requests validate admin input before it reaches the
orchestrator.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from seawater.shared.providers.types import HealthStatus


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)
    sources: dict = Field(default_factory=dict)  # type: ignore[type-arg]
    stats: dict = Field(default_factory=dict)  # type: ignore[type-arg]


class ActionResponse(BaseModel):
    status: str
    source_id: str


# ═══════════════════════════════════════════════════════════════
#  Sources
# ═══════════════════════════════════════════════════════════════
class QuotaStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tokens_available: float
    capacity: int
    active_requests: int
    concurrency_ceiling: int
    queue_length: int = 0
    today_cost: float = 0.0
    daily_cost_ceiling: float | None = None
    utilization_pct: float = 0.0


class SourceHealthResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source_id: str
    name: str
    status: HealthStatus
    enabled: bool
    probe_state: str
    total_checks: int
    successful_checks: int
    failed_checks: int
    consecutive_failures: int
    uptime_pct: float
    error_rate: float
    average_latency_ms: float
    last_success: float | None = None
    last_failure: float | None = None
    last_error: str | None = None
    alert_active: bool = False
    alert_count: int = 0
    interval_s: float = 0.0


class SourceStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source_id: str
    name: str
    source_type: str
    enabled: bool
    categories: list[str]
    priority: int
    reliability: float
    cost_per_call: float
    circuit_state: str
    consecutive_failures: int
    retry_after_s: float | None = None
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    average_response_ms: float
    last_used: float | None = None
    quota: QuotaStatusResponse | None = None
    health: SourceHealthResponse | None = None


class SetEnabledRequest(BaseModel):
    enabled: bool


class UpdatePriorityRequest(BaseModel):
    priority: int = Field(..., ge=1, le=100)
    category: str | None = Field(None, min_length=1, max_length=64)
