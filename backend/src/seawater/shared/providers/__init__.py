"""Hazard data-source orchestration layer.

Provides provider selection, fallback, circuit breaking, quota governance,
two-tier response caching, resilient HTTP transport and availability
probing for every external hazard data provider.
"""

from seawater.shared.providers.types import (
    FetchOptions,
    FetchResult,
    HealthSnapshot,
    HealthStatus,
    QuotaStatus,
    SourceConfig,
    SourceStatus,
    SourceType,
)
from seawater.shared.providers.cache import ResponseCache, VolatileStore
from seawater.shared.providers.circuit_breaker import CircuitBreaker, CircuitState
from seawater.shared.providers.health import HealthRecord
from seawater.shared.providers.monitor import AvailabilityMonitor, ProbeConfig, ProbeState
from seawater.shared.providers.quota import (
    DenialReason,
    QuotaDecision,
    QuotaGovernor,
    QuotaLimits,
    RequestPriority,
)
from seawater.shared.providers.router import SourceRouter
from seawater.shared.providers.transport import HttpTransport
from seawater.shared.providers.orchestrator import SourceOrchestrator

__all__ = [
    "AvailabilityMonitor",
    "CircuitBreaker",
    "CircuitState",
    "DenialReason",
    "FetchOptions",
    "FetchResult",
    "HealthRecord",
    "HealthSnapshot",
    "HealthStatus",
    "HttpTransport",
    "ProbeConfig",
    "ProbeState",
    "QuotaDecision",
    "QuotaGovernor",
    "QuotaLimits",
    "QuotaStatus",
    "RequestPriority",
    "ResponseCache",
    "SourceConfig",
    "SourceOrchestrator",
    "SourceRouter",
    "SourceStatus",
    "SourceType",
    "VolatileStore",
]
