"""Prometheus metrics for the data-source layer."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Fetch metrics ────────────────────────────────────────────
FETCHES_TOTAL = Counter(
    "source_fetches_total",
    "Fetches answered by a provider, by outcome",
    ["category", "source", "outcome"],  # success / fallback_success
)

FETCH_LATENCY = Histogram(
    "source_fetch_latency_seconds",
    "End-to-end fetch latency when a provider answered",
    ["category", "source"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

SOURCE_FAILURES = Counter(
    "source_call_failures_total",
    "Failed provider calls",
    ["category", "source", "transient"],
)

EXHAUSTED_TOTAL = Counter(
    "source_fetch_exhausted_total",
    "Fetches where every candidate was skipped or failed",
    ["category"],
)

# ── Cache metrics ────────────────────────────────────────────
CACHE_LOOKUPS = Counter(
    "response_cache_lookups_total",
    "Response cache lookups",
    ["result"],  # durable_hit / volatile_hit / miss
)

# ── Resilience metrics ───────────────────────────────────────
CIRCUIT_TRANSITIONS = Counter(
    "circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["source", "state"],
)

CIRCUIT_STATE = Gauge(
    "circuit_breaker_state",
    "Circuit state per provider (0=closed, 1=half_open, 2=open)",
    ["source"],
)

QUOTA_DENIALS = Counter(
    "quota_denials_total",
    "Reservations refused by the quota governor",
    ["source", "reason"],
)

# ── Transport metrics ────────────────────────────────────────
TRANSPORT_ATTEMPTS = Counter(
    "transport_attempts_total",
    "Outbound HTTP attempts",
    ["purpose"],
)

TRANSPORT_RETRIES = Counter(
    "transport_retries_total",
    "Outbound HTTP retries",
    ["purpose"],
)

TRANSPORT_FAILURES = Counter(
    "transport_failures_total",
    "Outbound requests that exhausted their attempt budget",
    ["purpose", "transient"],
)

# ── Availability metrics ─────────────────────────────────────
PROBES_TOTAL = Counter(
    "health_probes_total",
    "Synthetic health probes",
    ["source", "result"],
)

PROBE_LATENCY = Histogram(
    "health_probe_latency_seconds",
    "Synthetic probe latency",
    ["source"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

SOURCE_HEALTH = Gauge(
    "source_health_status",
    "Probe-derived health (1 for the current status label)",
    ["source", "status"],
)

ACTIVE_ALERTS = Gauge(
    "health_alerts_active",
    "Providers with an active health alert",
)
