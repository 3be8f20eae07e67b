"""Source orchestrator — the main entry-point for hazard data lookups.

Composes the router, circuit breakers, quota governor, response cache and
network transport into one fallback pipeline::

    cache check → candidates → (breaker → quota → transport) per candidate → cache store

Candidates are tried strictly one after another (fallback, not fan-out).
The availability monitor runs beside it on its own timers and never gates
the request path.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable

import structlog

from seawater.domain.events import AllSourcesFailed, DataFetched, SourceCallFailed
from seawater.domain.exceptions import (
    AllSourcesExhaustedError,
    QuotaDeniedError,
    SourceError,
    SourceNotFoundError,
    SourceUnavailableError,
    ValidationError,
)
from seawater.ports.outbound import EventBusPort, SourceAdapter
from seawater.shared.providers.adapters import QueryParamsAdapter
from seawater.shared.providers.cache import ResponseCache
from seawater.shared.providers.circuit_breaker import CircuitBreaker
from seawater.shared.providers.monitor import AvailabilityMonitor, ProbeConfig
from seawater.shared.providers.quota import QuotaGovernor, QuotaLimits
from seawater.shared.providers.router import SourceRouter
from seawater.shared.providers.transport import HttpTransport
from seawater.shared.providers.types import (
    FetchOptions,
    FetchResult,
    HealthSnapshot,
    HttpRequest,
    RequestPurpose,
    SourceConfig,
    SourceStatus,
    SourceType,
)

logger = structlog.get_logger(__name__)


def _new_request_id() -> str:
    return f"dsm_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _payload_size(payload: Any) -> int:
    return len(str(payload))


@dataclass
class _SourceStats:
    """Live-traffic counters for one provider (own lock)."""

    avg_response_ms: float
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_used: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, success: bool, response_ms: float | None = None) -> None:
        with self.lock:
            self.total_requests += 1
            self.last_used = time.time()
            if success:
                self.successful_requests += 1
                if response_ms is not None:
                    self.avg_response_ms = self.avg_response_ms * 0.9 + response_ms * 0.1
            else:
                self.failed_requests += 1


@dataclass
class _FetchStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cache_hits: int = 0
    fallbacks_used: int = 0
    total_response_ms: float = 0.0


class SourceOrchestrator:
    """Owns the provider registry and every per-provider resilience record.

    Usage::

        orchestrator = SourceOrchestrator(transport=..., cache=..., quota=...)
        orchestrator.register_source(SourceConfig("USGS_Earthquake", ...))
        await orchestrator.start()
        result = await orchestrator.fetch("earthquake", {"lat": 37.7, "lon": -122.4})
    """

    def __init__(
        self,
        *,
        transport: HttpTransport,
        cache: ResponseCache,
        quota: QuotaGovernor,
        monitor: AvailabilityMonitor | None = None,
        event_bus: EventBusPort | None = None,
        breaker_threshold: int = 5,
        breaker_window_s: float = 60.0,
        breaker_cooldown_s: float = 300.0,
        premium_ttl_multiplier: float = 2.0,
        housekeeping_interval_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._cache = cache
        self._quota = quota
        self._monitor = monitor
        self._event_bus = event_bus
        self._breaker_threshold = breaker_threshold
        self._breaker_window = breaker_window_s
        self._breaker_cooldown = breaker_cooldown_s
        self._premium_ttl_multiplier = premium_ttl_multiplier
        self._housekeeping_interval = housekeeping_interval_s
        self._clock = clock

        self._sources: dict[str, SourceConfig] = {}
        self._adapters: dict[str, SourceAdapter] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._source_stats: dict[str, _SourceStats] = {}
        self._registry_lock = threading.Lock()
        self._router = SourceRouter(self._sources, self._breakers)

        self._stats = _FetchStats()
        self._stats_lock = threading.Lock()
        self._housekeeping_task: asyncio.Task[None] | None = None
        self._started = False

    # ── Registration ─────────────────────────────────────────
    def register_source(
        self,
        config: SourceConfig,
        adapter: SourceAdapter | None = None,
        probe: ProbeConfig | None = None,
    ) -> None:
        self._validate(config)
        sid = config.source_id
        with self._registry_lock:
            self._sources[sid] = config
            self._adapters[sid] = adapter or QueryParamsAdapter(config)
            self._breakers[sid] = CircuitBreaker(
                sid,
                failure_threshold=self._breaker_threshold,
                failure_window_s=self._breaker_window,
                cooldown_s=self._breaker_cooldown,
                event_bus=self._event_bus,
                clock=self._clock,
            )
            self._source_stats[sid] = _SourceStats(avg_response_ms=config.avg_response_ms)
        self._quota.register(sid, QuotaLimits.from_source(config))
        if probe is not None and self._monitor is not None:
            if not config.enabled and probe.enabled:
                probe = replace(probe, enabled=False)
            self._monitor.add_probe(probe)
        logger.info(
            "source_registered",
            source=sid,
            categories=list(config.categories),
            priority=config.priority,
            source_type=config.source_type.value,
            enabled=config.enabled,
        )

    @staticmethod
    def _validate(config: SourceConfig) -> None:
        if not config.source_id:
            raise ValidationError("source_id is required")
        if not config.categories:
            raise ValidationError(f"{config.source_id}: at least one category is required")
        if not 0.0 <= config.reliability <= 1.0:
            raise ValidationError(f"{config.source_id}: reliability must be within [0, 1]")
        if config.cost_per_call < 0:
            raise ValidationError(f"{config.source_id}: cost_per_call must be >= 0")
        if config.concurrency_ceiling < 1 or config.retry_budget < 1:
            raise ValidationError(
                f"{config.source_id}: concurrency_ceiling and retry_budget must be >= 1"
            )

    @property
    def sources(self) -> dict[str, SourceConfig]:
        return dict(self._sources)

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def monitor(self) -> AvailabilityMonitor | None:
        return self._monitor

    # ── Lifecycle ────────────────────────────────────────────
    async def start(self, *, monitoring: bool = True) -> None:
        if self._started:
            return
        self._started = True
        if monitoring and self._monitor is not None:
            self._monitor.start()
        if self._housekeeping_interval > 0:
            self._housekeeping_task = asyncio.create_task(
                self._housekeeping(), name="orchestrator-housekeeping"
            )
        logger.info("orchestrator_started", sources=len(self._sources), monitoring=monitoring)

    async def stop(self) -> None:
        """Cancel background work; leaves the transport and cache open."""
        if self._housekeeping_task is not None:
            self._housekeeping_task.cancel()
            await asyncio.gather(self._housekeeping_task, return_exceptions=True)
            self._housekeeping_task = None
        if self._monitor is not None:
            await self._monitor.stop()
        await self._quota.stop()
        self._started = False
        logger.info("orchestrator_stopped")

    async def aclose(self) -> None:
        await self.stop()
        await self._transport.aclose()
        await self._cache.close()

    async def _housekeeping(self) -> None:
        while True:
            await asyncio.sleep(self._housekeeping_interval)
            try:
                self._cache.purge_expired()
                self._quota.roll_cost_days()
            except Exception:
                logger.exception("orchestrator_housekeeping_error")

    # ── Main entry-point ─────────────────────────────────────
    async def fetch(
        self,
        category: str,
        query: dict[str, Any],
        options: FetchOptions | None = None,
    ) -> FetchResult:
        """Return the best available answer for ``query`` in ``category``.

        Raises:
            AllSourcesExhaustedError: every candidate was skipped or failed,
                or the caller's deadline expired.
        """
        options = options or FetchOptions()
        request_id = _new_request_id()
        started = time.perf_counter()
        log = logger.bind(request_id=request_id, category=category)
        with self._stats_lock:
            self._stats.total_requests += 1

        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.timeout_s if options.timeout_s else None

        key = self._cache.build_key(category, query)
        if not options.skip_cache:
            try:
                cached = await asyncio.wait_for(
                    self._cache.get(key),
                    None if deadline is None else max(0.0, deadline - loop.time()),
                )
            except asyncio.TimeoutError:
                cached = None
                log.warning("fetch_cache_lookup_timed_out", key=key, timeout_s=options.timeout_s)
            if cached is not None:
                elapsed_ms = (time.perf_counter() - started) * 1000
                with self._stats_lock:
                    self._stats.cache_hits += 1
                    self._stats.successful_requests += 1
                    self._stats.total_response_ms += elapsed_ms
                log.debug("fetch_cache_hit", key=key)
                return FetchResult(
                    payload=cached,
                    source_used="cache",
                    request_id=request_id,
                    response_time_ms=elapsed_ms,
                    from_cache=True,
                    metadata={"cache_key": key},
                )

        candidates, skipped = self._router.candidates(category, options)
        attempted: list[str] = []
        errors: dict[str, str] = {}
        last_error: BaseException | None = None

        for config in candidates:
            sid = config.source_id
            breaker = self._breakers[sid]
            if not breaker.allow_request():
                skipped[sid] = "circuit_open"
                continue

            decision = self._quota.check_and_reserve(sid)
            if not decision.allowed:
                breaker.release_trial()
                skipped[sid] = decision.reason.value if decision.reason else "quota_denied"
                log.debug("source_skipped_quota", source=sid, reason=skipped[sid])
                continue

            try:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    breaker.release_trial()
                    last_error = TimeoutError(f"Deadline of {options.timeout_s}s exceeded")
                    break

                attempted.append(sid)
                call_started = time.perf_counter()
                try:
                    payload = await self._call_source(config, query, remaining)
                except TimeoutError:
                    # Caller's deadline, not the provider's fault.
                    breaker.release_trial()
                    errors[sid] = "deadline_exceeded"
                    last_error = TimeoutError(f"Deadline of {options.timeout_s}s exceeded")
                    log.warning("fetch_deadline_exceeded", source=sid, timeout_s=options.timeout_s)
                    break
                except asyncio.CancelledError:
                    breaker.release_trial()
                    raise
                except Exception as exc:
                    breaker.record_failure()
                    self._source_stats[sid].record(False)
                    errors[sid] = f"{type(exc).__name__}: {exc}"
                    last_error = exc
                    transient = isinstance(exc, SourceError) and exc.transient
                    log.warning(
                        "source_call_failed",
                        source=sid,
                        error=str(exc),
                        transient=transient,
                    )
                    self._publish(
                        SourceCallFailed(
                            request_id=request_id,
                            category=category,
                            source_id=sid,
                            error=str(exc),
                            transient=transient,
                        )
                    )
                    continue
            finally:
                self._quota.release(sid)

            call_ms = (time.perf_counter() - call_started) * 1000
            breaker.record_success()
            self._source_stats[sid].record(True, call_ms)
            await self._cache.set(key, payload, self._ttl_for(key, config))
            return self._succeeded(
                request_id, category, config, payload, attempted, skipped, started, key
            )

        raise self._exhausted(request_id, category, attempted, errors, skipped, last_error)

    def _succeeded(
        self,
        request_id: str,
        category: str,
        config: SourceConfig,
        payload: Any,
        attempted: list[str],
        skipped: dict[str, str],
        started: float,
        key: str,
    ) -> FetchResult:
        elapsed_ms = (time.perf_counter() - started) * 1000
        fallback = len(attempted) > 1
        with self._stats_lock:
            self._stats.successful_requests += 1
            self._stats.total_response_ms += elapsed_ms
            if fallback:
                self._stats.fallbacks_used += 1
        logger.info(
            "data_fetched",
            request_id=request_id,
            category=category,
            source=config.source_id,
            attempted=attempted,
            response_time_ms=float(f"{elapsed_ms:.1f}"),
        )
        self._publish(
            DataFetched(
                request_id=request_id,
                category=category,
                source_id=config.source_id,
                response_time_ms=elapsed_ms,
                data_size=_payload_size(payload),
                fallback=fallback,
            )
        )
        return FetchResult(
            payload=payload,
            source_used=config.source_id,
            attempted_sources=list(attempted),
            request_id=request_id,
            response_time_ms=elapsed_ms,
            metadata={
                "cache_key": key,
                "source_type": config.source_type.value,
                "cost": config.cost_per_call,
                "skipped": dict(skipped),
            },
        )

    def _exhausted(
        self,
        request_id: str,
        category: str,
        attempted: list[str],
        errors: dict[str, str],
        skipped: dict[str, str],
        last_error: BaseException | None,
    ) -> AllSourcesExhaustedError:
        with self._stats_lock:
            self._stats.failed_requests += 1
        logger.error(
            "all_sources_failed",
            request_id=request_id,
            category=category,
            attempted=attempted,
            skipped=skipped,
            last_error=str(last_error) if last_error else None,
        )
        self._publish(
            AllSourcesFailed(
                request_id=request_id,
                category=category,
                attempted_sources=tuple(attempted),
                final_error=str(last_error) if last_error else None,
            )
        )
        return AllSourcesExhaustedError(
            category, attempted, last_error, errors=errors, skipped=skipped
        )

    async def fetch_from_source(self, source_id: str, query: dict[str, Any]) -> FetchResult:
        """Call one provider directly, bypassing cache and fallback."""
        config = self._get(source_id)
        if not config.enabled:
            raise SourceUnavailableError(source_id, "disabled")
        breaker = self._breakers[source_id]
        if not breaker.allow_request():
            raise SourceUnavailableError(source_id, "circuit_open")
        decision = self._quota.check_and_reserve(source_id)
        if not decision.allowed:
            breaker.release_trial()
            raise QuotaDeniedError(source_id, decision)

        request_id = _new_request_id()
        started = time.perf_counter()
        try:
            payload = await self._call_source(config, query, None)
        except asyncio.CancelledError:
            breaker.release_trial()
            raise
        except Exception:
            breaker.record_failure()
            self._source_stats[source_id].record(False)
            raise
        finally:
            self._quota.release(source_id)

        elapsed_ms = (time.perf_counter() - started) * 1000
        breaker.record_success()
        self._source_stats[source_id].record(True, elapsed_ms)
        return FetchResult(
            payload=payload,
            source_used=source_id,
            attempted_sources=[source_id],
            request_id=request_id,
            response_time_ms=elapsed_ms,
        )

    async def _call_source(
        self, config: SourceConfig, query: dict[str, Any], deadline_s: float | None
    ) -> Any:
        adapter = self._adapters[config.source_id]
        built = adapter.build_request(query)
        request = HttpRequest(
            url=built.url,
            method=built.method,
            headers=built.headers,
            params=built.params,
            json_body=built.json_body,
            timeout_s=config.timeout_s,
            purpose=RequestPurpose.FETCH,
        )

        async def invoke() -> Any:
            response = await self._transport.send(request, attempts=config.retry_budget)
            return adapter.parse_response(response)

        if deadline_s is None:
            return await invoke()
        # wait_for cancels the in-flight transport call at the deadline.
        return await asyncio.wait_for(invoke(), timeout=deadline_s)

    def _ttl_for(self, key: str, config: SourceConfig) -> int:
        ttl = self._cache.ttl_for(key)
        if config.source_type == SourceType.PREMIUM:
            ttl = int(ttl * self._premium_ttl_multiplier)
        return ttl

    # ── Administration ───────────────────────────────────────
    def set_source_enabled(self, source_id: str, enabled: bool) -> SourceConfig:
        """Enable or disable a provider and its health probe."""
        with self._registry_lock:
            config = replace(self._get(source_id), enabled=enabled)
            self._sources[source_id] = config
        if self._monitor is not None:
            self._monitor.set_probe_enabled(source_id, enabled)
        logger.info("source_toggled", source=source_id, enabled=enabled)
        return config

    def update_source_priority(
        self, source_id: str, priority: int, *, category: str | None = None
    ) -> SourceConfig:
        """Change the default rank, or the rank within one ``category``."""
        if priority < 1:
            raise ValidationError("priority must be >= 1")
        with self._registry_lock:
            current = self._get(source_id)
            if category is None:
                config = replace(current, priority=priority)
            else:
                if not current.serves(category):
                    raise ValidationError(f"{source_id} does not serve {category!r}")
                config = replace(
                    current,
                    category_priority={**current.category_priority, category: priority},
                )
            self._sources[source_id] = config
        logger.info(
            "source_priority_updated",
            source=source_id,
            priority=priority,
            category=category,
        )
        return config

    def reset_circuit_breaker(self, source_id: str) -> None:
        self._get(source_id)
        self._breakers[source_id].reset()
        logger.info("source_circuit_reset", source=source_id)

    def fallback_chain(self, category: str, options: FetchOptions | None = None) -> list[str]:
        return self._router.fallback_chain(category, options)

    # ── Introspection ────────────────────────────────────────
    def get_source_status(self, source_id: str) -> SourceStatus:
        config = self._get(source_id)
        snap = self._breakers[source_id].snapshot()
        stats = self._source_stats[source_id]
        with stats.lock:
            total = stats.total_requests
            successes = stats.successful_requests
            failures = stats.failed_requests
            avg_ms = stats.avg_response_ms
            last_used = stats.last_used
        health: HealthSnapshot | None = None
        if self._monitor is not None:
            health = self._monitor.get_health(source_id)
        return SourceStatus(
            source_id=source_id,
            name=config.name or source_id,
            source_type=config.source_type.value,
            enabled=config.enabled,
            categories=list(config.categories),
            priority=config.priority,
            reliability=config.reliability,
            cost_per_call=config.cost_per_call,
            circuit_state=snap.state.value,
            consecutive_failures=snap.consecutive_failures,
            retry_after_s=snap.retry_after_s,
            total_requests=total,
            successful_requests=successes,
            failed_requests=failures,
            success_rate=float(f"{(successes / total):.4f}") if total else 0.0,
            average_response_ms=float(f"{avg_ms:.2f}"),
            last_used=last_used,
            quota=self._quota.get_status(source_id),
            health=health,
        )

    def get_all_source_status(self) -> list[SourceStatus]:
        return [self.get_source_status(sid) for sid in list(self._sources)]

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            s = self._stats
            completed = s.successful_requests + s.failed_requests
            summary = {
                "total_requests": s.total_requests,
                "successful_requests": s.successful_requests,
                "failed_requests": s.failed_requests,
                "cache_hits": s.cache_hits,
                "fallbacks_used": s.fallbacks_used,
                "success_rate": (
                    float(f"{(s.successful_requests / completed):.4f}") if completed else 0.0
                ),
                "cache_hit_rate": (
                    float(f"{(s.cache_hits / s.total_requests):.4f}") if s.total_requests else 0.0
                ),
                "average_response_ms": (
                    float(f"{(s.total_response_ms / s.successful_requests):.2f}")
                    if s.successful_requests
                    else 0.0
                ),
            }
        summary["sources"] = len(self._sources)
        summary["enabled_sources"] = sum(1 for c in self._sources.values() if c.enabled)
        summary["cache"] = self._cache.get_stats()
        summary["transport"] = self._transport.get_stats()
        return summary

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = _FetchStats()
        for sid, config in self._sources.items():
            self._source_stats[sid] = _SourceStats(avg_response_ms=config.avg_response_ms)
        self._cache.reset_stats()
        self._transport.reset_stats()
        logger.info("orchestrator_stats_reset")

    # ── Internals ────────────────────────────────────────────
    def _get(self, source_id: str) -> SourceConfig:
        config = self._sources.get(source_id)
        if config is None:
            raise SourceNotFoundError(source_id)
        return config

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
