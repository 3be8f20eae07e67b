"""Availability monitor — periodic synthetic probes, one task per provider.

Probe lifecycle per provider::

    UNCONFIGURED → SCHEDULED → (probe loop)
    SCHEDULED    → STOPPED      (disabled, removed or monitor stopped)

Probes go through the network transport with a single attempt and
``purpose=probe``; they never touch the quota governor, and their health
records never feed the circuit breakers.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import structlog

from seawater.domain.events import HealthAlertRaised, HealthRestored, ProbeCompleted
from seawater.domain.exceptions import SourceError, SourceNotFoundError
from seawater.ports.outbound import EventBusPort
from seawater.shared.providers.health import AlertChange, HealthRecord
from seawater.shared.providers.transport import HttpTransport
from seawater.shared.providers.types import (
    HealthSnapshot,
    HealthStatus,
    HttpRequest,
    RequestPurpose,
)

logger = structlog.get_logger(__name__)

ResponseValidator = Callable[[Any], bool]


class ProbeState(str, enum.Enum):
    UNCONFIGURED = "unconfigured"
    SCHEDULED = "scheduled"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ProbeConfig:
    """Synthetic health check for one provider.

    ``expected_status`` lists acceptable status codes; ``validator`` receives
    the decoded body and returns False when the shape is wrong.
    """

    source_id: str
    url: str
    name: str = ""
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    expected_status: frozenset[int] = frozenset({200})
    timeout_s: float = 10.0
    interval_s: float = 300.0
    enabled: bool = True
    alert_on_failure: bool = True
    validator: ResponseValidator | None = None


@dataclass
class _Probe:
    config: ProbeConfig
    record: HealthRecord
    task: asyncio.Task[None] | None = None

    @property
    def scheduled(self) -> bool:
        return self.task is not None and not self.task.done()


class AvailabilityMonitor:
    """Schedules probes and keeps a health record per provider."""

    def __init__(
        self,
        transport: HttpTransport,
        *,
        event_bus: EventBusPort | None = None,
        initial_delay_s: float = 5.0,
        window_size: int = 20,
        latency_threshold_ms: float = 10_000.0,
    ) -> None:
        self._transport = transport
        self._event_bus = event_bus
        self._initial_delay = initial_delay_s
        self._window_size = window_size
        self._latency_thr = latency_threshold_ms
        self._probes: dict[str, _Probe] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ── Registration ─────────────────────────────────────────
    def add_probe(self, config: ProbeConfig) -> None:
        existing = self._probes.pop(config.source_id, None)
        if existing is not None:
            self._cancel(existing)
        probe = _Probe(
            config=config,
            record=HealthRecord(
                config.source_id,
                config.name,
                window_size=self._window_size,
                latency_threshold_ms=self._latency_thr,
                alert_on_failure=config.alert_on_failure,
            ),
        )
        self._probes[config.source_id] = probe
        logger.info(
            "probe_added",
            source=config.source_id,
            interval_s=config.interval_s,
            enabled=config.enabled,
        )
        if self._running and config.enabled:
            self._schedule(probe)

    def remove_probe(self, source_id: str) -> None:
        probe = self._probes.pop(source_id, None)
        if probe is not None:
            self._cancel(probe)
            logger.info("probe_removed", source=source_id)

    def update_probe(self, source_id: str, **changes: Any) -> ProbeConfig:
        """Replace fields of a probe's config; reschedules when it is running."""
        probe = self._get(source_id)
        probe.config = dataclasses.replace(probe.config, **changes)
        probe.record.alert_on_failure = probe.config.alert_on_failure
        self._cancel(probe)
        if self._running and probe.config.enabled:
            self._schedule(probe)
        return probe.config

    def set_probe_enabled(self, source_id: str, enabled: bool) -> None:
        """Enable or disable probing; disabling cancels the schedule immediately."""
        probe = self._probes.get(source_id)
        if probe is None:
            return
        probe.config = dataclasses.replace(probe.config, enabled=enabled)
        if not enabled:
            self._cancel(probe)
        elif self._running and not probe.scheduled:
            self._schedule(probe)
        logger.info("probe_toggled", source=source_id, enabled=enabled)

    # ── Lifecycle ────────────────────────────────────────────
    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for probe in self._probes.values():
            if probe.config.enabled:
                self._schedule(probe)
        logger.info(
            "availability_monitor_started",
            probes=sum(1 for p in self._probes.values() if p.scheduled),
        )

    async def stop(self) -> None:
        """Cancel every probe task and wait until none is left running."""
        self._running = False
        tasks = [p.task for p in self._probes.values() if p.task is not None]
        for probe in self._probes.values():
            self._cancel(probe)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("availability_monitor_stopped", cancelled=len(tasks))

    def probe_state(self, source_id: str) -> ProbeState:
        probe = self._probes.get(source_id)
        if probe is None:
            return ProbeState.UNCONFIGURED
        return ProbeState.SCHEDULED if probe.scheduled else ProbeState.STOPPED

    # ── Probing ──────────────────────────────────────────────
    async def check_now(self, source_id: str) -> HealthSnapshot:
        """Run one probe immediately, outside the schedule."""
        probe = self._get(source_id)
        await self._run_probe(probe)
        return self._snapshot(probe)

    async def check_all(self) -> dict[str, HealthSnapshot]:
        enabled = [p for p in self._probes.values() if p.config.enabled]
        await asyncio.gather(*(self._run_probe(p) for p in enabled))
        return {p.config.source_id: self._snapshot(p) for p in enabled}

    async def _probe_loop(self, probe: _Probe) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            try:
                await self._run_probe(probe)
            except Exception:
                logger.exception("probe_loop_error", source=probe.config.source_id)
            await asyncio.sleep(probe.config.interval_s)

    async def _run_probe(self, probe: _Probe) -> bool:
        cfg = probe.config
        request = HttpRequest(
            url=cfg.url,
            method=cfg.method,
            headers=cfg.headers,
            timeout_s=cfg.timeout_s,
            purpose=RequestPurpose.PROBE,
            raise_for_status=False,
        )
        started = time.perf_counter()
        status_code: int | None = None
        try:
            resp = await self._transport.send(request, attempts=1)
        except SourceError as exc:
            latency_ms = (time.perf_counter() - started) * 1000
            error: str | None = str(exc)
        else:
            latency_ms = resp.elapsed_ms
            status_code = resp.status_code
            error = self._validate(cfg, resp.status_code, resp.data)

        record = probe.record
        if error is None:
            change = record.record_success(latency_ms)
        else:
            change = record.record_failure(error, latency_ms)
        status = record.status

        logger.debug(
            "probe_completed",
            source=cfg.source_id,
            success=error is None,
            status=status_code,
            latency_ms=round(latency_ms, 1),
            health=status.value,
        )
        self._publish(
            ProbeCompleted(
                source_id=cfg.source_id,
                success=error is None,
                status_code=status_code,
                latency_ms=latency_ms,
                error=error,
                health_status=status.value,
            )
        )
        if change is AlertChange.RAISED:
            self._raise_alert(probe, error or "")
        elif change is AlertChange.CLEARED:
            logger.info("health_restored", source=cfg.source_id)
            self._publish(
                HealthRestored(
                    source_id=cfg.source_id,
                    source_name=record.name,
                    health_status=status.value,
                )
            )
        return error is None

    @staticmethod
    def _validate(cfg: ProbeConfig, status_code: int, data: Any) -> str | None:
        if status_code not in cfg.expected_status:
            return f"Unexpected status code: {status_code}"
        if cfg.validator is None:
            return None
        try:
            valid = cfg.validator(data)
        except Exception as exc:
            logger.warning("probe_validator_error", source=cfg.source_id, error=str(exc))
            return f"Response validation error: {exc}"
        return None if valid else "Response validation failed"

    def _raise_alert(self, probe: _Probe, error: str) -> None:
        snap = self._snapshot(probe)
        logger.warning(
            "health_alert_raised",
            source=snap.source_id,
            error=error,
            uptime_pct=snap.uptime_pct,
            consecutive_failures=snap.consecutive_failures,
        )
        self._publish(
            HealthAlertRaised(
                source_id=snap.source_id,
                source_name=snap.name,
                error=error,
                uptime_pct=snap.uptime_pct,
                error_rate_pct=float(f"{(snap.error_rate * 100):.2f}"),
                consecutive_failures=snap.consecutive_failures,
                average_latency_ms=snap.average_latency_ms,
                health_status=snap.status.value,
            )
        )

    # ── Introspection ────────────────────────────────────────
    def get_health(self, source_id: str) -> HealthSnapshot | None:
        probe = self._probes.get(source_id)
        return self._snapshot(probe) if probe is not None else None

    def get_all_health(self) -> dict[str, HealthSnapshot]:
        return {sid: self._snapshot(p) for sid, p in self._probes.items()}

    def get_system_summary(self) -> dict[str, Any]:
        snaps = [self._snapshot(p) for p in self._probes.values() if p.config.enabled]
        counts = {status.value: 0 for status in HealthStatus}
        for snap in snaps:
            counts[snap.status.value] += 1
        checked = [s for s in snaps if s.status != HealthStatus.UNKNOWN]

        if not checked:
            overall = HealthStatus.UNKNOWN
        else:
            healthy_share = counts[HealthStatus.HEALTHY.value] / len(checked)
            unhealthy_share = counts[HealthStatus.UNHEALTHY.value] / len(checked)
            if healthy_share >= 0.8 and unhealthy_share == 0:
                overall = HealthStatus.HEALTHY
            elif unhealthy_share <= 0.2:
                overall = HealthStatus.DEGRADED
            else:
                overall = HealthStatus.UNHEALTHY

        return {
            "overall_status": overall.value,
            "total_sources": len(snaps),
            **counts,
            "average_uptime_pct": (
                round(sum(s.uptime_pct for s in checked) / len(checked), 2) if checked else 0.0
            ),
            "average_latency_ms": (
                round(sum(s.average_latency_ms for s in checked) / len(checked), 2)
                if checked
                else 0.0
            ),
            "active_alerts": sum(1 for s in snaps if s.alert_active),
            "total_alerts": sum(s.alert_count for s in snaps),
            "monitoring": self._running,
        }

    def reset_metrics(self, source_id: str | None = None) -> None:
        targets = [source_id] if source_id else list(self._probes)
        for sid in targets:
            probe = self._probes.get(sid)
            if probe is not None:
                probe.record.reset()
        logger.info("health_metrics_reset", sources=targets)

    # ── Internals ────────────────────────────────────────────
    def _get(self, source_id: str) -> _Probe:
        probe = self._probes.get(source_id)
        if probe is None:
            raise SourceNotFoundError(source_id)
        return probe

    def _schedule(self, probe: _Probe) -> None:
        probe.task = asyncio.create_task(
            self._probe_loop(probe), name=f"probe-{probe.config.source_id}"
        )

    @staticmethod
    def _cancel(probe: _Probe) -> None:
        if probe.task is not None and not probe.task.done():
            probe.task.cancel()
        probe.task = None

    def _snapshot(self, probe: _Probe) -> HealthSnapshot:
        return probe.record.snapshot(
            enabled=probe.config.enabled,
            probe_state=self.probe_state(probe.config.source_id).value,
            interval_s=probe.config.interval_s,
        )

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
