"""Probe-derived health record for a single provider.

Keeps a rolling window of the most recent probe outcomes and latencies and
derives a status from them. The record also gates alerting: an alert is
raised once on entering ``unhealthy`` and cleared once on returning to
``healthy``, never repeated while the state persists.
"""

from __future__ import annotations

import enum
import threading
import time
from collections import deque
from dataclasses import dataclass

from seawater.shared.providers.types import HealthSnapshot, HealthStatus


class AlertChange(str, enum.Enum):
    RAISED = "raised"
    CLEARED = "cleared"


@dataclass
class _Outcome:
    success: bool
    latency_ms: float


class HealthRecord:
    """Thread-safe rolling health record fed only by probe results."""

    def __init__(
        self,
        source_id: str,
        name: str = "",
        *,
        window_size: int = 20,
        latency_window: int = 100,
        unhealthy_error_rate: float = 0.5,
        degraded_error_rate: float = 0.15,
        unhealthy_consecutive: int = 3,
        degraded_consecutive: int = 2,
        latency_threshold_ms: float = 10_000.0,
        alert_on_failure: bool = True,
    ) -> None:
        self._source_id = source_id
        self._name = name or source_id
        self._unhealthy_rate = unhealthy_error_rate
        self._degraded_rate = degraded_error_rate
        self._unhealthy_consecutive = unhealthy_consecutive
        self._degraded_consecutive = degraded_consecutive
        self._latency_thr = latency_threshold_ms
        self.alert_on_failure = alert_on_failure

        self._window: deque[_Outcome] = deque(maxlen=window_size)
        self._latencies: deque[float] = deque(maxlen=latency_window)
        self._lock = threading.Lock()

        self._total_checks = 0
        self._successful_checks = 0
        self._failed_checks = 0
        self._consecutive_failures = 0
        self._last_success: float | None = None
        self._last_failure: float | None = None
        self._last_error: str | None = None
        self._alert_active = False
        self._alert_count = 0

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def name(self) -> str:
        return self._name

    # ── Recording ────────────────────────────────────────────
    def record_success(self, latency_ms: float) -> AlertChange | None:
        with self._lock:
            self._window.append(_Outcome(True, latency_ms))
            self._latencies.append(latency_ms)
            self._total_checks += 1
            self._successful_checks += 1
            self._consecutive_failures = 0
            self._last_success = time.time()
            return self._gate_alert()

    def record_failure(self, error: str, latency_ms: float = 0.0) -> AlertChange | None:
        with self._lock:
            self._window.append(_Outcome(False, latency_ms))
            if latency_ms > 0:
                self._latencies.append(latency_ms)
            self._total_checks += 1
            self._failed_checks += 1
            self._consecutive_failures += 1
            self._last_failure = time.time()
            self._last_error = error
            return self._gate_alert()

    def reset(self) -> None:
        with self._lock:
            self._window.clear()
            self._latencies.clear()
            self._total_checks = 0
            self._successful_checks = 0
            self._failed_checks = 0
            self._consecutive_failures = 0
            self._last_success = None
            self._last_failure = None
            self._last_error = None
            self._alert_active = False

    # ── Status derivation ────────────────────────────────────
    @property
    def status(self) -> HealthStatus:
        with self._lock:
            return self._derive_status()

    @property
    def alert_active(self) -> bool:
        return self._alert_active

    def snapshot(
        self, *, enabled: bool = True, probe_state: str = "unconfigured", interval_s: float = 0.0
    ) -> HealthSnapshot:
        with self._lock:
            total = self._total_checks
            return HealthSnapshot(
                source_id=self._source_id,
                name=self._name,
                status=self._derive_status(),
                enabled=enabled,
                probe_state=probe_state,
                total_checks=total,
                successful_checks=self._successful_checks,
                failed_checks=self._failed_checks,
                consecutive_failures=self._consecutive_failures,
                uptime_pct=(
                    float(f"{(self._successful_checks / total * 100):.2f}") if total else 100.0
                ),
                error_rate=float(f"{self._error_rate():.4f}"),
                average_latency_ms=float(f"{self._mean_latency():.2f}"),
                last_success=self._last_success,
                last_failure=self._last_failure,
                last_error=self._last_error,
                alert_active=self._alert_active,
                alert_count=self._alert_count,
                interval_s=interval_s,
            )

    # ── Internals ────────────────────────────────────────────
    def _error_rate(self) -> float:
        """Failure share of the rolling window (caller holds lock)."""
        if not self._window:
            return 0.0
        return sum(1 for o in self._window if not o.success) / len(self._window)

    def _mean_latency(self) -> float:
        if not self._latencies:
            return 0.0
        return sum(self._latencies) / len(self._latencies)

    def _derive_status(self) -> HealthStatus:
        """Caller holds lock."""
        if self._total_checks == 0:
            return HealthStatus.UNKNOWN
        rate = self._error_rate()
        if (
            self._consecutive_failures >= self._unhealthy_consecutive
            or rate > self._unhealthy_rate
        ):
            return HealthStatus.UNHEALTHY
        if (
            self._consecutive_failures >= self._degraded_consecutive
            or rate > self._degraded_rate
            or self._mean_latency() > self._latency_thr
        ):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def _gate_alert(self) -> AlertChange | None:
        """Caller holds lock."""
        status = self._derive_status()
        if status == HealthStatus.UNHEALTHY and not self._alert_active:
            if not self.alert_on_failure:
                return None
            self._alert_active = True
            self._alert_count += 1
            return AlertChange.RAISED
        if status == HealthStatus.HEALTHY and self._alert_active:
            self._alert_active = False
            return AlertChange.CLEARED
        return None
