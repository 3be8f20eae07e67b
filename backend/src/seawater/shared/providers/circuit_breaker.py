"""Circuit breaker — stops sending traffic to a provider that keeps failing.

State machine:
    CLOSED    → (N consecutive failures within the window) → OPEN
    OPEN      → (cooldown expires)                         → HALF_OPEN
    HALF_OPEN → (trial succeeds)                           → CLOSED
    HALF_OPEN → (trial fails)                              → OPEN

Only the outcome callbacks of a completed call mutate the failure count.
"""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from seawater.domain.events import CircuitStateChanged
from seawater.ports.outbound import EventBusPort

logger = structlog.get_logger(__name__)


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    state: CircuitState
    consecutive_failures: int
    retry_after_s: float | None


class CircuitBreaker:
    """Per-provider circuit breaker admitting a single half-open trial."""

    def __init__(
        self,
        source_id: str,
        *,
        failure_threshold: int = 5,
        failure_window_s: float = 60.0,
        cooldown_s: float = 300.0,
        event_bus: EventBusPort | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source_id = source_id
        self._failure_threshold = failure_threshold
        self._failure_window = failure_window_s
        self._cooldown = cooldown_s
        self._event_bus = event_bus
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float | None = None
        self._next_attempt_time: float | None = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def state(self) -> CircuitState:
        with self._lock:
            change = self._maybe_transition_to_half_open()
            state = self._state
        self._publish(change)
        return state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def allow_request(self) -> bool:
        """Check whether a call may go out now, claiming the half-open trial."""
        with self._lock:
            change = self._maybe_transition_to_half_open()

            if self._state == CircuitState.CLOSED:
                allowed = True
            elif self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                allowed = True
            else:
                allowed = False
        self._publish(change)
        return allowed

    def release_trial(self) -> None:
        """Give back a claimed trial when the call never reached the provider."""
        with self._lock:
            self._trial_in_flight = False

    def record_success(self) -> None:
        """Record a successful call; closes a half-open circuit."""
        with self._lock:
            prev = self._state
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._next_attempt_time = None
            self._trial_in_flight = False
            change = None
            if prev != CircuitState.CLOSED:
                logger.info(
                    "circuit_breaker_closed",
                    source=self._source_id,
                    previous_state=prev.value,
                )
                change = self._change(prev, "trial_succeeded")
        self._publish(change)

    def record_failure(self) -> None:
        """Record a failed call; trips the circuit at the threshold."""
        with self._lock:
            now = self._clock()
            if (
                self._state == CircuitState.CLOSED
                and self._last_failure_time is not None
                and now - self._last_failure_time > self._failure_window
            ):
                self._consecutive_failures = 0
            self._consecutive_failures += 1
            self._last_failure_time = now
            self._trial_in_flight = False

            prev = self._state
            change = None
            if self._state == CircuitState.HALF_OPEN:
                self._open(now)
                logger.warning(
                    "circuit_breaker_reopened",
                    source=self._source_id,
                    failures=self._consecutive_failures,
                )
                change = self._change(prev, "trial_failed")
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._failure_threshold
            ):
                self._open(now)
                logger.warning(
                    "circuit_breaker_opened",
                    source=self._source_id,
                    failures=self._consecutive_failures,
                    cooldown_s=self._cooldown,
                )
                change = self._change(prev, "failure_threshold")
        self._publish(change)

    def reset(self) -> None:
        """Force the circuit to CLOSED (admin override). No-op when already clean."""
        with self._lock:
            if self._state == CircuitState.CLOSED and self._consecutive_failures == 0:
                return
            prev = self._state
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._last_failure_time = None
            self._next_attempt_time = None
            self._trial_in_flight = False
            logger.info("circuit_breaker_force_reset", source=self._source_id)
            change = self._change(prev, "admin_reset") if prev != CircuitState.CLOSED else None
        self._publish(change)

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            change = self._maybe_transition_to_half_open()
            retry_after = None
            if self._state == CircuitState.OPEN and self._next_attempt_time is not None:
                retry_after = max(0.0, self._next_attempt_time - self._clock())
            snap = BreakerSnapshot(self._state, self._consecutive_failures, retry_after)
        self._publish(change)
        return snap

    # ── Internals ────────────────────────────────────────────
    def _open(self, now: float) -> None:
        """Caller must hold lock."""
        self._state = CircuitState.OPEN
        self._next_attempt_time = now + self._cooldown

    def _maybe_transition_to_half_open(self) -> CircuitStateChanged | None:
        """Caller must hold lock."""
        if self._state != CircuitState.OPEN or self._next_attempt_time is None:
            return None
        now = self._clock()
        if now < self._next_attempt_time:
            return None
        self._state = CircuitState.HALF_OPEN
        self._trial_in_flight = False
        logger.info(
            "circuit_breaker_half_open",
            source=self._source_id,
            failures=self._consecutive_failures,
        )
        return self._change(CircuitState.OPEN, "cooldown_elapsed")

    def _change(self, prev: CircuitState, reason: str) -> CircuitStateChanged:
        """Caller must hold lock."""
        retry_after = None
        if self._state == CircuitState.OPEN and self._next_attempt_time is not None:
            retry_after = self._cooldown
        return CircuitStateChanged(
            source_id=self._source_id,
            previous_state=prev.value,
            state=self._state.value,
            consecutive_failures=self._consecutive_failures,
            retry_after_s=retry_after,
            reason=reason,
        )

    def _publish(self, change: CircuitStateChanged | None) -> None:
        if change is not None and self._event_bus is not None:
            self._event_bus.publish(change)
