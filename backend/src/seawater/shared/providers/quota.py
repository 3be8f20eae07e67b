"""Quota governor — per-provider token buckets, concurrency and cost ceilings.

Buckets refill lazily on every check: tokens added are proportional to the
elapsed time (``capacity / window`` per second) and never exceed capacity.
A reservation debits tokens, takes a concurrency slot and (for priced
providers) accrues today's cost; the caller must ``release`` the slot on
every exit path.
"""

from __future__ import annotations

import asyncio
import enum
import heapq
import itertools
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar

import structlog

from seawater.domain.events import QuotaDenied
from seawater.ports.outbound import EventBusPort
from seawater.shared.providers.types import QuotaStatus, SourceConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class DenialReason(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    CONCURRENCY_LIMITED = "concurrency_limited"
    COST_LIMITED = "cost_limited"


class RequestPriority(int, enum.Enum):
    """Queue rank; lower drains first."""

    HIGH = 0
    NORMAL = 1
    LOW = 2


@dataclass(frozen=True)
class QuotaLimits:
    capacity: int
    window_s: float
    concurrency_ceiling: int = 10
    unit_price: float = 0.0
    daily_cost_ceiling: float | None = None

    @classmethod
    def from_source(cls, config: SourceConfig) -> QuotaLimits:
        return cls(
            capacity=config.rate_limit,
            window_s=config.rate_window_s,
            concurrency_ceiling=config.concurrency_ceiling,
            unit_price=config.cost_per_call,
            daily_cost_ceiling=config.daily_cost_ceiling,
        )


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: DenialReason | None = None
    retry_after_s: float = 0.0
    tokens_remaining: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_utc_midnight(now: datetime) -> float:
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (tomorrow - now).total_seconds()


class _TokenBucket:
    """State for one provider. All methods take ``_lock`` themselves."""

    def __init__(
        self,
        source_id: str,
        limits: QuotaLimits,
        now: float,
        today: date,
        warning_threshold: float,
    ) -> None:
        self.source_id = source_id
        self.limits = limits
        self.warning_threshold = warning_threshold
        self.tokens = float(limits.capacity)
        self.last_refill = now
        self.active_requests = 0
        self.today_cost = 0.0
        self.cost_day = today
        self.warning_emitted = False
        self._lock = threading.Lock()

    def try_reserve(self, cost: int, now: float, utc_now: datetime) -> QuotaDecision:
        limits = self.limits
        with self._lock:
            self._refill(now)
            self._roll_day(utc_now.date())

            if self.tokens < cost:
                deficit = cost - self.tokens
                rate = limits.capacity / limits.window_s if limits.window_s > 0 else 0.0
                wait = deficit / rate if rate > 0 else limits.window_s
                return QuotaDecision(False, DenialReason.RATE_LIMITED, wait, self.tokens)

            if self.active_requests >= limits.concurrency_ceiling:
                return QuotaDecision(False, DenialReason.CONCURRENCY_LIMITED, 1.0, self.tokens)

            price = cost * limits.unit_price
            if (
                limits.daily_cost_ceiling is not None
                and self.today_cost + price > limits.daily_cost_ceiling
            ):
                return QuotaDecision(
                    False,
                    DenialReason.COST_LIMITED,
                    seconds_until_utc_midnight(utc_now),
                    self.tokens,
                )

            self.tokens -= cost
            self.active_requests += 1
            self.today_cost += price
            self._check_warning()
            return QuotaDecision(True, tokens_remaining=self.tokens)

    def release(self) -> None:
        with self._lock:
            if self.active_requests > 0:
                self.active_requests -= 1

    def refresh(self, now: float, today: date) -> None:
        with self._lock:
            self._refill(now)
            self._roll_day(today)

    def reset(self, now: float) -> None:
        # In-flight reservations stay counted; their callers still release.
        with self._lock:
            self.tokens = float(self.limits.capacity)
            self.last_refill = now
            self.today_cost = 0.0
            self.warning_emitted = False

    # ── Internals ────────────────────────────────────────────
    def _refill(self, now: float) -> None:
        """Caller holds lock."""
        elapsed = max(0.0, now - self.last_refill)
        if elapsed and self.limits.window_s > 0:
            added = elapsed * (self.limits.capacity / self.limits.window_s)
            self.tokens = min(float(self.limits.capacity), self.tokens + added)
        self.last_refill = now
        capacity = self.limits.capacity
        if capacity and (capacity - self.tokens) / capacity < self.warning_threshold:
            self.warning_emitted = False

    def _roll_day(self, today: date) -> None:
        """Caller holds lock."""
        if today != self.cost_day:
            if self.today_cost:
                logger.info(
                    "quota_cost_day_rolled",
                    source=self.source_id,
                    previous_day=self.cost_day.isoformat(),
                    spent=round(self.today_cost, 4),
                )
            self.cost_day = today
            self.today_cost = 0.0

    def _check_warning(self) -> None:
        """Early warning when approaching the limit. Caller holds lock."""
        capacity = self.limits.capacity
        if capacity <= 0 or self.warning_emitted:
            return
        usage = (capacity - self.tokens) / capacity
        if usage >= self.warning_threshold:
            self.warning_emitted = True
            logger.warning(
                "quota_warning",
                source=self.source_id,
                usage_pct=float(f"{(usage * 100):.1f}"),
                tokens_available=round(self.tokens, 2),
                capacity=capacity,
            )


class QuotaGovernor:
    """Token buckets for every registered provider, plus a priority queue."""

    def __init__(
        self,
        *,
        event_bus: EventBusPort | None = None,
        poll_interval_s: float = 0.1,
        warning_threshold: float = 0.90,
        clock: Callable[[], float] = time.monotonic,
        utc_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._event_bus = event_bus
        self._poll_interval = poll_interval_s
        self._warning_thr = warning_threshold
        self._clock = clock
        self._utc_clock = utc_clock

        self._buckets: dict[str, _TokenBucket] = {}
        self._queues: dict[str, list[tuple[int, int, int, asyncio.Future[QuotaDecision]]]] = {}
        self._drainers: dict[str, asyncio.Task[None]] = {}
        self._seq = itertools.count()

    def register(self, source_id: str, limits: QuotaLimits) -> None:
        self._buckets[source_id] = _TokenBucket(
            source_id, limits, self._clock(), self._utc_clock().date(), self._warning_thr
        )
        logger.debug(
            "quota_registered",
            source=source_id,
            capacity=limits.capacity,
            window_s=limits.window_s,
            concurrency=limits.concurrency_ceiling,
        )

    def is_registered(self, source_id: str) -> bool:
        return source_id in self._buckets

    # ── Reservation ──────────────────────────────────────────
    def check_and_reserve(self, source_id: str, cost: int = 1) -> QuotaDecision:
        """Reserve capacity for one call, or explain why not."""
        decision = self._try_reserve(source_id, cost)
        if not decision.allowed:
            bucket = self._buckets[source_id]
            reason = decision.reason.value if decision.reason else ""
            logger.debug(
                "quota_denied",
                source=source_id,
                reason=reason,
                retry_after_s=round(decision.retry_after_s, 3),
            )
            if self._event_bus is not None:
                self._event_bus.publish(
                    QuotaDenied(
                        source_id=source_id,
                        reason=reason,
                        retry_after_s=decision.retry_after_s,
                        tokens_available=decision.tokens_remaining,
                        active_requests=bucket.active_requests,
                    )
                )
        return decision

    def release(self, source_id: str) -> None:
        bucket = self._buckets.get(source_id)
        if bucket is not None:
            bucket.release()

    def _try_reserve(self, source_id: str, cost: int) -> QuotaDecision:
        bucket = self._buckets.get(source_id)
        if bucket is None:
            logger.debug("quota_unknown_source", source=source_id)
            return QuotaDecision(True)
        return bucket.try_reserve(cost, self._clock(), self._utc_clock())

    # ── Queued admission ─────────────────────────────────────
    async def acquire(
        self,
        source_id: str,
        cost: int = 1,
        priority: RequestPriority = RequestPriority.NORMAL,
    ) -> QuotaDecision:
        """Wait until a reservation is admitted. Cancel the awaiting task to give up."""
        queue = self._queues.setdefault(source_id, [])
        if not queue:
            decision = self._try_reserve(source_id, cost)
            if decision.allowed:
                return decision

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[QuotaDecision] = loop.create_future()
        heapq.heappush(queue, (int(priority), next(self._seq), cost, fut))
        logger.debug(
            "quota_request_queued",
            source=source_id,
            priority=priority.name.lower(),
            queue_length=len(queue),
        )
        if source_id not in self._drainers:
            self._drainers[source_id] = asyncio.create_task(
                self._drain(source_id), name=f"quota-drain-{source_id}"
            )

        try:
            return await fut
        except asyncio.CancelledError:
            # Admitted just before the cancellation landed: hand the slot back.
            if fut.done() and not fut.cancelled():
                self.release(source_id)
            raise

    async def run_queued(
        self,
        source_id: str,
        fn: Callable[[], Awaitable[T]],
        priority: RequestPriority = RequestPriority.NORMAL,
        cost: int = 1,
    ) -> T:
        await self.acquire(source_id, cost, priority)
        try:
            return await fn()
        finally:
            self.release(source_id)

    def queue_length(self, source_id: str) -> int:
        return sum(1 for *_, fut in self._queues.get(source_id, ()) if not fut.done())

    async def _drain(self, source_id: str) -> None:
        queue = self._queues[source_id]
        try:
            while queue:
                _, _, cost, fut = queue[0]
                if fut.done():
                    heapq.heappop(queue)
                    continue
                decision = self._try_reserve(source_id, cost)
                if decision.allowed:
                    heapq.heappop(queue)
                    fut.set_result(decision)
                    continue
                await asyncio.sleep(self._poll_interval)
        finally:
            self._drainers.pop(source_id, None)

    # ── Introspection & admin ────────────────────────────────
    def get_status(self, source_id: str) -> QuotaStatus | None:
        bucket = self._buckets.get(source_id)
        if bucket is None:
            return None
        bucket.refresh(self._clock(), self._utc_clock().date())
        limits = bucket.limits
        used = limits.capacity - bucket.tokens
        return QuotaStatus(
            source_id=source_id,
            tokens_available=round(bucket.tokens, 3),
            capacity=limits.capacity,
            active_requests=bucket.active_requests,
            concurrency_ceiling=limits.concurrency_ceiling,
            queue_length=self.queue_length(source_id),
            today_cost=round(bucket.today_cost, 4),
            daily_cost_ceiling=limits.daily_cost_ceiling,
            utilization_pct=(
                float(f"{(used / limits.capacity * 100):.1f}") if limits.capacity else 0.0
            ),
        )

    def get_all_status(self) -> dict[str, QuotaStatus]:
        return {
            sid: status
            for sid in list(self._buckets)
            if (status := self.get_status(sid)) is not None
        }

    def reset(self, source_id: str | None = None) -> None:
        """Refill buckets and clear today's cost (admin override)."""
        targets = [source_id] if source_id else list(self._buckets)
        now = self._clock()
        for sid in targets:
            bucket = self._buckets.get(sid)
            if bucket is not None:
                bucket.reset(now)
                logger.info("quota_reset", source=sid)

    def roll_cost_days(self) -> None:
        now = self._clock()
        today = self._utc_clock().date()
        for bucket in list(self._buckets.values()):
            bucket.refresh(now, today)

    async def stop(self) -> None:
        """Cancel drain tasks and every waiter still queued."""
        tasks = list(self._drainers.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for queue in self._queues.values():
            for *_, fut in queue:
                if not fut.done():
                    fut.cancel()
            queue.clear()
        self._drainers.clear()
