"""Tests for the quota governor: token buckets, concurrency, cost and queueing."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from seawater.domain.events import QuotaDenied
from seawater.shared.providers.quota import (
    DenialReason,
    QuotaGovernor,
    QuotaLimits,
    RequestPriority,
    seconds_until_utc_midnight,
)
from seawater.shared.providers.types import SourceConfig


class _UtcClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def utc_clock() -> _UtcClock:
    return _UtcClock(datetime(2026, 3, 14, 23, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def governor(clock, utc_clock, event_bus) -> QuotaGovernor:
    return QuotaGovernor(event_bus=event_bus, clock=clock, utc_clock=utc_clock)


# ═══════════════════════════════════════════════════════════════
#  Token bucket
# ═══════════════════════════════════════════════════════════════
class TestTokenBucket:
    def test_refills_in_proportion_to_elapsed_time(self, governor, clock) -> None:
        governor.register("noaa", QuotaLimits(capacity=10, window_s=60))
        for _ in range(10):
            assert governor.check_and_reserve("noaa").allowed
            governor.release("noaa")
        assert governor.get_status("noaa").tokens_available == 0

        clock.advance(30)
        assert governor.get_status("noaa").tokens_available == pytest.approx(5.0)

    def test_never_exceeds_capacity(self, governor, clock) -> None:
        governor.register("noaa", QuotaLimits(capacity=10, window_s=60))
        governor.check_and_reserve("noaa")
        governor.release("noaa")
        clock.advance(10_000)
        assert governor.get_status("noaa").tokens_available == 10

    def test_empty_bucket_denies_with_refill_wait(self, governor) -> None:
        governor.register("noaa", QuotaLimits(capacity=10, window_s=60))
        for _ in range(10):
            governor.check_and_reserve("noaa")
            governor.release("noaa")

        decision = governor.check_and_reserve("noaa")
        assert decision.allowed is False
        assert decision.reason == DenialReason.RATE_LIMITED
        assert decision.retry_after_s == pytest.approx(6.0)

    def test_unknown_source_is_admitted(self, governor) -> None:
        assert governor.check_and_reserve("nobody").allowed is True
        governor.release("nobody")

    def test_limits_from_source_config(self) -> None:
        config = SourceConfig(
            "firststreet",
            categories=("flood_risk",),
            rate_limit=100,
            rate_window_s=3600,
            concurrency_ceiling=5,
            cost_per_call=0.1,
            daily_cost_ceiling=50.0,
        )
        limits = QuotaLimits.from_source(config)
        assert limits == QuotaLimits(100, 3600, 5, 0.1, 50.0)


# ═══════════════════════════════════════════════════════════════
#  Concurrency ceiling
# ═══════════════════════════════════════════════════════════════
class TestConcurrency:
    def test_ceiling_denies_extra_in_flight_call(self, governor) -> None:
        governor.register(
            "usgs", QuotaLimits(capacity=1000, window_s=3600, concurrency_ceiling=100)
        )
        for _ in range(100):
            assert governor.check_and_reserve("usgs").allowed

        decision = governor.check_and_reserve("usgs")
        assert decision.allowed is False
        assert decision.reason == DenialReason.CONCURRENCY_LIMITED
        assert decision.retry_after_s == 1.0

        governor.release("usgs")
        assert governor.check_and_reserve("usgs").allowed

    def test_denial_consumes_nothing(self, governor) -> None:
        governor.register("usgs", QuotaLimits(capacity=10, window_s=3600, concurrency_ceiling=1))
        governor.check_and_reserve("usgs")
        governor.check_and_reserve("usgs")
        status = governor.get_status("usgs")
        assert status.active_requests == 1
        assert status.tokens_available == pytest.approx(9.0)

    def test_release_never_goes_negative(self, governor) -> None:
        governor.register("usgs", QuotaLimits(capacity=10, window_s=60))
        governor.release("usgs")
        governor.release("usgs")
        assert governor.get_status("usgs").active_requests == 0


# ═══════════════════════════════════════════════════════════════
#  Daily cost ceiling
# ═══════════════════════════════════════════════════════════════
class TestCostCeiling:
    def test_cost_ceiling_waits_until_utc_midnight(self, governor) -> None:
        governor.register(
            "climatecheck",
            QuotaLimits(capacity=100, window_s=60, unit_price=1.0, daily_cost_ceiling=2.0),
        )
        for _ in range(2):
            assert governor.check_and_reserve("climatecheck").allowed
            governor.release("climatecheck")

        decision = governor.check_and_reserve("climatecheck")
        assert decision.reason == DenialReason.COST_LIMITED
        assert decision.retry_after_s == pytest.approx(3600.0)
        assert governor.get_status("climatecheck").today_cost == 2.0

    def test_cost_resets_on_new_utc_day(self, governor, utc_clock) -> None:
        governor.register(
            "climatecheck",
            QuotaLimits(capacity=100, window_s=60, unit_price=1.0, daily_cost_ceiling=1.0),
        )
        governor.check_and_reserve("climatecheck")
        governor.release("climatecheck")
        assert not governor.check_and_reserve("climatecheck").allowed

        utc_clock.now = datetime(2026, 3, 15, 0, 0, 1, tzinfo=timezone.utc)
        assert governor.check_and_reserve("climatecheck").allowed

    def test_seconds_until_midnight(self) -> None:
        now = datetime(2026, 1, 1, 12, 30, 0, tzinfo=timezone.utc)
        assert seconds_until_utc_midnight(now) == 11.5 * 3600


# ═══════════════════════════════════════════════════════════════
#  Notifications and admin
# ═══════════════════════════════════════════════════════════════
class TestDenialEvents:
    def test_denial_is_published(self, governor, recorded_events) -> None:
        governor.register("usgs", QuotaLimits(capacity=1, window_s=60))
        governor.check_and_reserve("usgs")
        governor.check_and_reserve("usgs")

        denials = [e for e in recorded_events if isinstance(e, QuotaDenied)]
        assert len(denials) == 1
        assert denials[0].source_id == "usgs"
        assert denials[0].reason == "rate_limited"
        assert denials[0].active_requests == 1

    def test_reset_refills_but_keeps_in_flight(self, governor) -> None:
        governor.register("usgs", QuotaLimits(capacity=2, window_s=3600))
        governor.check_and_reserve("usgs")
        governor.check_and_reserve("usgs")
        governor.reset("usgs")
        status = governor.get_status("usgs")
        assert status.tokens_available == 2
        assert status.active_requests == 2

    def test_utilization_reported(self, governor) -> None:
        governor.register("usgs", QuotaLimits(capacity=4, window_s=3600))
        governor.check_and_reserve("usgs")
        assert governor.get_status("usgs").utilization_pct == 25.0
        assert set(governor.get_all_status()) == {"usgs"}
        assert governor.get_status("nobody") is None


# ═══════════════════════════════════════════════════════════════
#  Priority queue
# ═══════════════════════════════════════════════════════════════
class TestQueuedAdmission:
    @pytest.mark.asyncio
    async def test_immediate_admission_when_capacity_available(self) -> None:
        governor = QuotaGovernor(poll_interval_s=0.01)
        governor.register("usgs", QuotaLimits(capacity=10, window_s=1))
        decision = await governor.acquire("usgs")
        assert decision.allowed
        assert governor.get_status("usgs").active_requests == 1

    @pytest.mark.asyncio
    async def test_high_priority_drains_first(self) -> None:
        governor = QuotaGovernor(poll_interval_s=0.01)
        governor.register("usgs", QuotaLimits(capacity=100, window_s=1, concurrency_ceiling=1))
        assert governor.check_and_reserve("usgs").allowed
        order: list[str] = []

        async def _waiter(name: str, priority: RequestPriority) -> None:
            await governor.acquire("usgs", priority=priority)
            order.append(name)

        low = asyncio.create_task(_waiter("low", RequestPriority.LOW))
        await asyncio.sleep(0)
        high = asyncio.create_task(_waiter("high", RequestPriority.HIGH))
        await asyncio.sleep(0.03)
        assert order == []
        assert governor.queue_length("usgs") == 2

        governor.release("usgs")
        await asyncio.wait_for(high, timeout=1.0)
        assert order == ["high"]

        governor.release("usgs")
        await asyncio.wait_for(low, timeout=1.0)
        assert order == ["high", "low"]
        await governor.stop()

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self) -> None:
        governor = QuotaGovernor(poll_interval_s=0.01)
        governor.register("usgs", QuotaLimits(capacity=100, window_s=1, concurrency_ceiling=1))
        governor.check_and_reserve("usgs")

        waiter = asyncio.create_task(governor.acquire("usgs"))
        await asyncio.sleep(0.02)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        await asyncio.sleep(0.03)

        assert governor.queue_length("usgs") == 0
        governor.release("usgs")
        assert governor.get_status("usgs").active_requests == 0
        await governor.stop()

    @pytest.mark.asyncio
    async def test_run_queued_releases_slot(self) -> None:
        governor = QuotaGovernor(poll_interval_s=0.01)
        governor.register("usgs", QuotaLimits(capacity=10, window_s=1, concurrency_ceiling=1))

        async def _call() -> str:
            assert governor.get_status("usgs").active_requests == 1
            return "ok"

        assert await governor.run_queued("usgs", _call) == "ok"
        assert governor.get_status("usgs").active_requests == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_waiters(self) -> None:
        governor = QuotaGovernor(poll_interval_s=0.01)
        governor.register("usgs", QuotaLimits(capacity=100, window_s=1, concurrency_ceiling=1))
        governor.check_and_reserve("usgs")

        waiter = asyncio.create_task(governor.acquire("usgs"))
        await asyncio.sleep(0.02)
        await governor.stop()
        with pytest.raises(asyncio.CancelledError):
            await waiter
