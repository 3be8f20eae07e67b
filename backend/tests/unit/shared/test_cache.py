"""Tests for the two-tier response cache."""

from __future__ import annotations

import asyncio

import pytest

from seawater.domain.events import CacheHit, CacheMiss
from seawater.shared.providers.cache import ResponseCache, VolatileStore, build_cache_key

PREFIX = "seawater:climate:"


@pytest.fixture
def volatile_cache(clock) -> ResponseCache:
    return ResponseCache(None, default_ttl_s=3600, clock=clock)


@pytest.fixture
def tiered_cache(durable_store, clock, event_bus) -> ResponseCache:
    return ResponseCache(durable_store, event_bus=event_bus, clock=clock)


# ═══════════════════════════════════════════════════════════════
#  Keys and TTLs
# ═══════════════════════════════════════════════════════════════
class TestKeys:
    def test_key_ignores_query_order(self) -> None:
        a = build_cache_key("flood_risk", {"lat": 29.76, "lon": -95.37}, PREFIX)
        b = build_cache_key("flood_risk", {"lon": -95.37, "lat": 29.76}, PREFIX)
        assert a == b
        assert a.startswith(f"{PREFIX}flood_risk:")

    def test_different_queries_differ(self) -> None:
        a = build_cache_key("flood_risk", {"lat": 29.76}, PREFIX)
        b = build_cache_key("flood_risk", {"lat": 29.77}, PREFIX)
        assert a != b

    def test_ttl_resolved_from_category(self, volatile_cache) -> None:
        assert volatile_cache.ttl_for(volatile_cache.build_key("geocoding", {})) == 2592000
        assert volatile_cache.ttl_for(volatile_cache.build_key("real_time_alerts", {})) == 300
        assert volatile_cache.ttl_for(volatile_cache.build_key("wildfire_risk", {})) == 3600


# ═══════════════════════════════════════════════════════════════
#  Volatile tier
# ═══════════════════════════════════════════════════════════════
class TestVolatileStore:
    def test_evicts_oldest_insertion(self, clock) -> None:
        store = VolatileStore(max_entries=2, clock=clock)
        store.set("a", "1", 60)
        store.set("b", "2", 60)
        store.set("c", "3", 60)
        assert store.get("a") is None
        assert store.get("b") == "2"
        assert len(store) == 2

    def test_expired_entries_are_invisible(self, clock) -> None:
        store = VolatileStore(clock=clock)
        store.set("a", "1", 10)
        clock.advance(10)
        assert store.get("a") is None
        assert store.keys_matching("*") == []

    def test_purge_expired(self, clock) -> None:
        store = VolatileStore(clock=clock)
        store.set("a", "1", 10)
        store.set("b", "2", 100)
        clock.advance(50)
        assert store.purge_expired() == 1
        assert len(store) == 1


# ═══════════════════════════════════════════════════════════════
#  Single-key operations
# ═══════════════════════════════════════════════════════════════
class TestGetSet:
    @pytest.mark.asyncio
    async def test_value_returned_until_ttl(self, volatile_cache, clock) -> None:
        payload = {"risk_score": 7.2, "zones": ["AE", "X"]}
        key = volatile_cache.build_key("property_risk", {"address": "1 Main St"})
        assert await volatile_cache.set(key, payload, ttl_s=60)

        assert await volatile_cache.get(key) == payload
        clock.advance(59)
        assert await volatile_cache.get(key) == payload
        clock.advance(1)
        assert await volatile_cache.get(key) is None

    @pytest.mark.asyncio
    async def test_durable_miss_is_authoritative(self, tiered_cache, durable_store) -> None:
        key = tiered_cache.build_key("flood_risk", {"lat": 1})
        await tiered_cache.set(key, {"score": 3})
        del durable_store.data[key]
        assert await tiered_cache.get(key) is None

    @pytest.mark.asyncio
    async def test_writes_both_tiers_with_category_ttl(self, tiered_cache, durable_store) -> None:
        key = tiered_cache.build_key("weather_data", {"lat": 1})
        await tiered_cache.set(key, [1, 2, 3])
        assert durable_store.ttls[key] == 21600
        durable_store.down = True
        assert await tiered_cache.get(key) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_durable_outage_never_raises(self, tiered_cache, durable_store) -> None:
        durable_store.down = True
        key = tiered_cache.build_key("flood_risk", {"lat": 1})
        assert await tiered_cache.set(key, {"score": 3}) is True
        assert await tiered_cache.get(key) == {"score": 3}
        assert await tiered_cache.exists(key) is True
        assert await tiered_cache.delete(key) is True
        assert await tiered_cache.get(key) is None
        assert tiered_cache.get_stats()["errors"] >= 3

    @pytest.mark.asyncio
    async def test_unserializable_value_is_refused(self, volatile_cache) -> None:
        assert await volatile_cache.set(f"{PREFIX}x:1", {"bad": object()}) is False
        assert await volatile_cache.get(f"{PREFIX}x:1") is None

    @pytest.mark.asyncio
    async def test_extend_pushes_expiry(self, tiered_cache, durable_store, clock) -> None:
        key = tiered_cache.build_key("flood_risk", {"lat": 1})
        await tiered_cache.set(key, {"score": 3}, ttl_s=10)
        assert await tiered_cache.extend(key, 50) is True
        assert durable_store.ttls[key] == 60
        durable_store.down = True
        clock.advance(30)
        assert await tiered_cache.get(key) == {"score": 3}

    @pytest.mark.asyncio
    async def test_hit_and_miss_events(self, tiered_cache, recorded_events) -> None:
        key = tiered_cache.build_key("flood_risk", {"lat": 1})
        await tiered_cache.get(key)
        await tiered_cache.set(key, {"score": 3})
        await tiered_cache.get(key)

        assert isinstance(recorded_events[0], CacheMiss)
        assert isinstance(recorded_events[1], CacheHit)
        assert recorded_events[1].tier == "durable"
        stats = tiered_cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


# ═══════════════════════════════════════════════════════════════
#  Single-flight
# ═══════════════════════════════════════════════════════════════
class TestGetOrCompute:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_producer_run(self, volatile_cache) -> None:
        calls = 0

        async def _producer() -> dict[str, int]:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.02)
            return {"value": 42}

        key = volatile_cache.build_key("property_risk", {"id": 1})
        results = await asyncio.gather(
            *(volatile_cache.get_or_compute(key, _producer) for _ in range(10))
        )
        assert calls == 1
        assert all(r == {"value": 42} for r in results)
        assert await volatile_cache.get(key) == {"value": 42}

    @pytest.mark.asyncio
    async def test_none_result_not_cached(self, volatile_cache) -> None:
        calls = 0

        async def _producer() -> None:
            nonlocal calls
            calls += 1
            return None

        key = volatile_cache.build_key("property_risk", {"id": 2})
        assert await volatile_cache.get_or_compute(key, _producer) is None
        assert await volatile_cache.get_or_compute(key, _producer) is None
        assert calls == 2

    @pytest.mark.asyncio
    async def test_producer_error_reaches_every_waiter(self, volatile_cache) -> None:
        calls = 0

        async def _producer() -> dict[str, int]:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.02)
            raise RuntimeError("upstream down")

        key = volatile_cache.build_key("property_risk", {"id": 3})
        results = await asyncio.gather(
            *(volatile_cache.get_or_compute(key, _producer) for _ in range(3)),
            return_exceptions=True,
        )
        assert calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)

    @pytest.mark.asyncio
    async def test_late_caller_joins_while_durable_read_is_slow(
        self, tiered_cache, durable_store
    ) -> None:
        fast_get = durable_store.get

        async def _slow_get(key: str) -> str | None:
            value = await fast_get(key)
            await asyncio.sleep(0.05)
            return value

        durable_store.get = _slow_get
        calls = 0

        async def _producer() -> dict[str, int]:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"value": 7}

        key = tiered_cache.build_key("property_risk", {"id": 4})

        async def _late() -> dict[str, int]:
            await asyncio.sleep(0.03)
            return await tiered_cache.get_or_compute(key, _producer)

        first, second = await asyncio.gather(
            tiered_cache.get_or_compute(key, _producer), _late()
        )
        assert calls == 1
        assert first == second == {"value": 7}


# ═══════════════════════════════════════════════════════════════
#  Batch and pattern operations
# ═══════════════════════════════════════════════════════════════
class TestBatch:
    @pytest.mark.asyncio
    async def test_set_and_get_multiple_use_one_round_trip(
        self, tiered_cache, durable_store
    ) -> None:
        keys = [tiered_cache.build_key("flood_risk", {"id": i}) for i in range(3)]
        stored = await tiered_cache.set_multiple({keys[0]: {"a": 1}, keys[1]: {"b": 2}})
        assert stored == 2

        result = await tiered_cache.get_multiple(keys)
        assert result == {keys[0]: {"a": 1}, keys[1]: {"b": 2}, keys[2]: None}
        assert durable_store.calls.count("set_many") == 1
        assert durable_store.calls.count("get_many") == 1

    @pytest.mark.asyncio
    async def test_get_multiple_falls_back_to_volatile(self, tiered_cache, durable_store) -> None:
        key = tiered_cache.build_key("flood_risk", {"id": 1})
        await tiered_cache.set(key, {"a": 1})
        durable_store.down = True
        assert await tiered_cache.get_multiple([key]) == {key: {"a": 1}}

    @pytest.mark.asyncio
    async def test_clear_by_pattern_hits_both_tiers(self, tiered_cache, durable_store) -> None:
        flood = tiered_cache.build_key("flood_risk", {"id": 1})
        quake = tiered_cache.build_key("earthquake_risk", {"id": 1})
        await tiered_cache.set(flood, {"a": 1})
        await tiered_cache.set(quake, {"b": 2})

        assert await tiered_cache.clear_by_pattern("flood_risk:*") == 1
        assert flood not in durable_store.data
        durable_store.down = True
        assert await tiered_cache.get(flood) is None
        assert await tiered_cache.get(quake) == {"b": 2}

    @pytest.mark.asyncio
    async def test_close_closes_durable_tier(self, tiered_cache, durable_store) -> None:
        assert await tiered_cache.durable_available() is True
        await tiered_cache.close()
        assert "close" in durable_store.calls
