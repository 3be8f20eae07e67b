"""Shared test fixtures."""

from __future__ import annotations

import fnmatch
import os
import sys
from typing import Sequence

import pytest

# Add src to path so imports work
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from seawater.adapters.outbound.event_bus import ALL_EVENTS, InProcessEventBus
from seawater.domain.events import DomainEvent
from seawater.domain.exceptions import DurableStoreUnavailableError
from seawater.ports.outbound import DurableStorePort
from seawater.shared.providers.types import SourceConfig, SourceType


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemoryDurableStore(DurableStorePort):
    """Dict-backed durable tier; ``down`` makes every call fail like a lost connection."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False
        self.calls: list[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.down:
            raise DurableStoreUnavailableError(operation, "connection refused")

    async def get(self, key: str) -> str | None:
        self._check("get")
        return self.data.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check("set")
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def keys_matching(self, pattern: str) -> list[str]:
        self._check("keys")
        return [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    async def get_many(self, keys: Sequence[str]) -> list[str | None]:
        self._check("get_many")
        return [self.data.get(k) for k in keys]

    async def set_many(self, items: Sequence[tuple[str, str, int]]) -> None:
        self._check("set_many")
        for key, value, ttl in items:
            self.data[key] = value
            self.ttls[key] = ttl

    async def ttl(self, key: str) -> int:
        self._check("ttl")
        return self.ttls.get(key, -2)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        self._check("expire")
        if key in self.data:
            self.ttls[key] = ttl_seconds

    async def ping(self) -> bool:
        return not self.down

    async def close(self) -> None:
        self.calls.append("close")


# ═══════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event_bus() -> InProcessEventBus:
    return InProcessEventBus()


@pytest.fixture
def recorded_events(event_bus: InProcessEventBus) -> list[DomainEvent]:
    events: list[DomainEvent] = []
    event_bus.subscribe(ALL_EVENTS, events.append)
    return events


@pytest.fixture
def durable_store() -> MemoryDurableStore:
    return MemoryDurableStore()


@pytest.fixture
def usgs_config() -> SourceConfig:
    return SourceConfig(
        source_id="USGS",
        name="USGS Earthquake Hazards",
        categories=("earthquake_risk", "real_time_alerts"),
        source_type=SourceType.GOVERNMENT,
        base_url="https://usgs.test/fdsnws",
        priority=1,
        reliability=0.98,
        retry_budget=1,
    )


@pytest.fixture
def fema_config() -> SourceConfig:
    return SourceConfig(
        source_id="FEMA",
        name="FEMA National Risk Index",
        categories=("earthquake_risk", "flood_risk"),
        source_type=SourceType.GOVERNMENT,
        base_url="https://fema.test/nri",
        priority=2,
        reliability=0.95,
        retry_budget=1,
    )
