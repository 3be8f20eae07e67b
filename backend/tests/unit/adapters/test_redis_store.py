"""Tests for the Redis durable tier adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as redis

from seawater.adapters.outbound.cache import RedisDurableStore
from seawater.domain.exceptions import DurableStoreUnavailableError


@pytest.fixture
def client() -> AsyncMock:
    return AsyncMock(spec=redis.Redis)


class TestRedisDurableStore:
    @pytest.mark.asyncio
    async def test_errors_surface_as_unavailable(self, client) -> None:
        client.get.side_effect = redis.ConnectionError("connection refused")
        store = RedisDurableStore("redis://localhost:6379/0", client=client)

        with pytest.raises(DurableStoreUnavailableError):
            await store.get("seawater:climate:property_risk:abc")

    @pytest.mark.asyncio
    async def test_ping_reports_false_on_error(self, client) -> None:
        client.ping.side_effect = redis.TimeoutError("timed out")
        store = RedisDurableStore("redis://localhost:6379/0", client=client)
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_close_injected_client(self, client) -> None:
        store = RedisDurableStore("redis://localhost:6379/0", client=client)
        await store.close()
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_releases_owned_pool(self) -> None:
        store = RedisDurableStore("redis://localhost:6379/0", max_connections=5)
        with patch.object(
            redis.ConnectionPool, "aclose", new_callable=AsyncMock
        ) as pool_close:
            await store.close()
        pool_close.assert_awaited_once()
