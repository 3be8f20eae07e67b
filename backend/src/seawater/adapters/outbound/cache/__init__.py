"""Redis durable tier implementing DurableStorePort.

Every Redis failure surfaces as ``DurableStoreUnavailableError`` so the
response cache can fall back to its volatile tier.
"""

from __future__ import annotations

from typing import Sequence

import redis.asyncio as redis
import structlog

from seawater.domain.exceptions import DurableStoreUnavailableError
from seawater.ports.outbound import DurableStorePort

logger = structlog.get_logger(__name__)


class RedisDurableStore(DurableStorePort):
    """Async Redis adapter backed by a shared connection pool."""

    def __init__(
        self,
        url: str,
        max_connections: int = 50,
        *,
        socket_timeout_s: float = 2.0,
        client: redis.Redis | None = None,
    ) -> None:
        self._pool: redis.ConnectionPool | None = None
        if client is not None:
            self._client = client
        else:
            self._pool = redis.ConnectionPool.from_url(
                url,
                max_connections=max_connections,
                decode_responses=True,
                socket_timeout=socket_timeout_s,
                socket_connect_timeout=socket_timeout_s,
            )
            self._client = redis.Redis(connection_pool=self._pool)
        logger.info("redis_store_initialized", max_connections=max_connections)

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except redis.RedisError as exc:
            logger.error("redis_get_error", key=key, error=str(exc))
            raise DurableStoreUnavailableError("get", str(exc)) from exc

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, max(1, int(ttl_seconds)), value)
        except redis.RedisError as exc:
            logger.error("redis_set_error", key=key, error=str(exc))
            raise DurableStoreUnavailableError("set", str(exc)) from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*keys))
        except redis.RedisError as exc:
            logger.error("redis_delete_error", keys=len(keys), error=str(exc))
            raise DurableStoreUnavailableError("delete", str(exc)) from exc

    async def keys_matching(self, pattern: str) -> list[str]:
        try:
            return [key async for key in self._client.scan_iter(match=pattern, count=500)]
        except redis.RedisError as exc:
            logger.error("redis_scan_error", pattern=pattern, error=str(exc))
            raise DurableStoreUnavailableError("scan", str(exc)) from exc

    async def get_many(self, keys: Sequence[str]) -> list[str | None]:
        if not keys:
            return []
        try:
            return list(await self._client.mget(list(keys)))
        except redis.RedisError as exc:
            logger.error("redis_mget_error", keys=len(keys), error=str(exc))
            raise DurableStoreUnavailableError("mget", str(exc)) from exc

    async def set_many(self, items: Sequence[tuple[str, str, int]]) -> None:
        if not items:
            return
        try:
            async with self._client.pipeline(transaction=False) as pipe:
                for key, value, ttl in items:
                    pipe.setex(key, max(1, int(ttl)), value)
                await pipe.execute()
        except redis.RedisError as exc:
            logger.error("redis_pipeline_error", keys=len(items), error=str(exc))
            raise DurableStoreUnavailableError("set_many", str(exc)) from exc

    async def ttl(self, key: str) -> int:
        try:
            return int(await self._client.ttl(key))
        except redis.RedisError as exc:
            logger.error("redis_ttl_error", key=key, error=str(exc))
            raise DurableStoreUnavailableError("ttl", str(exc)) from exc

    async def expire(self, key: str, ttl_seconds: int) -> None:
        try:
            await self._client.expire(key, max(1, int(ttl_seconds)))
        except redis.RedisError as exc:
            logger.error("redis_expire_error", key=key, error=str(exc))
            raise DurableStoreUnavailableError("expire", str(exc)) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as exc:
            logger.warning("redis_ping_failed", error=str(exc))
            return False

    async def close(self) -> None:
        await self._client.aclose()
        if self._pool is not None:
            await self._pool.aclose()
        logger.info("redis_store_closed")
