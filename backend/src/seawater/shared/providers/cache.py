"""Response cache — durable tier with an in-process volatile fallback.

Precedence: the durable tier is authoritative whenever it answers (a durable
miss is a miss). Only when it raises ``DurableStoreUnavailableError`` does a
lookup fall back to the volatile tier. Writes go to both tiers, so the
fallback holds recent data when the durable store drops out. No cache call
ever fails because the durable tier is down.
"""

from __future__ import annotations

import asyncio
import fnmatch
import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Mapping, Sequence

import structlog

from seawater.domain.events import CacheHit, CacheMiss
from seawater.domain.exceptions import DurableStoreUnavailableError
from seawater.ports.outbound import DurableStorePort, EventBusPort

logger = structlog.get_logger(__name__)

DEFAULT_TTL_TABLE: dict[str, int] = {
    "property_risk": 3600,
    "weather_data": 21600,
    "geographic_boundaries": 604800,
    "historical_disasters": 86400,
    "geocoding": 2592000,
    "real_time_alerts": 300,
    "climate_projections": 2592000,
    "api_health": 60,
}


def build_cache_key(category: str, query: Mapping[str, Any], prefix: str = "") -> str:
    """``<prefix><category>:<md5 of the key-sorted query>``."""
    normalized = json.dumps(query, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.md5(normalized.encode("utf-8")).hexdigest()
    return f"{prefix}{category}:{digest}"


class VolatileStore:
    """Bounded in-process store; evicts the oldest insertion when full."""

    def __init__(
        self, max_entries: int = 1000, *, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (value, self._clock() + ttl_seconds)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("volatile_cache_evicted", key=evicted)

    def delete(self, *keys: str) -> int:
        with self._lock:
            return sum(1 for key in keys if self._entries.pop(key, None) is not None)

    def keys_matching(self, pattern: str) -> list[str]:
        now = self._clock()
        with self._lock:
            return [
                key
                for key, (_, expires_at) in self._entries.items()
                if expires_at > now and fnmatch.fnmatchcase(key, pattern)
            ]

    def ttl(self, key: str) -> float | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            remaining = entry[1] - self._clock()
            return remaining if remaining > 0 else None

    def expire(self, key: str, ttl_seconds: float) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] <= self._clock():
                return False
            self._entries[key] = (entry[0], self._clock() + ttl_seconds)
            return True

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, exp) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ResponseCache:
    """Two-tier cache for provider payloads, TTL resolved per category.

    Args:
        durable:       Durable tier, or ``None`` to run volatile-only.
        key_prefix:    Namespace prepended to every key by ``build_key``.
        default_ttl_s: TTL for categories missing from ``ttl_table``.
    """

    def __init__(
        self,
        durable: DurableStorePort | None = None,
        *,
        key_prefix: str = "seawater:climate:",
        default_ttl_s: int = 3600,
        volatile_max_entries: int = 1000,
        ttl_table: Mapping[str, int] | None = None,
        event_bus: EventBusPort | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._durable = durable
        self._volatile = VolatileStore(volatile_max_entries, clock=clock)
        self._prefix = key_prefix
        self._default_ttl = default_ttl_s
        self._ttl_table = dict(DEFAULT_TTL_TABLE if ttl_table is None else ttl_table)
        self._event_bus = event_bus
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._stats = {
            "hits": 0,
            "durable_hits": 0,
            "volatile_hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0,
        }

    @property
    def key_prefix(self) -> str:
        return self._prefix

    def build_key(self, category: str, query: Mapping[str, Any]) -> str:
        return build_cache_key(category, query, self._prefix)

    def ttl_for(self, key: str) -> int:
        """Resolve the TTL from the category segment of ``key``."""
        bare = key[len(self._prefix):] if key.startswith(self._prefix) else key
        category = bare.split(":", 1)[0]
        return self._ttl_table.get(category, self._default_ttl)

    # ── Single-key operations ────────────────────────────────
    async def get(self, key: str) -> Any | None:
        raw, tier = await self._lookup(key)
        if raw is None:
            self._stats["misses"] += 1
            self._publish(CacheMiss(key=key))
            return None
        value = self._deserialize(key, raw)
        if value is None:
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        self._stats[f"{tier}_hits"] += 1
        self._publish(CacheHit(key=key, tier=tier))
        return value

    async def set(self, key: str, value: Any, ttl_s: int | None = None) -> bool:
        raw = self._serialize(key, value)
        if raw is None:
            return False
        ttl = ttl_s if ttl_s is not None else self.ttl_for(key)
        self._volatile.set(key, raw, ttl)
        if self._durable is not None:
            try:
                await self._durable.set_with_ttl(key, raw, ttl)
            except DurableStoreUnavailableError as exc:
                self._durable_down("set", exc)
        self._stats["sets"] += 1
        return True

    async def delete(self, key: str) -> bool:
        removed = self._volatile.delete(key)
        if self._durable is not None:
            try:
                removed = max(removed, await self._durable.delete(key))
            except DurableStoreUnavailableError as exc:
                self._durable_down("delete", exc)
        self._stats["deletes"] += 1
        return removed > 0

    async def exists(self, key: str) -> bool:
        raw, _ = await self._lookup(key)
        return raw is not None

    async def extend(self, key: str, additional_s: int) -> bool:
        """Push the expiry of an existing entry ``additional_s`` further out."""
        extended = False
        remaining = self._volatile.ttl(key)
        if remaining is not None:
            extended = self._volatile.expire(key, remaining + additional_s)
        if self._durable is not None:
            try:
                current = await self._durable.ttl(key)
                if current > 0:
                    await self._durable.expire(key, current + additional_s)
                    extended = True
            except DurableStoreUnavailableError as exc:
                self._durable_down("extend", exc)
        return extended

    async def get_or_compute(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl_s: int | None = None,
    ) -> Any:
        """Return the cached value or run ``producer`` once and store its result.

        Concurrent callers for the same key share a single producer run and
        see its result (or its exception). ``None`` results are not cached.
        """
        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        # Registered before the first await so later callers always join.
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = fut
        try:
            value = await self.get(key)
            if value is None:
                value = await producer()
                if value is not None:
                    await self.set(key, value, ttl_s)
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as exc:
            fut.set_exception(exc)
            fut.exception()  # retrieved; waiters re-raise it themselves
            raise
        else:
            fut.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

    # ── Batch operations ─────────────────────────────────────
    async def get_multiple(self, keys: Sequence[str]) -> dict[str, Any | None]:
        """Fetch many keys in one durable round trip; misses map to ``None``."""
        keys = list(keys)
        raws: list[str | None] | None = None
        tier = "durable"
        if self._durable is not None:
            try:
                raws = await self._durable.get_many(keys)
            except DurableStoreUnavailableError as exc:
                self._durable_down("get_multiple", exc)
        if raws is None:
            tier = "volatile"
            raws = [self._volatile.get(key) for key in keys]

        result: dict[str, Any | None] = {}
        for key, raw in zip(keys, raws):
            value = self._deserialize(key, raw) if raw is not None else None
            result[key] = value
            if value is None:
                self._stats["misses"] += 1
            else:
                self._stats["hits"] += 1
                self._stats[f"{tier}_hits"] += 1
        return result

    async def set_multiple(self, items: Mapping[str, Any], ttl_s: int | None = None) -> int:
        """Store many entries; the durable tier gets one pipelined round trip."""
        batch: list[tuple[str, str, int]] = []
        for key, value in items.items():
            raw = self._serialize(key, value)
            if raw is None:
                continue
            ttl = ttl_s if ttl_s is not None else self.ttl_for(key)
            self._volatile.set(key, raw, ttl)
            batch.append((key, raw, ttl))
        if batch and self._durable is not None:
            try:
                await self._durable.set_many(batch)
            except DurableStoreUnavailableError as exc:
                self._durable_down("set_multiple", exc)
        self._stats["sets"] += len(batch)
        return len(batch)

    # ── Invalidation & maintenance ───────────────────────────
    async def clear_by_pattern(self, pattern: str) -> int:
        """Delete every key matching the glob ``pattern`` (relative to the prefix)."""
        full = pattern if pattern.startswith(self._prefix) else self._prefix + pattern
        matched = set(self._volatile.keys_matching(full))
        self._volatile.delete(*matched)
        if self._durable is not None:
            try:
                durable_keys = await self._durable.keys_matching(full)
                if durable_keys:
                    await self._durable.delete(*durable_keys)
                matched.update(durable_keys)
            except DurableStoreUnavailableError as exc:
                self._durable_down("clear_by_pattern", exc)
        logger.info("cache_cleared_by_pattern", pattern=full, deleted=len(matched))
        self._stats["deletes"] += len(matched)
        return len(matched)

    async def flush(self) -> int:
        deleted = await self.clear_by_pattern("*")
        self._volatile.clear()
        return deleted

    def purge_expired(self) -> int:
        purged = self._volatile.purge_expired()
        if purged:
            logger.debug("volatile_cache_purged", entries=purged)
        return purged

    async def durable_available(self) -> bool:
        if self._durable is None:
            return False
        return await self._durable.ping()

    def get_stats(self) -> dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
            "volatile_entries": len(self._volatile),
            "durable_configured": self._durable is not None,
        }

    def reset_stats(self) -> None:
        for name in self._stats:
            self._stats[name] = 0

    async def close(self) -> None:
        if self._durable is not None:
            await self._durable.close()

    # ── Internals ────────────────────────────────────────────
    async def _lookup(self, key: str) -> tuple[str | None, str]:
        if self._durable is not None:
            try:
                return await self._durable.get(key), "durable"
            except DurableStoreUnavailableError as exc:
                self._durable_down("get", exc)
        return self._volatile.get(key), "volatile"

    def _durable_down(self, operation: str, exc: DurableStoreUnavailableError) -> None:
        self._stats["errors"] += 1
        logger.warning("cache_durable_unavailable", operation=operation, error=exc.reason)

    def _serialize(self, key: str, value: Any) -> str | None:
        try:
            return json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            self._stats["errors"] += 1
            logger.error("cache_serialize_failed", key=key, error=str(exc))
            return None

    def _deserialize(self, key: str, raw: str) -> Any | None:
        try:
            return json.loads(raw)
        except ValueError as exc:
            self._stats["errors"] += 1
            logger.error("cache_deserialize_failed", key=key, error=str(exc))
            return None

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
