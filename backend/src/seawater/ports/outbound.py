"""Outbound ports — interfaces that infrastructure adapters must implement.

The orchestration core depends only on these abstractions, never on a
concrete key-value store, message broker or vendor payload format.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Sequence

from seawater.domain.events import DomainEvent

if TYPE_CHECKING:
    from seawater.shared.providers.types import HttpResponse, SourceRequest


# ═══════════════════════════════════════════════════════════════
#  Durable cache tier
# ═══════════════════════════════════════════════════════════════
class DurableStorePort(ABC):
    """Key-value store with get/set/expire/pattern-scan semantics.

    Implementations raise ``DurableStoreUnavailableError`` when the backend
    cannot be reached; they never return stale values past their TTL.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def keys_matching(self, pattern: str) -> list[str]: ...

    @abstractmethod
    async def get_many(self, keys: Sequence[str]) -> list[str | None]: ...

    @abstractmethod
    async def set_many(self, items: Sequence[tuple[str, str, int]]) -> None: ...

    @abstractmethod
    async def ttl(self, key: str) -> int: ...

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Observer channel
# ═══════════════════════════════════════════════════════════════
EventHandler = Callable[[DomainEvent], Any]


class EventBusPort(ABC):
    """Publish/subscribe channel for core notifications."""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None: ...

    @abstractmethod
    def subscribe(self, event_type: str, handler: EventHandler) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Provider adapters
# ═══════════════════════════════════════════════════════════════
class SourceAdapter(ABC):
    """Vendor-specific request building and payload normalization.

    ``build_request`` must not block. ``parse_response`` returns the
    normalized payload or raises ``SourceResponseError``.
    """

    @abstractmethod
    def build_request(self, query: dict[str, Any]) -> SourceRequest: ...

    @abstractmethod
    def parse_response(self, response: HttpResponse) -> Any: ...
