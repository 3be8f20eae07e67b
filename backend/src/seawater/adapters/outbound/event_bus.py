"""In-process event bus for core notifications.

Provides a simple publish/subscribe mechanism so logging, metrics and
alerting subscribe to the orchestration core instead of being wired into it.
``publish`` is synchronous and never raises: it is called from bookkeeping
paths (breaker transitions, quota denials) that must not wait on consumers.
Coroutine handlers are scheduled on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from typing import Any

import structlog

from seawater.domain.events import DomainEvent
from seawater.ports.outbound import EventBusPort, EventHandler

logger = structlog.get_logger(__name__)

ALL_EVENTS = "*"


class InProcessEventBus(EventBusPort):
    """In-memory event bus with fan-out to multiple subscribers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task[Any]] = set()

    def publish(self, event: DomainEvent) -> None:
        handlers = [*self._handlers.get(event.event_type, []), *self._handlers.get(ALL_EVENTS, [])]
        if not handlers:
            return

        for index, handler in enumerate(handlers):
            try:
                result = handler(event)
            except Exception as exc:
                logger.error(
                    "event_handler_error",
                    event_type=event.event_type,
                    handler_index=index,
                    error=str(exc),
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(event, index, result)

    def subscribe(self, event_type: str, handler: Any) -> None:
        self._handlers[event_type].append(handler)
        logger.debug("event_handler_registered", event_type=event_type)

    def unsubscribe(self, event_type: str, handler: Any) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Internals ────────────────────────────────────────────
    def _schedule(self, event: DomainEvent, index: int, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("event_handler_dropped_no_loop", event_type=event.event_type)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "event_handler_error",
                    event_type=event.event_type,
                    handler_index=index,
                    error=str(t.exception()),
                )

        task.add_done_callback(_done)
