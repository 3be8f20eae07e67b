"""Network transport — one outbound request with timeout, pooling and retries.

The transport knows nothing about providers or quotas. It retries only
transient failures (timeouts, connection/DNS errors, HTTP 408/429/5xx) up to
the caller's attempt budget, waiting ``min(base * 2**(n-1), cap)`` seconds
scaled by ±10 % jitter between attempts.
"""

from __future__ import annotations

import asyncio
import random
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from seawater.domain.events import (
    TransportAttemptRetried,
    TransportAttemptStarted,
    TransportFailed,
    TransportSucceeded,
)
from seawater.domain.exceptions import (
    HttpStatusError,
    SourceError,
    TransportConnectionError,
    TransportTimeoutError,
)
from seawater.ports.outbound import EventBusPort
from seawater.shared.providers.types import HttpRequest, HttpResponse

logger = structlog.get_logger(__name__)


class wait_jittered_exponential(wait_base):  # noqa: N801
    """Exponential backoff, capped, scaled by a uniform jitter factor."""

    def __init__(self, base: float = 1.0, cap: float = 16.0, jitter: float = 0.1) -> None:
        self.base = base
        self.cap = cap
        self.jitter = jitter

    def __call__(self, retry_state: RetryCallState) -> float:
        exp = min(self.base * 2 ** (retry_state.attempt_number - 1), self.cap)
        return max(0.0, exp * random.uniform(1 - self.jitter, 1 + self.jitter))


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, SourceError) and exc.transient


def _decode(resp: httpx.Response) -> Any:
    if "json" in resp.headers.get("content-type", ""):
        try:
            return resp.json()
        except ValueError:
            return resp.text
    return resp.text


@dataclass
class _PurposeStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retried_attempts: int = 0
    total_response_ms: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        completed = self.successful_requests + self.failed_requests
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "retried_attempts": self.retried_attempts,
            "average_response_ms": (
                round(self.total_response_ms / completed, 2) if completed else 0.0
            ),
            "success_rate": (
                round(self.successful_requests / completed, 4) if completed else 0.0
            ),
        }


class HttpTransport:
    """Pooled async HTTP client with classified retries.

    Args:
        client:       Pre-built ``httpx.AsyncClient`` (tests inject a
                      ``MockTransport``); one is created when omitted.
        max_attempts: Default attempt budget when the caller gives none.
        sleep:        Coroutine used between attempts.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        event_bus: EventBusPort | None = None,
        default_timeout_s: float = 30.0,
        max_attempts: int = 3,
        backoff_base_s: float = 1.0,
        backoff_cap_s: float = 16.0,
        jitter: float = 0.1,
        max_connections: int = 50,
        max_keepalive_connections: int = 10,
        user_agent: str = "Seawater-Climate-Platform/1.0",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            follow_redirects=True,
        )
        self._event_bus = event_bus
        self._default_timeout = default_timeout_s
        self._max_attempts = max_attempts
        self._wait = wait_jittered_exponential(backoff_base_s, backoff_cap_s, jitter)
        self._sleep = sleep
        self._stats: dict[str, _PurposeStats] = {}

    async def send(self, request: HttpRequest, *, attempts: int | None = None) -> HttpResponse:
        """Perform ``request``; raise ``SourceError`` once the budget is spent."""
        budget = max(1, attempts if attempts is not None else self._max_attempts)
        timeout = request.timeout_s or self._default_timeout
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        purpose = request.purpose.value
        stats = self._stats.setdefault(purpose, _PurposeStats())
        stats.total_requests += 1
        started = time.perf_counter()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(budget),
            wait=self._wait,
            retry=retry_if_exception(_is_transient),
            before_sleep=lambda state: self._on_retry(request, request_id, stats, state),
            sleep=self._sleep,
            reraise=True,
        )
        attempt_no = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_no = attempt.retry_state.attempt_number
                    resp = await self._attempt(request, request_id, timeout, attempt_no)
        except SourceError as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            stats.failed_requests += 1
            stats.total_response_ms += elapsed_ms
            logger.warning(
                "transport_failed",
                request_id=request_id,
                method=request.method,
                url=request.url,
                attempts=attempt_no,
                error=str(exc),
                transient=exc.transient,
                purpose=purpose,
            )
            self._publish(
                TransportFailed(
                    request_id=request_id,
                    url=request.url,
                    attempts=attempt_no,
                    error=str(exc),
                    transient=exc.transient,
                    purpose=purpose,
                )
            )
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        stats.successful_requests += 1
        stats.total_response_ms += elapsed_ms
        logger.debug(
            "transport_succeeded",
            request_id=request_id,
            url=request.url,
            status=resp.status_code,
            attempts=attempt_no,
            elapsed_ms=round(elapsed_ms, 1),
        )
        self._publish(
            TransportSucceeded(
                request_id=request_id,
                url=request.url,
                status_code=resp.status_code,
                attempts=attempt_no,
                elapsed_ms=elapsed_ms,
                purpose=purpose,
            )
        )
        return HttpResponse(
            status_code=resp.status_code,
            headers=dict(resp.headers),
            data=_decode(resp),
            elapsed_ms=elapsed_ms,
            request_id=request_id,
            attempts=attempt_no,
        )

    async def _attempt(
        self, request: HttpRequest, request_id: str, timeout: float, attempt_no: int
    ) -> httpx.Response:
        self._publish(
            TransportAttemptStarted(
                request_id=request_id,
                method=request.method,
                url=request.url,
                attempt=attempt_no,
                purpose=request.purpose.value,
            )
        )
        try:
            # wait_for cancels the in-flight request on expiry.
            resp = await asyncio.wait_for(
                self._client.request(
                    request.method,
                    request.url,
                    headers=dict(request.headers),
                    params=dict(request.params) if request.params else None,
                    json=request.json_body,
                    content=request.content,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise TransportTimeoutError(request.url, timeout) from exc
        except httpx.TransportError as exc:
            raise TransportConnectionError(request.url, str(exc) or type(exc).__name__) from exc

        if request.raise_for_status and resp.status_code >= 400:
            raise HttpStatusError(request.url, resp.status_code, _decode(resp))
        return resp

    def _on_retry(
        self,
        request: HttpRequest,
        request_id: str,
        stats: _PurposeStats,
        state: RetryCallState,
    ) -> None:
        delay = state.next_action.sleep if state.next_action else 0.0
        exc = state.outcome.exception() if state.outcome else None
        stats.retried_attempts += 1
        logger.warning(
            "transport_retry",
            request_id=request_id,
            url=request.url,
            attempt=state.attempt_number,
            delay_s=round(delay, 3),
            error=str(exc),
        )
        self._publish(
            TransportAttemptRetried(
                request_id=request_id,
                url=request.url,
                attempt=state.attempt_number,
                delay_s=delay,
                error=str(exc),
                purpose=request.purpose.value,
            )
        )

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)

    # ── Stats & lifecycle ────────────────────────────────────
    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {purpose: stats.as_dict() for purpose, stats in self._stats.items()}

    def reset_stats(self) -> None:
        self._stats.clear()

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.info("transport_closed")
