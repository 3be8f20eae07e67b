"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.  Provider call
failures derive from ``SourceError`` and carry a ``transient`` flag that the
transport uses for retry decisions and the orchestrator reports upstream.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from seawater.shared.providers.quota import QuotaDecision

# Statuses worth another attempt; every other 4xx is the caller's fault.
RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ───────────────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


# ── Access control ───────────────────────────────────────
class AuthenticationError(DomainError):
    def __init__(self, message: str = "Invalid or missing API key") -> None:
        super().__init__(message, code="AUTHENTICATION_ERROR")


# ── Provider call failures ───────────────────────────────────
class SourceError(DomainError):
    """A single call to an external provider failed."""

    transient: bool = False

    def __init__(self, message: str, *, code: str = "SOURCE_ERROR") -> None:
        super().__init__(message, code=code)


class TransportTimeoutError(SourceError):
    transient = True

    def __init__(self, url: str, timeout_s: float) -> None:
        self.url = url
        self.timeout_s = timeout_s
        super().__init__(
            f"Request to {url} timed out after {timeout_s}s",
            code="TRANSPORT_TIMEOUT",
        )


class TransportConnectionError(SourceError):
    """Connection reset, refused, DNS failure and similar network faults."""

    transient = True

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(
            f"Connection to {url} failed: {reason}",
            code="TRANSPORT_CONNECTION_ERROR",
        )


class HttpStatusError(SourceError):
    def __init__(self, url: str, status_code: int, body: Any = None) -> None:
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code} from {url}", code="HTTP_STATUS_ERROR")

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return is_retryable_status(self.status_code)


class SourceResponseError(SourceError):
    """The provider answered but the payload could not be used."""

    def __init__(self, source_id: str, message: str) -> None:
        self.source_id = source_id
        super().__init__(f"[{source_id}] {message}", code="SOURCE_RESPONSE_ERROR")


# ── Orchestration ────────────────────────────────────────────
class SourceNotFoundError(DomainError):
    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__(f"Source {source_id!r} not found", code="SOURCE_NOT_FOUND")


class SourceUnavailableError(DomainError):
    """A directly-addressed source is barred (disabled, circuit open, quota)."""

    def __init__(self, source_id: str, reason: str) -> None:
        self.source_id = source_id
        self.reason = reason
        super().__init__(
            f"Source {source_id!r} unavailable: {reason}",
            code="SOURCE_UNAVAILABLE",
        )


class QuotaDeniedError(DomainError):
    """Not a provider fault: the local quota refused the reservation."""

    def __init__(self, source_id: str, decision: QuotaDecision) -> None:
        self.source_id = source_id
        self.decision = decision
        reason = decision.reason.value if decision.reason else "denied"
        super().__init__(
            f"Quota denied for {source_id!r}: {reason} "
            f"(retry after {decision.retry_after_s:.2f}s)",
            code="QUOTA_DENIED",
        )


class AllSourcesExhaustedError(DomainError):
    """Terminal: every candidate for the category was skipped or failed.

    ``attempted_sources`` lists the providers actually called, in the order
    they were tried. ``skipped`` maps providers that were passed over without
    a call to the reason (``circuit_open``, ``rate_limited`` ...).
    """

    def __init__(
        self,
        category: str,
        attempted_sources: list[str],
        last_error: BaseException | None = None,
        *,
        errors: dict[str, str] | None = None,
        skipped: dict[str, str] | None = None,
    ) -> None:
        self.category = category
        self.attempted_sources = list(attempted_sources)
        self.last_error = last_error
        self.errors = dict(errors or {})
        self.skipped = dict(skipped or {})
        if self.attempted_sources:
            detail = f"All {len(self.attempted_sources)} sources failed for {category!r}"
        else:
            detail = f"No available sources for {category!r}"
        if last_error is not None:
            detail += f". Last error: {last_error}"
        super().__init__(detail, code="ALL_SOURCES_EXHAUSTED")


# ── Infrastructure ───────────────────────────────────────────
class DurableStoreUnavailableError(DomainError):
    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Durable store unavailable during {operation}: {reason}",
            code="DURABLE_STORE_UNAVAILABLE",
        )
