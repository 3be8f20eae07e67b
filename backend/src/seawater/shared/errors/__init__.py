"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from seawater.domain.exceptions import (
    AllSourcesExhaustedError,
    AuthenticationError,
    DomainError,
    QuotaDeniedError,
    SourceError,
    SourceNotFoundError,
    SourceUnavailableError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=422,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(SourceNotFoundError)
    async def handle_not_found(request: Request, exc: SourceNotFoundError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=404,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authn(request: Request, exc: AuthenticationError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=401,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(QuotaDeniedError)
    async def handle_quota(request: Request, exc: QuotaDeniedError) -> ORJSONResponse:
        retry_after = max(1, int(exc.decision.retry_after_s + 0.999))
        return ORJSONResponse(
            status_code=429,
            content={"code": exc.code, "message": exc.message},
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(SourceUnavailableError)
    async def handle_unavailable(
        request: Request, exc: SourceUnavailableError
    ) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=503,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(AllSourcesExhaustedError)
    async def handle_exhausted(
        request: Request, exc: AllSourcesExhaustedError
    ) -> ORJSONResponse:
        logger.error(
            "sources_exhausted_http",
            category=exc.category,
            attempted=exc.attempted_sources,
            message=exc.message,
        )
        return ORJSONResponse(
            status_code=503,
            content={
                "code": exc.code,
                "message": exc.message,
                "attempted_sources": exc.attempted_sources,
                "skipped": exc.skipped,
            },
        )

    @app.exception_handler(SourceError)
    async def handle_source(request: Request, exc: SourceError) -> ORJSONResponse:
        logger.error("source_error_http", message=exc.message, transient=exc.transient)
        return ORJSONResponse(
            status_code=502,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=400,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
