# ruff: noqa: E402
# E402 disabled: load_dotenv() must run before other imports for Sentry DSN

import os
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

import sentry_sdk
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from core.correlation import (
    CORRELATION_HEADER,
    accept_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from core.logging_config import configure_logging
from core.sentry_config import init_sentry
from helpers.rate_limiter import limiter
from helpers.redis_pool import close_redis_pool
from models.config import settings
from models.exceptions import (
    AuthenticationException,
    BusinessRuleException,
    ConflictException,
    DomainException,
    InternalErrorException,
    NotFoundException,
    PermissionDeniedException,
    RateLimitExceededException,
    ValidationException,
)
from repositories.database import Base, engine
from routers import audit_router, moderation_router, reports_router, revisions_router

# Initialize Sentry BEFORE app creation
init_sentry()

# Configure logging with Loguru
configure_logging(os.getenv("ENVIRONMENT", "development"))

# Latest migration in alembic/versions
EXPECTED_REVISION = "0001_initial"


def check_schema_version() -> None:
    """Warn when the database is not at the migration this code expects."""
    from sqlalchemy import text

    from repositories.database import SessionLocal

    db = SessionLocal()
    try:
        row = db.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).fetchone()
    except Exception as e:
        logger.warning(f"Could not verify schema version: {e!r}")
        return
    finally:
        db.close()

    if row is None:
        logger.warning("No alembic_version row; run 'alembic upgrade head'")
    elif row[0] != EXPECTED_REVISION:
        logger.warning(
            f"Database schema mismatch: at {row[0]}, expected {EXPECTED_REVISION}. "
            f"Run 'alembic upgrade head'."
        )
    else:
        logger.info(f"Database schema version: {row[0]} (up to date)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start and stop the pipeline's background pieces.

    The scheduler replays queued audit entries and purges stale rate-limit
    rows. On shutdown buffered audit entries are drained before the Redis
    pool is released.
    """
    from core.scheduler import setup_scheduler, shutdown_scheduler
    from services.audit_service import AuditService

    check_schema_version()

    if settings.AUTO_CREATE_DB:
        logger.info("AUTO_CREATE_DB enabled; creating tables with create_all()")
        Base.metadata.create_all(bind=engine)

    run_scheduler = settings.ENVIRONMENT != "test"
    if run_scheduler:
        setup_scheduler()

    try:
        yield
    finally:
        if run_scheduler:
            shutdown_scheduler()
        AuditService.shutdown()
        close_redis_pool()


app = FastAPI(title="Moderation & Content-Trust API", lifespan=lifespan)

# slowapi throttling per client; per-actor limits live in services.rate_limit
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID to the request context, Sentry and the response."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = accept_correlation_id(request.headers.get(CORRELATION_HEADER))
        set_correlation_id(correlation_id)
        sentry_sdk.set_tag("correlation_id", correlation_id)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its duration; flag slow ones."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        summary = (
            f"{request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s"
        )
        if duration > settings.SLOW_REQUEST_THRESHOLD:
            logger.warning(
                f"Slow request: {summary} "
                f"(threshold: {settings.SLOW_REQUEST_THRESHOLD}s)"
            )
        else:
            logger.info(summary)

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# In development, allow all origins for local tooling
cors_origins = ["*"] if settings.ENVIRONMENT == "development" else settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=settings.ENVIRONMENT != "development",
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_HEADER, "Retry-After"],
)


# Checked in order, so subclasses must precede their bases.
DOMAIN_ERROR_STATUS: list[tuple[type[DomainException], int, str]] = [
    (RateLimitExceededException, status.HTTP_429_TOO_MANY_REQUESTS, "Rate limited"),
    (NotFoundException, status.HTTP_404_NOT_FOUND, "Not found"),
    (ValidationException, status.HTTP_400_BAD_REQUEST, "Validation error"),
    (PermissionDeniedException, status.HTTP_403_FORBIDDEN, "Permission denied"),
    (AuthenticationException, status.HTTP_401_UNAUTHORIZED, "Authentication failed"),
    (BusinessRuleException, status.HTTP_400_BAD_REQUEST, "Business rule violation"),
    (ConflictException, status.HTTP_409_CONFLICT, "Conflict"),
    (InternalErrorException, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error"),
]

# Security-relevant or unexpected; everything else is routine client error
CAPTURED_EXCEPTIONS = (AuthenticationException, InternalErrorException)


def _classify(exc: DomainException) -> tuple[int, str, bool]:
    for exc_type, status_code, label in DOMAIN_ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code, label, isinstance(exc, CAPTURED_EXCEPTIONS)
    return status.HTTP_400_BAD_REQUEST, "Domain exception", True


def _error_content(exc: DomainException) -> dict:
    """Response body shared by all domain errors."""
    return {
        "detail": exc.message,
        "error": exc.error_code,
        "retryable": exc.retryable,
        "correlation_id": exc.correlation_id,
    }


@app.exception_handler(DomainException)
async def domain_exception_handler(
    request: Request, exc: DomainException
) -> JSONResponse:
    """Map a domain exception to its HTTP status and error body."""
    status_code, label, capture = _classify(exc)

    sentry_sdk.set_tag("correlation_id", exc.correlation_id)
    sentry_sdk.set_tag("exception_type", exc.__class__.__name__)
    sentry_sdk.set_tag("error_code", exc.error_code)
    if capture:
        sentry_sdk.capture_exception(exc)

    # bind() keeps braces in exception messages away from loguru formatting
    log = logger.bind(
        correlation_id=exc.correlation_id,
        exception_type=exc.__class__.__name__,
        path=str(request.url.path),
    )
    if status_code >= 500:
        log.error(f"{label}: {exc.message}")
    else:
        log.warning(f"{label}: {exc.message}")

    headers = {}
    if isinstance(exc, AuthenticationException):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, RateLimitExceededException) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=status_code,
        content=_error_content(exc),
        headers=headers or None,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch all unhandled exceptions with full Sentry capture."""
    correlation_id = get_correlation_id() or generate_correlation_id()

    sentry_sdk.set_tag("correlation_id", correlation_id)
    sentry_sdk.capture_exception(exc)

    logger.bind(
        correlation_id=correlation_id,
        path=str(request.url.path),
        method=request.method,
    ).exception(f"Unhandled exception: {exc!r}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": "InternalError",
            "retryable": False,
            "correlation_id": correlation_id,
        },
    )


app.include_router(moderation_router.router, prefix="/api")
app.include_router(audit_router.router, prefix="/api")
app.include_router(reports_router.router, prefix="/api")
app.include_router(revisions_router.router, prefix="/api")
app.include_router(revisions_router.admin_router, prefix="/api")


@app.get("/")
def root() -> dict:
    """Root endpoint."""
    return {"message": "Moderation & Content-Trust API", "version": "1.0.0"}


@app.get("/api/health")
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}
