"""Propel API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from propel_api import __version__
from propel_api.config.env import get_cors_allowed_origins
from propel_api.context import org_id_var, plan_var, request_id_var, user_id_var
from propel_api.db.redis_client import RedisClient
from propel_api.db.session import dispose_engine, init_engine
from propel_api.errors import ProblemError
from propel_api.rate_limiter import NoOpRateLimiter, RateLimiter, RedisRateLimiter
from propel_api.routers import ai, billing, health, org, projects, proposals, public, webhooks
from propel_api.schemas import ProblemDetail
from propel_api.utils import configure_json_logging

logger = logging.getLogger(__name__)

# AI generation guard: 1 request per second per organization
AI_RATE_LIMIT_QUOTA = 1
AI_RATE_LIMIT_WINDOW = 1


def _trace_instance() -> str:
    request_id = request_id_var.get()
    return f"urn:propel:trace:{request_id}" if request_id else f"urn:propel:trace:{uuid.uuid4()}"


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        402: "Payment Required",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        429: "Too Many Requests",
        500: "Internal Server Error",
        502: "Bad Gateway",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


def build_rate_limiter() -> RateLimiter:
    """Redis-backed limiter when REDIS_URL is set, no-op otherwise."""
    if RedisClient.is_configured():
        return RedisRateLimiter(
            RedisClient.get_client(),
            quota=AI_RATE_LIMIT_QUOTA,
            window=AI_RATE_LIMIT_WINDOW,
            policy_id="ai-generate",
        )
    return NoOpRateLimiter(quota=AI_RATE_LIMIT_QUOTA, window=AI_RATE_LIMIT_WINDOW)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the process-wide engine on startup and release it on shutdown."""
    init_engine()
    logger.info("PROPEL_API_STARTED", extra={"version": __version__})
    yield
    dispose_engine()
    RedisClient.reset()


def create_app(*, rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        rate_limiter: Limiter for the AI generation guard (built from
            REDIS_URL when omitted)

    Returns:
        Configured FastAPI application instance
    """
    # Set PROPEL_JSON_LOGS=false to disable (defaults to true)
    if os.getenv("PROPEL_JSON_LOGS", "true").lower() != "false":
        configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))

    new_app = FastAPI(
        title="Propel API",
        description="Multi-tenant workspace API: tenant provisioning, plan allowances, AI generation and Stripe billing.",
        version=__version__,
        docs_url="/api-docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # MDN: credentials mode cannot use wildcard origins
    new_app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    # ========================================================================
    # RFC 9457 exception handlers
    # ========================================================================

    @new_app.exception_handler(ProblemError)
    async def problem_error_handler(request: Request, exc: ProblemError) -> JSONResponse:
        """Domain errors: status, type and title come from the error class."""
        problem = ProblemDetail(
            type=exc.error_type,
            title=exc.title,
            status=exc.status_code,
            detail=exc.detail,
            instance=_trace_instance(),
            **exc.extensions,
        )

        headers = {}
        if exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            headers["WWW-Authenticate"] = "Bearer"

        return JSONResponse(
            status_code=exc.status_code,
            content=problem.model_dump(exclude_none=True),
            media_type="application/problem+json",
            headers=headers,
        )

    @new_app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Framework HTTP errors (404 route, 405 method) as problem details."""
        detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)

        problem = ProblemDetail(
            type=f"https://api.propel.dev/problems/http-{exc.status_code}",
            title=_get_title_for_status(exc.status_code),
            status=exc.status_code,
            detail=detail_value,
            instance=_trace_instance(),
        )

        headers = dict(exc.headers or {})
        if exc.status_code == 429 and "Retry-After" not in headers:
            headers["Retry-After"] = "60"

        return JSONResponse(
            status_code=exc.status_code,
            content=problem.model_dump(exclude_none=True),
            media_type="application/problem+json",
            headers=headers,
        )

    @new_app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Returns 422 with the first failing field in ``detail``."""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")

        problem = ProblemDetail(
            type="https://api.propel.dev/problems/validation-error",
            title="Request Validation Failed",
            status=422,
            detail=f"Invalid field '{field}': {msg}",
            instance=_trace_instance(),
        )

        return JSONResponse(
            status_code=422,
            content=problem.model_dump(exclude_none=True),
            media_type="application/problem+json",
        )

    @new_app.exception_handler(OperationalError)
    async def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
        """Database unreachable or connection dropped: retryable 503."""
        logger.error("DATABASE_UNAVAILABLE", extra={"error_type": type(exc.orig).__name__})

        problem = ProblemDetail(
            type="https://api.propel.dev/problems/persistence-error",
            title="Service Unavailable",
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The database is temporarily unavailable. Please retry.",
            instance=_trace_instance(),
        )

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=problem.model_dump(exclude_none=True),
            media_type="application/problem+json",
            headers={"Retry-After": "1"},
        )

    @new_app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Uncaught exceptions: 500 without internal details."""
        logger.error("Unhandled exception: %s", type(exc).__name__, exc_info=True)

        problem = ProblemDetail(
            type="https://api.propel.dev/problems/internal-error",
            title="Internal Server Error",
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred. Please try again later.",
            instance=_trace_instance(),
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=problem.model_dump(exclude_none=True),
            media_type="application/problem+json",
        )

    # Include routers
    new_app.include_router(health.router, tags=["health"])
    new_app.include_router(org.router)
    new_app.include_router(ai.router)
    new_app.include_router(projects.router)
    new_app.include_router(proposals.router)
    new_app.include_router(public.router)
    new_app.include_router(billing.router)
    new_app.include_router(webhooks.router)

    # ========================================================================
    # HTTP request completion logging (wraps every route and handler)
    # ========================================================================

    @new_app.middleware("http")
    async def http_completion_logging_mw(request: Request, call_next):
        """Emit one "http.request.completed" log per request.

        Per-request tenant contextvars are cleared at start and end. Values
        set inside sync dependencies run in the threadpool and do not
        propagate back here; the request_id always does.
        """
        user_id_var.set("")
        org_id_var.set("")
        plan_var.set("")

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "http.request.completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            user_id_var.set("")
            org_id_var.set("")
            plan_var.set("")

    # Request ID middleware (outermost for context propagation)
    @new_app.middleware("http")
    async def request_id_mw(request: Request, call_next):
        """Accept X-Request-ID or generate one; echo it on the response."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    new_app.state.rate_limiter = rate_limiter or build_rate_limiter()

    return new_app


app = create_app()
