"""Portfolio API - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portfolio_api.api import admin_router, health_router
from portfolio_api.api.error_handling import register_exception_handlers
from portfolio_api.core import Settings, get_settings, setup_logging
from portfolio_api.core.logging import get_logger
from portfolio_api.middleware import (
    AdminAuthMiddleware,
    RateLimiter,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
    auth_state_sweep_loop,
    rate_limit_cleanup_loop,
)
from portfolio_api.middleware.rate_limit import PathRateLimitConfig
from portfolio_api.services.auth import AuthService
from portfolio_api.services.blacklist import TokenBlacklist
from portfolio_api.services.sessions import SessionStore
from portfolio_api.services.tokens import TokenCodec

logger = get_logger("main")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


def build_auth_service(settings: Settings) -> AuthService:
    """Build the auth service and the process-wide stores it owns.

    Raises ServerConfigError if no signing secret is configured.
    """
    codec = TokenCodec(
        settings.jwt_secret_key,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        max_age=timedelta(hours=settings.token_max_age_hours),
    )
    return AuthService(
        settings,
        codec=codec,
        sessions=SessionStore(),
        blacklist=TokenBlacklist(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    # Sessions are memory-only: every token issued before a restart is now
    # rejected with SESSION_EXPIRED and clients must log in again.
    logger.info("Session store initialised empty")

    tasks: list[asyncio.Task] = []
    sweep_task = asyncio.create_task(
        auth_state_sweep_loop(
            app.state.auth_service,
            interval=settings.blacklist_sweep_interval_seconds,
        ),
        name="auth-state-sweep",
    )
    sweep_task.add_done_callback(task_done_callback)
    tasks.append(sweep_task)

    cleanup_task = asyncio.create_task(
        rate_limit_cleanup_loop(app.state.rate_limiter),
        name="rate-limit-cleanup",
    )
    cleanup_task.add_done_callback(task_done_callback)
    tasks.append(cleanup_task)

    yield

    logger.info("Shutting down...")
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Portfolio admin API",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.auth_service = build_auth_service(settings)
    app.state.rate_limiter = RateLimiter(
        default_config=PathRateLimitConfig(
            requests_per_minute=settings.rate_limit_requests_per_minute,
            requests_per_hour=settings.rate_limit_requests_per_minute * 20,
            burst_size=max(1, settings.rate_limit_requests_per_minute // 5),
        ),
    )

    register_exception_handlers(app)

    # Starlette applies middleware in LIFO order: the auth gate runs last,
    # after rate limiting has had a chance to short-circuit.
    app.add_middleware(AdminAuthMiddleware)

    app.add_middleware(
        RateLimitMiddleware,
        rate_limiter=app.state.rate_limiter,
        exclude_paths=["/health"],
        trusted_proxies=settings.trusted_proxy_ip_set,
    )

    app.add_middleware(SecurityHeadersMiddleware)

    # CORS must be outermost so 401/429 responses still carry CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
            "X-Requested-With",
        ],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(health_router)
    app.include_router(admin_router)

    return app


# Application instance; fails at import if JWT_SECRET_KEY is missing
app = create_app()
