"""FastAPI application entry point."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from transit_sync.config import get_settings
from transit_sync.context import TransitContext
from transit_sync.logging import bind_context, clear_context, get_logger, setup_logging
from transit_sync.routers.admin import router as admin_router
from transit_sync.routers.realtime import router as realtime_router
from transit_sync.routers.transit import router as transit_router
from transit_sync.services.sync import Health

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    setup_logging()
    logger.info("Starting Transit Sync API")

    owned = getattr(app.state, "context", None) is None
    if owned:
        app.state.context = TransitContext.build()
        await app.state.context.startup()

    yield

    if owned:
        await app.state.context.shutdown()
        app.state.context = None
    logger.info("Shutting down Transit Sync API")


def create_app(context: TransitContext | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        context: Pre-built services to serve. When omitted the lifespan
            builds, starts and disposes its own.
    """
    settings = context.settings if context else get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Static GTFS and GTFS-Realtime sync engine with a read API",
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_context(request_id=request_id, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        clear_context()
        return response

    app.include_router(transit_router)
    app.include_router(realtime_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["meta"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint returning application status."""
        ctx: TransitContext = request.app.state.context
        missing_env = ctx.settings.missing_required_env()
        db_healthy = await ctx.database.check_connection()
        metrics = ctx.orchestrator.get_metrics()
        static = ctx.catalog.static

        sync_ok = metrics.health in (Health.HEALTHY, Health.STOPPED, Health.STARTING)
        status = (
            "unhealthy"
            if missing_env or metrics.health is Health.UNHEALTHY
            else "healthy"
            if (db_healthy and sync_ok and not static.is_empty)
            else "degraded"
        )

        issues: list[str] = []
        if missing_env:
            issues.append("Missing required environment variables: " + ", ".join(missing_env))
        if not db_healthy:
            issues.append("Database is not reachable")
        if static.is_empty:
            issues.append("No static GTFS snapshot loaded")
        if metrics.health in (Health.WARNING, Health.UNHEALTHY):
            issues.append(f"Realtime sync is {metrics.health.value}")

        return {
            "service": ctx.settings.app_name,
            "status": status,
            "version": ctx.settings.app_version,
            "environment": ctx.settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "database": db_healthy,
                "static": {
                    "generation": static.generation,
                    "loadedAt": static.loaded_at.isoformat() if static.loaded_at else None,
                    **static.counts(),
                },
                "sync": metrics.to_dict(),
            },
            "issues": issues,
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


app = create_app()
