"""Main FastAPI application for Daily Tally."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .api.routes import router as api_router
from .cache.exceptions import CacheUnavailableError
from .cache.fast_cache import FastCache
from .config import get_settings
from .observability.logging import configure_logging
from .services.aggregator import ReadAggregator
from .services.coordinator import WriteCoordinator
from .services.replay import ReplayWorker, run_replay_loop
from .store.base import BackingStore
from .store.factory import create_backing_store, default_dynamic_settings
from .store.http_client import close_http_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()

    # Configure structured logging
    configure_logging(
        environment=settings.environment,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    # Fails fast on a queued strategy without a fast cache
    strategy = settings.get_write_strategy(
        fast_cache_provided=app.state.injected_fast_cache is not None
    )

    store: BackingStore = app.state.injected_store or create_backing_store(settings)
    fast_cache: Optional[FastCache] = None
    if strategy == "queued":
        fast_cache = app.state.injected_fast_cache or FastCache.from_url(
            settings.redis_url, key_prefix=settings.cache_key_prefix
        )
    elif settings.redis_url:
        logger.warning("REDIS_URL is set but the direct write strategy does not use the fast cache")

    aggregator = ReadAggregator(
        store,
        tz_name=settings.timezone,
        default_settings=default_dynamic_settings(settings),
        aggregate_ttl=settings.aggregate_ttl_seconds,
        settings_ttl=settings.settings_ttl_seconds,
    )
    app.state.store = store
    app.state.fast_cache = fast_cache
    app.state.aggregator = aggregator
    app.state.write_strategy = strategy
    app.state.coordinator = WriteCoordinator(
        store,
        aggregator,
        fast_cache=fast_cache,
        strategy=strategy,
        max_amount=settings.max_amount,
    )

    app.state.replay_worker = None
    app.state.replay_stop = None
    app.state.replay_task = None
    if fast_cache is not None:
        app.state.replay_worker = ReplayWorker(
            fast_cache,
            store,
            batch_size=settings.replay_batch_size,
            mode=settings.replay_mode,
        )
        # Periodic replay in addition to the HTTP trigger
        if settings.replay_interval_seconds:
            app.state.replay_stop = asyncio.Event()
            app.state.replay_task = asyncio.create_task(
                run_replay_loop(
                    app.state.replay_worker,
                    app.state.replay_stop,
                    interval_seconds=settings.replay_interval_seconds,
                )
            )

    logger.info("%s v%s started", settings.app_name, settings.app_version)
    logger.info("Environment: %s", settings.environment)
    logger.info("Write strategy: %s", strategy)
    logger.info("Fast cache: %s", "configured" if fast_cache is not None else "disabled")

    yield

    # Shutdown
    logger.info("Shutting down %s...", settings.app_name)

    if app.state.replay_stop is not None:
        app.state.replay_stop.set()
    if app.state.replay_task is not None:
        await app.state.replay_task

    if fast_cache is not None:
        await fast_cache.close()
        logger.info("Fast cache connection closed")

    await store.close()

    # Close HTTP client and cleanup connections
    await close_http_client()
    logger.info("HTTP client closed")

    logger.info("%s shutdown complete", settings.app_name)


def create_app(
    store: Optional[BackingStore] = None,
    fast_cache: Optional[FastCache] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    ``store`` and ``fast_cache`` replace the configured ones when given.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Shared daily tally with a spreadsheet system of record",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.injected_store = store
    app.state.injected_fast_cache = fast_cache

    # CORS middleware, configurable origins
    cors_origins = settings.get_cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Rate limiting on submissions
    from .middleware.rate_limit import RateLimiter, RateLimitMiddleware
    rate_limiter = RateLimiter(default_rpm=settings.rate_limit_rpm)
    app.add_middleware(RateLimitMiddleware, rate_limiter=rate_limiter)

    # Outermost, so rate-limit warnings carry the request id
    from .middleware.request_context import RequestContextMiddleware
    app.add_middleware(RequestContextMiddleware)

    # Include API routes
    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """Legacy health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/health/live")
    async def health_live():
        """Liveness check: process is running."""
        return {"status": "alive"}

    @app.get("/health/ready")
    async def health_ready(request: Request):
        """Readiness check: fast cache reachable when configured."""
        checks = {"write_strategy": getattr(request.app.state, "write_strategy", "unknown")}

        cache = getattr(request.app.state, "fast_cache", None)
        if cache is None:
            checks["fast_cache"] = "disabled"
        else:
            try:
                await cache.ping()
                checks["fast_cache"] = "ok"
            except CacheUnavailableError as e:
                checks["fast_cache"] = f"error: {e}"
                return JSONResponse(
                    status_code=503,
                    content={"status": "not_ready", "checks": checks},
                )

        return {"status": "ready", "checks": checks}

    # Prometheus metrics endpoint
    if settings.enable_metrics:
        @app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from .observability.metrics import generate_metrics_text
            return PlainTextResponse(
                generate_metrics_text(),
                media_type="text/plain; version=0.0.4; charset=utf-8",
            )

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "daily_tally.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
