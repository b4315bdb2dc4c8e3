"""
FastAPI application for the metrics adapter.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from config.settings import AppSettings, get_settings
from src.collectors.registry import build_registry
from src.monitoring.metrics import get_adapter_metrics
from src.services.discovery import HPADiscovery
from src.services.query import MetricsQueryService
from src.services.scheduler import CollectorScheduler
from src.storage.cache import MetricCache
from src.utils.logging import get_logger, setup_logging

from .middleware import RequestIdMiddleware, request_timing_middleware
from .routes import collectors, health, metrics

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    settings: AppSettings = app.state.settings
    logger.info("Starting metrics adapter", env=settings.env)

    adapter_metrics = get_adapter_metrics()
    max_staleness = settings.collector.max_staleness
    cache = MetricCache(
        max_staleness=timedelta(seconds=max_staleness) if max_staleness else None
    )
    registry = build_registry(settings)
    scheduler = CollectorScheduler(
        registry,
        cache,
        poll_timeout=settings.collector.poll_timeout,
        metrics=adapter_metrics,
    )
    app.state.scheduler = scheduler
    app.state.query_service = MetricsQueryService(
        cache,
        scheduler=scheduler,
        pull_through=settings.collector.pull_through,
        metrics=adapter_metrics,
    )

    await scheduler.start()

    discovery = None
    if settings.kubernetes.discovery_enabled:
        discovery = HPADiscovery(scheduler, settings.kubernetes)
        await discovery.start()
    app.state.discovery = discovery

    logger.info("Metrics adapter started successfully")

    yield

    logger.info("Shutting down metrics adapter")
    if discovery is not None:
        await discovery.stop()
    await scheduler.stop()
    await registry.close()
    logger.info("Metrics adapter shutdown complete")


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Metrics Adapter",
        description="External metrics for HorizontalPodAutoscalers from pluggable collectors",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings

    app.add_middleware(RequestIdMiddleware)
    app.middleware("http")(request_timing_middleware)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler."""
        logger.exception("Unhandled exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics() -> Response:
        """Prometheus metrics endpoint."""
        adapter_metrics = get_adapter_metrics()
        return Response(content=adapter_metrics.generate(), media_type=adapter_metrics.content_type)

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(collectors.router, prefix="/api/v1")

    return app


def main() -> None:
    """Entry point for running the application."""
    import uvicorn

    setup_logging()
    settings = get_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
