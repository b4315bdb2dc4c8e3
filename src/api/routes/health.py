"""
Health check endpoints.
"""

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    scheduler: str
    tracked_collectors: int


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(status="healthy")


@router.get("/health/live", response_model=HealthResponse)
async def liveness_check() -> HealthResponse:
    """Liveness probe for Kubernetes."""
    return HealthResponse(status="alive")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request, response: Response) -> ReadinessResponse:
    """
    Readiness probe for Kubernetes.

    Ready once the collector scheduler is running. Individual collector
    failures do not affect readiness.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    running = scheduler is not None and scheduler.is_running

    if not running:
        response.status_code = 503

    return ReadinessResponse(
        status="ready" if running else "not_ready",
        scheduler="running" if running else "stopped",
        tracked_collectors=len(scheduler.tracked()) if scheduler is not None else 0,
    )
