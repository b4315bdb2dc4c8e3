"""
Collector status routes.
"""

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(prefix="/collectors", tags=["Collectors"])


class CollectorsResponse(BaseModel):
    """Status of every tracked declaration."""

    collectors: list[dict[str, Any]]
    stats: dict[str, Any]


@router.get("", response_model=CollectorsResponse)
async def list_collectors(request: Request) -> CollectorsResponse:
    """List tracked and rejected declarations with their poll state."""
    scheduler = request.app.state.scheduler
    return CollectorsResponse(
        collectors=scheduler.get_status(),
        stats=scheduler.get_stats(),
    )
