"""
External metrics API routes.

Serves the subset of ``external.metrics.k8s.io/v1beta1`` the autoscaler
uses: list the values of one metric in a namespace, filtered by an
equality label selector.
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from src.collectors.types import MetricType
from src.services.query import MetricsQueryService

API_GROUP = "external.metrics.k8s.io"
API_VERSION = "v1beta1"

router = APIRouter(prefix=f"/apis/{API_GROUP}/{API_VERSION}", tags=["External Metrics"])


class ExternalMetricValueResponse(BaseModel):
    """One external metric value."""

    metricName: str
    metricLabels: dict[str, str] = Field(default_factory=dict)
    timestamp: str
    value: str


class ExternalMetricValueListResponse(BaseModel):
    """List of external metric values."""

    kind: str = "ExternalMetricValueList"
    apiVersion: str = f"{API_GROUP}/{API_VERSION}"
    metadata: dict[str, Any] = Field(default_factory=dict)
    items: list[ExternalMetricValueResponse]


def parse_label_selector(selector: str | None) -> dict[str, str]:
    """
    Parse an equality-based label selector such as ``app=web,tier=db``.

    Raises:
        ValueError: On set-based or otherwise malformed selectors
    """
    labels: dict[str, str] = {}
    if not selector:
        return labels

    for requirement in selector.split(","):
        requirement = requirement.strip()
        if not requirement:
            continue
        if "!=" in requirement:
            raise ValueError(f"unsupported selector requirement {requirement!r}")
        name, sep, value = requirement.partition("==")
        if not sep:
            name, sep, value = requirement.partition("=")
        name, value = name.strip(), value.strip()
        if not sep or not name:
            raise ValueError(f"invalid selector requirement {requirement!r}")
        labels[name] = value
    return labels


def get_query_service(request: Request) -> MetricsQueryService:
    return request.app.state.query_service


@router.get("", include_in_schema=False)
async def api_resources() -> dict[str, Any]:
    """Discovery document for the API group."""
    return {
        "kind": "APIResourceList",
        "apiVersion": "v1",
        "groupVersion": f"{API_GROUP}/{API_VERSION}",
        "resources": [],
    }


@router.get(
    "/namespaces/{namespace}/{metric_name}",
    response_model=ExternalMetricValueListResponse,
)
async def get_external_metric(
    request: Request,
    namespace: str,
    metric_name: str,
    label_selector: str | None = Query(default=None, alias="labelSelector"),
) -> ExternalMetricValueListResponse:
    """Current values of an external metric."""
    try:
        selector = parse_label_selector(label_selector)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    service = get_query_service(request)
    values, found = await service.get(
        metric_name, selector, MetricType.EXTERNAL, namespace=namespace
    )
    if not found:
        raise HTTPException(
            status_code=404,
            detail=f"no values for external metric '{metric_name}' in namespace '{namespace}'",
        )

    return ExternalMetricValueListResponse(
        items=[ExternalMetricValueResponse(**m.external.to_dict()) for m in values],
    )
