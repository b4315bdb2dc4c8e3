"""
Core data types shared by collectors, the cache and the query path.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import MalformedResponseError


class MetricType(str, Enum):
    """Autoscaler metric source types."""

    OBJECT = "Object"
    PODS = "Pods"
    EXTERNAL = "External"


@dataclass(frozen=True)
class ObjectReference:
    """Reference to the autoscaling object that owns a declaration."""

    namespace: str
    name: str
    kind: str = "HorizontalPodAutoscaler"
    api_version: str = "autoscaling/v2"

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class MetricKey:
    """Hashable identity of one declaration, used as the cache key."""

    owner: ObjectReference
    metric_type: MetricType
    metric_name: str
    selector: tuple[tuple[str, str], ...] = ()

    @property
    def lookup_key(self) -> tuple[MetricType, str, tuple[tuple[str, str], ...]]:
        """Identity without the owner, as seen by callers of the query path."""
        return (self.metric_type, self.metric_name, self.selector)

    def __str__(self) -> str:
        labels = ",".join(f"{k}={v}" for k, v in self.selector)
        return f"{self.owner}/{self.metric_type.value}/{self.metric_name}{{{labels}}}"


def selector_key(selector: dict[str, str] | None) -> tuple[tuple[str, str], ...]:
    """Normalise a label selector into a sorted, hashable tuple."""
    return tuple(sorted((selector or {}).items()))


@dataclass(frozen=True)
class MetricDeclaration:
    """
    A request for one named, selector-scoped metric.

    ``selector`` labels are echoed back on every collected value.
    ``config`` is the free-form backend configuration; it is only ever
    inspected by the plugin that parses it.
    """

    owner: ObjectReference
    metric_type: MetricType
    metric_name: str
    selector: dict[str, str] = field(default_factory=dict)
    config: dict[str, str] = field(default_factory=dict)
    collector_type: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "metric_type", MetricType(self.metric_type))
        object.__setattr__(self, "selector", dict(self.selector))
        object.__setattr__(self, "config", dict(self.config))

    @property
    def key(self) -> MetricKey:
        return MetricKey(
            owner=self.owner,
            metric_type=self.metric_type,
            metric_name=self.metric_name,
            selector=selector_key(self.selector),
        )


@dataclass(frozen=True)
class DataPoint:
    """One raw value returned by a backend query."""

    timestamp: datetime
    value: float
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExternalMetricValue:
    """External metric sample; ``value`` is in milli-units."""

    metric_name: str
    metric_labels: dict[str, str]
    timestamp: datetime
    value: int

    @property
    def quantity(self) -> str:
        """Kubernetes quantity string for the milli value."""
        if self.value % 1000 == 0:
            return str(self.value // 1000)
        return f"{self.value}m"

    def to_dict(self) -> dict[str, Any]:
        return {
            "metricName": self.metric_name,
            "metricLabels": dict(self.metric_labels),
            "timestamp": self.timestamp.isoformat(),
            "value": self.quantity,
        }


@dataclass(frozen=True)
class CollectedMetric:
    """One collected data point, tagged with the declaration's metric type."""

    type: MetricType
    external: ExternalMetricValue


def to_milli(value: float) -> int:
    """
    Convert a float to integer milli-units.

    Uses round-half-even on ``value * 1000``; the conversion is lossy for
    values with more than three decimal places.
    """
    if not math.isfinite(value):
        raise MalformedResponseError(f"cannot convert non-finite value {value!r}")
    return int(round(value * 1000))
