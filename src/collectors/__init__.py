"""
Metric collectors for the external metrics adapter.

Each backend provides a plugin that turns a metric declaration into a
collector:
- ZMON: check results stored in KairosDB (``zmon-check``)
- Prometheus: PromQL instant queries (``prometheus-query``)
"""

from .base import Collector, CollectorPlugin
from .errors import (
    CollectorError,
    ConfigurationError,
    MalformedResponseError,
    PluginNotFoundError,
    UnsupportedMetricError,
)
from .prometheus import PrometheusCollector, PrometheusCollectorPlugin
from .registry import PluginRegistry, build_registry
from .types import (
    CollectedMetric,
    DataPoint,
    ExternalMetricValue,
    MetricDeclaration,
    MetricKey,
    MetricType,
    ObjectReference,
)
from .zmon import ZMONCollector, ZMONCollectorPlugin

__all__ = [
    "Collector",
    "CollectorPlugin",
    "PluginRegistry",
    "build_registry",
    # Backends
    "ZMONCollector",
    "ZMONCollectorPlugin",
    "PrometheusCollector",
    "PrometheusCollectorPlugin",
    # Types
    "CollectedMetric",
    "DataPoint",
    "ExternalMetricValue",
    "MetricDeclaration",
    "MetricKey",
    "MetricType",
    "ObjectReference",
    # Errors
    "CollectorError",
    "ConfigurationError",
    "MalformedResponseError",
    "PluginNotFoundError",
    "UnsupportedMetricError",
]
