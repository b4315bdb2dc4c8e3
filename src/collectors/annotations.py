"""
Extract metric declarations from HorizontalPodAutoscaler objects.

Backend configuration is attached to an HPA through annotations of the form

    metric-config.<metric-type>.<metric-name>.<collector-type>/<key>: <value>

External metrics additionally take configuration from their selector's
match labels; a ``type`` label there names the collector.
"""

import re
from typing import Any

from kubernetes.client import V2HorizontalPodAutoscaler, V2MetricSpec

from .types import MetricDeclaration, MetricType, ObjectReference

ANNOTATION_PATTERN = re.compile(
    r"^metric-config\.(?P<type>object|pods|external)\."
    r"(?P<name>.+)\.(?P<collector>[^./]+)/(?P<key>.+)$"
)
COLLECTOR_TYPE_LABEL = "type"

_METRIC_TYPES = {
    "object": MetricType.OBJECT,
    "pods": MetricType.PODS,
    "external": MetricType.EXTERNAL,
}


def parse_annotations(
    annotations: dict[str, str] | None,
) -> dict[tuple[MetricType, str], tuple[str, dict[str, str]]]:
    """Group metric-config annotations by (metric type, metric name)."""
    configs: dict[tuple[MetricType, str], tuple[str, dict[str, str]]] = {}
    for annotation, value in (annotations or {}).items():
        match = ANNOTATION_PATTERN.match(annotation)
        if match is None:
            continue
        key = (_METRIC_TYPES[match["type"]], match["name"])
        _, config = configs.setdefault(key, (match["collector"], {}))
        config[match["key"]] = value
    return configs


def _metric_identifier(metric: V2MetricSpec) -> tuple[MetricType, Any] | None:
    if metric.type == "External" and metric.external is not None:
        return MetricType.EXTERNAL, metric.external.metric
    if metric.type == "Object" and metric.object is not None:
        return MetricType.OBJECT, metric.object.metric
    if metric.type == "Pods" and metric.pods is not None:
        return MetricType.PODS, metric.pods.metric
    return None


def parse_hpa(hpa: V2HorizontalPodAutoscaler) -> list[MetricDeclaration]:
    """Build one declaration per non-resource metric of an HPA."""
    owner = ObjectReference(
        namespace=hpa.metadata.namespace or "default",
        name=hpa.metadata.name,
    )
    annotation_configs = parse_annotations(hpa.metadata.annotations)

    declarations = []
    for metric in (hpa.spec.metrics if hpa.spec else None) or []:
        identified = _metric_identifier(metric)
        if identified is None:
            continue
        metric_type, identifier = identified

        selector = {}
        if identifier.selector is not None and identifier.selector.match_labels:
            selector = dict(identifier.selector.match_labels)

        collector_type, config = annotation_configs.get(
            (metric_type, identifier.name), (None, {})
        )
        config = dict(config)
        if metric_type == MetricType.EXTERNAL:
            config.update(selector)
            collector_type = selector.get(COLLECTOR_TYPE_LABEL) or collector_type

        declarations.append(
            MetricDeclaration(
                owner=owner,
                metric_type=metric_type,
                metric_name=identifier.name,
                selector=selector,
                config=config,
                collector_type=collector_type,
            )
        )
    return declarations
