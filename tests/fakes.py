"""
Fakes shared by the test suite.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from src.collectors.base import Collector, CollectorPlugin
from src.collectors.types import (
    CollectedMetric,
    DataPoint,
    ExternalMetricValue,
    MetricDeclaration,
    MetricType,
    ObjectReference,
    to_milli,
)


class FakeZMONClient:
    """Stands in for ZMONClient; records every query."""

    def __init__(self, data_points: list[DataPoint] | None = None, error: Exception | None = None) -> None:
        self.data_points = data_points or []
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def query(self, check_id, key, tags, aggregators, duration) -> list[DataPoint]:
        self.calls.append(
            {
                "check_id": check_id,
                "key": key,
                "tags": tags,
                "aggregators": aggregators,
                "duration": duration,
            }
        )
        if self.error is not None:
            raise self.error
        return list(self.data_points)

    async def close(self) -> None:
        self.closed = True


class ScriptedCollector(Collector):
    """
    Collector whose poll outcomes are scripted by the test.

    Each item of ``outcomes`` is a list of floats (success), an exception
    (failure) or a callable returning an awaitable (custom behaviour).
    The last outcome repeats.
    """

    collector_type = "scripted"

    def __init__(self, declaration: MetricDeclaration, interval: timedelta, outcomes: list[Any]) -> None:
        super().__init__(declaration, interval)
        self.outcomes = list(outcomes)
        self.calls = 0

    async def get_metrics(self) -> list[CollectedMetric]:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if callable(outcome):
            outcome = await outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return [make_metric(self.declaration, v) for v in outcome]


class ScriptedPlugin(CollectorPlugin):
    """Plugin building ScriptedCollectors for ``scripted`` external metrics."""

    collector_type = "scripted"
    metric_type = MetricType.EXTERNAL
    metric_names = frozenset({"scripted"})

    def __init__(self) -> None:
        self.outcomes: dict[str, list[Any]] = {}
        self.built: list[ScriptedCollector] = []

    def script(self, declaration: MetricDeclaration, *outcomes: Any) -> None:
        self.outcomes[declaration.config.get("id", "")] = list(outcomes)

    def new_collector(self, owner, declaration, default_interval) -> ScriptedCollector:
        self.check_identity(declaration)
        interval = default_interval
        if "interval" in declaration.config:
            interval = timedelta(seconds=float(declaration.config["interval"]))
        collector = ScriptedCollector(
            declaration,
            interval,
            self.outcomes.get(declaration.config.get("id", ""), [[]]),
        )
        self.built.append(collector)
        return collector


def make_metric(declaration: MetricDeclaration, value: float) -> CollectedMetric:
    return CollectedMetric(
        type=declaration.metric_type,
        external=ExternalMetricValue(
            metric_name=declaration.metric_name,
            metric_labels=dict(declaration.selector),
            timestamp=datetime(2024, 1, 1, tzinfo=UTC),
            value=to_milli(value),
        ),
    )


def scripted_declaration(
    declaration_id: str = "a",
    owner: ObjectReference | None = None,
    selector: dict[str, str] | None = None,
    **config: str,
) -> MetricDeclaration:
    return MetricDeclaration(
        owner=owner or ObjectReference(namespace="default", name="web"),
        metric_type=MetricType.EXTERNAL,
        metric_name="scripted",
        selector=selector or {"id": declaration_id},
        config={"id": declaration_id, **config},
    )
