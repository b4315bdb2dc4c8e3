"""
Prometheus metrics describing the adapter itself.

Responsibilities:
- Count polls per collector type and outcome
- Track poll latency
- Track the number of tracked declarations
- Count query hits and misses
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.utils.logging import get_logger

logger = get_logger(__name__)


class AdapterMetrics:
    """Prometheus metrics for the collector scheduler and query path."""

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        prefix: str = "metrics_adapter",
    ) -> None:
        """
        Initialize metrics.

        Args:
            registry: Prometheus registry (a private one if None)
            prefix: Prefix for all metric names
        """
        self._registry = registry or CollectorRegistry()
        self._prefix = prefix

        self.polls_total = Counter(
            f"{prefix}_polls_total",
            "Collector polls by outcome",
            ["collector_type", "result"],
            registry=self._registry,
        )
        self.poll_duration_seconds = Histogram(
            f"{prefix}_poll_duration_seconds",
            "Time spent in a single collector poll",
            ["collector_type"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )
        self.tracked_collectors = Gauge(
            f"{prefix}_tracked_collectors",
            "Declarations currently tracked by the scheduler",
            registry=self._registry,
        )
        self.queries_total = Counter(
            f"{prefix}_queries_total",
            "Metric queries by outcome",
            ["result"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_poll(self, collector_type: str, result: str, duration_seconds: float) -> None:
        self.polls_total.labels(collector_type=collector_type, result=result).inc()
        self.poll_duration_seconds.labels(collector_type=collector_type).observe(duration_seconds)

    def record_query(self, found: bool) -> None:
        self.queries_total.labels(result="hit" if found else "miss").inc()

    def set_tracked(self, count: int) -> None:
        self.tracked_collectors.set(count)

    def generate(self) -> bytes:
        """Render the exposition format."""
        return generate_latest(self._registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


_adapter_metrics: AdapterMetrics | None = None


def get_adapter_metrics() -> AdapterMetrics:
    """Get the global adapter metrics."""
    global _adapter_metrics
    if _adapter_metrics is None:
        _adapter_metrics = AdapterMetrics()
    return _adapter_metrics
