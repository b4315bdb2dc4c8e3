"""
Query path serving cached metric values to the external metrics API.
"""

from src.collectors.types import CollectedMetric, MetricType
from src.monitoring.metrics import AdapterMetrics
from src.storage.cache import MetricCache
from src.utils.logging import get_logger

from .scheduler import CollectorScheduler

logger = get_logger(__name__)


class MetricsQueryService:
    """
    Answers "current values of metric X with selector Y".

    Reads never wait on a backend unless ``pull_through`` is enabled, in
    which case a miss triggers one synchronous poll of every matching
    tracked collector before reading again.
    """

    def __init__(
        self,
        cache: MetricCache,
        scheduler: CollectorScheduler | None = None,
        pull_through: bool = False,
        metrics: AdapterMetrics | None = None,
    ) -> None:
        if pull_through and scheduler is None:
            raise ValueError("pull_through requires a scheduler")
        self._cache = cache
        self._scheduler = scheduler
        self.pull_through = pull_through
        self._metrics = metrics

    def lookup(
        self,
        metric_name: str,
        selector: dict[str, str] | None,
        metric_type: MetricType = MetricType.EXTERNAL,
        namespace: str | None = None,
    ) -> tuple[list[CollectedMetric], bool]:
        """Read the cache without triggering a poll."""
        values = self._cache.lookup(metric_name, selector, metric_type, namespace)
        if values is None:
            return [], False
        return values, True

    async def get(
        self,
        metric_name: str,
        selector: dict[str, str] | None,
        metric_type: MetricType = MetricType.EXTERNAL,
        namespace: str | None = None,
    ) -> tuple[list[CollectedMetric], bool]:
        """
        Get the latest values for a metric.

        Returns:
            (values, found); ``found`` is False when nothing matching has
            been polled successfully, which is distinct from an empty value
            list
        """
        values, found = self.lookup(metric_name, selector, metric_type, namespace)

        if not found and self.pull_through and self._scheduler is not None:
            keys = self._cache.keys_for(metric_name, selector, metric_type, namespace)
            for key in keys:
                await self._scheduler.poll(key)
            if keys:
                logger.debug("Pull-through poll on cache miss", metric=metric_name, polled=len(keys))
                values, found = self.lookup(metric_name, selector, metric_type, namespace)

        if self._metrics is not None:
            self._metrics.record_query(found)
        return values, found
