"""
Base collector and plugin abstract classes.

Every backend ships a Collector (polls one declaration) and a
CollectorPlugin (turns a declaration into a Collector). Scheduling,
retries and caching live in the scheduler, not here.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import ClassVar

from .errors import UnsupportedMetricError
from .types import CollectedMetric, MetricDeclaration, MetricType, ObjectReference


class Collector(ABC):
    """
    Abstract base class for all metric collectors.

    A collector is bound to exactly one declaration. Its configuration and
    interval are frozen at construction; only the owning scheduler calls
    ``get_metrics``.

    Subclasses must implement:
    - get_metrics() -> list[CollectedMetric]: Query the backend once
    """

    collector_type: ClassVar[str] = "unknown"

    def __init__(self, declaration: MetricDeclaration, interval: timedelta) -> None:
        self.declaration = declaration
        self._interval = interval

    @property
    def interval(self) -> timedelta:
        """Poll interval decided at construction."""
        return self._interval

    @abstractmethod
    async def get_metrics(self) -> list[CollectedMetric]:
        """
        Query the backend once.

        Returns:
            One CollectedMetric per data point; an empty list when the
            backend is reachable but has no data

        Raises:
            Exception: Backend errors are passed through to the scheduler
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.declaration.key}, interval={self._interval})"


class CollectorPlugin(ABC):
    """
    Factory for one backend's collectors.

    A plugin owns a fixed metric type and set of metric names, and must
    reject anything else with ``UnsupportedMetricError`` so several plugins
    can sit behind one registry.
    """

    collector_type: ClassVar[str]
    metric_type: ClassVar[MetricType] = MetricType.EXTERNAL
    metric_names: ClassVar[frozenset[str]] = frozenset()

    def check_identity(self, declaration: MetricDeclaration) -> None:
        """Raise if the declaration does not belong to this plugin."""
        if declaration.metric_type != self.metric_type:
            raise UnsupportedMetricError(
                f"{self.collector_type} plugin does not support "
                f"{declaration.metric_type.value} metrics"
            )
        if self.metric_names and declaration.metric_name not in self.metric_names:
            raise UnsupportedMetricError(
                f"{self.collector_type} plugin does not support metric "
                f"'{declaration.metric_name}'"
            )

    @abstractmethod
    def new_collector(
        self,
        owner: ObjectReference | None,
        declaration: MetricDeclaration,
        default_interval: timedelta,
    ) -> Collector:
        """
        Build a collector for a declaration.

        Raises:
            UnsupportedMetricError: If the declaration is not this plugin's
            ConfigurationError: If the configuration is invalid
        """
        pass

    async def close(self) -> None:
        """Release shared backend clients."""
        return None
