"""
Plugin registry resolving declarations to collectors.
"""

from datetime import timedelta

from config.settings import AppSettings, get_settings
from src.utils.logging import get_logger

from .base import Collector, CollectorPlugin
from .errors import PluginNotFoundError, UnsupportedMetricError
from .prometheus import PrometheusClient, PrometheusCollectorPlugin
from .types import MetricDeclaration, MetricType
from .zmon import ZMONClient, ZMONCollectorPlugin

logger = get_logger(__name__)


class PluginRegistry:
    """
    Ordered set of installed collector plugins.

    Plugins are registered at startup and only read afterwards. A
    declaration naming its collector type is dispatched directly; otherwise
    plugins for the metric type are tried in registration order and the
    first one that accepts the declaration wins.
    """

    def __init__(self, default_interval: timedelta) -> None:
        if default_interval <= timedelta(0):
            raise ValueError("default_interval must be positive")
        self.default_interval = default_interval
        self._plugins: list[CollectorPlugin] = []
        self._by_type: dict[tuple[MetricType, str], CollectorPlugin] = {}

    def register(self, plugin: CollectorPlugin) -> None:
        """Register a plugin; later registrations of the same type are rejected."""
        key = (plugin.metric_type, plugin.collector_type)
        if key in self._by_type:
            raise ValueError(
                f"plugin already registered for {plugin.metric_type.value}/{plugin.collector_type}"
            )
        self._plugins.append(plugin)
        self._by_type[key] = plugin
        logger.info(
            "Collector plugin registered",
            collector_type=plugin.collector_type,
            metric_type=plugin.metric_type.value,
            metric_names=sorted(plugin.metric_names),
        )

    @property
    def plugins(self) -> list[CollectorPlugin]:
        return list(self._plugins)

    def get_plugin(self, metric_type: MetricType, collector_type: str) -> CollectorPlugin | None:
        return self._by_type.get((metric_type, collector_type))

    def new_collector(self, declaration: MetricDeclaration) -> Collector:
        """
        Build the collector for a declaration.

        Raises:
            PluginNotFoundError: If no plugin accepts the declaration
            ConfigurationError: If the owning plugin finds the config invalid
        """
        if declaration.collector_type:
            plugin = self.get_plugin(declaration.metric_type, declaration.collector_type)
            if plugin is None:
                raise PluginNotFoundError(
                    f"no {declaration.metric_type.value} collector plugin "
                    f"'{declaration.collector_type}' registered",
                    declaration=declaration,
                )
            return plugin.new_collector(declaration.owner, declaration, self.default_interval)

        reasons = []
        for plugin in self._plugins:
            if plugin.metric_type != declaration.metric_type:
                continue
            try:
                return plugin.new_collector(
                    declaration.owner, declaration, self.default_interval
                )
            except UnsupportedMetricError as e:
                reasons.append(str(e))

        raise PluginNotFoundError(
            f"no matching collector for {declaration.metric_type.value} metric "
            f"'{declaration.metric_name}'"
            + (f" ({'; '.join(reasons)})" if reasons else ""),
            declaration=declaration,
        )

    async def close(self) -> None:
        for plugin in self._plugins:
            await plugin.close()


def build_registry(settings: AppSettings | None = None) -> PluginRegistry:
    """Create a registry with every built-in plugin."""
    settings = settings or get_settings()

    registry = PluginRegistry(
        default_interval=timedelta(seconds=settings.collector.default_interval)
    )
    registry.register(
        ZMONCollectorPlugin(
            ZMONClient(
                url=settings.zmon.url,
                token=settings.zmon.token,
                timeout=settings.zmon.timeout,
            )
        )
    )
    registry.register(
        PrometheusCollectorPlugin(
            PrometheusClient(
                url=settings.prometheus.url,
                query_timeout=settings.prometheus.query_timeout,
            )
        )
    )
    return registry
