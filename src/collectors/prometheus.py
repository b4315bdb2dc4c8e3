"""
Prometheus query collector.

Runs one PromQL instant query per poll and publishes each returned
sample as an external metric.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from config.settings import get_settings
from src.utils.logging import get_logger

from .base import Collector, CollectorPlugin
from .errors import ConfigurationError, MalformedResponseError
from .parsing import INTERVAL_KEY, format_duration, resolve_interval
from .types import (
    CollectedMetric,
    DataPoint,
    ExternalMetricValue,
    MetricDeclaration,
    MetricType,
    ObjectReference,
    to_milli,
)

logger = get_logger(__name__)

PROMETHEUS_QUERY_METRIC = "prometheus-query"

# Declaration config keys
QUERY_KEY = "query"
QUERY_NAME_KEY = "query-name"
SERVER_KEY = "prometheus-server"


class PrometheusClient:
    """Async client for the Prometheus HTTP API."""

    def __init__(self, url: str | None = None, query_timeout: float | None = None) -> None:
        settings = get_settings()
        self.url = (url or settings.prometheus.url).rstrip("/")
        self.query_timeout = query_timeout or settings.prometheus.query_timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                timeout=self.query_timeout,
            )
        return self._client

    @staticmethod
    def parse_instant_result(result: dict[str, Any]) -> list[DataPoint]:
        """
        Parse Prometheus instant query result into data points.

        Prometheus returns results in this format:
        {
            "resultType": "vector",
            "result": [
                {"metric": {"label1": "value1"}, "value": [timestamp, "value"]}
            ]
        }
        """
        points = []
        result_type = result.get("resultType", "")
        results = result.get("result", [])

        if result_type == "vector":
            for item in results:
                value_data = item.get("value", [])
                if len(value_data) < 2:
                    continue
                point = _to_point(value_data[0], value_data[1], item.get("metric", {}))
                if point is not None:
                    points.append(point)

        elif result_type == "scalar":
            if len(results) >= 2:
                point = _to_point(results[0], results[1], {})
                if point is not None:
                    points.append(point)

        else:
            raise MalformedResponseError(f"unsupported result type {result_type!r}")

        return points

    async def query(self, query: str) -> list[DataPoint]:
        """
        Execute an instant query.

        Raises:
            httpx.HTTPError: On HTTP errors
            MalformedResponseError: On Prometheus query errors
        """
        client = await self._get_client()

        response = await client.get("/api/v1/query", params={"query": query})
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError("Prometheus response is not JSON") from e

        if data.get("status") != "success":
            error = data.get("error", "Unknown error")
            raise MalformedResponseError(f"Prometheus query failed: {error}")

        return self.parse_instant_result(data.get("data", {}))

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def _to_point(timestamp: Any, value: Any, labels: dict[str, str]) -> DataPoint | None:
    try:
        number = float(value)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(number):
        return None
    return DataPoint(
        timestamp=datetime.fromtimestamp(float(timestamp), tz=UTC),
        value=number,
        labels=dict(labels),
    )


@dataclass(frozen=True)
class PrometheusConfig:
    """Typed configuration of a Prometheus query declaration."""

    query: str
    interval: timedelta
    server: str | None = None

    @classmethod
    def parse(cls, raw: Mapping[str, str], default_interval: timedelta) -> "PrometheusConfig":
        query = raw.get(QUERY_KEY)
        if not query:
            query_name = raw.get(QUERY_NAME_KEY)
            if not query_name:
                raise ConfigurationError(
                    f"one of '{QUERY_KEY}' or '{QUERY_NAME_KEY}' is required",
                    key=QUERY_KEY,
                )
            query = raw.get(query_name)
            if not query:
                raise ConfigurationError(
                    f"config key '{QUERY_NAME_KEY}' refers to missing query '{query_name}'",
                    key=QUERY_NAME_KEY,
                )

        return cls(
            query=query,
            interval=resolve_interval(raw, default_interval),
            server=raw.get(SERVER_KEY) or None,
        )

    def to_config(self) -> dict[str, str]:
        raw = {QUERY_KEY: self.query, INTERVAL_KEY: format_duration(self.interval)}
        if self.server:
            raw[SERVER_KEY] = self.server
        return raw


class PrometheusCollector(Collector):
    """Collector for a single PromQL query."""

    collector_type = "prometheus"

    def __init__(
        self,
        client: PrometheusClient,
        declaration: MetricDeclaration,
        config: PrometheusConfig,
    ) -> None:
        super().__init__(declaration, config.interval)
        self._client = client
        self.config = config

    async def get_metrics(self) -> list[CollectedMetric]:
        data_points = await self._client.query(self.config.query)
        return [
            CollectedMetric(
                type=self.declaration.metric_type,
                external=ExternalMetricValue(
                    metric_name=self.declaration.metric_name,
                    metric_labels=dict(self.declaration.selector),
                    timestamp=point.timestamp,
                    value=to_milli(point.value),
                ),
            )
            for point in data_points
        ]


class PrometheusCollectorPlugin(CollectorPlugin):
    """Builds PrometheusCollectors for ``prometheus-query`` external metrics."""

    collector_type = "prometheus"
    metric_type = MetricType.EXTERNAL
    metric_names = frozenset({PROMETHEUS_QUERY_METRIC})

    def __init__(self, client: PrometheusClient) -> None:
        self.client = client
        self._server_clients: dict[str, PrometheusClient] = {}

    def _client_for(self, server: str | None) -> PrometheusClient:
        if not server:
            return self.client
        if server not in self._server_clients:
            self._server_clients[server] = PrometheusClient(
                url=server, query_timeout=self.client.query_timeout
            )
        return self._server_clients[server]

    def new_collector(
        self,
        owner: ObjectReference | None,
        declaration: MetricDeclaration,
        default_interval: timedelta,
    ) -> PrometheusCollector:
        self.check_identity(declaration)
        config = PrometheusConfig.parse(declaration.config, default_interval)
        return PrometheusCollector(self._client_for(config.server), declaration, config)

    async def close(self) -> None:
        await self.client.close()
        for client in self._server_clients.values():
            await client.close()
        self._server_clients.clear()
