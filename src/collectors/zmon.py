"""
ZMON check collector.

Queries ZMON check results stored in KairosDB and publishes them as
external metrics. One collector per ``zmon-check`` declaration; all
collectors share a single ZMONClient.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from config.settings import get_settings
from src.utils.logging import get_logger

from .base import Collector, CollectorPlugin
from .errors import ConfigurationError, MalformedResponseError
from .parsing import (
    INTERVAL_KEY,
    extract_prefixed,
    format_duration,
    parse_int,
    parse_positive_duration,
    require,
    resolve_interval,
    split_list,
)
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

ZMON_CHECK_METRIC = "zmon-check"
ZMON_CHECK_METRIC_LEGACY = "zmon"

# Declaration config keys
CHECK_ID_KEY = "check-id"
KEY_KEY = "key"
DURATION_KEY = "duration"
AGGREGATORS_KEY = "aggregators"
TAG_PREFIX = "tag-"

DEFAULT_QUERY_DURATION = timedelta(minutes=10)

KAIROSDB_QUERY_PATH = "/kairosdb-proxy/api/v1/datapoints/query"
CHECK_METRIC_NAME = "zmon.check.{check_id}"
QUERY_LIMIT = 10000

VALID_AGGREGATORS = frozenset(
    {"avg", "dev", "count", "first", "last", "max", "min", "sum", "diff"}
)


def _relative_time(duration: timedelta) -> dict[str, Any]:
    """Express a duration in the largest KairosDB unit that divides it."""
    millis = int(duration.total_seconds() * 1000)
    for unit, size in (("hours", 3_600_000), ("minutes", 60_000), ("seconds", 1_000)):
        if millis % size == 0:
            return {"value": millis // size, "unit": unit}
    return {"value": millis, "unit": "milliseconds"}


class ZMONClient:
    """
    Thin async client for the KairosDB proxy that stores ZMON check data.

    Safe to share between collectors; the underlying httpx client is
    created lazily and reused.
    """

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.url = (url or settings.zmon.url).rstrip("/")
        self.token = token if token is not None else settings.zmon.token
        self.timeout = timeout or settings.zmon.timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    @staticmethod
    def build_query(
        check_id: int,
        key: str,
        tags: Mapping[str, str],
        aggregators: tuple[str, ...],
        duration: timedelta,
    ) -> dict[str, Any]:
        """Build the KairosDB query body for one check."""
        relative = _relative_time(duration)
        query_tags = {"key": [key]}
        query_tags.update({name: [value] for name, value in tags.items()})

        return {
            "start_relative": relative,
            "metrics": [
                {
                    "name": CHECK_METRIC_NAME.format(check_id=check_id),
                    "limit": QUERY_LIMIT,
                    "tags": query_tags,
                    "group_by": [{"name": "tag", "tags": ["key"]}],
                    "aggregators": [
                        {"name": name, "sampling": dict(relative)}
                        for name in aggregators
                    ],
                }
            ],
        }

    @staticmethod
    def parse_response(data: dict[str, Any]) -> list[DataPoint]:
        """
        Parse a KairosDB query response.

        KairosDB returns results in this format:
        {
            "queries": [
                {"results": [{"values": [[timestamp_ms, value], ...]}]}
            ]
        }
        """
        queries = data.get("queries")
        if not isinstance(queries, list) or len(queries) != 1:
            raise MalformedResponseError(
                f"expected exactly one query result, got {len(queries) if isinstance(queries, list) else 'none'}"
            )

        points = []
        for result in queries[0].get("results") or []:
            for item in result.get("values") or []:
                try:
                    timestamp = datetime.fromtimestamp(float(item[0]) / 1000, tz=UTC)
                    value = float(item[1])
                except (IndexError, TypeError, ValueError) as e:
                    raise MalformedResponseError(f"invalid data point {item!r}") from e
                points.append(DataPoint(timestamp=timestamp, value=value))
        return points

    async def query(
        self,
        check_id: int,
        key: str,
        tags: Mapping[str, str],
        aggregators: tuple[str, ...],
        duration: timedelta,
    ) -> list[DataPoint]:
        """
        Query data points for a check.

        Raises:
            httpx.HTTPError: On HTTP errors
            MalformedResponseError: On unexpected response bodies
        """
        client = await self._get_client()
        body = self.build_query(check_id, key, tags, aggregators, duration)

        response = await client.post(KAIROSDB_QUERY_PATH, json=body)
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError("KairosDB response is not JSON") from e

        return self.parse_response(data)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


@dataclass(frozen=True)
class ZMONConfig:
    """Typed configuration of a ZMON check declaration."""

    check_id: int
    key: str
    interval: timedelta
    duration: timedelta = DEFAULT_QUERY_DURATION
    aggregators: tuple[str, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Mapping[str, str], default_interval: timedelta) -> "ZMONConfig":
        """
        Parse a declaration's config mapping.

        Raises:
            ConfigurationError: If a required key is missing or malformed
        """
        aggregators = split_list(raw, AGGREGATORS_KEY)
        for name in aggregators:
            if name not in VALID_AGGREGATORS:
                raise ConfigurationError(
                    f"config key '{AGGREGATORS_KEY}' has invalid aggregator {name!r}",
                    key=AGGREGATORS_KEY,
                )

        return cls(
            check_id=parse_int(raw, CHECK_ID_KEY),
            key=require(raw, KEY_KEY),
            interval=resolve_interval(raw, default_interval),
            duration=parse_positive_duration(raw, DURATION_KEY, DEFAULT_QUERY_DURATION),
            aggregators=aggregators,
            tags=extract_prefixed(raw, TAG_PREFIX),
        )

    def to_config(self) -> dict[str, str]:
        """Serialize back into declaration config keys."""
        raw = {
            CHECK_ID_KEY: str(self.check_id),
            KEY_KEY: self.key,
            INTERVAL_KEY: format_duration(self.interval),
            DURATION_KEY: format_duration(self.duration),
        }
        if self.aggregators:
            raw[AGGREGATORS_KEY] = ",".join(self.aggregators)
        raw.update({TAG_PREFIX + name: value for name, value in self.tags.items()})
        return raw


class ZMONCollector(Collector):
    """Collector for a single ZMON check."""

    collector_type = "zmon"

    def __init__(
        self,
        client: ZMONClient,
        declaration: MetricDeclaration,
        config: ZMONConfig,
    ) -> None:
        super().__init__(declaration, config.interval)
        self._client = client
        self.config = config

    async def get_metrics(self) -> list[CollectedMetric]:
        """Query the check and map each data point to an external metric."""
        data_points = await self._client.query(
            self.config.check_id,
            self.config.key,
            self.config.tags,
            self.config.aggregators,
            self.config.duration,
        )

        metrics = [
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

        logger.debug(
            "Collected ZMON check",
            check_id=self.config.check_id,
            key=self.config.key,
            count=len(metrics),
        )
        return metrics


class ZMONCollectorPlugin(CollectorPlugin):
    """Builds ZMONCollectors for ``zmon-check`` external metrics."""

    collector_type = "zmon"
    metric_type = MetricType.EXTERNAL
    metric_names = frozenset({ZMON_CHECK_METRIC, ZMON_CHECK_METRIC_LEGACY})

    def __init__(self, client: ZMONClient) -> None:
        self.client = client

    def new_collector(
        self,
        owner: ObjectReference | None,
        declaration: MetricDeclaration,
        default_interval: timedelta,
    ) -> ZMONCollector:
        self.check_identity(declaration)
        config = ZMONConfig.parse(declaration.config, default_interval)
        return ZMONCollector(self.client, declaration, config)

    async def close(self) -> None:
        await self.client.close()
