"""
Shared test fixtures and configuration.
"""

from datetime import timedelta

import pytest

from fakes import FakeZMONClient, ScriptedPlugin
from src.collectors.registry import PluginRegistry
from src.collectors.types import MetricDeclaration, MetricType, ObjectReference
from src.collectors.zmon import ZMONCollectorPlugin
from src.storage.cache import MetricCache


@pytest.fixture
def owner() -> ObjectReference:
    return ObjectReference(namespace="default", name="web")


@pytest.fixture
def zmon_config() -> dict[str, str]:
    return {
        "check-id": "1234",
        "aggregators": "max",
        "tag-alias": "cluster_alias",
        "duration": "5m",
        "key": "key",
    }


@pytest.fixture
def zmon_declaration(owner: ObjectReference, zmon_config: dict[str, str]) -> MetricDeclaration:
    return MetricDeclaration(
        owner=owner,
        metric_type=MetricType.EXTERNAL,
        metric_name="zmon-check",
        config=zmon_config,
    )


@pytest.fixture
def fake_zmon_client() -> FakeZMONClient:
    return FakeZMONClient()


@pytest.fixture
def zmon_plugin(fake_zmon_client: FakeZMONClient) -> ZMONCollectorPlugin:
    return ZMONCollectorPlugin(fake_zmon_client)


@pytest.fixture
def scripted_plugin() -> ScriptedPlugin:
    return ScriptedPlugin()


@pytest.fixture
def registry(scripted_plugin: ScriptedPlugin, zmon_plugin: ZMONCollectorPlugin) -> PluginRegistry:
    registry = PluginRegistry(default_interval=timedelta(seconds=10))
    registry.register(zmon_plugin)
    registry.register(scripted_plugin)
    return registry


@pytest.fixture
def cache() -> MetricCache:
    return MetricCache()
