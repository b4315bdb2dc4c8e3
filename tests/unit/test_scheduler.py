"""
Tests for the collector scheduler.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from fakes import scripted_declaration
from src.collectors.errors import ConfigurationError, PluginNotFoundError
from src.collectors.types import MetricDeclaration, MetricType, ObjectReference
from src.monitoring.metrics import AdapterMetrics
from src.services.scheduler import CollectorScheduler
from src.storage.cache import CollectorState


@pytest.fixture
def adapter_metrics() -> AdapterMetrics:
    return AdapterMetrics()


@pytest.fixture
def scheduler(registry, cache, adapter_metrics) -> CollectorScheduler:
    return CollectorScheduler(registry, cache, poll_timeout=5.0, metrics=adapter_metrics)


def _values(cache, declaration_id: str) -> list[int] | None:
    values = cache.lookup("scripted", {"id": declaration_id}, MetricType.EXTERNAL)
    return None if values is None else [m.external.value for m in values]


class TestDeclarationLifecycle:
    """Tests for add, remove and sync."""

    def test_add_creates_pending_entry(self, scheduler, cache, adapter_metrics):
        declaration = scripted_declaration("a")

        tracked = scheduler.add(declaration)

        assert scheduler.get(declaration.key) is tracked
        assert cache.get(declaration.key).state == CollectorState.PENDING
        assert cache.get(declaration.key).generation == tracked.generation
        assert adapter_metrics.registry.get_sample_value("metrics_adapter_tracked_collectors") == 1.0

    def test_add_identical_is_noop(self, scheduler, scripted_plugin):
        first = scheduler.add(scripted_declaration("a"))
        second = scheduler.add(scripted_declaration("a"))

        assert first is second
        assert len(scripted_plugin.built) == 1

    def test_changed_config_replaces_collector(self, scheduler, cache):
        first = scheduler.add(scripted_declaration("a"))
        second = scheduler.add(scripted_declaration("a", extra="1"))

        assert second.generation != first.generation
        assert scheduler.tracked() == [second]
        assert cache.get(second.key).generation == second.generation

    def test_unknown_metric_builds_nothing(self, scheduler, scripted_plugin, owner):
        declaration = MetricDeclaration(
            owner=owner,
            metric_type=MetricType.EXTERNAL,
            metric_name="non-zmon-check",
        )

        with pytest.raises(PluginNotFoundError):
            scheduler.add(declaration)

        assert scheduler.tracked() == []
        assert scripted_plugin.built == []
        assert declaration.key not in scheduler.cache

    def test_invalid_update_drops_old_collector(self, scheduler, cache, zmon_declaration, zmon_config):
        scheduler.add(zmon_declaration)
        del zmon_config["check-id"]
        broken = MetricDeclaration(
            owner=zmon_declaration.owner,
            metric_type=MetricType.EXTERNAL,
            metric_name="zmon-check",
            config=zmon_config,
        )

        with pytest.raises(ConfigurationError):
            scheduler.add(broken)

        assert scheduler.get(zmon_declaration.key) is None
        assert zmon_declaration.key not in cache

    def test_remove(self, scheduler, cache):
        declaration = scripted_declaration("a")
        scheduler.add(declaration)

        assert scheduler.remove(declaration.key) is True
        assert scheduler.remove(declaration.key) is False
        assert declaration.key not in cache

    def test_remove_owner(self, scheduler):
        one = ObjectReference(namespace="default", name="one")
        two = ObjectReference(namespace="default", name="two")
        scheduler.add(scripted_declaration("a", owner=one))
        scheduler.add(scripted_declaration("b", owner=one))
        scheduler.add(scripted_declaration("c", owner=two))

        assert scheduler.remove_owner(one) == 2
        assert [t.declaration.owner for t in scheduler.tracked()] == [two]

    def test_sync_adds_and_removes(self, scheduler):
        scheduler.add(scripted_declaration("a"))
        scheduler.add(scripted_declaration("b"))

        errors = scheduler.sync([scripted_declaration("b"), scripted_declaration("c")])

        assert errors == {}
        assert sorted(t.declaration.config["id"] for t in scheduler.tracked()) == ["b", "c"]

    def test_sync_reports_rejections(self, scheduler, owner, scripted_plugin):
        bad = MetricDeclaration(owner=owner, metric_type=MetricType.EXTERNAL, metric_name="unknown")

        errors = scheduler.sync([scripted_declaration("a"), bad])

        assert list(errors) == [bad.key]
        assert isinstance(errors[bad.key], PluginNotFoundError)
        assert len(scheduler.tracked()) == 1

        again = scheduler.sync([scripted_declaration("a"), bad])

        assert again[bad.key] is errors[bad.key]
        assert len(scripted_plugin.built) == 1

    def test_sync_out_of_range_interval_is_isolated(self, scheduler, zmon_declaration, zmon_config):
        zmon_config["interval"] = "9" * 20 + "h"
        bad = MetricDeclaration(
            owner=zmon_declaration.owner,
            metric_type=MetricType.EXTERNAL,
            metric_name="zmon-check",
            config=zmon_config,
        )
        good = scripted_declaration("z")

        errors = scheduler.sync([bad, good])

        assert list(errors) == [bad.key]
        assert errors[bad.key].key == "interval"
        assert [t.key for t in scheduler.tracked()] == [good.key]

    def test_sync_empty_removes_everything(self, scheduler, cache):
        scheduler.add(scripted_declaration("a"))

        scheduler.sync([])

        assert scheduler.tracked() == []
        assert len(cache) == 0

    def test_status_includes_rejected(self, scheduler, owner):
        bad = MetricDeclaration(owner=owner, metric_type=MetricType.EXTERNAL, metric_name="unknown")
        scheduler.sync([scripted_declaration("a"), bad])

        states = sorted(item["state"] for item in scheduler.get_status())

        assert states == ["pending", "rejected"]
        assert scheduler.get_stats() == {
            "running": False,
            "tracked": 1,
            "rejected": 1,
            "states": {"pending": 1},
        }


class TestPolling:
    """Tests for polling and result handling."""

    @pytest.mark.asyncio
    async def test_poll_success(self, scheduler, scripted_plugin, cache, adapter_metrics):
        declaration = scripted_declaration("a")
        scripted_plugin.script(declaration, [1.5])
        scheduler.add(declaration)

        assert await scheduler.poll(declaration.key) is True

        assert _values(cache, "a") == [1500]
        assert cache.get(declaration.key).state == CollectorState.ACTIVE
        assert (
            adapter_metrics.registry.get_sample_value(
                "metrics_adapter_polls_total", {"collector_type": "scripted", "result": "success"}
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_poll_untracked(self, scheduler):
        assert await scheduler.poll(scripted_declaration("a").key) is False

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_value(self, scheduler, scripted_plugin, cache):
        declaration = scripted_declaration("a")
        scripted_plugin.script(declaration, [1.0], RuntimeError("backend down"))
        scheduler.add(declaration)

        await scheduler.poll(declaration.key)
        assert await scheduler.poll(declaration.key) is False

        entry = cache.get(declaration.key)
        assert entry.state == CollectorState.DEGRADED
        assert entry.last_error == "backend down"
        assert _values(cache, "a") == [1000]

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, scheduler, scripted_plugin, cache):
        good = scripted_declaration("good")
        bad = scripted_declaration("bad")
        scripted_plugin.script(good, [7.0])
        scripted_plugin.script(bad, RuntimeError("boom"))
        scheduler.add(good)
        scheduler.add(bad)

        await asyncio.gather(scheduler.poll(good.key), scheduler.poll(bad.key))

        assert _values(cache, "good") == [7000]
        assert _values(cache, "bad") is None
        assert cache.get(bad.key).state == CollectorState.PENDING

    @pytest.mark.asyncio
    async def test_poll_timeout_is_bounded_by_interval(self, scheduler, scripted_plugin, cache, adapter_metrics):
        async def hang():
            await asyncio.sleep(10)

        declaration = scripted_declaration("slow", interval="0.1")
        scripted_plugin.script(declaration, hang)
        tracked = scheduler.add(declaration)

        assert scheduler.poll_timeout_for(tracked.collector) == pytest.approx(0.09)
        assert await scheduler.poll(declaration.key) is False

        entry = cache.get(declaration.key)
        assert "timed out" in entry.last_error
        assert (
            adapter_metrics.registry.get_sample_value(
                "metrics_adapter_polls_total", {"collector_type": "scripted", "result": "timeout"}
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_in_flight_result_discarded_after_removal(self, scheduler, scripted_plugin, cache):
        started = asyncio.Event()
        release = asyncio.Event()

        async def gated():
            started.set()
            await release.wait()
            return [1.0]

        declaration = scripted_declaration("a")
        scripted_plugin.script(declaration, gated)
        scheduler.add(declaration)

        task = asyncio.create_task(scheduler.poll(declaration.key))
        await started.wait()
        scheduler.remove(declaration.key)
        release.set()

        assert await task is False
        assert declaration.key not in cache
        assert _values(cache, "a") is None

    @pytest.mark.asyncio
    async def test_in_flight_result_discarded_after_replacement(self, scheduler, scripted_plugin, cache):
        started = asyncio.Event()
        release = asyncio.Event()

        async def gated():
            started.set()
            await release.wait()
            return [1.0]

        old = scripted_declaration("a")
        scripted_plugin.script(old, gated)
        scheduler.add(old)

        task = asyncio.create_task(scheduler.poll(old.key))
        await started.wait()
        scripted_plugin.script(old, [2.0])
        new = scheduler.add(scripted_declaration("a", extra="1"))
        release.set()

        assert await task is False
        assert cache.get(old.key).generation == new.generation
        assert cache.get(old.key).has_value is False


class TestScheduling:
    """Tests for the APScheduler-driven loop."""

    @pytest.mark.asyncio
    async def test_start_polls_each_collector(self, scheduler, scripted_plugin, cache):
        declaration = scripted_declaration("a", interval="0.05")
        scripted_plugin.script(declaration, [3.0])
        scheduler.add(declaration)

        await scheduler.start()
        try:
            assert scheduler.is_running
            assert scheduler.get_next_run_time(declaration.key) is not None
            await asyncio.sleep(0.3)
        finally:
            await scheduler.stop()

        assert scripted_plugin.built[0].calls >= 2
        assert _values(cache, "a") == [3000]
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_jobs_skip_overlapping_ticks(self, scheduler):
        tracked = scheduler.add(scripted_declaration("a", interval="60"))

        await scheduler.start()
        try:
            job = scheduler._scheduler.get_job(tracked.job_id)
            assert job.max_instances == 1
            assert job.coalesce is True
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_overlapping_tick_does_not_start_second_poll(self, scheduler, scripted_plugin):
        started = asyncio.Event()
        release = asyncio.Event()

        async def gated():
            started.set()
            await release.wait()
            return [1.0]

        declaration = scripted_declaration("a", interval="60")
        scripted_plugin.script(declaration, gated)
        tracked = scheduler.add(declaration)

        await scheduler.start()
        try:
            await started.wait()
            scheduler._scheduler.modify_job(tracked.job_id, next_run_time=datetime.now(UTC))
            await asyncio.sleep(0.1)
            release.set()
            await asyncio.sleep(0.05)
        finally:
            await scheduler.stop()

        assert scripted_plugin.built[0].calls == 1

    def test_max_instances_listener_logs(self, scheduler):
        scheduler._on_max_instances(SimpleNamespace(job_id="collector-abc"))

    @pytest.mark.asyncio
    async def test_add_while_running_schedules(self, scheduler, scripted_plugin, cache):
        await scheduler.start()
        try:
            declaration = scripted_declaration("late", interval="60")
            scripted_plugin.script(declaration, [1.0])
            scheduler.add(declaration)
            await asyncio.sleep(0.1)
        finally:
            await scheduler.stop()

        assert _values(cache, "late") == [1000]

    @pytest.mark.asyncio
    async def test_stop_keeps_cached_values(self, scheduler, scripted_plugin, cache):
        declaration = scripted_declaration("a")
        scripted_plugin.script(declaration, [1.0])
        scheduler.add(declaration)
        await scheduler.poll(declaration.key)

        await scheduler.start()
        await scheduler.stop()

        assert _values(cache, "a") == [1000]
        assert scheduler.get_next_run_time(declaration.key) is None

    def test_poll_timeout_must_be_positive(self, registry, cache):
        with pytest.raises(ValueError):
            CollectorScheduler(registry, cache, poll_timeout=0)

    def test_collector_interval_from_registry_default(self, scheduler):
        tracked = scheduler.add(scripted_declaration("a"))

        assert tracked.collector.interval == timedelta(seconds=10)
