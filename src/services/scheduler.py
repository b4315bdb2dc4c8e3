"""
Collector scheduler.

Responsibilities:
- Track the set of active declarations and their collectors
- Poll every collector on its own interval using APScheduler
- Bound each poll with a timeout shorter than the collector interval
- Fold poll results into the cache without letting one collector's
  failure affect another
"""

import asyncio
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.collectors.base import Collector
from src.collectors.errors import ConfigurationError
from src.collectors.registry import PluginRegistry
from src.collectors.types import MetricDeclaration, MetricKey, ObjectReference
from src.monitoring.metrics import AdapterMetrics
from src.storage.cache import MetricCache
from src.utils.logging import get_logger

logger = get_logger(__name__)

# A poll may use at most this share of its collector's interval
TIMEOUT_FRACTION = 0.9


@dataclass
class TrackedCollector:
    """A declaration together with the collector currently serving it."""

    declaration: MetricDeclaration
    collector: Collector
    generation: str = field(default_factory=lambda: uuid.uuid4().hex)
    added_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> MetricKey:
        return self.declaration.key

    @property
    def job_id(self) -> str:
        return f"collector-{self.generation}"


class CollectorScheduler:
    """
    Owns every active collector and polls each one independently.

    Declarations enter through ``add``/``sync`` and leave through
    ``remove``/``sync``. A changed declaration replaces its collector with a
    new generation; results from a replaced or removed generation are
    discarded by the cache.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        cache: MetricCache,
        poll_timeout: float = 30.0,
        metrics: AdapterMetrics | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            registry: Plugin registry used to build collectors
            cache: Cache receiving poll results
            poll_timeout: Upper bound for one poll in seconds
            metrics: Optional adapter metrics
        """
        if poll_timeout <= 0:
            raise ValueError("poll_timeout must be positive")

        self._registry = registry
        self._cache = cache
        self.poll_timeout = poll_timeout
        self._metrics = metrics
        self._tracked: dict[MetricKey, TrackedCollector] = {}
        self._rejected: dict[MetricKey, tuple[MetricDeclaration, ConfigurationError]] = {}
        self._scheduler: AsyncIOScheduler | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cache(self) -> MetricCache:
        return self._cache

    def get(self, key: MetricKey) -> TrackedCollector | None:
        return self._tracked.get(key)

    def tracked(self) -> list[TrackedCollector]:
        return list(self._tracked.values())

    def poll_timeout_for(self, collector: Collector) -> float:
        """Effective timeout for one poll of a collector."""
        return min(self.poll_timeout, collector.interval.total_seconds() * TIMEOUT_FRACTION)

    # -------------------------------------------------------------------------
    # Declaration lifecycle
    # -------------------------------------------------------------------------

    def add(self, declaration: MetricDeclaration) -> TrackedCollector:
        """
        Track a declaration.

        An identical declaration that is already tracked is left alone. A
        changed one replaces the old collector.

        Raises:
            ConfigurationError: If no collector can be built; any collector
                previously tracked under the same key is removed
        """
        key = declaration.key
        existing = self._tracked.get(key)
        if existing is not None and existing.declaration == declaration:
            return existing

        try:
            collector = self._registry.new_collector(declaration)
        except ConfigurationError as e:
            self._rejected[key] = (declaration, e)
            if existing is not None:
                self._untrack(existing, reason="invalid update")
            raise

        self._rejected.pop(key, None)
        if existing is not None:
            self._untrack(existing, reason="replaced")

        tracked = TrackedCollector(declaration=declaration, collector=collector)
        self._tracked[key] = tracked
        self._cache.create(key, tracked.generation)
        if self._running:
            self._schedule(tracked)
        self._update_gauge()

        logger.info(
            "Collector added",
            key=str(key),
            collector_type=collector.collector_type,
            interval=collector.interval.total_seconds(),
            replaced=existing is not None,
        )
        return tracked

    def remove(self, key: MetricKey) -> bool:
        """Stop polling a declaration and evict its cache entry."""
        self._rejected.pop(key, None)
        tracked = self._tracked.get(key)
        if tracked is None:
            return False
        self._untrack(tracked, reason="removed")
        return True

    def remove_owner(self, owner: ObjectReference) -> int:
        """Remove every declaration of an autoscaling object."""
        keys = [key for key in self._tracked if key.owner == owner]
        for key in keys:
            self.remove(key)
        for key in [k for k in self._rejected if k.owner == owner]:
            del self._rejected[key]
        return len(keys)

    def sync(
        self, declarations: Iterable[MetricDeclaration]
    ) -> dict[MetricKey, ConfigurationError]:
        """
        Reconcile tracked collectors with the full set of current declarations.

        Returns:
            Configuration errors per rejected declaration; a declaration that
            was already rejected unchanged is reported without being rebuilt
        """
        desired: dict[MetricKey, MetricDeclaration] = {}
        for declaration in declarations:
            desired[declaration.key] = declaration

        for key in [k for k in self._tracked if k not in desired]:
            self.remove(key)
        for key in [k for k in self._rejected if k not in desired]:
            del self._rejected[key]

        errors: dict[MetricKey, ConfigurationError] = {}
        for key, declaration in desired.items():
            rejected = self._rejected.get(key)
            if rejected is not None and rejected[0] == declaration:
                errors[key] = rejected[1]
                continue
            try:
                self.add(declaration)
            except ConfigurationError as e:
                errors[key] = e
                logger.warning(
                    "Declaration rejected",
                    key=str(key),
                    collector_type=declaration.collector_type,
                    error=str(e),
                )

        return errors

    def _untrack(self, tracked: TrackedCollector, reason: str) -> None:
        if self._tracked.get(tracked.key) is tracked:
            del self._tracked[tracked.key]
        self._unschedule(tracked)
        self._cache.evict(tracked.key, tracked.generation)
        self._update_gauge()
        logger.info("Collector removed", key=str(tracked.key), reason=reason)

    def _update_gauge(self) -> None:
        if self._metrics is not None:
            self._metrics.set_tracked(len(self._tracked))

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    async def poll(self, key: MetricKey) -> bool:
        """
        Poll a tracked declaration once, outside its schedule.

        Returns:
            True if a successful result was stored
        """
        tracked = self._tracked.get(key)
        if tracked is None:
            return False
        return await self._poll(tracked)

    async def _poll(self, tracked: TrackedCollector) -> bool:
        collector = tracked.collector
        timeout = self.poll_timeout_for(collector)
        started = time.perf_counter()

        error: str | None = None
        result = "success"
        metrics = []
        try:
            metrics = await asyncio.wait_for(collector.get_metrics(), timeout=timeout)
        except TimeoutError:
            error = f"poll timed out after {timeout:.3f}s"
            result = "timeout"
        except Exception as e:
            error = str(e) or e.__class__.__name__
            result = "error"

        completed_at = time.monotonic()
        if self._metrics is not None:
            self._metrics.record_poll(
                collector.collector_type, result, time.perf_counter() - started
            )

        if self._tracked.get(tracked.key) is not tracked:
            logger.debug(
                "Discarding poll result of removed collector",
                key=str(tracked.key),
                generation=tracked.generation,
            )
            return False

        if error is None:
            return await self._cache.record_success(
                tracked.key, tracked.generation, metrics, completed_at
            )

        logger.warning(
            "Collector poll failed",
            key=str(tracked.key),
            collector_type=collector.collector_type,
            result=result,
            error=error,
        )
        await self._cache.record_failure(tracked.key, tracked.generation, error, completed_at)
        return False

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        """A tick arrived while the previous poll was still running."""
        logger.warning("Skipping overlapping poll", job_id=event.job_id)

    def _schedule(self, tracked: TrackedCollector) -> None:
        if self._scheduler is None:
            return
        interval = tracked.collector.interval.total_seconds()
        self._scheduler.add_job(
            self._poll,
            IntervalTrigger(seconds=interval),
            args=[tracked],
            id=tracked.job_id,
            name=str(tracked.key),
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(1, int(interval)),
            next_run_time=datetime.now(UTC),
        )

    def _unschedule(self, tracked: TrackedCollector) -> None:
        if self._scheduler is not None and self._scheduler.get_job(tracked.job_id):
            self._scheduler.remove_job(tracked.job_id)

    async def start(self) -> None:
        """Start polling every tracked collector."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone="UTC",
        )
        self._scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
        for tracked in self._tracked.values():
            self._schedule(tracked)

        self._scheduler.start()
        self._running = True
        logger.info("Collector scheduler started", collectors=len(self._tracked))

    async def stop(self) -> None:
        """Stop polling; tracked declarations and cached values are kept."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Collector scheduler stopped")

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_next_run_time(self, key: MetricKey) -> datetime | None:
        tracked = self._tracked.get(key)
        if tracked is None or self._scheduler is None:
            return None
        job = self._scheduler.get_job(tracked.job_id)
        return job.next_run_time if job else None

    def get_status(self) -> list[dict[str, Any]]:
        """Status of every tracked and rejected declaration."""
        status = []
        for key, tracked in self._tracked.items():
            entry = self._cache.get(key)
            item = entry.to_dict() if entry else {"key": str(key)}
            next_run = self.get_next_run_time(key)
            item.update(
                {
                    "collector_type": tracked.collector.collector_type,
                    "interval_seconds": tracked.collector.interval.total_seconds(),
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
            status.append(item)

        for key, (declaration, error) in self._rejected.items():
            status.append(
                {
                    "key": str(key),
                    "namespace": key.owner.namespace,
                    "owner": key.owner.name,
                    "metric_type": key.metric_type.value,
                    "metric_name": key.metric_name,
                    "selector": dict(key.selector),
                    "state": "rejected",
                    "collector_type": declaration.collector_type,
                    "last_error": str(error),
                }
            )
        return status

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        states: dict[str, int] = {}
        for entry in self._cache.snapshot():
            states[entry.state.value] = states.get(entry.state.value, 0) + 1
        return {
            "running": self._running,
            "tracked": len(self._tracked),
            "rejected": len(self._rejected),
            "states": states,
        }
