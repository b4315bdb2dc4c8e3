"""
In-memory cache of the latest collected values per declaration.

Each entry is owned by one collector generation and guarded by its own
lock; updates to one entry never wait on another. Readers get the value
tuple stored by the last successful poll, which is replaced wholesale and
never mutated in place.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from src.collectors.types import (
    CollectedMetric,
    MetricKey,
    MetricType,
    selector_key,
)


class CollectorState(str, Enum):
    """Lifecycle state of a tracked declaration."""

    PENDING = "pending"
    ACTIVE = "active"
    DEGRADED = "degraded"
    REMOVED = "removed"


@dataclass
class CacheEntry:
    """Latest value set and error state for one declaration's collector."""

    key: MetricKey
    generation: str
    state: CollectorState = CollectorState.PENDING
    metrics: tuple[CollectedMetric, ...] | None = None
    last_success: datetime | None = None
    last_attempt: datetime | None = None
    last_error: str | None = None
    last_completed: float = float("-inf")
    successes: int = 0
    failures: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def has_value(self) -> bool:
        return self.metrics is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": str(self.key),
            "namespace": self.key.owner.namespace,
            "owner": self.key.owner.name,
            "metric_type": self.key.metric_type.value,
            "metric_name": self.key.metric_name,
            "selector": dict(self.key.selector),
            "state": self.state.value,
            "values": len(self.metrics) if self.metrics is not None else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "last_error": self.last_error,
            "successes": self.successes,
            "failures": self.failures,
        }


LookupKey = tuple[MetricType, str, tuple[tuple[str, str], ...]]


class MetricCache:
    """
    Cache entries keyed by declaration identity.

    Writes carry the generation of the collector that produced them; a
    write for a generation that is no longer current is dropped, so a poll
    finishing after its declaration was removed or replaced cannot touch
    the newer entry.
    """

    def __init__(self, max_staleness: timedelta | None = None) -> None:
        self.max_staleness = max_staleness
        self._entries: dict[MetricKey, CacheEntry] = {}
        self._index: dict[LookupKey, set[MetricKey]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: MetricKey) -> bool:
        return key in self._entries

    def create(self, key: MetricKey, generation: str) -> CacheEntry:
        """Start a fresh, pending entry, replacing any previous one."""
        previous = self._entries.get(key)
        if previous is not None:
            previous.state = CollectorState.REMOVED

        entry = CacheEntry(key=key, generation=generation)
        self._entries[key] = entry
        self._index.setdefault(key.lookup_key, set()).add(key)
        return entry

    def evict(self, key: MetricKey, generation: str | None = None) -> bool:
        """
        Drop an entry.

        Args:
            key: Entry identity
            generation: Only evict if the entry still belongs to this generation

        Returns:
            True if an entry was removed
        """
        entry = self._entries.get(key)
        if entry is None or (generation is not None and entry.generation != generation):
            return False

        entry.state = CollectorState.REMOVED
        del self._entries[key]
        keys = self._index.get(key.lookup_key)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._index[key.lookup_key]
        return True

    def get(self, key: MetricKey) -> CacheEntry | None:
        return self._entries.get(key)

    def _current(self, key: MetricKey, generation: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or entry.generation != generation:
            return None
        return entry

    async def record_success(
        self,
        key: MetricKey,
        generation: str,
        metrics: list[CollectedMetric],
        completed_at: float | None = None,
    ) -> bool:
        """
        Store a successful poll result.

        Returns:
            False if the result was discarded (stale generation or an
            already applied later completion)
        """
        completed_at = time.monotonic() if completed_at is None else completed_at
        entry = self._current(key, generation)
        if entry is None:
            return False

        async with entry.lock:
            if self._current(key, generation) is not entry or completed_at < entry.last_completed:
                return False
            now = datetime.now(UTC)
            entry.metrics = tuple(metrics)
            entry.last_success = now
            entry.last_attempt = now
            entry.last_error = None
            entry.last_completed = completed_at
            entry.successes += 1
            entry.state = CollectorState.ACTIVE
        return True

    async def record_failure(
        self,
        key: MetricKey,
        generation: str,
        error: str,
        completed_at: float | None = None,
    ) -> bool:
        """
        Record a failed poll; the last good value set is kept.

        Returns:
            False if the failure was discarded
        """
        completed_at = time.monotonic() if completed_at is None else completed_at
        entry = self._current(key, generation)
        if entry is None:
            return False

        async with entry.lock:
            if self._current(key, generation) is not entry or completed_at < entry.last_completed:
                return False
            entry.last_attempt = datetime.now(UTC)
            entry.last_error = error
            entry.last_completed = completed_at
            entry.failures += 1
            if entry.has_value:
                entry.state = CollectorState.DEGRADED
        return True

    def keys_for(
        self,
        metric_name: str,
        selector: dict[str, str] | None,
        metric_type: MetricType,
        namespace: str | None = None,
    ) -> list[MetricKey]:
        """Keys of every entry matching a query identity."""
        keys = self._index.get((MetricType(metric_type), metric_name, selector_key(selector)), set())
        return [k for k in keys if namespace is None or k.owner.namespace == namespace]

    def _servable(self, entry: CacheEntry, now: datetime) -> bool:
        if entry.metrics is None or entry.last_success is None:
            return False
        if self.max_staleness is not None and now - entry.last_success > self.max_staleness:
            return False
        return True

    def lookup(
        self,
        metric_name: str,
        selector: dict[str, str] | None,
        metric_type: MetricType,
        namespace: str | None = None,
    ) -> list[CollectedMetric] | None:
        """
        Values of the most recently successful matching entry.

        Returns:
            The cached values, or None if nothing matching has succeeded yet
        """
        now = datetime.now(UTC)
        candidates = [
            entry
            for key in self.keys_for(metric_name, selector, metric_type, namespace)
            if (entry := self._entries.get(key)) is not None and self._servable(entry, now)
        ]
        if not candidates:
            return None

        freshest = max(candidates, key=lambda e: e.last_success)
        return list(freshest.metrics)

    def snapshot(self) -> list[CacheEntry]:
        """All current entries."""
        return list(self._entries.values())
