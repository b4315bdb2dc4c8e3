"""
Storage module for the metrics adapter.

Holds the in-memory cache of collected values.
"""

from src.storage.cache import CacheEntry, CollectorState, MetricCache

__all__ = [
    "CacheEntry",
    "CollectorState",
    "MetricCache",
]
