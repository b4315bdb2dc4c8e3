"""
Background services for the metrics adapter.

This module provides:
- Collector scheduler polling every declaration on its own interval
- Query service reading the latest cached values
- HPA discovery feeding declarations to the scheduler
"""

from src.services.discovery import HPADiscovery
from src.services.query import MetricsQueryService
from src.services.scheduler import CollectorScheduler, TrackedCollector

__all__ = [
    "CollectorScheduler",
    "TrackedCollector",
    "MetricsQueryService",
    "HPADiscovery",
]
