"""
Monitoring module for the metrics adapter.
"""

from src.monitoring.metrics import AdapterMetrics, get_adapter_metrics

__all__ = [
    "AdapterMetrics",
    "get_adapter_metrics",
]
