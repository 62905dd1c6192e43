"""
Metrics package — fetchers, snapshot store, reconciliation.
"""

from src.metrics.fetchers import MetricsFetcher, RemoteMetric
from src.metrics.reconcile import ReconciliationEngine, RefreshReport
from src.metrics.store import MetricStore

__all__ = [
    "MetricsFetcher",
    "RemoteMetric",
    "MetricStore",
    "ReconciliationEngine",
    "RefreshReport",
]
