"""Metric history sources for the anomaly and trend analyzers."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol

from monitor.prometheus import series_selector

logger = logging.getLogger("aimonitor.analysis.history")


class MetricHistory(Protocol):
    def values(self, target_type, target_id, metric_name, days, end=None) -> list: ...


class DatabaseHistory:
    """Reads samples recorded locally by the evaluator."""

    def __init__(self, db):
        self.db = db

    def values(self, target_type, target_id, metric_name, days, end=None):
        end = end or datetime.now(timezone.utc)
        return self.db.get_sample_values(
            target_type, target_id, metric_name, since=end - timedelta(days=days), until=end
        )


class PrometheusHistory:
    """Reads history from Prometheus via query_range."""

    def __init__(self, client, step=3600, target_label="instance"):
        self.client = client
        self.step = step
        self.target_label = target_label

    def values(self, target_type, target_id, metric_name, days, end=None):
        end = end or datetime.now(timezone.utc)
        expr = series_selector(metric_name, self.target_label, target_id)
        series = self.client.query_range(expr, end - timedelta(days=days), end, self.step)
        if len(series) > 1:
            logger.debug(f"{expr} matched {len(series)} series, using the first")
        return series[0] if series else []
