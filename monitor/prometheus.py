"""Prometheus HTTP API client for instant and range queries."""
import logging
import math
from datetime import datetime, timezone

from utils.http_client import HTTPClient, APIError

logger = logging.getLogger("aimonitor.prometheus")


def series_selector(metric_name, target_label=None, target_id=None):
    """PromQL selector for a metric, optionally pinned to one target."""
    if not target_label or not target_id:
        return metric_name
    escaped = str(target_id).replace("\\", "\\\\").replace('"', '\\"')
    return f'{metric_name}{{{target_label}="{escaped}"}}'


def _to_float(raw):
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class PrometheusClient:
    def __init__(self, base_url, timeout=15, rate_limiter=None):
        self.client = HTTPClient(
            base_url=f"{base_url.rstrip('/')}/api/v1",
            rate_limiter=rate_limiter,
            timeout=timeout,
            source="prometheus",
        )

    def _data(self, path, params):
        body = self.client.get(path, params=params)
        if not isinstance(body, dict) or body.get("status") != "success":
            error = body.get("error") if isinstance(body, dict) else body
            raise APIError(f"Prometheus query failed: {error}", source="prometheus")
        return body.get("data", {})

    def query(self, expr, at=None):
        """Instant vector query. Returns [(labels, value, timestamp)]."""
        params = {"query": expr}
        if at is not None:
            params["time"] = at.timestamp()
        data = self._data("/query", params)
        samples = []
        for series in data.get("result", []):
            ts, raw = series.get("value", [None, None])
            value = _to_float(raw)
            if value is None:
                continue
            samples.append((series.get("metric", {}), value, datetime.fromtimestamp(float(ts), tz=timezone.utc)))
        logger.debug(f"Query {expr} returned {len(samples)} series")
        return samples

    def query_range(self, expr, start, end, step):
        """Range query. Returns one chronological list of values per series."""
        data = self._data("/query_range", {
            "query": expr,
            "start": start.timestamp(),
            "end": end.timestamp(),
            "step": step,
        })
        result = []
        for series in data.get("result", []):
            values = [_to_float(v) for _, v in series.get("values", [])]
            result.append([v for v in values if v is not None])
        return result
