"""Linear trend projection with a simple seasonality check."""
import logging

import numpy as np

from models.analysis import TrendResult
from models.enums import TrendDirection, RiskLevel

logger = logging.getLogger("aimonitor.analysis.trend")

MIN_SAMPLES = 5
PROJECTION_STEPS = 6
SEASONALITY_MIN_CORRELATION = 0.5


def detect_seasonality(values, period=24):
    """True when the detrended series correlates with itself one period back.

    Needs at least two full periods of data.
    """
    if period < 2 or len(values) < 2 * period:
        return False
    y = np.asarray(values, dtype=float)
    x = np.arange(len(y), dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    residual = y - (slope * x + intercept)
    if np.allclose(residual, 0.0):
        return False

    a, b = residual[:-period], residual[period:]
    if a.std() == 0.0 or b.std() == 0.0:
        return False
    correlation = float(np.corrcoef(a, b)[0, 1])
    return bool(np.isfinite(correlation) and correlation >= SEASONALITY_MIN_CORRELATION)


def linear_trend(history, current_value, seasonality_period=24):
    n = len(history)
    if n < MIN_SAMPLES:
        return TrendResult(predicted_values=[current_value], sample_count=n)

    y = np.asarray(history, dtype=float)
    x = np.arange(n, dtype=float)
    slope, intercept = (float(c) for c in np.polyfit(x, y, 1))
    predicted = [slope * (n + i) + intercept for i in range(PROJECTION_STEPS)]

    if slope > 0.1:
        direction = TrendDirection.INCREASING.value
    elif slope < -0.1:
        direction = TrendDirection.DECREASING.value
    else:
        direction = TrendDirection.STABLE.value

    if abs(slope) > 1.0:
        risk = RiskLevel.HIGH.value
    elif abs(slope) > 0.5:
        risk = RiskLevel.MEDIUM.value
    else:
        risk = RiskLevel.LOW.value

    return TrendResult(
        direction=direction,
        slope=slope,
        intercept=intercept,
        predicted_values=predicted,
        seasonality=detect_seasonality(history, seasonality_period),
        risk_level=risk,
        time_horizon="6h",
        accuracy=max(0.6, 1.0 - abs(slope) / 10.0),
        sample_count=n,
    )


class TrendPredictor:
    def __init__(self, history, window_days=7, seasonality_period=24):
        self.history = history
        self.window_days = window_days
        self.seasonality_period = seasonality_period

    def predict(self, target_type, target_id, metric_name, current_value, end=None):
        values = self.history.values(target_type, target_id, metric_name, self.window_days, end=end)
        result = linear_trend(values, current_value, self.seasonality_period)
        logger.debug(f"Trend {metric_name}@{target_id}: {result.direction} slope={result.slope:.3f}")
        return result
