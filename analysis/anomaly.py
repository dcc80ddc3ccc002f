"""Z-score anomaly detection against a metric's recent history."""
import logging

import numpy as np

from models.analysis import AnomalyResult
from models.enums import DeviationLevel

logger = logging.getLogger("aimonitor.analysis.anomaly")

MIN_SAMPLES = 10
MAX_ANOMALY_SCORE = 10.0
SEVERITY_THRESHOLDS = {"critical": 1.5, "low": 2.5}
DEFAULT_THRESHOLD = 2.0


def threshold_for(severity):
    """Critical alerts are judged more sensitively, low ones less."""
    return SEVERITY_THRESHOLDS.get(severity, DEFAULT_THRESHOLD)


def deviation_level(score, threshold):
    if score <= threshold:
        return DeviationLevel.NORMAL.value
    if score <= threshold * 1.5:
        return DeviationLevel.MODERATE.value
    if score <= threshold * 2:
        return DeviationLevel.HIGH.value
    return DeviationLevel.SEVERE.value


def zscore_anomaly(history, current_value, severity="medium"):
    """Score current_value against history using the population stddev."""
    threshold = threshold_for(severity)
    n = len(history)
    if n < MIN_SAMPLES:
        return AnomalyResult(threshold=threshold, sample_count=n, confidence=0.5)

    data = np.asarray(history, dtype=float)
    mean = float(data.mean())
    stddev = float(data.std())

    if stddev == 0.0:
        # Flat history: any deviation at all is as unusual as it gets.
        score = 0.0 if current_value == mean else MAX_ANOMALY_SCORE
    else:
        score = abs((current_value - mean) / stddev)

    return AnomalyResult(
        is_anomaly=score > threshold,
        anomaly_score=score,
        threshold=threshold,
        deviation_level=deviation_level(score, threshold),
        historical_mean=mean,
        historical_stddev=stddev,
        sample_count=n,
        confidence=min(0.95, n / 100.0 + 0.5),
    )


class AnomalyDetector:
    def __init__(self, history, window_days=30):
        self.history = history
        self.window_days = window_days

    def detect(self, target_type, target_id, metric_name, current_value, severity="medium", end=None):
        values = self.history.values(target_type, target_id, metric_name, self.window_days, end=end)
        result = zscore_anomaly(values, current_value, severity)
        logger.debug(f"Anomaly {metric_name}@{target_id}: score={result.anomaly_score:.2f} "
                     f"level={result.deviation_level} n={result.sample_count}")
        return result
