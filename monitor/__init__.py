"""Prometheus polling and scheduled evaluation."""
from monitor.prometheus import PrometheusClient, series_selector
from monitor.scheduler import EvaluationScheduler
