"""Anomaly, trend and AI narrative analysis."""
from analysis.anomaly import AnomalyDetector, zscore_anomaly, MAX_ANOMALY_SCORE
from analysis.trend import TrendPredictor, linear_trend, detect_seasonality
from analysis.history import DatabaseHistory, PrometheusHistory
from analysis.knowledge import KnowledgeBase, KnowledgeNotFoundError
from analysis.narrative import NarrativeAnalyzer, LLMClient, AnalyzerUnavailableError, parse_response
from analysis.pipeline import AnalysisPipeline, build_pipeline
