"""Runs anomaly, trend and narrative analysis for one alert."""
import logging

from analysis.anomaly import AnomalyDetector
from analysis.history import DatabaseHistory, PrometheusHistory
from analysis.knowledge import KnowledgeBase
from analysis.narrative import AnalyzerUnavailableError, LLMClient, NarrativeAnalyzer
from analysis.trend import TrendPredictor

logger = logging.getLogger("aimonitor.analysis")


class AnalysisPipeline:
    def __init__(self, anomaly, trend, narrative):
        self.anomaly = anomaly
        self.trend = trend
        self.narrative = narrative

    def statistics(self, context):
        anomaly = self.anomaly.detect(
            context.target_type, context.target_id, context.metric_name,
            context.current_value, context.severity, end=context.timestamp,
        )
        trend = self.trend.predict(
            context.target_type, context.target_id, context.metric_name,
            context.current_value, end=context.timestamp,
        )
        return anomaly, trend

    def run(self, context):
        """Returns the stored AnalysisResult, or None without a model."""
        anomaly, trend = self.statistics(context)
        try:
            return self.narrative.analyze(context, anomaly, trend)
        except AnalyzerUnavailableError:
            logger.info(
                f"{context.metric_name}@{context.target_id}: anomaly {anomaly.deviation_level} "
                f"(score {anomaly.anomaly_score:.2f}), trend {trend.direction} "
                f"(risk {trend.risk_level}); narrative skipped, no AI model configured"
            )
            return None


def build_pipeline(config, db, cache, prometheus=None):
    """Wire the analyzers from config. History comes from the local store
    unless analysis.history_source is 'prometheus' and a client is given."""
    analysis_cfg = config.get("analysis", {})
    ai_cfg = config.get("ai", {})

    if analysis_cfg.get("history_source") == "prometheus" and prometheus is not None:
        prom_cfg = config.get("prometheus", {})
        history = PrometheusHistory(
            prometheus, step=prom_cfg.get("step", 3600),
            target_label=prom_cfg.get("target_label", "instance"),
        )
    else:
        history = DatabaseHistory(db)

    llm = None
    if ai_cfg.get("api_key"):
        llm = LLMClient(
            api_key=ai_cfg["api_key"],
            base_url=ai_cfg.get("base_url", "https://api.openai.com/v1"),
            model=ai_cfg.get("model", "gpt-3.5-turbo"),
            temperature=ai_cfg.get("temperature", 0.3),
            max_tokens=ai_cfg.get("max_tokens", 1000),
            timeout=ai_cfg.get("timeout", 60),
            requests_per_minute=ai_cfg.get("requests_per_minute", 20),
        )

    return AnalysisPipeline(
        AnomalyDetector(history, window_days=analysis_cfg.get("anomaly_days", 30)),
        TrendPredictor(
            history, window_days=analysis_cfg.get("trend_days", 7),
            seasonality_period=analysis_cfg.get("seasonality_period", 24),
        ),
        NarrativeAnalyzer(db, cache, KnowledgeBase(db), llm=llm, cache_ttl=ai_cfg.get("cache_ttl", 1800)),
    )
