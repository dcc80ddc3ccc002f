"""LLM-backed narrative analysis of alerts.

Builds a prompt from the alert context, the anomaly and trend results and a
few knowledge-base entries, asks an OpenAI-compatible chat completion
endpoint for a JSON verdict, and stores the parsed result. A reply that is
not valid JSON still yields a result with a fallback root cause, so the
alert pipeline never fails because the model wandered off format.
"""
import json
import logging
import uuid
from datetime import datetime, timezone

from models.analysis import AnalysisResult
from utils.http_client import HTTPClient, APIError
from utils.rate_limiter import RateLimiter

logger = logging.getLogger("aimonitor.analysis.narrative")

SYSTEM_PROMPT = (
    "You are an experienced site reliability engineer specialising in incident "
    "diagnosis and performance tuning. Give accurate, practical analysis and advice."
)

PARSE_FAILED_ROOT_CAUSE = "AI analysis parsing failed"
PARSE_FAILED_RECOMMENDATION = "Check the AI model response format"
RAW_RESPONSE_RECOMMENDATION = "Refer to the full AI analysis report"
DEFAULT_RECOMMENDATION = "Refer to the detailed suggestions in the AI analysis report"


class AnalyzerUnavailableError(Exception):
    """No language model is configured."""


class LLMClient:
    """Minimal OpenAI-compatible chat completion client."""

    def __init__(self, api_key, base_url="https://api.openai.com/v1", model="gpt-3.5-turbo",
                 temperature=0.3, max_tokens=1000, timeout=60, requests_per_minute=20):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = HTTPClient(
            base_url=base_url,
            rate_limiter=RateLimiter(requests_per_minute),
            timeout=timeout,
            max_retries=2,
            headers={"Authorization": f"Bearer {api_key}"},
            source="llm",
        )

    def complete(self, prompt, system=SYSTEM_PROMPT):
        body = self.client.post("/chat/completions", json_body={
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        })
        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices:
            raise APIError("No response from language model", source="llm")
        message = choices[0].get("message") or {}
        return message.get("content") or ""


def parse_response(text):
    """Extract the JSON verdict from free text (first '{' to last '}')."""
    text = text or ""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        return {
            "root_cause": PARSE_FAILED_ROOT_CAUSE,
            "impact_assessment": "",
            "recommendations": [PARSE_FAILED_RECOMMENDATION],
            "prevention_measures": "",
            "severity_level": "medium",
            "confidence": 0.5,
        }

    try:
        parsed = json.loads(text[start:end + 1])
        if not isinstance(parsed, dict):
            raise ValueError("not an object")
    except ValueError:
        return {
            "root_cause": text,
            "impact_assessment": "",
            "recommendations": [RAW_RESPONSE_RECOMMENDATION],
            "prevention_measures": "",
            "severity_level": "medium",
            "confidence": 0.7,
        }

    try:
        confidence = float(parsed.get("confidence_score", 0))
    except (TypeError, ValueError):
        confidence = 0.0
    if not 0 < confidence <= 1:
        confidence = 0.7

    recommendations = parsed.get("recommendations") or []
    if isinstance(recommendations, str):
        recommendations = [recommendations]
    recommendations = [str(r) for r in recommendations if r]
    if not recommendations:
        recommendations = [DEFAULT_RECOMMENDATION]

    return {
        "root_cause": str(parsed.get("root_cause") or ""),
        "impact_assessment": str(parsed.get("impact_assessment") or ""),
        "recommendations": recommendations,
        "prevention_measures": str(parsed.get("prevention_measures") or ""),
        "severity_level": str(parsed.get("severity_level") or "medium"),
        "confidence": confidence,
    }


def build_prompt(context, anomaly, trend, knowledge=()):
    lines = [
        "Analyse the following alert using the statistical findings below.",
        "",
        "=== Alert ===",
        f"- Rule: {context.rule_name}",
        f"- Target type: {context.target_type}",
        f"- Target ID: {context.target_id}",
        f"- Metric: {context.metric_name}",
        f"- Current value: {context.current_value:.2f}",
        f"- Threshold: {context.threshold:.2f}",
        f"- Condition: {context.operator}",
        f"- Severity: {context.severity}",
        f"- Time: {context.timestamp:%Y-%m-%d %H:%M:%S}",
        "",
        "=== Anomaly detection ===",
        f"- Anomalous: {anomaly.is_anomaly}",
        f"- Anomaly score: {anomaly.anomaly_score:.2f}",
        f"- Detection threshold: {anomaly.threshold:.2f}",
        f"- Deviation level: {anomaly.deviation_level}",
        f"- Historical mean: {anomaly.historical_mean:.2f}",
        f"- Historical stddev: {anomaly.historical_stddev:.2f}",
        f"- Confidence: {anomaly.confidence:.2f}",
        "",
        "=== Trend prediction ===",
        f"- Direction: {trend.direction}",
        f"- Risk level: {trend.risk_level}",
        f"- Accuracy: {trend.accuracy:.2f}",
        f"- Horizon: {trend.time_horizon}",
        f"- Seasonal pattern: {trend.seasonality}",
        f"- Projected values: {', '.join(f'{v:.2f}' for v in trend.predicted_values)}",
    ]
    if context.labels:
        lines += ["", "=== Labels ==="]
        lines += [f"- {k}: {v}" for k, v in sorted(context.labels.items())]
    if knowledge:
        lines += ["", "=== Related knowledge ==="]
        for entry in knowledge:
            lines += [f"Title: {entry.title}", f"Content: {entry.content}", ""]
    lines += [
        "",
        "Provide: root cause analysis, impact assessment, layered remediation "
        "(immediate, short term, long term), preventive maintenance advice, an overall "
        "severity (critical/high/medium/low) and a confidence score between 0 and 1.",
        "Reply with JSON in exactly this shape:",
        json.dumps({
            "root_cause": "...",
            "impact_assessment": "...",
            "recommendations": ["immediate", "short term", "long term"],
            "prevention_measures": "...",
            "severity_level": "medium",
            "confidence_score": 0.85,
        }, indent=2),
    ]
    return "\n".join(lines)


def cache_key(context):
    return (f"ai_analysis:{context.analysis_type}:{context.target_type}:{context.target_id}:"
            f"{context.metric_name}:{context.current_value:.2f}")


class NarrativeAnalyzer:
    def __init__(self, db, cache, knowledge, llm=None, cache_ttl=1800):
        self.db = db
        self.cache = cache
        self.knowledge = knowledge
        self.llm = llm
        self.cache_ttl = cache_ttl

    @property
    def available(self):
        return self.llm is not None

    def analyze(self, context, anomaly, trend):
        """Ask the model about one alert; result is persisted and cached."""
        if self.llm is None:
            raise AnalyzerUnavailableError("AI analysis is not configured (ai.api_key is empty)")

        key = cache_key(context)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Analysis cache hit for {key}")
            return cached

        entries = self.knowledge.relevant(context.metric_name, context.severity)
        prompt = build_prompt(context, anomaly, trend, entries)
        response = self.llm.complete(prompt)
        parsed = parse_response(response)

        result = AnalysisResult(
            id=str(uuid.uuid4()),
            analysis_type=context.analysis_type,
            target_type=context.target_type,
            target_id=context.target_id,
            metric_name=context.metric_name,
            input_snapshot=context.snapshot(),
            anomaly=anomaly.to_dict(),
            trend=trend.to_dict(),
            narrative=response,
            root_cause=parsed["root_cause"],
            impact_assessment=parsed["impact_assessment"],
            recommendations=parsed["recommendations"],
            prevention_measures=parsed["prevention_measures"],
            severity_level=parsed["severity_level"],
            confidence=parsed["confidence"],
            model=self.llm.model,
            created_at=datetime.now(timezone.utc),
        )
        self.db.insert_analysis(result)
        self.cache.set(key, result, ttl=self.cache_ttl)
        logger.info(f"Analysis {result.id} for {context.metric_name}@{context.target_id}: "
                    f"{result.severity_level} (confidence {result.confidence:.2f})")
        return result
