"""Dataclasses for anomaly, trend and narrative analysis results."""
import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass
class AnomalyResult:
    is_anomaly: bool = False
    anomaly_score: float = 0.0
    threshold: float = 2.0
    deviation_level: str = "normal"
    historical_mean: float = 0.0
    historical_stddev: float = 0.0
    sample_count: int = 0
    confidence: float = 0.5

    def to_dict(self):
        return asdict(self)


@dataclass
class TrendResult:
    direction: str = "stable"
    slope: float = 0.0
    intercept: float = 0.0
    predicted_values: list = field(default_factory=list)
    seasonality: bool = False
    risk_level: str = "low"
    time_horizon: str = "1h"
    accuracy: float = 0.5
    sample_count: int = 0

    def to_dict(self):
        return asdict(self)


@dataclass
class AnalysisContext:
    """What the narrative analyzer knows about the triggering alert."""
    target_type: str = ""
    target_id: str = ""
    metric_name: str = ""
    current_value: float = 0.0
    threshold: float = 0.0
    operator: str = ""
    severity: str = "medium"
    labels: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    alert_id: Optional[str] = None
    rule_id: Optional[str] = None
    rule_name: str = ""
    analysis_type: str = "alert_analysis"

    def snapshot(self):
        return {
            "metric_name": self.metric_name,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "operator": self.operator,
            "severity": self.severity,
            "labels": dict(self.labels),
            "alert_id": self.alert_id,
            "rule_id": self.rule_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class AnalysisResult:
    id: str = ""
    analysis_type: str = "alert_analysis"
    target_type: str = ""
    target_id: str = ""
    metric_name: str = ""
    input_snapshot: dict = field(default_factory=dict)
    anomaly: dict = field(default_factory=dict)
    trend: dict = field(default_factory=dict)
    narrative: str = ""
    root_cause: str = ""
    impact_assessment: str = ""
    recommendations: list = field(default_factory=list)
    prevention_measures: str = ""
    severity_level: str = "medium"
    confidence: float = 0.7
    model: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self):
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat() if self.created_at else None
        return d

    @classmethod
    def from_row(cls, row):
        row = dict(row)
        return cls(
            id=row["id"],
            analysis_type=row["analysis_type"],
            target_type=row.get("target_type") or "",
            target_id=row.get("target_id") or "",
            metric_name=row.get("metric_name") or "",
            input_snapshot=json.loads(row.get("input_snapshot") or "{}"),
            anomaly=json.loads(row.get("anomaly") or "{}"),
            trend=json.loads(row.get("trend") or "{}"),
            narrative=row.get("narrative") or "",
            root_cause=row.get("root_cause") or "",
            impact_assessment=row.get("impact_assessment") or "",
            recommendations=json.loads(row.get("recommendations") or "[]"),
            prevention_measures=row.get("prevention_measures") or "",
            severity_level=row.get("severity_level") or "medium",
            confidence=float(row.get("confidence") or 0.0),
            model=row.get("model") or "",
            created_at=datetime.fromisoformat(row["created_at"]) if row.get("created_at") else None,
        )


@dataclass
class KnowledgeEntry:
    id: str = ""
    title: str = ""
    content: str = ""
    category: str = "general"
    metric_types: list = field(default_factory=list)
    severity: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self):
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat() if self.created_at else None
        return d

    @classmethod
    def from_row(cls, row):
        row = dict(row)
        return cls(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            category=row.get("category") or "general",
            metric_types=json.loads(row.get("metric_types") or "[]"),
            severity=row.get("severity") or "",
            created_at=datetime.fromisoformat(row["created_at"]) if row.get("created_at") else None,
        )
