"""Dataclasses for alert rules, alerts and metric samples."""
import hashlib
import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional

from models.enums import AlertStatus

# Legal lifecycle edges; resolved is terminal.
ALLOWED_TRANSITIONS = {
    AlertStatus.FIRING.value: {AlertStatus.ACKNOWLEDGED.value, AlertStatus.RESOLVED.value},
    AlertStatus.ACKNOWLEDGED.value: {AlertStatus.RESOLVED.value},
    AlertStatus.RESOLVED.value: set(),
}


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, set())


def fingerprint(rule_id, target_id, metric_name):
    """Stable identity of an alert instance for (rule, target, metric)."""
    raw = f"{rule_id}\x1f{target_id}\x1f{metric_name}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _utcnow():
    return datetime.now(timezone.utc)


def _parse_ts(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class AlertRule:
    id: str = ""
    name: str = ""
    description: str = ""
    target_type: str = ""
    target_id: str = ""
    metric_name: str = ""
    operator: str = ">"
    threshold: float = 0.0
    duration_seconds: int = 0
    severity: str = "medium"
    enabled: bool = True
    labels: dict = field(default_factory=dict)
    channels: list = field(default_factory=list)
    owner: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    deleted_at: Optional[datetime] = None

    def matches_target(self, target_type, target_id):
        """Empty selector fields match any target."""
        if self.target_type and self.target_type != target_type:
            return False
        if self.target_id and self.target_id != target_id:
            return False
        return True

    def to_dict(self):
        d = asdict(self)
        for key in ("created_at", "updated_at", "deleted_at"):
            d[key] = _iso(d[key])
        return d

    @classmethod
    def from_row(cls, row):
        row = dict(row)
        return cls(
            id=row["id"],
            name=row["name"],
            description=row.get("description") or "",
            target_type=row.get("target_type") or "",
            target_id=row.get("target_id") or "",
            metric_name=row["metric_name"],
            operator=row["operator"],
            threshold=float(row["threshold"]),
            duration_seconds=int(row.get("duration_seconds") or 0),
            severity=row["severity"],
            enabled=bool(row["enabled"]),
            labels=json.loads(row.get("labels") or "{}"),
            channels=json.loads(row.get("channels") or "[]"),
            owner=row.get("owner") or "",
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
            deleted_at=_parse_ts(row.get("deleted_at")),
        )


@dataclass
class Alert:
    id: str = ""
    rule_id: str = ""
    rule_name: str = ""
    target_type: str = ""
    target_id: str = ""
    metric_name: str = ""
    fingerprint: str = ""
    severity: str = "medium"
    status: str = AlertStatus.FIRING.value
    value: float = 0.0
    threshold: float = 0.0
    operator: str = ">"
    message: str = ""
    labels: dict = field(default_factory=dict)
    started_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    analysis_id: Optional[str] = None

    @property
    def is_open(self):
        return self.status != AlertStatus.RESOLVED.value

    def to_dict(self):
        d = asdict(self)
        for key in ("started_at", "updated_at", "acknowledged_at", "resolved_at"):
            d[key] = _iso(d[key])
        return d

    @classmethod
    def from_row(cls, row):
        row = dict(row)
        return cls(
            id=row["id"],
            rule_id=row["rule_id"],
            rule_name=row.get("rule_name") or "",
            target_type=row.get("target_type") or "",
            target_id=row.get("target_id") or "",
            metric_name=row["metric_name"],
            fingerprint=row["fingerprint"],
            severity=row["severity"],
            status=row["status"],
            value=float(row["value"]),
            threshold=float(row.get("threshold") or 0.0),
            operator=row.get("operator") or "",
            message=row.get("message") or "",
            labels=json.loads(row.get("labels") or "{}"),
            started_at=_parse_ts(row.get("started_at")),
            updated_at=_parse_ts(row.get("updated_at")),
            acknowledged_at=_parse_ts(row.get("acknowledged_at")),
            acknowledged_by=row.get("acknowledged_by"),
            resolved_at=_parse_ts(row.get("resolved_at")),
            resolved_by=row.get("resolved_by"),
            analysis_id=row.get("analysis_id"),
        )


@dataclass
class MetricSample:
    target_type: str = ""
    target_id: str = ""
    metric_name: str = ""
    value: float = 0.0
    labels: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
