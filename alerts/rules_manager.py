"""Alert rule storage, validation and cache-first lookup."""
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import yaml

from alerts.errors import RuleNotFoundError, RuleValidationError
from models.alerts import AlertRule
from models.enums import Operator, TargetType, RULE_SEVERITIES

logger = logging.getLogger("aimonitor.alerts.rules")

VALID_OPERATORS = {op.value for op in Operator}
VALID_SEVERITIES = {s.value for s in RULE_SEVERITIES}
VALID_TARGET_TYPES = {t.value for t in TargetType}
EDITABLE_FIELDS = (
    "name", "description", "target_type", "target_id", "metric_name", "operator",
    "threshold", "duration_seconds", "severity", "enabled", "labels", "channels", "owner",
)


def cache_key(metric_name, target_type, target_id):
    return f"alert_rules:{metric_name}:{target_type}:{target_id}"


def _clean(data):
    """Validate a rule mapping and coerce its values; raises RuleValidationError."""
    unknown = set(data) - set(EDITABLE_FIELDS)
    if unknown:
        raise RuleValidationError(f"Unknown rule fields: {', '.join(sorted(unknown))}")

    values = dict(data)
    for name in ("name", "metric_name"):
        if not str(values.get(name) or "").strip():
            raise RuleValidationError(f"Rule {name} is required")
        values[name] = str(values[name]).strip()

    if values.get("operator") not in VALID_OPERATORS:
        raise RuleValidationError(f"Invalid operator: {values.get('operator')}")
    if values.get("severity") not in VALID_SEVERITIES:
        raise RuleValidationError(f"Invalid severity: {values.get('severity')}")

    values["target_type"] = values.get("target_type") or ""
    if values["target_type"] not in VALID_TARGET_TYPES:
        raise RuleValidationError(f"Invalid target type: {values['target_type']}")
    values["target_id"] = str(values.get("target_id") or "")

    try:
        values["threshold"] = float(values.get("threshold"))
    except (TypeError, ValueError):
        raise RuleValidationError(f"Invalid threshold: {values.get('threshold')}")

    try:
        values["duration_seconds"] = int(values.get("duration_seconds") or 0)
    except (TypeError, ValueError):
        raise RuleValidationError(f"Invalid duration: {values.get('duration_seconds')}")
    if values["duration_seconds"] < 0:
        raise RuleValidationError("Duration must not be negative")

    labels = values.get("labels") or {}
    if not isinstance(labels, dict):
        raise RuleValidationError("Labels must be a mapping")
    values["labels"] = {str(k): str(v) for k, v in labels.items()}

    channels = values.get("channels") or []
    if isinstance(channels, str):
        channels = [c.strip() for c in channels.split(",") if c.strip()]
    if not isinstance(channels, list):
        raise RuleValidationError("Channels must be a list of channel names")
    values["channels"] = [str(c) for c in channels]

    values["enabled"] = bool(values.get("enabled", True))
    values["description"] = values.get("description") or ""
    values["owner"] = values.get("owner") or ""
    return values


class RuleRepository:
    """CRUD over alert rules with a TTL cache in front of the matching query."""

    def __init__(self, db, cache, cache_ttl=300):
        self.db = db
        self.cache = cache
        self.cache_ttl = cache_ttl

    def create_rule(self, data):
        values = _clean(data)
        if self.db.get_rule_by_name(values["name"]):
            raise RuleValidationError(f"Rule name already exists: {values['name']}")
        now = datetime.now(timezone.utc)
        rule = AlertRule(id=str(uuid.uuid4()), created_at=now, updated_at=now, **values)
        self.db.insert_rule(rule)
        self.invalidate(rule.metric_name)
        logger.info(f"Created rule {rule.name} ({rule.metric_name} {rule.operator} {rule.threshold})")
        return rule

    def get_rule(self, rule_id):
        rule = self.db.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def update_rule(self, rule_id, changes):
        current = self.get_rule(rule_id)
        merged = {name: getattr(current, name) for name in EDITABLE_FIELDS}
        merged.update(changes)
        values = _clean(merged)
        if values["name"] != current.name:
            existing = self.db.get_rule_by_name(values["name"])
            if existing and existing.id != rule_id:
                raise RuleValidationError(f"Rule name already exists: {values['name']}")

        updated = replace(current, updated_at=datetime.now(timezone.utc), **values)
        if not self.db.update_rule(updated):
            raise RuleNotFoundError(rule_id)
        self.invalidate(current.metric_name)
        if updated.metric_name != current.metric_name:
            self.invalidate(updated.metric_name)
        logger.info(f"Updated rule {updated.name}")
        return updated

    def delete_rule(self, rule_id):
        rule = self.get_rule(rule_id)
        if not self.db.soft_delete_rule(rule_id, datetime.now(timezone.utc)):
            raise RuleNotFoundError(rule_id)
        self.invalidate(rule.metric_name)
        logger.info(f"Deleted rule {rule.name}")

    def list_rules(self, page=1, page_size=20, search=None, enabled=None):
        page = max(1, int(page))
        page_size = max(1, min(int(page_size), 500))
        return self.db.list_rules(
            search=search, enabled=enabled, offset=(page - 1) * page_size, limit=page_size
        )

    def get_matching_rules(self, metric_name, target_type="", target_id=""):
        """Enabled rules for the metric whose target selector accepts the sample."""
        key = cache_key(metric_name, target_type, target_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        rules = [
            r for r in self.db.find_rules_for_metric(metric_name)
            if r.matches_target(target_type, target_id)
        ]
        self.cache.set(key, rules, ttl=self.cache_ttl)
        return rules

    def invalidate(self, metric_name):
        removed = self.cache.delete_prefix(f"alert_rules:{metric_name}:")
        if removed:
            logger.debug(f"Invalidated {removed} cached rule lookups for {metric_name}")

    def load_from_yaml(self, path="config/alert_rules.yaml"):
        """Seed rules from YAML. Existing names are left untouched.

        Returns (created, skipped).
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Alert rules file not found: {path}")
            return 0, 0
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        created = skipped = 0
        for raw in data.get("rules", []):
            name = raw.get("name")
            if name and self.db.get_rule_by_name(name):
                skipped += 1
                continue
            try:
                self.create_rule(raw)
                created += 1
            except RuleValidationError as e:
                logger.warning(f"Skipping invalid rule {name!r}: {e}")
                skipped += 1
        logger.info(f"Loaded {created} rules from {path} ({skipped} skipped)")
        return created, skipped
