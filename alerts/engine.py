"""Alert evaluation engine and lifecycle state machine."""
import logging
import math
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone

from alerts.errors import EvaluationError, InvalidStateError, AlertNotFoundError
from models.alerts import Alert, MetricSample, fingerprint, can_transition
from models.analysis import AnalysisContext
from models.enums import AlertStatus, Severity
from notifications.dispatcher import AggregateNotificationError

logger = logging.getLogger("aimonitor.alerts.engine")

OPERATOR_MAP = {
    "<": lambda v, t: v < t,
    ">": lambda v, t: v > t,
    "<=": lambda v, t: v <= t,
    ">=": lambda v, t: v >= t,
    "==": lambda v, t: v == t,
    "!=": lambda v, t: v != t,
}


def compare(value, operator, threshold, tolerance=0.0):
    """Evaluate `value <operator> threshold`.

    Equality is exact unless a positive tolerance is given. Unknown
    operators never match.
    """
    if tolerance > 0 and operator in ("==", "!="):
        within = abs(value - threshold) <= tolerance
        return within if operator == "==" else not within
    func = OPERATOR_MAP.get(operator)
    if func is None:
        return False
    return func(value, threshold)


def _as_utc(ts):
    if ts is None:
        return datetime.now(timezone.utc)
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def alert_message(metric_name, operator, threshold, value):
    return f"{metric_name} {operator} {threshold:.2f} (current: {value:.2f})"


class AlertEvaluator:
    """Turns metric samples into alert lifecycle transitions.

    Notifications and analysis run on the background pool; process_sample()
    only touches the store and returns.
    """

    def __init__(self, db, rules, dispatcher=None, analysis=None, pool=None, config=None):
        self.db = db
        self.rules = rules
        self.dispatcher = dispatcher
        self.analysis = analysis
        self.pool = pool
        config = config or {}
        self.tolerance = float(config.get("alerts", {}).get("equality_tolerance", 0.0))
        self.record_samples = bool(config.get("analysis", {}).get("record_samples", True))

    # --- Evaluation ---

    def process_sample(self, target_type, target_id, metric_name, value, labels=None, timestamp=None):
        """Evaluate one sample against every matching rule."""
        labels = dict(labels or {})
        ts = _as_utc(timestamp)
        value = float(value)
        if not math.isfinite(value):
            logger.warning(f"Ignoring non-finite sample {metric_name}={value} for {target_type}/{target_id}")
            return

        if self.record_samples:
            try:
                self.db.insert_sample(MetricSample(
                    target_type=target_type, target_id=target_id, metric_name=metric_name,
                    value=value, labels=labels, timestamp=ts,
                ))
            except Exception:
                logger.exception(f"Failed to record sample {metric_name} for {target_id or target_type}")

        try:
            rules = self.rules.get_matching_rules(metric_name, target_type, target_id)
        except Exception as e:
            raise EvaluationError(f"Failed to load rules for {metric_name}: {e}") from e

        for rule in rules:
            try:
                self._evaluate_rule(rule, target_type, target_id, metric_name, value, labels, ts)
            except Exception:
                logger.exception(f"Rule {rule.name} failed on {metric_name} for {target_id or target_type}")

    def _evaluate_rule(self, rule, target_type, target_id, metric_name, value, labels, ts):
        fp = fingerprint(rule.id, target_id, metric_name)
        if compare(value, rule.operator, rule.threshold, self.tolerance):
            self._condition_holds(rule, fp, target_type, target_id, metric_name, value, labels, ts)
        else:
            self._condition_cleared(rule, fp, ts)

    def _condition_holds(self, rule, fp, target_type, target_id, metric_name, value, labels, ts):
        if self.db.refresh_open_alert(fp, value, labels, ts):
            return

        if rule.duration_seconds > 0:
            since = self.db.set_pending(fp, rule.id, ts)
            held = (ts - since).total_seconds()
            if held < rule.duration_seconds:
                logger.debug(f"Rule {rule.name} pending for {target_id} ({held:.0f}s of {rule.duration_seconds}s)")
                return

        alert = Alert(
            id=str(uuid.uuid4()),
            rule_id=rule.id,
            rule_name=rule.name,
            target_type=target_type,
            target_id=target_id,
            metric_name=metric_name,
            fingerprint=fp,
            severity=rule.severity,
            status=AlertStatus.FIRING.value,
            value=value,
            threshold=rule.threshold,
            operator=rule.operator,
            message=alert_message(metric_name, rule.operator, rule.threshold, value),
            labels=labels,
            started_at=ts,
            updated_at=ts,
        )
        try:
            self.db.insert_alert(alert)
        except sqlite3.IntegrityError:
            # Another writer opened this fingerprint first.
            self.db.refresh_open_alert(fp, value, labels, ts)
            return
        finally:
            self.db.clear_pending(fp)

        logger.info(f"Alert firing: {rule.name} on {target_id or target_type} ({alert.message})")
        self._submit(self._notify_fired, alert, rule.channels, name=f"notify-fired:{alert.id}")
        if self.analysis is not None:
            self._submit(self._analyze, alert, name=f"analyze:{alert.id}")

    def _condition_cleared(self, rule, fp, ts):
        self.db.clear_pending(fp)
        alert = self.db.get_open_alert(fp)
        if alert is None:
            return
        open_statuses = [AlertStatus.FIRING.value, AlertStatus.ACKNOWLEDGED.value]
        if not self.db.transition_alert(alert.id, open_statuses, AlertStatus.RESOLVED.value, ts):
            return
        alert = self.db.get_alert(alert.id)
        logger.info(f"Alert resolved: {rule.name} on {alert.target_id or alert.target_type}")
        self._submit(self._notify_resolved, alert, rule.channels, name=f"notify-resolved:{alert.id}")

    # --- Operator actions ---

    def acknowledge(self, alert_id, user_id):
        return self._transition(alert_id, AlertStatus.ACKNOWLEDGED.value, user_id)

    def resolve(self, alert_id, user_id):
        alert = self._transition(alert_id, AlertStatus.RESOLVED.value, user_id)
        rule = self.db.get_rule(alert.rule_id)
        if rule is None:
            logger.warning(f"Rule {alert.rule_id} for alert {alert_id} is gone; skipping resolved notification")
        else:
            self._submit(self._notify_resolved, alert, rule.channels, name=f"notify-resolved:{alert.id}")
        return alert

    def _transition(self, alert_id, target, user_id):
        alert = self.db.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        if not can_transition(alert.status, target):
            raise InvalidStateError(alert_id, alert.status, target)

        sources = [s for s in (AlertStatus.FIRING.value, AlertStatus.ACKNOWLEDGED.value)
                   if can_transition(s, target)]
        if not self.db.transition_alert(alert_id, sources, target, datetime.now(timezone.utc), by=user_id):
            # Lost a race with another transition; report against the fresh state.
            current = self.db.get_alert(alert_id)
            raise InvalidStateError(alert_id, current.status if current else alert.status, target)
        logger.info(f"Alert {alert_id} {target} by {user_id}")
        return self.db.get_alert(alert_id)

    # --- Queries ---

    def get_alert(self, alert_id):
        alert = self.db.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def list_alerts(self, status=None, severity=None, target_type=None, page=1, page_size=20):
        page = max(1, int(page))
        page_size = max(1, min(int(page_size), 500))
        return self.db.list_alerts(
            status=status, severity=severity, target_type=target_type,
            offset=(page - 1) * page_size, limit=page_size,
        )

    def get_alert_stats(self, days=7):
        now = datetime.now(timezone.utc)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        stats = self.db.get_alert_stats(now - timedelta(days=days), today_start)
        stats["days"] = days
        return stats

    # --- Background work ---

    def _submit(self, fn, *args, name=None):
        if self.pool is None:
            fn(*args)
            return True
        return self.pool.submit(fn, *args, name=name)

    def _notify_fired(self, alert, channels):
        if self.dispatcher is None or not channels:
            return
        self._dispatch(
            title=f"[{alert.severity.upper()}] {alert.rule_name}",
            content=alert.message,
            severity=alert.severity,
            labels={
                "alert_id": alert.id,
                "rule_id": alert.rule_id,
                "fingerprint": alert.fingerprint,
                "status": alert.status,
            },
            channels=channels,
        )

    def _notify_resolved(self, alert, channels):
        if self.dispatcher is None or not channels:
            return
        self._dispatch(
            title=f"[RESOLVED] {alert.rule_name}",
            content=f"Alert has been resolved: {alert.message}",
            severity=Severity.INFO.value,
            labels={
                "alert_id": alert.id,
                "rule_id": alert.rule_id,
                "fingerprint": alert.fingerprint,
                "status": alert.status,
                "resolved": "true",
            },
            channels=channels,
        )

    def _dispatch(self, title, content, severity, labels, channels):
        try:
            self.dispatcher.send(title, content, severity, labels, channels)
        except AggregateNotificationError as e:
            logger.warning(f"Notification '{title}' partially failed: {e}")

    def _analyze(self, alert):
        context = AnalysisContext(
            target_type=alert.target_type,
            target_id=alert.target_id,
            metric_name=alert.metric_name,
            current_value=alert.value,
            threshold=alert.threshold,
            operator=alert.operator,
            severity=alert.severity,
            labels=dict(alert.labels),
            timestamp=alert.started_at,
            alert_id=alert.id,
            rule_id=alert.rule_id,
            rule_name=alert.rule_name,
        )
        result = self.analysis.run(context)
        if result is not None:
            self.db.set_alert_analysis(alert.id, result.id)
