"""Tests for the alert evaluator and lifecycle state machine."""
import sqlite3
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

from alerts.engine import AlertEvaluator, compare, alert_message
from alerts.errors import AlertNotFoundError, EvaluationError, InvalidStateError
from models.alerts import AlertRule, fingerprint
from models.notifications import DispatchResult, NotificationAttempt
from notifications.dispatcher import AggregateNotificationError


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _alerts(db, status=None):
    alerts, _ = db.list_alerts(status=status)
    return alerts


# ── Comparison ──────────────────────────────────────────

def test_all_operators():
    assert compare(85, ">", 80)
    assert not compare(80, ">", 80)
    assert compare(80, ">=", 80)
    assert compare(79.9, "<", 80)
    assert compare(80, "<=", 80)
    assert compare(0, "==", 0)
    assert compare(1, "!=", 0)
    assert not compare(1, "==", 1.0000001)


def test_unknown_operator_never_matches():
    assert not compare(100, "=>", 0)
    assert not compare(100, "", 0)


def test_equality_tolerance():
    assert compare(1.00001, "==", 1.0, tolerance=0.001)
    assert not compare(1.00001, "!=", 1.0, tolerance=0.001)
    assert compare(1.1, "!=", 1.0, tolerance=0.001)
    # Tolerance has no effect on ordering operators
    assert not compare(80.0001, "<=", 80, tolerance=0.1)


def test_alert_message_format():
    assert alert_message("cpu_usage", ">", 80, 85) == "cpu_usage > 80.00 (current: 85.00)"


# ── Firing / dedup / resolve ────────────────────────────

def test_cpu_alert_lifecycle(temp_db, evaluator, cpu_rule):
    """Fire on breach, refresh while breached, resolve on clear, refire after."""
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    firing = _alerts(temp_db, "firing")
    assert len(firing) == 1
    alert = firing[0]
    assert alert.rule_id == cpu_rule.id
    assert alert.severity == "high"
    assert alert.value == 85
    assert alert.message == "cpu_usage > 80.00 (current: 85.00)"
    assert alert.fingerprint == fingerprint(cpu_rule.id, "web-1", "cpu_usage")

    evaluator.process_sample("host", "web-1", "cpu_usage", 92, timestamp=T0 + timedelta(minutes=1))
    firing = _alerts(temp_db, "firing")
    assert len(firing) == 1
    assert firing[0].id == alert.id
    assert firing[0].value == 92

    evaluator.process_sample("host", "web-1", "cpu_usage", 70, timestamp=T0 + timedelta(minutes=2))
    resolved = temp_db.get_alert(alert.id)
    assert resolved.status == "resolved"
    assert resolved.resolved_at == T0 + timedelta(minutes=2)
    assert resolved.resolved_by is None

    evaluator.process_sample("host", "web-1", "cpu_usage", 95, timestamp=T0 + timedelta(minutes=3))
    assert temp_db.count_alerts() == 2
    assert len(_alerts(temp_db, "firing")) == 1


def test_clear_without_open_alert_is_noop(temp_db, evaluator, cpu_rule):
    evaluator.process_sample("host", "web-1", "cpu_usage", 10, timestamp=T0)
    assert temp_db.count_alerts() == 0


def test_separate_targets_get_separate_alerts(temp_db, evaluator, cpu_rule):
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    evaluator.process_sample("host", "web-2", "cpu_usage", 85, timestamp=T0)
    assert len(_alerts(temp_db, "firing")) == 2


def test_target_selector_filters_samples(temp_db, rules, evaluator):
    rules.create_rule({
        "name": "DB disk", "metric_name": "disk_usage", "operator": ">=", "threshold": 90,
        "severity": "critical", "target_type": "host", "target_id": "db-1",
    })
    evaluator.process_sample("host", "web-1", "disk_usage", 99, timestamp=T0)
    evaluator.process_sample("service", "db-1", "disk_usage", 99, timestamp=T0)
    assert temp_db.count_alerts() == 0

    evaluator.process_sample("host", "db-1", "disk_usage", 99, timestamp=T0)
    assert temp_db.count_alerts() == 1


def test_disabled_rule_never_fires(temp_db, rules, evaluator):
    rules.create_rule({
        "name": "Off", "metric_name": "cpu_usage", "operator": ">", "threshold": 1,
        "severity": "low", "enabled": False,
    })
    evaluator.process_sample("host", "web-1", "cpu_usage", 50, timestamp=T0)
    assert temp_db.count_alerts() == 0


def test_deleted_rule_stops_matching(temp_db, rules, evaluator, cpu_rule):
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    rules.delete_rule(cpu_rule.id)
    evaluator.process_sample("host", "web-2", "cpu_usage", 85, timestamp=T0)
    assert temp_db.count_alerts() == 1


def test_non_finite_sample_ignored(temp_db, evaluator, cpu_rule):
    evaluator.process_sample("host", "web-1", "cpu_usage", float("nan"), timestamp=T0)
    evaluator.process_sample("host", "web-1", "cpu_usage", float("inf"), timestamp=T0)
    assert temp_db.count_alerts() == 0
    assert temp_db.get_sample_values("host", "web-1", "cpu_usage", T0 - timedelta(days=1)) == []


def test_samples_are_recorded(temp_db, evaluator):
    evaluator.process_sample("host", "web-1", "mem_usage", 40, timestamp=T0)
    evaluator.process_sample("host", "web-1", "mem_usage", 41, timestamp=T0 + timedelta(minutes=1))
    values = temp_db.get_sample_values("host", "web-1", "mem_usage", T0 - timedelta(hours=1))
    assert values == [40, 41]


def test_rule_lookup_failure_raises(temp_db):
    rules = MagicMock()
    rules.get_matching_rules.side_effect = RuntimeError("store offline")
    evaluator = AlertEvaluator(temp_db, rules)
    with pytest.raises(EvaluationError):
        evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)


def test_labels_with_non_json_values(temp_db, evaluator, cpu_rule):
    evaluator.process_sample("host", "web-1", "cpu_usage", 95, labels={"seen": T0}, timestamp=T0)
    firing = _alerts(temp_db, "firing")
    assert len(firing) == 1
    assert firing[0].labels == {"seen": str(T0)}

    evaluator.process_sample("host", "web-1", "cpu_usage", 96, labels={"ratio": Decimal("1.5")},
                             timestamp=T0 + timedelta(minutes=1))
    alert = temp_db.get_alert(firing[0].id)
    assert alert.value == 96
    assert alert.labels == {"ratio": "1.5"}


def test_sample_recording_failure_still_evaluates(temp_db, evaluator, cpu_rule):
    with patch.object(temp_db, "insert_sample", side_effect=sqlite3.OperationalError("disk I/O error")):
        evaluator.process_sample("host", "web-1", "cpu_usage", 95, timestamp=T0)
    assert len(_alerts(temp_db, "firing")) == 1


def test_failing_rule_does_not_block_other_rules(temp_db, rules, evaluator, cpu_rule):
    other = rules.create_rule({
        "name": "CPU Saturated", "metric_name": "cpu_usage", "operator": ">",
        "threshold": 90, "severity": "critical", "target_type": "host",
    })
    evaluate = evaluator._evaluate_rule

    def flaky(rule, *args):
        if rule.id == cpu_rule.id:
            raise RuntimeError("boom")
        return evaluate(rule, *args)

    with patch.object(evaluator, "_evaluate_rule", side_effect=flaky):
        evaluator.process_sample("host", "web-1", "cpu_usage", 95, timestamp=T0)

    firing = _alerts(temp_db, "firing")
    assert [a.rule_id for a in firing] == [other.id]


def test_fingerprint_conflict_refreshes_without_notifying():
    rule = AlertRule(id="r1", name="High CPU", metric_name="cpu_usage", operator=">",
                     threshold=80, severity="high", channels=["ops-webhook"])
    rules = MagicMock()
    rules.get_matching_rules.return_value = [rule]
    db = MagicMock()
    db.refresh_open_alert.side_effect = [False, True]
    db.insert_alert.side_effect = sqlite3.IntegrityError("UNIQUE constraint failed: alerts.fingerprint")
    dispatcher = MagicMock()
    analysis = MagicMock()

    evaluator = AlertEvaluator(db, rules, dispatcher=dispatcher, analysis=analysis)
    evaluator.process_sample("host", "web-1", "cpu_usage", 95, labels={"dc": "eu"}, timestamp=T0)

    fp = fingerprint("r1", "web-1", "cpu_usage")
    assert db.insert_alert.call_count == 1
    assert db.refresh_open_alert.call_count == 2
    db.refresh_open_alert.assert_called_with(fp, 95.0, {"dc": "eu"}, T0)
    db.clear_pending.assert_called_with(fp)
    dispatcher.send.assert_not_called()
    analysis.run.assert_not_called()


# ── Duration window ─────────────────────────────────────

def test_duration_defers_firing(temp_db, rules, evaluator):
    rules.create_rule({
        "name": "Sustained CPU", "metric_name": "cpu_usage", "operator": ">", "threshold": 80,
        "severity": "medium", "duration_seconds": 60,
    })
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    evaluator.process_sample("host", "web-1", "cpu_usage", 86, timestamp=T0 + timedelta(seconds=30))
    assert temp_db.count_alerts() == 0

    evaluator.process_sample("host", "web-1", "cpu_usage", 87, timestamp=T0 + timedelta(seconds=60))
    firing = _alerts(temp_db, "firing")
    assert len(firing) == 1
    assert firing[0].value == 87
    assert temp_db.get_pending_since(firing[0].fingerprint) is None


def test_duration_resets_when_condition_clears(temp_db, rules, evaluator):
    rule = rules.create_rule({
        "name": "Sustained CPU", "metric_name": "cpu_usage", "operator": ">", "threshold": 80,
        "severity": "medium", "duration_seconds": 60,
    })
    fp = fingerprint(rule.id, "web-1", "cpu_usage")
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    assert temp_db.get_pending_since(fp) == T0

    evaluator.process_sample("host", "web-1", "cpu_usage", 50, timestamp=T0 + timedelta(seconds=30))
    assert temp_db.get_pending_since(fp) is None

    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0 + timedelta(seconds=70))
    assert temp_db.count_alerts() == 0


# ── Operator transitions ────────────────────────────────

def test_acknowledge_then_resolve(temp_db, evaluator, cpu_rule):
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    alert = _alerts(temp_db)[0]

    acked = evaluator.acknowledge(alert.id, "alice")
    assert acked.status == "acknowledged"
    assert acked.acknowledged_by == "alice"
    assert acked.acknowledged_at is not None

    with pytest.raises(InvalidStateError) as exc:
        evaluator.acknowledge(alert.id, "bob")
    assert exc.value.current == "acknowledged"

    resolved = evaluator.resolve(alert.id, "alice")
    assert resolved.status == "resolved"
    assert resolved.resolved_by == "alice"

    with pytest.raises(InvalidStateError):
        evaluator.resolve(alert.id, "alice")
    with pytest.raises(InvalidStateError):
        evaluator.acknowledge(alert.id, "alice")


def test_acknowledged_alert_still_deduplicates_and_auto_resolves(temp_db, evaluator, cpu_rule):
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    alert = _alerts(temp_db)[0]
    evaluator.acknowledge(alert.id, "alice")

    evaluator.process_sample("host", "web-1", "cpu_usage", 99, timestamp=T0 + timedelta(minutes=1))
    assert temp_db.count_alerts() == 1
    assert temp_db.get_alert(alert.id).value == 99
    assert temp_db.get_alert(alert.id).status == "acknowledged"

    evaluator.process_sample("host", "web-1", "cpu_usage", 10, timestamp=T0 + timedelta(minutes=2))
    assert temp_db.get_alert(alert.id).status == "resolved"


def test_unknown_alert_raises(evaluator):
    with pytest.raises(AlertNotFoundError):
        evaluator.acknowledge("missing", "alice")
    with pytest.raises(AlertNotFoundError):
        evaluator.get_alert("missing")


# ── Notifications / analysis hooks ──────────────────────

def test_fired_and_resolved_notifications(temp_db, rules, cpu_rule):
    dispatcher = MagicMock()
    evaluator = AlertEvaluator(temp_db, rules, dispatcher=dispatcher)

    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    title, content, severity, labels, channels = dispatcher.send.call_args[0]
    assert title == "[HIGH] High CPU"
    assert content == "cpu_usage > 80.00 (current: 85.00)"
    assert severity == "high"
    assert labels["status"] == "firing"
    assert channels == ["ops-webhook"]

    # Refreshing an open alert does not notify again
    evaluator.process_sample("host", "web-1", "cpu_usage", 90, timestamp=T0 + timedelta(minutes=1))
    assert dispatcher.send.call_count == 1

    evaluator.process_sample("host", "web-1", "cpu_usage", 50, timestamp=T0 + timedelta(minutes=2))
    title, content, severity, labels, channels = dispatcher.send.call_args[0]
    assert title == "[RESOLVED] High CPU"
    assert content.startswith("Alert has been resolved: ")
    assert severity == "info"
    assert labels["resolved"] == "true"
    assert dispatcher.send.call_count == 2


def test_manual_resolve_notifies(temp_db, rules, cpu_rule):
    dispatcher = MagicMock()
    evaluator = AlertEvaluator(temp_db, rules, dispatcher=dispatcher)
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    alert = _alerts(temp_db)[0]
    evaluator.resolve(alert.id, "alice")
    assert dispatcher.send.call_args[0][0] == "[RESOLVED] High CPU"


def test_rule_without_channels_does_not_notify(temp_db, rules):
    rules.create_rule({"name": "Quiet", "metric_name": "load", "operator": ">", "threshold": 1,
                       "severity": "low"})
    dispatcher = MagicMock()
    evaluator = AlertEvaluator(temp_db, rules, dispatcher=dispatcher)
    evaluator.process_sample("host", "web-1", "load", 5, timestamp=T0)
    assert temp_db.count_alerts() == 1
    dispatcher.send.assert_not_called()


def test_notification_failure_does_not_break_evaluation(temp_db, rules, cpu_rule):
    failed = NotificationAttempt(id="a1", channel_name="ops-webhook", status="failed", error="boom")
    dispatcher = MagicMock()
    dispatcher.send.side_effect = AggregateNotificationError(DispatchResult(attempts=[failed]))
    evaluator = AlertEvaluator(temp_db, rules, dispatcher=dispatcher)

    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    assert len(_alerts(temp_db, "firing")) == 1


def test_background_work_goes_through_pool(temp_db, rules, cpu_rule):
    pool = MagicMock()
    dispatcher = MagicMock()
    analysis = MagicMock()
    evaluator = AlertEvaluator(temp_db, rules, dispatcher=dispatcher, analysis=analysis, pool=pool)

    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    assert pool.submit.call_count == 2
    dispatcher.send.assert_not_called()
    analysis.run.assert_not_called()


def test_analysis_result_is_linked_to_alert(temp_db, rules, cpu_rule):
    analysis = MagicMock()
    analysis.run.return_value = MagicMock(id="analysis-1")
    evaluator = AlertEvaluator(temp_db, rules, analysis=analysis)

    evaluator.process_sample("host", "web-1", "cpu_usage", 85, labels={"dc": "eu"}, timestamp=T0)
    context = analysis.run.call_args[0][0]
    assert context.metric_name == "cpu_usage"
    assert context.current_value == 85
    assert context.threshold == 80
    assert context.labels == {"dc": "eu"}
    assert context.rule_name == "High CPU"
    assert _alerts(temp_db)[0].analysis_id == "analysis-1"


def test_analysis_skipped_leaves_alert_unlinked(temp_db, rules, cpu_rule):
    analysis = MagicMock()
    analysis.run.return_value = None
    evaluator = AlertEvaluator(temp_db, rules, analysis=analysis)
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=T0)
    assert _alerts(temp_db)[0].analysis_id is None


# ── Queries ─────────────────────────────────────────────

def test_list_and_stats(temp_db, evaluator, cpu_rule):
    now = datetime.now(timezone.utc)
    evaluator.process_sample("host", "web-1", "cpu_usage", 85, timestamp=now)
    evaluator.process_sample("host", "web-2", "cpu_usage", 85, timestamp=now)
    evaluator.process_sample("host", "web-2", "cpu_usage", 10, timestamp=now)

    alerts, total = evaluator.list_alerts(status="firing")
    assert total == 1
    assert alerts[0].target_id == "web-1"

    alerts, total = evaluator.list_alerts(page=1, page_size=1)
    assert total == 2
    assert len(alerts) == 1

    stats = evaluator.get_alert_stats(days=7)
    assert stats["days"] == 7
    assert stats["total"] == 2
    assert stats["active"] == 1
    assert stats["by_status"] == {"firing": 1, "resolved": 1}
    assert stats["active_by_severity"] == {"high": 1}
    assert stats["today"] == 2
