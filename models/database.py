"""SQLite store for rules, alerts, channels, delivery attempts and analyses."""
import json
import sqlite3
import logging
from dataclasses import asdict
import threading
from datetime import datetime, timezone
from pathlib import Path

from models.alerts import AlertRule, Alert
from models.analysis import AnalysisResult, KnowledgeEntry
from models.notifications import NotificationChannel, NotificationAttempt
from models.enums import AlertStatus

logger = logging.getLogger("aimonitor.db")

OPEN_STATUS_SQL = "('firing', 'acknowledged')"


def to_utc_iso(value):
    """ISO-8601 UTC text so timestamps compare correctly as strings."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _json(value):
    # Labels are an open map; values JSON cannot encode are stored as text.
    return json.dumps(value, sort_keys=True, default=str)


class Database:
    """One shared connection; every statement runs under an RLock."""

    def __init__(self, db_path="data/aimonitor.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.RLock()

    def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()
        return self

    def close(self):
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def _create_tables(self):
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS alert_rules (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    target_type TEXT DEFAULT '',
                    target_id TEXT DEFAULT '',
                    metric_name TEXT NOT NULL,
                    operator TEXT NOT NULL,
                    threshold REAL NOT NULL,
                    duration_seconds INTEGER DEFAULT 0,
                    severity TEXT NOT NULL,
                    enabled INTEGER DEFAULT 1,
                    labels TEXT DEFAULT '{}',
                    channels TEXT DEFAULT '[]',
                    owner TEXT DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    deleted_at TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_rules_name
                    ON alert_rules(name) WHERE deleted_at IS NULL;
                CREATE INDEX IF NOT EXISTS idx_rules_metric
                    ON alert_rules(metric_name);

                CREATE TABLE IF NOT EXISTS alerts (
                    id TEXT PRIMARY KEY,
                    rule_id TEXT NOT NULL,
                    rule_name TEXT DEFAULT '',
                    target_type TEXT DEFAULT '',
                    target_id TEXT DEFAULT '',
                    metric_name TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    status TEXT NOT NULL,
                    value REAL NOT NULL,
                    threshold REAL,
                    operator TEXT,
                    message TEXT,
                    labels TEXT DEFAULT '{}',
                    started_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    acknowledged_at TEXT,
                    acknowledged_by TEXT,
                    resolved_at TEXT,
                    resolved_by TEXT,
                    analysis_id TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open_fingerprint
                    ON alerts(fingerprint) WHERE status IN ('firing', 'acknowledged');
                CREATE INDEX IF NOT EXISTS idx_alerts_started
                    ON alerts(started_at);

                CREATE TABLE IF NOT EXISTS alert_pending (
                    fingerprint TEXT PRIMARY KEY,
                    rule_id TEXT NOT NULL,
                    since TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS notification_channels (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    config TEXT NOT NULL,
                    config_version INTEGER DEFAULT 1,
                    enabled INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    deleted_at TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_channels_name
                    ON notification_channels(name) WHERE deleted_at IS NULL;

                CREATE TABLE IF NOT EXISTS notification_attempts (
                    id TEXT PRIMARY KEY,
                    channel_name TEXT NOT NULL,
                    channel_type TEXT DEFAULT '',
                    title TEXT DEFAULT '',
                    severity TEXT DEFAULT '',
                    status TEXT NOT NULL,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    sent_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_attempts_created
                    ON notification_attempts(created_at);

                CREATE TABLE IF NOT EXISTS analysis_results (
                    id TEXT PRIMARY KEY,
                    analysis_type TEXT NOT NULL,
                    target_type TEXT DEFAULT '',
                    target_id TEXT DEFAULT '',
                    metric_name TEXT DEFAULT '',
                    input_snapshot TEXT DEFAULT '{}',
                    anomaly TEXT DEFAULT '{}',
                    trend TEXT DEFAULT '{}',
                    narrative TEXT DEFAULT '',
                    root_cause TEXT DEFAULT '',
                    impact_assessment TEXT DEFAULT '',
                    recommendations TEXT DEFAULT '[]',
                    prevention_measures TEXT DEFAULT '',
                    severity_level TEXT DEFAULT 'medium',
                    confidence REAL DEFAULT 0,
                    model TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS knowledge_base (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    category TEXT DEFAULT 'general',
                    metric_types TEXT DEFAULT '[]',
                    severity TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS metric_samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    target_type TEXT DEFAULT '',
                    target_id TEXT DEFAULT '',
                    metric_name TEXT NOT NULL,
                    value REAL NOT NULL,
                    labels TEXT DEFAULT '{}',
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_samples_series
                    ON metric_samples(metric_name, target_type, target_id, timestamp);
            """)
            self.conn.commit()

    def _execute(self, query, params=()):
        with self._lock:
            cur = self.conn.execute(query, params)
            self.conn.commit()
            return cur

    def _fetchall(self, query, params=()):
        with self._lock:
            return self.conn.execute(query, params).fetchall()

    def _fetchone(self, query, params=()):
        with self._lock:
            return self.conn.execute(query, params).fetchone()

    # --- Alert Rules ---

    def insert_rule(self, rule: AlertRule):
        self._execute("""
            INSERT INTO alert_rules
            (id, name, description, target_type, target_id, metric_name, operator,
             threshold, duration_seconds, severity, enabled, labels, channels, owner,
             created_at, updated_at, deleted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            rule.id, rule.name, rule.description, rule.target_type, rule.target_id,
            rule.metric_name, rule.operator, rule.threshold, rule.duration_seconds,
            rule.severity, int(rule.enabled), _json(rule.labels), _json(rule.channels),
            rule.owner, to_utc_iso(rule.created_at), to_utc_iso(rule.updated_at), None,
        ))
        logger.debug(f"Saved rule {rule.name} ({rule.id})")

    def update_rule(self, rule: AlertRule):
        cur = self._execute("""
            UPDATE alert_rules SET
                name = ?, description = ?, target_type = ?, target_id = ?, metric_name = ?,
                operator = ?, threshold = ?, duration_seconds = ?, severity = ?, enabled = ?,
                labels = ?, channels = ?, owner = ?, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
        """, (
            rule.name, rule.description, rule.target_type, rule.target_id, rule.metric_name,
            rule.operator, rule.threshold, rule.duration_seconds, rule.severity,
            int(rule.enabled), _json(rule.labels), _json(rule.channels), rule.owner,
            to_utc_iso(rule.updated_at), rule.id,
        ))
        return cur.rowcount == 1

    def soft_delete_rule(self, rule_id, deleted_at):
        cur = self._execute(
            "UPDATE alert_rules SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (to_utc_iso(deleted_at), to_utc_iso(deleted_at), rule_id),
        )
        return cur.rowcount == 1

    def get_rule(self, rule_id):
        row = self._fetchone(
            "SELECT * FROM alert_rules WHERE id = ? AND deleted_at IS NULL", (rule_id,)
        )
        return AlertRule.from_row(row) if row else None

    def get_rule_by_name(self, name):
        row = self._fetchone(
            "SELECT * FROM alert_rules WHERE name = ? AND deleted_at IS NULL", (name,)
        )
        return AlertRule.from_row(row) if row else None

    def list_rules(self, search=None, enabled=None, offset=0, limit=50):
        where = " WHERE deleted_at IS NULL"
        params = []
        if search:
            where += " AND (name LIKE ? OR description LIKE ? OR metric_name LIKE ?)"
            params.extend([f"%{search}%"] * 3)
        if enabled is not None:
            where += " AND enabled = ?"
            params.append(int(enabled))
        total = self._fetchone(f"SELECT COUNT(*) AS cnt FROM alert_rules{where}", params)["cnt"]
        rows = self._fetchall(
            f"SELECT * FROM alert_rules{where} ORDER BY created_at DESC, name LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        return [AlertRule.from_row(r) for r in rows], total

    def find_rules_for_metric(self, metric_name):
        """Enabled, non-deleted rules for metric_name; target filtering is the caller's."""
        rows = self._fetchall("""
            SELECT * FROM alert_rules
            WHERE metric_name = ? AND enabled = 1 AND deleted_at IS NULL
            ORDER BY created_at
        """, (metric_name,))
        return [AlertRule.from_row(r) for r in rows]

    def list_enabled_metrics(self):
        rows = self._fetchall("""
            SELECT DISTINCT metric_name FROM alert_rules
            WHERE enabled = 1 AND deleted_at IS NULL ORDER BY metric_name
        """)
        return [r["metric_name"] for r in rows]

    # --- Alerts ---

    def insert_alert(self, alert: Alert):
        """Raises sqlite3.IntegrityError if an open alert already holds the fingerprint."""
        self._execute("""
            INSERT INTO alerts
            (id, rule_id, rule_name, target_type, target_id, metric_name, fingerprint,
             severity, status, value, threshold, operator, message, labels,
             started_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            alert.id, alert.rule_id, alert.rule_name, alert.target_type, alert.target_id,
            alert.metric_name, alert.fingerprint, alert.severity, alert.status, alert.value,
            alert.threshold, alert.operator, alert.message, _json(alert.labels),
            to_utc_iso(alert.started_at), to_utc_iso(alert.updated_at),
        ))

    def get_alert(self, alert_id):
        row = self._fetchone("SELECT * FROM alerts WHERE id = ?", (alert_id,))
        return Alert.from_row(row) if row else None

    def get_open_alert(self, fingerprint):
        row = self._fetchone(
            f"SELECT * FROM alerts WHERE fingerprint = ? AND status IN {OPEN_STATUS_SQL}",
            (fingerprint,),
        )
        return Alert.from_row(row) if row else None

    def refresh_open_alert(self, fingerprint, value, labels, updated_at):
        cur = self._execute(f"""
            UPDATE alerts SET value = ?, labels = ?, updated_at = ?
            WHERE fingerprint = ? AND status IN {OPEN_STATUS_SQL}
        """, (value, _json(labels), to_utc_iso(updated_at), fingerprint))
        return cur.rowcount == 1

    def transition_alert(self, alert_id, from_statuses, to_status, at, by=None):
        """Conditional status write; False if the alert was not in from_statuses."""
        placeholders = ", ".join("?" for _ in from_statuses)
        if to_status == AlertStatus.ACKNOWLEDGED.value:
            extra = "acknowledged_at = ?, acknowledged_by = ?"
        else:
            extra = "resolved_at = ?, resolved_by = ?"
        cur = self._execute(f"""
            UPDATE alerts SET status = ?, updated_at = ?, {extra}
            WHERE id = ? AND status IN ({placeholders})
        """, (to_status, to_utc_iso(at), to_utc_iso(at), by, alert_id, *from_statuses))
        return cur.rowcount == 1

    def set_alert_analysis(self, alert_id, analysis_id):
        cur = self._execute(
            "UPDATE alerts SET analysis_id = ? WHERE id = ?", (analysis_id, alert_id)
        )
        return cur.rowcount == 1

    def list_alerts(self, status=None, severity=None, target_type=None, offset=0, limit=50):
        where = " WHERE 1=1"
        params = []
        if status:
            where += " AND status = ?"
            params.append(status)
        if severity:
            where += " AND severity = ?"
            params.append(severity)
        if target_type:
            where += " AND target_type = ?"
            params.append(target_type)
        total = self._fetchone(f"SELECT COUNT(*) AS cnt FROM alerts{where}", params)["cnt"]
        rows = self._fetchall(
            f"SELECT * FROM alerts{where} ORDER BY started_at DESC LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        return [Alert.from_row(r) for r in rows], total

    def count_alerts(self, fingerprint=None, status=None):
        query = "SELECT COUNT(*) AS cnt FROM alerts WHERE 1=1"
        params = []
        if fingerprint:
            query += " AND fingerprint = ?"
            params.append(fingerprint)
        if status:
            query += " AND status = ?"
            params.append(status)
        return self._fetchone(query, params)["cnt"]

    def get_alert_stats(self, since, today_start):
        since_iso = to_utc_iso(since)
        total = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM alerts WHERE started_at >= ?", (since_iso,)
        )["cnt"]
        active = self._fetchone(
            f"SELECT COUNT(*) AS cnt FROM alerts WHERE status IN {OPEN_STATUS_SQL}"
        )["cnt"]
        by_status = self._fetchall("""
            SELECT status, COUNT(*) AS cnt FROM alerts
            WHERE started_at >= ? GROUP BY status
        """, (since_iso,))
        by_severity = self._fetchall(f"""
            SELECT severity, COUNT(*) AS cnt FROM alerts
            WHERE status IN {OPEN_STATUS_SQL} GROUP BY severity
        """)
        by_day = self._fetchall("""
            SELECT substr(started_at, 1, 10) AS day, COUNT(*) AS cnt FROM alerts
            WHERE started_at >= ? GROUP BY day ORDER BY day
        """, (since_iso,))
        today = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM alerts WHERE started_at >= ?", (to_utc_iso(today_start),)
        )["cnt"]
        return {
            "total": total,
            "active": active,
            "by_status": {r["status"]: r["cnt"] for r in by_status},
            "active_by_severity": {r["severity"]: r["cnt"] for r in by_severity},
            "by_day": {r["day"]: r["cnt"] for r in by_day},
            "today": today,
        }

    # --- Pending windows ---

    def get_pending_since(self, fingerprint):
        row = self._fetchone("SELECT since FROM alert_pending WHERE fingerprint = ?", (fingerprint,))
        return datetime.fromisoformat(row["since"]) if row else None

    def set_pending(self, fingerprint, rule_id, since):
        """Start a pending window unless one is already open; returns its start."""
        with self._lock:
            self.conn.execute(
                "INSERT OR IGNORE INTO alert_pending (fingerprint, rule_id, since) VALUES (?, ?, ?)",
                (fingerprint, rule_id, to_utc_iso(since)),
            )
            self.conn.commit()
            return self.get_pending_since(fingerprint)

    def clear_pending(self, fingerprint):
        cur = self._execute("DELETE FROM alert_pending WHERE fingerprint = ?", (fingerprint,))
        return cur.rowcount > 0

    # --- Notification Channels ---

    def insert_channel(self, channel: NotificationChannel):
        self._execute("""
            INSERT INTO notification_channels
            (id, name, type, description, config, config_version, enabled, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            channel.id, channel.name, channel.type, channel.description,
            self._config_json(channel), channel.config_version, int(channel.enabled),
            to_utc_iso(channel.created_at), to_utc_iso(channel.updated_at),
        ))

    def update_channel(self, channel: NotificationChannel):
        cur = self._execute("""
            UPDATE notification_channels SET
                name = ?, type = ?, description = ?, config = ?, config_version = ?,
                enabled = ?, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
        """, (
            channel.name, channel.type, channel.description, self._config_json(channel),
            channel.config_version, int(channel.enabled), to_utc_iso(channel.updated_at),
            channel.id,
        ))
        return cur.rowcount == 1

    @staticmethod
    def _config_json(channel):
        # Stored in full; redaction happens only on outward views.
        return _json(asdict(channel.config))

    def soft_delete_channel(self, channel_id, deleted_at):
        cur = self._execute(
            "UPDATE notification_channels SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
            (to_utc_iso(deleted_at), channel_id),
        )
        return cur.rowcount == 1

    def get_channel(self, channel_id):
        row = self._fetchone(
            "SELECT * FROM notification_channels WHERE id = ? AND deleted_at IS NULL", (channel_id,)
        )
        return NotificationChannel.from_row(row) if row else None

    def get_channel_by_name(self, name):
        row = self._fetchone(
            "SELECT * FROM notification_channels WHERE name = ? AND deleted_at IS NULL", (name,)
        )
        return NotificationChannel.from_row(row) if row else None

    def list_channels(self, channel_type=None, enabled=None, offset=0, limit=50):
        where = " WHERE deleted_at IS NULL"
        params = []
        if channel_type:
            where += " AND type = ?"
            params.append(channel_type)
        if enabled is not None:
            where += " AND enabled = ?"
            params.append(int(enabled))
        total = self._fetchone(
            f"SELECT COUNT(*) AS cnt FROM notification_channels{where}", params
        )["cnt"]
        rows = self._fetchall(
            f"SELECT * FROM notification_channels{where} ORDER BY name LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        return [NotificationChannel.from_row(r) for r in rows], total

    # --- Notification Attempts ---

    def insert_attempt(self, attempt: NotificationAttempt):
        self._execute("""
            INSERT INTO notification_attempts
            (id, channel_name, channel_type, title, severity, status, error, created_at, sent_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            attempt.id, attempt.channel_name, attempt.channel_type, attempt.title,
            attempt.severity, attempt.status, attempt.error,
            to_utc_iso(attempt.created_at), to_utc_iso(attempt.sent_at),
        ))

    def update_attempt(self, attempt: NotificationAttempt):
        self._execute(
            "UPDATE notification_attempts SET status = ?, error = ?, sent_at = ? WHERE id = ?",
            (attempt.status, attempt.error, to_utc_iso(attempt.sent_at), attempt.id),
        )

    def list_attempts(self, status=None, channel_name=None, offset=0, limit=50):
        where = " WHERE 1=1"
        params = []
        if status:
            where += " AND status = ?"
            params.append(status)
        if channel_name:
            where += " AND channel_name = ?"
            params.append(channel_name)
        total = self._fetchone(
            f"SELECT COUNT(*) AS cnt FROM notification_attempts{where}", params
        )["cnt"]
        rows = self._fetchall(
            f"SELECT * FROM notification_attempts{where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        return [NotificationAttempt.from_row(r) for r in rows], total

    # --- Analysis Results ---

    def insert_analysis(self, result: AnalysisResult):
        self._execute("""
            INSERT INTO analysis_results
            (id, analysis_type, target_type, target_id, metric_name, input_snapshot,
             anomaly, trend, narrative, root_cause, impact_assessment, recommendations,
             prevention_measures, severity_level, confidence, model, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            result.id, result.analysis_type, result.target_type, result.target_id,
            result.metric_name, _json(result.input_snapshot), _json(result.anomaly),
            _json(result.trend), result.narrative, result.root_cause,
            result.impact_assessment, _json(result.recommendations),
            result.prevention_measures, result.severity_level, result.confidence,
            result.model, to_utc_iso(result.created_at),
        ))

    def get_analysis(self, analysis_id):
        row = self._fetchone("SELECT * FROM analysis_results WHERE id = ?", (analysis_id,))
        return AnalysisResult.from_row(row) if row else None

    def list_analyses(self, target_type=None, target_id=None, metric_name=None, limit=50):
        query = "SELECT * FROM analysis_results WHERE 1=1"
        params = []
        if target_type:
            query += " AND target_type = ?"
            params.append(target_type)
        if target_id:
            query += " AND target_id = ?"
            params.append(target_id)
        if metric_name:
            query += " AND metric_name = ?"
            params.append(metric_name)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [AnalysisResult.from_row(r) for r in self._fetchall(query, params)]

    # --- Knowledge Base ---

    def insert_knowledge(self, entry: KnowledgeEntry):
        self._execute("""
            INSERT INTO knowledge_base (id, title, content, category, metric_types, severity, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.id, entry.title, entry.content, entry.category,
            _json(entry.metric_types), entry.severity, to_utc_iso(entry.created_at),
        ))

    def list_knowledge(self, category=None, search=None, limit=100):
        query = "SELECT * FROM knowledge_base WHERE 1=1"
        params = []
        if category:
            query += " AND category = ?"
            params.append(category)
        if search:
            query += " AND (title LIKE ? OR content LIKE ?)"
            params.extend([f"%{search}%"] * 2)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [KnowledgeEntry.from_row(r) for r in self._fetchall(query, params)]

    def get_knowledge(self, entry_id):
        row = self._fetchone("SELECT * FROM knowledge_base WHERE id = ?", (entry_id,))
        return KnowledgeEntry.from_row(row) if row else None

    def update_knowledge(self, entry: KnowledgeEntry):
        cur = self._execute("""
            UPDATE knowledge_base SET title = ?, content = ?, category = ?, metric_types = ?, severity = ?
            WHERE id = ?
        """, (
            entry.title, entry.content, entry.category, _json(entry.metric_types),
            entry.severity, entry.id,
        ))
        return cur.rowcount == 1

    def delete_knowledge(self, entry_id):
        cur = self._execute("DELETE FROM knowledge_base WHERE id = ?", (entry_id,))
        return cur.rowcount == 1

    def knowledge_stats(self):
        total = self._fetchone("SELECT COUNT(*) AS cnt FROM knowledge_base")["cnt"]
        rows = self._fetchall(
            "SELECT category, COUNT(*) AS cnt FROM knowledge_base GROUP BY category ORDER BY category"
        )
        return {"total": total, "by_category": {r["category"]: r["cnt"] for r in rows}}

    def find_knowledge(self, metric_name, severity, limit=3):
        rows = self._fetchall("""
            SELECT * FROM knowledge_base
            WHERE metric_types LIKE ? OR severity = ?
            ORDER BY created_at DESC LIMIT ?
        """, (f'%"{metric_name}"%', severity, limit))
        return [KnowledgeEntry.from_row(r) for r in rows]

    # --- Metric Samples ---

    def insert_sample(self, sample):
        self._execute("""
            INSERT INTO metric_samples (target_type, target_id, metric_name, value, labels, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            sample.target_type, sample.target_id, sample.metric_name, sample.value,
            _json(sample.labels), to_utc_iso(sample.timestamp),
        ))

    def get_sample_values(self, target_type, target_id, metric_name, since, until=None):
        """Chronological values for one series in [since, until)."""
        query = """
            SELECT value FROM metric_samples
            WHERE metric_name = ? AND target_type = ? AND target_id = ? AND timestamp >= ?
        """
        params = [metric_name, target_type, target_id, to_utc_iso(since)]
        if until is not None:
            query += " AND timestamp < ?"
            params.append(to_utc_iso(until))
        query += " ORDER BY timestamp ASC, id ASC"
        return [r["value"] for r in self._fetchall(query, params)]

    def purge_samples(self, before):
        cur = self._execute(
            "DELETE FROM metric_samples WHERE timestamp < ?", (to_utc_iso(before),)
        )
        if cur.rowcount:
            logger.debug(f"Purged {cur.rowcount} metric samples")
        return cur.rowcount
