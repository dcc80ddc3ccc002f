"""
Flask JSON API for AI Monitor.

Endpoints:
  POST /api/samples                  - Ingest one sample or a list of samples
  GET|POST /api/rules                - List / create alert rules
  GET|PUT|DELETE /api/rules/<id>     - Read / update / delete one rule
  GET /api/alerts                    - List alerts (status, severity, target_type filters)
  GET /api/alerts/stats              - Alert counts over the last N days
  GET /api/alerts/<id>               - One alert
  POST /api/alerts/<id>/acknowledge  - Operator acknowledge
  POST /api/alerts/<id>/resolve      - Operator resolve
  GET|POST /api/channels             - List / create notification channels (secrets masked)
  GET|PUT|DELETE /api/channels/<id>  - Read / update / delete one channel
  POST /api/channels/<id>/test       - Send a test notification
  GET /api/notifications             - Delivery attempt history
  GET|POST /api/analysis             - Stored analyses / run an analysis on demand
  GET /api/analysis/<id>             - One analysis
  GET|POST /api/knowledge            - Knowledge base entries
  GET /api/knowledge/stats           - Entry counts by category
  GET|PUT|DELETE /api/knowledge/<id> - Read / update / delete one entry
  GET /api/health                    - Liveness plus background queue depth

Started via: python main.py web [--port 8080] [--host 0.0.0.0]
"""
import logging
from datetime import datetime, timezone

from flask import Flask, jsonify, request

from __version__ import __version__
from alerts.errors import AlertNotFoundError, InvalidStateError, RuleNotFoundError
from analysis.knowledge import KnowledgeNotFoundError
from analysis.narrative import AnalyzerUnavailableError
from models.analysis import AnalysisContext
from notifications.channel_manager import ChannelNotFoundError
from notifications.dispatcher import AggregateNotificationError

logger = logging.getLogger("aimonitor.web.app")


def _bool_arg(name):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes", "on")


def _page_args():
    try:
        page = int(request.args.get("page", 1))
        page_size = int(request.args.get("page_size", 20))
    except ValueError:
        raise ValueError("page and page_size must be integers")
    return page, page_size


def _json_body():
    body = request.get_json(silent=True)
    if body is None:
        raise ValueError("Request body must be JSON")
    return body


def _parse_sample(raw):
    if not isinstance(raw, dict):
        raise ValueError("Each sample must be an object")
    if not raw.get("metric_name"):
        raise ValueError("metric_name is required")
    try:
        value = float(raw["value"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("value must be a number")
    labels = raw.get("labels") or {}
    if not isinstance(labels, dict):
        raise ValueError("labels must be an object")
    return {
        "target_type": raw.get("target_type") or "",
        "target_id": str(raw.get("target_id") or ""),
        "metric_name": raw["metric_name"],
        "value": value,
        "labels": {str(k): str(v) for k, v in labels.items()},
        "timestamp": raw.get("timestamp"),
    }


def create_app(config: dict, engines: dict) -> Flask:
    """
    Factory function. Receives initialized components from main.py / wsgi.py.

    Args:
        config: Application config dict
        engines: dict of initialized components (db, rules, evaluator, channels,
                 pipeline, knowledge, pool)
    """
    app = Flask(__name__)

    # ─── Error mapping ───────────────────────────────────

    @app.errorhandler(ValueError)
    def bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(AlertNotFoundError)
    @app.errorhandler(RuleNotFoundError)
    @app.errorhandler(ChannelNotFoundError)
    @app.errorhandler(KnowledgeNotFoundError)
    def not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(InvalidStateError)
    def conflict(e):
        return jsonify({"error": str(e), "status": e.current}), 409

    @app.errorhandler(AnalyzerUnavailableError)
    def unavailable(e):
        return jsonify({"error": str(e)}), 503

    # ─── Health / ingestion ──────────────────────────────

    @app.route("/api/health")
    def api_health():
        pool = engines.get("pool")
        return jsonify({
            "status": "ok",
            "version": __version__,
            "workers": pool.stats() if pool else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route("/api/samples", methods=["POST"])
    def api_samples():
        body = _json_body()
        samples = [_parse_sample(s) for s in (body if isinstance(body, list) else [body])]
        evaluator = engines["evaluator"]
        for sample in samples:
            evaluator.process_sample(**sample)
        return jsonify({"accepted": len(samples)}), 202

    # ─── Rules ───────────────────────────────────────────

    @app.route("/api/rules", methods=["GET"])
    def api_rules_list():
        page, page_size = _page_args()
        rules, total = engines["rules"].list_rules(
            page=page, page_size=page_size,
            search=request.args.get("search"), enabled=_bool_arg("enabled"),
        )
        return jsonify({"rules": [r.to_dict() for r in rules], "total": total,
                        "page": page, "page_size": page_size})

    @app.route("/api/rules", methods=["POST"])
    def api_rules_create():
        rule = engines["rules"].create_rule(_json_body())
        return jsonify(rule.to_dict()), 201

    @app.route("/api/rules/<rule_id>", methods=["GET"])
    def api_rule_get(rule_id):
        return jsonify(engines["rules"].get_rule(rule_id).to_dict())

    @app.route("/api/rules/<rule_id>", methods=["PUT"])
    def api_rule_update(rule_id):
        return jsonify(engines["rules"].update_rule(rule_id, _json_body()).to_dict())

    @app.route("/api/rules/<rule_id>", methods=["DELETE"])
    def api_rule_delete(rule_id):
        engines["rules"].delete_rule(rule_id)
        return "", 204

    # ─── Alerts ──────────────────────────────────────────

    @app.route("/api/alerts")
    def api_alerts():
        page, page_size = _page_args()
        alerts, total = engines["evaluator"].list_alerts(
            status=request.args.get("status"),
            severity=request.args.get("severity"),
            target_type=request.args.get("target_type"),
            page=page, page_size=page_size,
        )
        return jsonify({"alerts": [a.to_dict() for a in alerts], "total": total,
                        "page": page, "page_size": page_size})

    @app.route("/api/alerts/stats")
    def api_alert_stats():
        days = min(max(int(request.args.get("days", 7)), 1), 365)
        return jsonify(engines["evaluator"].get_alert_stats(days=days))

    @app.route("/api/alerts/<alert_id>")
    def api_alert_get(alert_id):
        return jsonify(engines["evaluator"].get_alert(alert_id).to_dict())

    @app.route("/api/alerts/<alert_id>/acknowledge", methods=["POST"])
    def api_alert_ack(alert_id):
        body = request.get_json(silent=True) or {}
        alert = engines["evaluator"].acknowledge(alert_id, body.get("user") or "api")
        return jsonify(alert.to_dict())

    @app.route("/api/alerts/<alert_id>/resolve", methods=["POST"])
    def api_alert_resolve(alert_id):
        body = request.get_json(silent=True) or {}
        alert = engines["evaluator"].resolve(alert_id, body.get("user") or "api")
        return jsonify(alert.to_dict())

    # ─── Channels ────────────────────────────────────────

    @app.route("/api/channels", methods=["GET"])
    def api_channels_list():
        page, page_size = _page_args()
        channels, total = engines["channels"].list_channels(
            channel_type=request.args.get("type"), enabled=_bool_arg("enabled"),
            page=page, page_size=page_size,
        )
        return jsonify({"channels": [c.to_public_dict() for c in channels], "total": total,
                        "page": page, "page_size": page_size})

    @app.route("/api/channels", methods=["POST"])
    def api_channels_create():
        body = _json_body()
        channel = engines["channels"].create_channel(
            name=body.get("name"),
            channel_type=body.get("type"),
            config=body.get("config") or {},
            description=body.get("description", ""),
            enabled=body.get("enabled", True),
        )
        return jsonify(channel.to_public_dict()), 201

    @app.route("/api/channels/<channel_id>", methods=["GET"])
    def api_channel_get(channel_id):
        return jsonify(engines["channels"].get_channel(channel_id).to_public_dict())

    @app.route("/api/channels/<channel_id>", methods=["PUT"])
    def api_channel_update(channel_id):
        body = _json_body()
        channel = engines["channels"].update_channel(
            channel_id,
            name=body.get("name"),
            config=body.get("config"),
            description=body.get("description"),
            enabled=body.get("enabled"),
        )
        return jsonify(channel.to_public_dict())

    @app.route("/api/channels/<channel_id>", methods=["DELETE"])
    def api_channel_delete(channel_id):
        engines["channels"].delete_channel(channel_id)
        return "", 204

    @app.route("/api/channels/<channel_id>/test", methods=["POST"])
    def api_channel_test(channel_id):
        try:
            result = engines["channels"].test_channel(channel_id)
        except AggregateNotificationError as e:
            return jsonify({"ok": False, **e.result.summary()}), 502
        return jsonify({"ok": result.ok, **result.summary()})

    @app.route("/api/notifications")
    def api_notifications():
        page, page_size = _page_args()
        attempts, total = engines["channels"].notification_history(
            status=request.args.get("status"),
            channel_name=request.args.get("channel"),
            page=page, page_size=page_size,
        )
        return jsonify({"notifications": [a.to_dict() for a in attempts], "total": total,
                        "page": page, "page_size": page_size})

    # ─── Analysis / knowledge ────────────────────────────

    @app.route("/api/analysis", methods=["GET"])
    def api_analysis_list():
        limit = min(int(request.args.get("limit", 20)), 100)
        results = engines["db"].list_analyses(
            target_type=request.args.get("target_type"),
            target_id=request.args.get("target_id"),
            metric_name=request.args.get("metric"),
            limit=limit,
        )
        return jsonify({"analyses": [r.to_dict() for r in results], "count": len(results)})

    @app.route("/api/analysis", methods=["POST"])
    def api_analysis_run():
        body = _json_body()
        if not body.get("metric_name"):
            raise ValueError("metric_name is required")
        try:
            current = float(body["current_value"])
            threshold = float(body.get("threshold", 0.0))
        except (KeyError, TypeError, ValueError):
            raise ValueError("current_value and threshold must be numbers")
        context = AnalysisContext(
            target_type=body.get("target_type") or "",
            target_id=str(body.get("target_id") or ""),
            metric_name=body["metric_name"],
            current_value=current,
            threshold=threshold,
            operator=body.get("operator") or "",
            severity=body.get("severity") or "medium",
            labels=body.get("labels") or {},
            analysis_type=body.get("analysis_type") or "alert_analysis",
        )
        pipeline = engines["pipeline"]
        anomaly, trend = pipeline.statistics(context)
        response = {"anomaly": anomaly.to_dict(), "trend": trend.to_dict(), "analysis": None}
        if pipeline.narrative.available:
            response["analysis"] = pipeline.narrative.analyze(context, anomaly, trend).to_dict()
        return jsonify(response)

    @app.route("/api/analysis/<analysis_id>")
    def api_analysis_get(analysis_id):
        result = engines["db"].get_analysis(analysis_id)
        if result is None:
            return jsonify({"error": f"Analysis not found: {analysis_id}"}), 404
        return jsonify(result.to_dict())

    @app.route("/api/knowledge", methods=["GET"])
    def api_knowledge_list():
        entries = engines["knowledge"].list_entries(
            category=request.args.get("category"), search=request.args.get("search"),
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)})

    @app.route("/api/knowledge", methods=["POST"])
    def api_knowledge_create():
        body = _json_body()
        entry = engines["knowledge"].add_entry(
            title=body.get("title"),
            content=body.get("content"),
            category=body.get("category", "general"),
            metric_types=body.get("metric_types"),
            severity=body.get("severity", ""),
        )
        return jsonify(entry.to_dict()), 201

    @app.route("/api/knowledge/stats")
    def api_knowledge_stats():
        return jsonify(engines["knowledge"].stats())

    @app.route("/api/knowledge/<entry_id>", methods=["GET"])
    def api_knowledge_get(entry_id):
        return jsonify(engines["knowledge"].get_entry(entry_id).to_dict())

    @app.route("/api/knowledge/<entry_id>", methods=["PUT"])
    def api_knowledge_update(entry_id):
        body = _json_body()
        entry = engines["knowledge"].update_entry(
            entry_id,
            title=body.get("title"),
            content=body.get("content"),
            category=body.get("category"),
            metric_types=body.get("metric_types"),
            severity=body.get("severity"),
        )
        return jsonify(entry.to_dict())

    @app.route("/api/knowledge/<entry_id>", methods=["DELETE"])
    def api_knowledge_delete(entry_id):
        engines["knowledge"].delete_entry(entry_id)
        return "", 204

    return app
