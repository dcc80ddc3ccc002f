#!/usr/bin/env python3
"""AI Monitor - CLI Entry Point."""
import sys
import json
import time
import logging
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
from rich.console import Console
from rich.table import Table

from __version__ import __version__
from utils.formatters import format_severity, format_status, format_timestamp, format_value, time_ago

console = Console()
logger = logging.getLogger("aimonitor.cli")


def build_components(config):
    """Wire store, cache, pool, rules, dispatcher, analysis and evaluator from config."""
    from models.database import Database
    from utils.cache import TTLCache
    from utils.worker_pool import BackgroundWorkerPool
    from alerts.rules_manager import RuleRepository
    from alerts.engine import AlertEvaluator
    from notifications.dispatcher import NotificationDispatcher
    from notifications.channel_manager import ChannelManager
    from analysis.pipeline import build_pipeline
    from monitor.prometheus import PrometheusClient

    db = Database(config["database"]["path"])
    db.connect()

    cache = TTLCache(default_ttl=config["rules"].get("cache_ttl", 300))
    workers = config["workers"]
    pool = BackgroundWorkerPool(
        max_workers=workers["max_workers"],
        max_queue=workers["max_queue"],
        enqueue_timeout=workers["enqueue_timeout"],
    )

    prom_cfg = config.get("prometheus", {})
    prometheus = None
    if prom_cfg.get("url"):
        prometheus = PrometheusClient(prom_cfg["url"], timeout=prom_cfg.get("timeout", 15))

    rules = RuleRepository(db, cache, cache_ttl=config["rules"].get("cache_ttl", 300))
    dispatcher = NotificationDispatcher(db, config)
    channels = ChannelManager(db, dispatcher)
    pipeline = build_pipeline(config, db, cache, prometheus)
    analysis = pipeline if config["analysis"].get("enabled", True) else None
    evaluator = AlertEvaluator(db, rules, dispatcher=dispatcher, analysis=analysis, pool=pool, config=config)

    return {
        "config": config, "db": db, "cache": cache, "pool": pool, "rules": rules,
        "dispatcher": dispatcher, "channels": channels, "pipeline": pipeline,
        "knowledge": pipeline.narrative.knowledge, "evaluator": evaluator,
        "prometheus": prometheus,
    }


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging
    from config import load_config

    config = load_config(config_path)
    log_cfg = config.get("logging", {})
    setup_logging("DEBUG" if verbose else log_cfg.get("level", "INFO"), log_cfg.get("file"))
    return build_components(config)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="aimonitor")
@click.pass_context
def cli(ctx, config_path, verbose):
    """AI Monitor - alert evaluation, notifications and AI-assisted analysis."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_components(ctx):
    if "_components" not in ctx.obj:
        ctx.obj["_components"] = _init_components(ctx.obj.get("config_path"), ctx.obj.get("verbose"))
    return ctx.obj["_components"]


def _fail(ctx, message):
    console.print(f"[red]✗ {message}[/red]")
    ctx.exit(1)


def _parse_pairs(pairs, option):
    result = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint=option)
        key, value = pair.split("=", 1)
        result[key.strip()] = value.strip()
    return result


def _drain(c):
    """Let queued notifications/analyses finish before the process exits."""
    c["pool"].wait_idle()
    c["pool"].shutdown()


# ──────────────────────────────────────────────────────
# SETUP
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--seed/--no-seed", default=True, help="Load seed rules from the rules file")
@click.pass_context
def init(ctx, seed):
    """Initialize the database and load seed alert rules."""
    c = _get_components(ctx)
    console.print("[bold cyan]AI Monitor - Setup[/bold cyan]\n")
    console.print(f"[green]✓[/green] Database ready at {c['config']['database']['path']}")
    if seed:
        created, skipped = c["rules"].load_from_yaml(c["config"]["rules"]["seed_file"])
        console.print(f"[green]✓[/green] Seed rules: {created} created, {skipped} skipped")
    if not c["config"]["ai"].get("api_key"):
        console.print("[dim]AI narrative analysis disabled (set AIMONITOR_AI_API_KEY to enable)[/dim]")


# ──────────────────────────────────────────────────────
# RULES
# ──────────────────────────────────────────────────────
@cli.group()
def rules():
    """Alert rule management."""
    pass


@rules.command("list")
@click.option("--search", default=None, help="Filter by name, description or metric")
@click.option("--enabled/--disabled", default=None, help="Filter by enabled state")
@click.option("--page", default=1, type=int)
@click.option("--page-size", default=50, type=int)
@click.pass_context
def rules_list(ctx, search, enabled, page, page_size):
    """List alert rules."""
    c = _get_components(ctx)
    items, total = c["rules"].list_rules(page=page, page_size=page_size, search=search, enabled=enabled)
    if not items:
        console.print("[dim]No rules found[/dim]")
        return
    table = Table(title=f"Alert Rules ({total})", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Target")
    table.add_column("Condition")
    table.add_column("For")
    table.add_column("Severity")
    table.add_column("Channels")
    table.add_column("Enabled")
    for r in items:
        target = "/".join(p for p in (r.target_type, r.target_id) if p) or "any"
        table.add_row(r.id[:8], r.name, target, f"{r.metric_name} {r.operator} {format_value(r.threshold)}",
                      f"{r.duration_seconds}s", format_severity(r.severity), ", ".join(r.channels) or "-",
                      "[green]✓[/green]" if r.enabled else "[red]✗[/red]")
    console.print(table)


@rules.command("add")
@click.option("--name", required=True)
@click.option("--metric", "metric_name", required=True)
@click.option("--operator", required=True, type=click.Choice([">", ">=", "<", "<=", "==", "!="]))
@click.option("--threshold", required=True, type=float)
@click.option("--severity", default="medium", type=click.Choice(["critical", "high", "medium", "low"]))
@click.option("--target-type", default="", type=click.Choice(["", "host", "service", "application"]))
@click.option("--target-id", default="")
@click.option("--duration", "duration_seconds", default=0, type=int, help="Seconds the condition must hold")
@click.option("--channel", "channels", multiple=True, help="Channel name (repeatable)")
@click.option("--label", "labels", multiple=True, help="key=value (repeatable)")
@click.option("--description", default="")
@click.pass_context
def rules_add(ctx, **kwargs):
    """Create an alert rule."""
    from alerts.errors import RuleValidationError
    c = _get_components(ctx)
    kwargs["channels"] = list(kwargs["channels"])
    kwargs["labels"] = _parse_pairs(kwargs["labels"], "--label")
    try:
        rule = c["rules"].create_rule(kwargs)
    except RuleValidationError as e:
        _fail(ctx, str(e))
    console.print(f"[green]✓[/green] Created rule {rule.name} [dim]({rule.id})[/dim]")


@rules.command("delete")
@click.argument("rule_id")
@click.pass_context
def rules_delete(ctx, rule_id):
    """Delete an alert rule."""
    from alerts.errors import RuleNotFoundError
    c = _get_components(ctx)
    try:
        c["rules"].delete_rule(rule_id)
    except RuleNotFoundError as e:
        _fail(ctx, str(e))
    console.print(f"[green]✓[/green] Deleted rule {rule_id}")


@rules.command("load")
@click.option("--file", "path", default=None, help="Rules YAML (default: rules.seed_file)")
@click.pass_context
def rules_load(ctx, path):
    """Load rules from a YAML file."""
    c = _get_components(ctx)
    created, skipped = c["rules"].load_from_yaml(path or c["config"]["rules"]["seed_file"])
    console.print(f"[green]✓[/green] {created} created, {skipped} skipped")


# ──────────────────────────────────────────────────────
# CHANNELS
# ──────────────────────────────────────────────────────
@cli.group()
def channels():
    """Notification channel management."""
    pass


@channels.command("list")
@click.option("--type", "channel_type", default=None, type=click.Choice(["email", "webhook", "slack", "dingtalk"]))
@click.pass_context
def channels_list(ctx, channel_type):
    """List notification channels (secrets masked)."""
    c = _get_components(ctx)
    items, total = c["channels"].list_channels(channel_type=channel_type, page_size=500)
    if not items:
        console.print("[dim]No channels configured[/dim]")
        return
    table = Table(title=f"Notification Channels ({total})", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Config")
    table.add_column("Enabled")
    for ch in items:
        public = ch.to_public_dict()
        table.add_row(ch.id[:8], ch.name, ch.type, json.dumps(public["config"])[:70],
                      "[green]✓[/green]" if ch.enabled else "[red]✗[/red]")
    console.print(table)


@channels.command("add")
@click.option("--name", required=True)
@click.option("--type", "channel_type", required=True, type=click.Choice(["email", "webhook", "slack", "dingtalk"]))
@click.option("--config", "config_json", default=None, help="Channel config as a JSON object")
@click.option("--set", "settings", multiple=True, help="Config key=value (repeatable)")
@click.option("--description", default="")
@click.pass_context
def channels_add(ctx, name, channel_type, config_json, settings, description):
    """Create a notification channel."""
    from models.notifications import ChannelConfigError
    c = _get_components(ctx)
    try:
        config = json.loads(config_json) if config_json else {}
    except json.JSONDecodeError as e:
        _fail(ctx, f"--config is not valid JSON: {e}")
    config.update(_parse_pairs(settings, "--set"))
    try:
        channel = c["channels"].create_channel(name, channel_type, config, description=description)
    except ChannelConfigError as e:
        _fail(ctx, str(e))
    console.print(f"[green]✓[/green] Created {channel.type} channel {channel.name} [dim]({channel.id})[/dim]")


@channels.command("test")
@click.argument("channel_id")
@click.pass_context
def channels_test(ctx, channel_id):
    """Send a test notification through a channel."""
    from notifications.channel_manager import ChannelNotFoundError
    from notifications.dispatcher import AggregateNotificationError
    c = _get_components(ctx)
    try:
        result = c["channels"].test_channel(channel_id)
    except ChannelNotFoundError as e:
        _fail(ctx, str(e))
    except AggregateNotificationError as e:
        _fail(ctx, str(e))
    if result.skipped:
        _fail(ctx, f"Channel skipped: {result.skipped}")
    console.print("[green]✓[/green] Test notification sent")


@channels.command("history")
@click.option("--status", default=None, type=click.Choice(["pending", "sent", "failed"]))
@click.option("--channel", "channel_name", default=None)
@click.option("--limit", default=30, type=int)
@click.pass_context
def channels_history(ctx, status, channel_name, limit):
    """Show notification delivery attempts."""
    c = _get_components(ctx)
    attempts, total = c["channels"].notification_history(status=status, channel_name=channel_name, page_size=limit)
    if not attempts:
        console.print("[dim]No notifications sent yet[/dim]")
        return
    table = Table(title=f"Notification History ({total})", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Channel")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Error")
    for a in attempts:
        table.add_row(format_timestamp(a.created_at), a.channel_name, a.title[:50],
                      format_status(a.status), (a.error or "")[:50])
    console.print(table)


# ──────────────────────────────────────────────────────
# ALERTS
# ──────────────────────────────────────────────────────
@cli.group()
def alerts():
    """Alert lifecycle."""
    pass


@alerts.command("list")
@click.option("--status", default=None, type=click.Choice(["firing", "acknowledged", "resolved"]))
@click.option("--severity", default=None, type=click.Choice(["critical", "high", "medium", "low"]))
@click.option("--page", default=1, type=int)
@click.option("--page-size", default=30, type=int)
@click.pass_context
def alerts_list(ctx, status, severity, page, page_size):
    """List alerts."""
    c = _get_components(ctx)
    items, total = c["evaluator"].list_alerts(status=status, severity=severity, page=page, page_size=page_size)
    if not items:
        console.print("[dim]No alerts[/dim]")
        return
    table = Table(title=f"Alerts ({total})", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Started", style="dim")
    table.add_column("Severity")
    table.add_column("Status")
    table.add_column("Rule")
    table.add_column("Target")
    table.add_column("Message")
    for a in items:
        table.add_row(a.id[:8], time_ago(a.started_at), format_severity(a.severity), format_status(a.status),
                      a.rule_name, a.target_id or a.target_type or "-", a.message[:60])
    console.print(table)


@alerts.command("show")
@click.argument("alert_id")
@click.pass_context
def alerts_show(ctx, alert_id):
    """Show one alert and its analysis."""
    from alerts.errors import AlertNotFoundError
    c = _get_components(ctx)
    try:
        alert = c["evaluator"].get_alert(alert_id)
    except AlertNotFoundError as e:
        _fail(ctx, str(e))
    console.print(f"[bold]{alert.rule_name}[/bold]  {format_severity(alert.severity)}  {format_status(alert.status)}")
    console.print(f"  {alert.message}")
    console.print(f"  Target: {alert.target_type}/{alert.target_id}  Started: {format_timestamp(alert.started_at)}")
    if alert.acknowledged_at:
        console.print(f"  Acknowledged by {alert.acknowledged_by} at {format_timestamp(alert.acknowledged_at)}")
    if alert.resolved_at:
        console.print(f"  Resolved at {format_timestamp(alert.resolved_at)}"
                      + (f" by {alert.resolved_by}" if alert.resolved_by else ""))
    if alert.analysis_id:
        analysis = c["db"].get_analysis(alert.analysis_id)
        if analysis:
            console.print(f"\n[bold]Root cause:[/bold] {analysis.root_cause}")
            for rec in analysis.recommendations:
                console.print(f"  • {rec}")


def _transition(ctx, action, alert_id, user):
    from alerts.errors import AlertNotFoundError, InvalidStateError
    c = _get_components(ctx)
    try:
        alert = getattr(c["evaluator"], action)(alert_id, user)
    except (AlertNotFoundError, InvalidStateError) as e:
        _fail(ctx, str(e))
    _drain(c)
    console.print(f"[green]✓[/green] Alert {alert.id[:8]} is now {format_status(alert.status)}")


@alerts.command("ack")
@click.argument("alert_id")
@click.option("--user", default="cli", help="Who is acknowledging")
@click.pass_context
def alerts_ack(ctx, alert_id, user):
    """Acknowledge a firing alert."""
    _transition(ctx, "acknowledge", alert_id, user)


@alerts.command("resolve")
@click.argument("alert_id")
@click.option("--user", default="cli", help="Who is resolving")
@click.pass_context
def alerts_resolve(ctx, alert_id, user):
    """Resolve a firing or acknowledged alert."""
    _transition(ctx, "resolve", alert_id, user)


@alerts.command("stats")
@click.option("--days", default=7, help="Days to look back")
@click.pass_context
def alerts_stats(ctx, days):
    """Alert counts by status, severity and day."""
    c = _get_components(ctx)
    stats = c["evaluator"].get_alert_stats(days=days)
    console.print(f"[bold]Last {days}d:[/bold] {stats['total']} alerts, "
                  f"{stats['active']} active, {stats['today']} today")
    table = Table(show_header=True)
    table.add_column("Active severity")
    table.add_column("Count", justify="right")
    for sev, count in sorted(stats["active_by_severity"].items()):
        table.add_row(format_severity(sev), str(count))
    console.print(table)
    if stats["by_day"]:
        day_table = Table(show_header=True)
        day_table.add_column("Day")
        day_table.add_column("Alerts", justify="right")
        for day, count in stats["by_day"].items():
            day_table.add_row(day, str(count))
        console.print(day_table)


# ──────────────────────────────────────────────────────
# INGESTION / ANALYSIS
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--metric", "metric_name", required=True)
@click.option("--value", required=True, type=float)
@click.option("--target-type", default="host")
@click.option("--target-id", default="")
@click.option("--label", "labels", multiple=True, help="key=value (repeatable)")
@click.pass_context
def ingest(ctx, metric_name, value, target_type, target_id, labels):
    """Evaluate a single metric sample."""
    from alerts.errors import EvaluationError
    c = _get_components(ctx)
    try:
        c["evaluator"].process_sample(target_type, target_id, metric_name, value, _parse_pairs(labels, "--label"))
    except EvaluationError as e:
        _fail(ctx, str(e))
    _drain(c)
    open_alerts, _ = c["evaluator"].list_alerts(status="firing", page_size=500)
    firing = [a for a in open_alerts if a.metric_name == metric_name and a.target_id == target_id]
    console.print(f"[green]✓[/green] Sample {metric_name}={format_value(value)} evaluated; "
                  f"{len(firing)} firing alert(s) for this target")


@cli.command()
@click.option("--metric", "metric_name", required=True)
@click.option("--value", "current_value", required=True, type=float)
@click.option("--target-type", default="host")
@click.option("--target-id", default="")
@click.option("--severity", default="medium", type=click.Choice(["critical", "high", "medium", "low"]))
@click.pass_context
def analyze(ctx, metric_name, current_value, target_type, target_id, severity):
    """Run anomaly and trend analysis (plus AI narrative when configured)."""
    from models.analysis import AnalysisContext
    from utils.http_client import APIError
    c = _get_components(ctx)
    context = AnalysisContext(
        target_type=target_type, target_id=target_id, metric_name=metric_name,
        current_value=current_value, severity=severity, analysis_type="manual_analysis",
    )
    pipeline = c["pipeline"]
    anomaly, trend = pipeline.statistics(context)

    table = Table(title=f"{metric_name} @ {target_id or target_type}", show_header=True)
    table.add_column("Check")
    table.add_column("Result")
    table.add_row("Samples", f"{anomaly.sample_count} (30d) / {trend.sample_count} (7d)")
    table.add_row("Anomaly", f"{anomaly.deviation_level} (score {anomaly.anomaly_score:.2f}, "
                             f"threshold {anomaly.threshold})")
    table.add_row("History", f"mean {anomaly.historical_mean:.2f}, stddev {anomaly.historical_stddev:.2f}")
    table.add_row("Trend", f"{trend.direction} (slope {trend.slope:.3f}, risk {trend.risk_level})")
    table.add_row("Forecast", ", ".join(format_value(v) for v in trend.predicted_values))
    table.add_row("Seasonal", "yes" if trend.seasonality else "no")
    console.print(table)

    if not pipeline.narrative.available:
        console.print("[dim]AI narrative skipped: ai.api_key is not configured[/dim]")
        return
    try:
        result = pipeline.narrative.analyze(context, anomaly, trend)
    except APIError as e:
        _fail(ctx, f"AI analysis failed: {e}")
    console.print(f"\n[bold]Root cause:[/bold] {result.root_cause}")
    console.print(f"[bold]Severity:[/bold] {result.severity_level} (confidence {result.confidence:.2f})")
    for rec in result.recommendations:
        console.print(f"  • {rec}")


@cli.group()
def knowledge():
    """Knowledge base used by AI analysis."""
    pass


@knowledge.command("add")
@click.option("--title", required=True)
@click.option("--content", required=True)
@click.option("--category", default="general")
@click.option("--metric", "metric_types", multiple=True, help="Related metric (repeatable)")
@click.option("--severity", default="")
@click.pass_context
def knowledge_add(ctx, title, content, category, metric_types, severity):
    """Add a knowledge base entry."""
    c = _get_components(ctx)
    entry = c["knowledge"].add_entry(title, content, category, list(metric_types), severity)
    console.print(f"[green]✓[/green] Added entry {entry.title} [dim]({entry.id})[/dim]")


@knowledge.command("list")
@click.option("--category", default=None)
@click.option("--search", default=None)
@click.pass_context
def knowledge_list(ctx, category, search):
    """List knowledge base entries."""
    c = _get_components(ctx)
    entries = c["knowledge"].list_entries(category=category, search=search)
    if not entries:
        console.print("[dim]Knowledge base is empty[/dim]")
        return
    table = Table(title="Knowledge Base", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Metrics")
    table.add_column("Severity")
    for e in entries:
        table.add_row(e.id[:8], e.title, e.category, ", ".join(e.metric_types) or "-", e.severity or "-")
    console.print(table)


@knowledge.command("update")
@click.argument("entry_id")
@click.option("--title", default=None)
@click.option("--content", default=None)
@click.option("--category", default=None)
@click.option("--metric", "metric_types", multiple=True, help="Replace related metrics (repeatable)")
@click.option("--severity", default=None)
@click.pass_context
def knowledge_update(ctx, entry_id, title, content, category, metric_types, severity):
    """Update a knowledge base entry."""
    from analysis.knowledge import KnowledgeNotFoundError
    c = _get_components(ctx)
    try:
        entry = c["knowledge"].update_entry(
            entry_id, title=title, content=content, category=category,
            metric_types=list(metric_types) if metric_types else None, severity=severity,
        )
    except (KnowledgeNotFoundError, ValueError) as e:
        _fail(ctx, str(e))
    console.print(f"[green]✓[/green] Updated entry {entry.title}")


@knowledge.command("delete")
@click.argument("entry_id")
@click.pass_context
def knowledge_delete(ctx, entry_id):
    """Delete a knowledge base entry."""
    from analysis.knowledge import KnowledgeNotFoundError
    c = _get_components(ctx)
    try:
        c["knowledge"].delete_entry(entry_id)
    except KnowledgeNotFoundError as e:
        _fail(ctx, str(e))
    console.print(f"[green]✓[/green] Deleted entry {entry_id}")


@knowledge.command("stats")
@click.pass_context
def knowledge_stats(ctx):
    """Entry counts by category."""
    c = _get_components(ctx)
    stats = c["knowledge"].stats()
    console.print(f"[bold]Knowledge base:[/bold] {stats['total']} entries")
    for category, count in stats["by_category"].items():
        console.print(f"  {category}: {count}")


# ──────────────────────────────────────────────────────
# SERVICES
# ──────────────────────────────────────────────────────
@cli.command()
@click.pass_context
def run(ctx):
    """Poll Prometheus on the configured interval and evaluate rules."""
    from monitor.scheduler import EvaluationScheduler
    c = _get_components(ctx)
    if c["prometheus"] is None:
        _fail(ctx, "prometheus.url is not configured (set AIMONITOR_PROMETHEUS_URL)")

    c["pool"].start()
    scheduler = EvaluationScheduler(c["evaluator"], c["db"], c["prometheus"], c["cache"], c["config"])
    scheduler.start()
    console.print(f"[bold cyan]AI Monitor[/bold cyan] polling every {scheduler.interval}s. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\nStopping...")
    finally:
        scheduler.stop()
        c["pool"].shutdown()


@cli.command()
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--host", default=None, type=str, help="Host to bind to")
@click.pass_context
def web(ctx, port, host):
    """Launch the JSON API server."""
    from web.app import create_app

    c = _get_components(ctx)
    web_cfg = c["config"].get("web", {})
    port = port or web_cfg.get("port", 8080)
    host = host or web_cfg.get("host", "127.0.0.1")

    c["pool"].start()
    app = create_app(c["config"], c)

    console.print(f"\n[bold cyan]AI Monitor -- API[/bold cyan]\n")
    console.print(f"  Listening: http://{host}:{port}/api/health")
    console.print(f"\n  Press Ctrl+C to stop.\n")

    try:
        app.run(host=host, port=port, debug=False)
    finally:
        c["pool"].shutdown()


if __name__ == "__main__":
    cli()
