"""Formatting utilities for display."""
from datetime import datetime, timezone

SEVERITY_STYLES = {
    "critical": "bold white on red",
    "high": "bold red",
    "medium": "bold yellow",
    "low": "green",
    "info": "blue",
}

STATUS_STYLES = {
    "firing": "bold red",
    "acknowledged": "yellow",
    "resolved": "green",
    "sent": "green",
    "failed": "red",
    "pending": "dim",
}


def format_value(value, decimals=2):
    """Format a metric value, trimming noise on large numbers."""
    if value is None:
        return "N/A"
    value = float(value)
    if abs(value) >= 1_000_000:
        return f"{value:,.0f}"
    return f"{value:,.{decimals}f}"


def format_severity(severity):
    """Rich markup for a severity label."""
    sev = str(severity).lower()
    style = SEVERITY_STYLES.get(sev, "")
    return f"[{style}]{sev.upper()}[/]" if style else sev.upper()


def format_status(status):
    """Rich markup for an alert/attempt status."""
    st = str(status).lower()
    style = STATUS_STYLES.get(st, "")
    return f"[{style}]{st}[/]" if style else st


def format_timestamp(ts):
    """Format a datetime to human-readable string."""
    if ts is None:
        return "N/A"
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M UTC")


def time_ago(dt):
    """Return human-readable time since dt. E.g., '3h ago', '2d ago'."""
    if dt is None:
        return "N/A"
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = now - dt
    seconds = int(delta.total_seconds())

    if seconds < 60:
        return f"{seconds}s ago"
    elif seconds < 3600:
        return f"{seconds // 60}m ago"
    elif seconds < 86400:
        return f"{seconds // 3600}h ago"
    else:
        return f"{seconds // 86400}d ago"
