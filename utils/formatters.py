"""Formatting utilities for display."""
from datetime import datetime, timezone

SEVERITY_STYLES = {
    "critical": "bold white on red",
    "high": "bold red",
    "medium": "yellow",
    "low": "blue",
    "info": "dim",
}

STATUS_STYLES = {
    "active": "bold red",
    "acknowledged": "yellow",
    "resolved": "green",
    "dismissed": "dim",
}


def styled(value, styles):
    """Wrap an enum or string value in rich markup from a style map."""
    text = value.value if hasattr(value, "value") else str(value)
    style = styles.get(text)
    return f"[{style}]{text}[/{style}]" if style else text


def format_pct(value, decimals=1):
    if value is None:
        return "N/A"
    return f"{float(value):.{decimals}f}%"


def format_minutes(minutes):
    """Format a duration in minutes: 45 → '45m', 135 → '2h 15m'."""
    if minutes is None:
        return "N/A"
    minutes = float(minutes)
    if minutes < 60:
        return f"{minutes:.0f}m"
    hours, rem = divmod(int(round(minutes)), 60)
    if hours < 24:
        return f"{hours}h {rem}m" if rem else f"{hours}h"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


def format_timestamp(ts):
    """Format a datetime to human-readable string."""
    if ts is None:
        return "N/A"
    if isinstance(ts, str):
        return ts
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def time_ago(dt, now=None):
    """Return human-readable time since dt. E.g., '3h ago', '2d ago'."""
    if dt is None:
        return "N/A"
    now = now or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = int((now - dt).total_seconds())

    if seconds < 60:
        return f"{seconds}s ago"
    elif seconds < 3600:
        return f"{seconds // 60}m ago"
    elif seconds < 86400:
        return f"{seconds // 3600}h ago"
    else:
        return f"{seconds // 86400}d ago"
