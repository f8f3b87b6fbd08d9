"""Formatting utilities for display."""
from datetime import datetime, timezone


def format_ms(value):
    """Format a duration in milliseconds: 0.42 -> '0.42ms', 1500 -> '1.50s'."""
    if value is None:
        return "N/A"
    value = float(value)
    if value >= 1000:
        return f"{value / 1000:.2f}s"
    return f"{value:.2f}ms"


def format_pct(value, decimals=1, with_color=False):
    """Format a 0-100 rate. Optionally include rich color markup."""
    if value is None:
        return "N/A"
    value = float(value)
    formatted = f"{value:.{decimals}f}%"
    if with_color:
        color = "green" if value >= 95 else "yellow" if value >= 80 else "red"
        return f"[{color}]{formatted}[/{color}]"
    return formatted


def format_p_value(p):
    if p is None:
        return "N/A"
    if p < 0.001:
        return "<0.001"
    return f"{p:.3f}"


def format_timestamp(ts):
    """Format a datetime to human-readable string."""
    if ts is None:
        return "N/A"
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S UTC")


def time_ago(dt):
    """Return human-readable time since dt. E.g., '3h ago', '2d ago'."""
    if dt is None:
        return "never"
    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = int((now - dt).total_seconds())

    if seconds < 60:
        return f"{seconds}s ago"
    elif seconds < 3600:
        return f"{seconds // 60}m ago"
    elif seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def truncate(text, width=60):
    text = text or ""
    return text if len(text) <= width else text[: width - 1] + "…"
