"""Human-readable labels for sizes and ages."""

from __future__ import annotations

_UNITS = ("B", "KB", "MB", "GB")


def format_bytes(size: int) -> str:
    """Format a byte count, e.g. ``1536 -> '1.5 KB'``."""
    value = float(size)
    unit = 0
    while value >= 1024.0 and unit < len(_UNITS) - 1:
        value /= 1024.0
        unit += 1
    if unit == 0:
        return f"{size} {_UNITS[0]}"
    return f"{value:.1f} {_UNITS[unit]}"


def format_age(seconds: float) -> str:
    """Format an elapsed duration, e.g. ``75 -> '1m ago'``."""
    whole = max(int(seconds), 0)
    if whole < 60:
        return f"{whole}s ago"
    if whole < 3600:
        return f"{whole // 60}m ago"
    if whole < 86400:
        return f"{whole // 3600}h ago"
    return f"{whole // 86400}d ago"
