"""Display helpers for remaining session time."""

from typing import Optional

WARNING_THRESHOLD = 5 * 60


def format_remaining(seconds: Optional[float]) -> str:
    """Render a countdown as "2h 5m", "3m 20s", "45s" or "Expired"."""
    if not seconds or seconds <= 0:
        return "Expired"

    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m"
    elif minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def remaining_status(seconds: Optional[float], warning_threshold: float = WARNING_THRESHOLD) -> str:
    """Classify a countdown as "expired", "warning" or "ok"."""
    if not seconds or seconds <= 0:
        return "expired"
    if seconds < warning_threshold:
        return "warning"
    return "ok"
