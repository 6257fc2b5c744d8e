from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now. Stored datetimes are naive UTC so SQLite round-trips compare cleanly."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch(dt: Optional[datetime]) -> int:
    """Epoch seconds for a naive UTC datetime, 0 when unset."""
    if dt is None:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def format_duration(delta: timedelta) -> str:
    """Formats a duration as ``1h2m3s`` / ``47m12s`` / ``12s``, truncated to whole seconds."""
    total = int(delta.total_seconds())
    if total <= 0:
        return "0s"
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{minutes}m{seconds}s"
    return f"{seconds}s"
