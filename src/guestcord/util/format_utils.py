from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime, assuming UTC for naive input."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_unix(value: datetime) -> int:
    """Convert a datetime to integer unix seconds."""
    return int(ensure_utc(value).timestamp())


def from_unix(value: int | float) -> datetime:
    """Convert unix seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value, tz=timezone.utc)


def humanize_duration(delta: timedelta) -> str:
    """Render a duration as a short phrase such as ``"1 day, 3 hours"``.

    Negative durations are clamped to zero. Only the two most significant
    units are kept; anything under a minute reads as ``"less than a minute"``.

    Args:
        delta: Duration to describe.

    Returns:
        Human-readable duration string.
    """
    total_seconds = max(int(delta.total_seconds()), 0)
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    parts = []
    for amount, unit in ((days, "day"), (hours, "hour"), (minutes, "minute")):
        if amount:
            parts.append(f"{amount} {unit}{'s' if amount != 1 else ''}")

    if not parts:
        return "less than a minute"
    return ", ".join(parts[:2])


def discord_timestamp(value: datetime, style: str = "R") -> str:
    """Return a Discord timestamp markup string (``<t:unix:style>``)."""
    return f"<t:{to_unix(value)}:{style}>"
