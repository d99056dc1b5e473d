"""
Typed views over the ``guest_access`` and ``retry`` sections of the app config.

Both classes wrap the raw mapping loaded by :class:`AppConfig` and apply
defaults for missing keys, so callers never deal with absent or stringly
typed values.
"""

from datetime import timedelta
from typing import Any, Dict

from guestcord.datatypes.discord_datatypes import RoleID

DEFAULT_KICK_REASON = "Temporary guest access expired"


class GuestAccessSettings:
    """Typed accessors for the ``guest_access`` section of the app config.

    Values fall back to defaults when keys are missing; the grant durations
    here are only the defaults used when creating new grants. Scheduling
    always reads the offsets stored on each record.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    @property
    def access_duration(self) -> timedelta:
        return timedelta(hours=float(self.data.get("access_hours", 168)))

    @property
    def warning_lead(self) -> timedelta:
        return timedelta(hours=float(self.data.get("warning_hours", 24)))

    @property
    def kick_reason(self) -> str:
        return str(self.data.get("kick_reason") or DEFAULT_KICK_REASON)

    @property
    def final_notice_delay_seconds(self) -> float:
        return max(float(self.data.get("final_notice_delay_seconds", 1.0)), 0.0)

    @property
    def api_timeout_seconds(self) -> float:
        return float(self.data.get("api_timeout_seconds", 10.0))

    @property
    def max_timer_chunk_seconds(self) -> float:
        return float(self.data.get("max_timer_chunk_seconds", 3600.0))

    @property
    def guest_role_id(self) -> RoleID | None:
        val = self.data.get("guest_role_id")
        return RoleID(val) if val else None

    @property
    def join_url(self) -> str | None:
        val = self.data.get("join_url")
        return str(val) if val else None


class RetrySettings:
    """Typed accessors for the ``retry`` section (bounded enforcement retries)."""

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    @property
    def max_attempts(self) -> int:
        return max(int(self.data.get("max_attempts", 5)), 1)

    @property
    def base_delay_seconds(self) -> float:
        return float(self.data.get("base_delay_seconds", 60.0))

    @property
    def max_delay_seconds(self) -> float:
        return float(self.data.get("max_delay_seconds", 3600.0))

    def delay_for(self, attempt: int) -> timedelta:
        """Backoff before retry number ``attempt`` (1-based), doubling, capped, at least 1s."""
        exponent = max(attempt - 1, 0)
        seconds = min(self.base_delay_seconds * (2 ** exponent), self.max_delay_seconds)
        return timedelta(seconds=max(seconds, 1.0))
