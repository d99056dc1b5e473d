"""
Data types for temporary guest access grants.

A :class:`GuestRecord` is the durable description of one grant: which account
may stay in which guild, when it is warned and when it is removed. Records are
immutable; state changes (retry bookkeeping) produce a new record with
:func:`dataclasses.replace`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from guestcord.datatypes.discord_datatypes import GuildID, UserID
from guestcord.util.format_utils import ensure_utc


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------

class GuestAccessError(Exception):
    """Base class for every error raised by the guest access subsystem."""


class GuestRecordValidationError(GuestAccessError, ValueError):
    """Raised when a grant is built with inconsistent data."""


class TransientNetworkError(GuestAccessError):
    """Discord could not be reached, timed out, or answered with a server error."""


class RemovalError(GuestAccessError):
    """Discord refused to remove the member (for example missing permissions)."""


class StorageError(GuestAccessError):
    """The guest record store failed to read or write."""


# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------

class GrantState(Enum):
    """Lifecycle of a grant as seen by the scheduler."""
    ACTIVE = "active"
    WARNED = "warned"
    PENDING_RETRY = "pending_retry"
    NEEDS_REVIEW = "needs_review"
    REMOVED = "removed"


class EnforcementStatus(Enum):
    """Result of a single expiry attempt."""
    REMOVED = "removed"
    RETRY = "retry"
    NEEDS_REVIEW = "needs_review"
    SKIPPED = "skipped"


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------

def new_grant_id() -> str:
    """Return a fresh, URL-safe grant identifier."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class GuestRecord:
    """
    One persisted guest grant.

    Attributes:
        id (str): Stable unique identifier of the grant.
        guild_id (GuildID): Guild the account was admitted to.
        account_id (UserID): Account holding temporary access.
        expires_at (datetime): Instant after which access is revoked (UTC).
        warning_at (datetime): Instant the expiry warning is sent (UTC).
            Must be strictly earlier than ``expires_at``.
        account_tag (str | None): Display name captured when access was granted.
        granted_at (datetime | None): When the grant was created.
        attempts (int): Failed enforcement attempts so far.
        next_attempt_at (datetime | None): When the next enforcement retry is due.
        needs_review (bool): Retries were exhausted; a moderator must follow up.
    """
    id: str
    guild_id: GuildID
    account_id: UserID
    expires_at: datetime
    warning_at: datetime
    account_tag: Optional[str] = None
    granted_at: Optional[datetime] = None
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    needs_review: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise GuestRecordValidationError("Guest record id must not be empty")
        if self.attempts < 0:
            raise GuestRecordValidationError(f"attempts must be >= 0, got {self.attempts}")

        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "guild_id", GuildID(self.guild_id))
        object.__setattr__(self, "account_id", UserID(self.account_id))
        object.__setattr__(self, "expires_at", ensure_utc(self.expires_at))
        object.__setattr__(self, "warning_at", ensure_utc(self.warning_at))
        if self.granted_at is not None:
            object.__setattr__(self, "granted_at", ensure_utc(self.granted_at))
        if self.next_attempt_at is not None:
            object.__setattr__(self, "next_attempt_at", ensure_utc(self.next_attempt_at))

        if self.warning_at >= self.expires_at:
            raise GuestRecordValidationError(
                f"warning_at ({self.warning_at.isoformat()}) must be earlier than "
                f"expires_at ({self.expires_at.isoformat()}) for grant {self.id}"
            )

    @classmethod
    def create(
        cls,
        guild_id: Union[GuildID, int, str],
        account_id: Union[UserID, int, str],
        *,
        now: datetime,
        access_duration: timedelta,
        warning_lead: timedelta,
        account_tag: Optional[str] = None,
    ) -> "GuestRecord":
        """
        Build a new grant starting at ``now``.

        Args:
            guild_id: Guild the account is admitted to.
            account_id: Account receiving temporary access.
            now: Grant start time.
            access_duration: How long access lasts.
            warning_lead: How long before expiry the warning is sent.
            account_tag: Optional display name for logs and listings.

        Raises:
            GuestRecordValidationError: If the durations do not leave a
                warning strictly inside the access window.
        """
        if access_duration <= timedelta(0):
            raise GuestRecordValidationError("access_duration must be positive")
        if warning_lead <= timedelta(0):
            raise GuestRecordValidationError("warning_lead must be positive")

        now = ensure_utc(now)
        expires_at = now + access_duration
        return cls(
            id=new_grant_id(),
            guild_id=GuildID(guild_id),
            account_id=UserID(account_id),
            expires_at=expires_at,
            warning_at=expires_at - warning_lead,
            account_tag=account_tag,
            granted_at=now,
        )

    @property
    def due_at(self) -> datetime:
        """Instant the next enforcement attempt is due."""
        if self.next_attempt_at is not None and self.next_attempt_at > self.expires_at:
            return self.next_attempt_at
        return self.expires_at

    @property
    def display_name(self) -> str:
        return self.account_tag or str(self.account_id)

    def with_failed_attempt(self, next_attempt_at: datetime) -> "GuestRecord":
        """Return a copy recording one more failed attempt and the retry time."""
        return replace(self, attempts=self.attempts + 1, next_attempt_at=next_attempt_at)

    def flagged_for_review(self) -> "GuestRecord":
        """Return a copy marked for manual review with no further retries."""
        return replace(self, attempts=self.attempts + 1, next_attempt_at=None, needs_review=True)


@dataclass(frozen=True)
class EnforcementOutcome:
    """
    Result of :meth:`GuestEnforcement.expire_guest`.

    ``record`` is the latest version of the grant: for ``RETRY`` it carries
    the new ``next_attempt_at``, for ``NEEDS_REVIEW`` the review flag.
    """
    status: EnforcementStatus
    record: GuestRecord
    detail: str = ""

    @property
    def should_retry(self) -> bool:
        return self.status is EnforcementStatus.RETRY


@dataclass
class RecoverySummary:
    """Counters reported by a bootstrap recovery pass."""
    total: int = 0
    scheduled: int = 0
    expired: int = 0
    needs_review: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)
