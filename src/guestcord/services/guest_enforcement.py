"""
Expiry enforcement: remove the guest, then retire the grant.

The grant row is only deleted once access is confirmed gone (kicked, left on
their own, guild gone, or promoted out of the guest role). If the lookup,
the kick or the delete fails, the grant is kept and marked for a retry with
exponential backoff. After ``retry.max_attempts`` failures it is flagged for
manual review instead of being dropped.

The grant row is re-read before the final notice and again before the kick.
If a re-grant or revoke removed it meanwhile, the member is left alone.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Set

from guestcord.configuration.guest_settings import GuestAccessSettings, RetrySettings
from guestcord.datatypes.guest_datatypes import (
    EnforcementOutcome,
    EnforcementStatus,
    GuestRecord,
    RemovalError,
    StorageError,
    TransientNetworkError,
)
from guestcord.repositories.guest_record_store import GuestRecordStore
from guestcord.scheduler.timer_registry import TimerRegistry
from guestcord.services.notification_dispatcher import NotificationDispatcher
from guestcord.util.discord.guest_gateway import GuestAccessGateway
from guestcord.util.format_utils import Clock, utc_now
from guestcord.util.logger import get_logger

logger = get_logger("guest_enforcement")


class GuestEnforcement:
    """
    Runs the expiry of a grant.

    Args:
        gateway: Discord operations (lookup, DM, kick).
        store: Durable grant store.
        dispatcher: Sends the final notice before the kick.
        registry: Timer registry whose entry is cleared once the expiry ran.
        settings: Kick reason, final notice delay and guest role.
        retry: Backoff policy for failed expiries.
        clock: Returns the current aware UTC time.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        gateway: GuestAccessGateway,
        store: GuestRecordStore,
        dispatcher: NotificationDispatcher,
        registry: TimerRegistry,
        *,
        settings: Optional[GuestAccessSettings] = None,
        retry: Optional[RetrySettings] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.dispatcher = dispatcher
        self.registry = registry
        self.settings = settings or GuestAccessSettings()
        self.retry = retry or RetrySettings()
        self._clock = clock
        self._sleep = sleep
        self._in_flight: Set[str] = set()

    async def expire_guest(self, record: GuestRecord) -> EnforcementOutcome:
        """
        Remove the guest from the guild and delete the grant.

        Never raises for Discord or storage failures; the outcome says whether
        the grant was removed, will be retried, or needs review. A second call
        for a grant whose expiry is already running returns ``SKIPPED``.
        """
        if record.id in self._in_flight:
            logger.debug("[GUEST ENFORCEMENT] Expiry of %s already running, skipping", record.id)
            return EnforcementOutcome(EnforcementStatus.SKIPPED, record, "already in progress")

        self._in_flight.add(record.id)
        try:
            return await self._expire(record)
        finally:
            self._in_flight.discard(record.id)
            await self.registry.discard(record.id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _expire(self, record: GuestRecord) -> EnforcementOutcome:
        try:
            detail = await self._revoke_access(record)
        except (TransientNetworkError, RemovalError, StorageError) as exc:
            logger.warning("[GUEST ENFORCEMENT] Could not remove %s: %s", record.display_name, exc)
            return await self._record_failure(record, str(exc))

        if detail is None:
            logger.info("[GUEST ENFORCEMENT] Grant %s was replaced or revoked, not removing %s", record.id, record.display_name)
            return EnforcementOutcome(EnforcementStatus.SKIPPED, record, "grant superseded")

        try:
            await self.store.delete(record.id)
        except StorageError as exc:
            logger.error("[GUEST ENFORCEMENT] %s removed but grant %s not deleted: %s", record.display_name, record.id, exc)
            return await self._record_failure(record, str(exc))

        logger.info("[GUEST ENFORCEMENT] Grant %s for %s retired (%s)", record.id, record.display_name, detail)
        return EnforcementOutcome(EnforcementStatus.REMOVED, record, detail)

    async def _superseded(self, record: GuestRecord) -> bool:
        return await self.store.get(record.id) is None

    async def _revoke_access(self, record: GuestRecord) -> Optional[str]:
        """Return what happened to the member, or None if the grant is gone."""
        space = await self.gateway.fetch_space(record.guild_id)
        if space is None:
            return "guild gone"

        member = await self.gateway.fetch_member(space, record.account_id)
        if member is None:
            return "member already left"

        role_id = self.settings.guest_role_id
        if role_id is not None and not await self.gateway.has_role(member, role_id):
            logger.info("[GUEST ENFORCEMENT] %s no longer holds the guest role, not kicking", record.display_name)
            return "member promoted"

        if await self._superseded(record):
            return None

        # Retries only repeat the kick, not the notice
        if record.attempts == 0:
            await self.dispatcher.send_final_notice(member, record)
            if self.settings.final_notice_delay_seconds > 0:
                await self._sleep(self.settings.final_notice_delay_seconds)

        # A re-grant or revoke may have landed during the notice pause
        if await self._superseded(record):
            return None

        await self.gateway.remove_member(member, self.settings.kick_reason)
        logger.info("[GUEST ENFORCEMENT] Removed %s from guild %s", record.display_name, record.guild_id)
        return "removed"

    async def _record_failure(self, record: GuestRecord, detail: str) -> EnforcementOutcome:
        attempt = record.attempts + 1
        if attempt >= self.retry.max_attempts:
            updated = record.flagged_for_review()
            status = EnforcementStatus.NEEDS_REVIEW
            logger.error(
                "[GUEST ENFORCEMENT] Giving up on %s after %d attempt(s); grant %s needs manual review",
                record.display_name, attempt, record.id,
            )
        else:
            updated = record.with_failed_attempt(self._clock() + self.retry.delay_for(attempt))
            status = EnforcementStatus.RETRY

        try:
            still_exists = await self.store.update_retry_state(updated)
        except StorageError as exc:
            # The in-memory retry still runs; a restart falls back to the stored state
            logger.error("[GUEST ENFORCEMENT] Could not persist retry state of %s: %s", record.id, exc)
            still_exists = True

        if not still_exists:
            logger.info("[GUEST ENFORCEMENT] Grant %s was deleted meanwhile, nothing to retry", record.id)
            return EnforcementOutcome(EnforcementStatus.SKIPPED, record, "grant deleted")

        return EnforcementOutcome(status, updated, detail)
