"""
Scheduler for temporary guest access grants.

``schedule(record)`` turns the absolute ``warning_at`` / ``expires_at`` of a
grant into two asyncio timer tasks. When a timer fires it does not call
Discord itself; it submits the warning or expiry to the per-guild
:class:`GuestActionQueue`. Grants that are already due are expired right away
by the caller of ``schedule``.

The scheduler assumes it is the only one acting on the grant store. Running
two bot processes against the same database double-fires warnings and kicks.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from guestcord.datatypes.guest_datatypes import EnforcementOutcome, EnforcementStatus, GrantState, GuestRecord
from guestcord.scheduler.guest_action_queue import GuestAction, GuestActionQueue
from guestcord.scheduler.timer_registry import TimerHandle, TimerRegistry
from guestcord.services.guest_enforcement import GuestEnforcement
from guestcord.services.notification_dispatcher import NotificationDispatcher
from guestcord.util.format_utils import Clock, utc_now
from guestcord.util.logger import get_logger

logger = get_logger("guest_scheduler")

# State a handle ends in when its expiry retires or gives up on the grant
_RETIRED_STATES = {
    EnforcementStatus.REMOVED: GrantState.REMOVED,
    EnforcementStatus.NEEDS_REVIEW: GrantState.NEEDS_REVIEW,
}

DEFAULT_MAX_CHUNK_SECONDS = 3600.0


class ScheduleResult(Enum):
    """What ``GuestScheduler.schedule`` did with a record."""
    ARMED = "armed"
    ALREADY_SCHEDULED = "already_scheduled"
    EXPIRED_NOW = "expired_now"
    NEEDS_REVIEW = "needs_review"


class GuestScheduler:
    """
    Arms, tracks and cancels the warning/expiry timers of guest grants.

    Args:
        enforcement: Runs the expiry (kick + delete) for a grant.
        dispatcher: Sends the expiry warning.
        registry: Timer registry shared with ``enforcement``.
        queue: Worker queue that executes fired timers.
        clock: Returns the current aware UTC time.
        max_chunk_seconds: Longest single sleep; long waits are re-armed in
            chunks and the remaining time is recomputed from ``clock``.
    """

    def __init__(
        self,
        enforcement: GuestEnforcement,
        dispatcher: NotificationDispatcher,
        registry: TimerRegistry,
        *,
        queue: Optional[GuestActionQueue] = None,
        clock: Clock = utc_now,
        max_chunk_seconds: float = DEFAULT_MAX_CHUNK_SECONDS,
    ) -> None:
        if max_chunk_seconds <= 0:
            raise ValueError("max_chunk_seconds must be positive")
        self.enforcement = enforcement
        self.dispatcher = dispatcher
        self.registry = registry
        self.queue = queue or GuestActionQueue()
        self._clock = clock
        self._max_chunk_seconds = max_chunk_seconds

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return len(self.registry)

    def is_scheduled(self, grant_id: str) -> bool:
        return grant_id in self.registry

    def state_of(self, grant_id: str) -> Optional[GrantState]:
        """Current state of an armed grant, or None when nothing is armed for it."""
        handle = self.registry.get(grant_id)
        return handle.state if handle else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def schedule(self, record: GuestRecord) -> ScheduleResult:
        """
        Arm the warning and expiry timers for ``record``.

        Idempotent: a grant that already has timers is left untouched. A grant
        whose due time has passed is expired immediately and gets no timer.
        A warning whose time has passed is skipped, never sent late.
        """
        if record.id in self.registry:
            logger.debug("[GUEST SCHEDULER] Timer %s already exists, skipping", record.id)
            return ScheduleResult.ALREADY_SCHEDULED

        if record.needs_review:
            logger.warning(
                "[GUEST SCHEDULER] Grant %s for %s needs manual review, not scheduling",
                record.id, record.display_name,
            )
            return ScheduleResult.NEEDS_REVIEW

        now = self._clock()
        if record.due_at <= now:
            logger.info("[GUEST SCHEDULER] Grant %s for %s already expired", record.id, record.display_name)
            outcome = await self.enforcement.expire_guest(record)
            await self._after_expiry(outcome)
            return ScheduleResult.EXPIRED_NOW

        arm_warning = record.warning_at > now and record.attempts == 0

        def _arm() -> TimerHandle:
            handle = TimerHandle(
                expiry_task=asyncio.create_task(
                    self._expiry_timer(record), name=f"guest-expiry-{record.id}"
                ),
                state=GrantState.PENDING_RETRY if record.attempts else GrantState.ACTIVE,
            )
            if arm_warning:
                handle.warning_task = asyncio.create_task(
                    self._warning_timer(record), name=f"guest-warning-{record.id}"
                )
            return handle

        handle = await self.registry.register(record.id, _arm)
        if handle is None:
            # Lost a race against a concurrent schedule() for the same grant
            return ScheduleResult.ALREADY_SCHEDULED

        if not arm_warning and record.attempts == 0:
            logger.debug("[GUEST SCHEDULER] Warning window for %s already passed, skipping warning", record.id)

        logger.info(
            "[GUEST SCHEDULER] Scheduled expiry of %s in %s (in %.0fs)",
            record.display_name, record.guild_id, (record.due_at - now).total_seconds(),
        )
        return ScheduleResult.ARMED

    async def cancel(self, grant_id: str) -> bool:
        """
        Drop the timers of ``grant_id`` without any side effects.

        Returns:
            True if timers existed for the grant.
        """
        handle = await self.registry.pop(grant_id)
        if handle is None:
            return False

        handle.cancel()
        logger.debug("[GUEST SCHEDULER] Cancelled timers for %s", grant_id)
        return True

    async def shutdown(self) -> None:
        """Cancel every armed timer and stop the worker queue. Safe to call twice."""
        handles = await self.registry.drain()
        tasks = [task for handle in handles for task in handle.tasks]
        for handle in handles:
            handle.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.queue.shutdown()
        logger.info("[GUEST SCHEDULER] Stopped (%d timer(s) cancelled)", len(handles))

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _sleep_until(self, target) -> None:
        while True:
            remaining = (target - self._clock()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, self._max_chunk_seconds))

    async def _warning_timer(self, record: GuestRecord) -> None:
        await self._sleep_until(record.warning_at)
        await self.queue.submit(
            record.guild_id,
            GuestAction(label=f"warn:{record.id}", run=lambda: self._run_warning(record)),
        )

    async def _expiry_timer(self, record: GuestRecord) -> None:
        await self._sleep_until(record.due_at)
        await self.queue.submit(
            record.guild_id,
            GuestAction(label=f"expire:{record.id}", run=lambda: self._run_expiry(record)),
        )

    # ------------------------------------------------------------------
    # Actions (run by the queue workers)
    # ------------------------------------------------------------------

    def _current_handle(self, record: GuestRecord) -> Optional[TimerHandle]:
        handle = self.registry.get(record.id)
        if handle is None:
            logger.debug("[GUEST SCHEDULER] Grant %s was cancelled before its action ran", record.id)
        return handle

    async def _run_warning(self, record: GuestRecord) -> None:
        handle = self._current_handle(record)
        if handle is None:
            return
        await self.dispatcher.send_warning(record)
        handle.state = GrantState.WARNED

    async def _run_expiry(self, record: GuestRecord) -> None:
        handle = self._current_handle(record)
        if handle is None:
            return
        try:
            outcome = await self.enforcement.expire_guest(record)
            handle.state = _RETIRED_STATES.get(outcome.status, handle.state)
        finally:
            await self.registry.discard(record.id, handle)
        await self._after_expiry(outcome)

    async def _after_expiry(self, outcome: EnforcementOutcome) -> None:
        if outcome.should_retry:
            logger.info(
                "[GUEST SCHEDULER] Retrying expiry of %s at %s (attempt %d)",
                outcome.record.display_name,
                outcome.record.due_at.isoformat(),
                outcome.record.attempts + 1,
            )
            await self.schedule(outcome.record)
