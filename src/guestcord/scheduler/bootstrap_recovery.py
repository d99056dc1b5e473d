"""
Rebuilds the in-memory guest timers from the database at startup.

Timers live only in process memory, so after a restart every persisted grant
is handed back to :meth:`GuestScheduler.schedule`. Grants that expired while
the bot was offline are expired during the pass. Running concurrently with
live grants is safe because ``schedule`` ignores grants it already armed.
"""

from __future__ import annotations

from guestcord.datatypes.guest_datatypes import RecoverySummary, StorageError
from guestcord.repositories.guest_record_store import GuestRecordStore
from guestcord.scheduler.guest_scheduler import GuestScheduler, ScheduleResult
from guestcord.util.logger import get_logger

logger = get_logger("bootstrap_recovery")


class BootstrapRecovery:
    """Re-arms the scheduler for every grant in the store."""

    def __init__(self, store: GuestRecordStore, scheduler: GuestScheduler) -> None:
        self.store = store
        self.scheduler = scheduler

    async def recover_all(self) -> RecoverySummary:
        """
        Load every grant and schedule it.

        A failing store is logged and yields an empty summary; a grant that
        fails to schedule is logged and the pass continues with the others.
        """
        summary = RecoverySummary()
        logger.info("[RECOVERY] Loading guest timers from database…")

        try:
            records = await self.store.find_all()
        except StorageError as exc:
            logger.error("[RECOVERY] Could not load guest grants: %s", exc)
            return summary

        summary.total = len(records)
        for record in records:
            try:
                result = await self.scheduler.schedule(record)
            except Exception:
                logger.exception("[RECOVERY] Failed to reschedule grant %s", record.id)
                summary.failed += 1
                summary.failed_ids.append(record.id)
                continue

            if result is ScheduleResult.EXPIRED_NOW:
                summary.expired += 1
            elif result is ScheduleResult.NEEDS_REVIEW:
                summary.needs_review += 1
            else:
                summary.scheduled += 1

        logger.info(
            "[RECOVERY] Rescheduled %d of %d grant(s): %d expired while offline, %d awaiting review, %d failed",
            summary.scheduled, summary.total, summary.expired, summary.needs_review, summary.failed,
        )
        return summary
