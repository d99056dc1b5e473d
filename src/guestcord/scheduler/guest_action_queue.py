"""
Guest Action Queue.

Timers never talk to Discord themselves: when a warning or expiry is due they
submit a :class:`GuestAction` here. Each guild has one asyncio.Queue and one
persistent worker, so Discord calls for a guild run one at a time and a
failing action is logged without stopping the worker.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from guestcord.datatypes.discord_datatypes import GuildID
from guestcord.util.logger import get_logger

logger = get_logger("guest_action_queue")


@dataclass
class GuestAction:
    """A unit of work produced by a timer."""
    label: str
    run: Callable[[], Awaitable[object]]


class GuestActionQueue:
    """
    Per-guild queues with lazily started workers.

    If a worker task dies, the next submission for that guild transparently
    restarts it.
    """

    def __init__(self) -> None:
        self._queues: dict[GuildID, asyncio.Queue[GuestAction]] = {}
        self._workers: dict[GuildID, asyncio.Task] = {}

    # ------------------------------------------------------
    # Public API
    # ------------------------------------------------------

    async def submit(self, guild_id: GuildID, action: GuestAction) -> None:
        """Queue ``action`` for ``guild_id`` and make sure a worker is running."""
        guild_id = GuildID(guild_id)
        queue = self._get_or_create_queue(guild_id)
        await queue.put(action)

        worker = self._workers.get(guild_id)
        if worker is None or worker.done():
            self._workers[guild_id] = asyncio.create_task(
                self._guild_worker(guild_id, queue),
                name=f"guest-action-worker-{guild_id}",
            )
            logger.debug("[GUEST QUEUE] Started worker for guild %s", guild_id)

    async def join(self) -> None:
        """Wait until every queued action has been processed."""
        for queue in list(self._queues.values()):
            await queue.join()

    @property
    def pending(self) -> int:
        return sum(queue.qsize() for queue in self._queues.values())

    async def shutdown(self) -> None:
        """Cancel all worker tasks; queued actions are dropped."""
        for task in self._workers.values():
            if not task.done():
                task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
        logger.info("[GUEST QUEUE] All guild workers shut down.")

    # -------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------

    def _get_or_create_queue(self, guild_id: GuildID) -> asyncio.Queue[GuestAction]:
        if guild_id not in self._queues:
            self._queues[guild_id] = asyncio.Queue()
        return self._queues[guild_id]

    async def _guild_worker(self, guild_id: GuildID, queue: asyncio.Queue[GuestAction]) -> None:
        while True:
            action = await queue.get()
            try:
                await action.run()
            except asyncio.CancelledError:
                logger.info("[GUEST QUEUE] Worker cancelled for guild %s", guild_id)
                raise
            except Exception:
                logger.exception("[GUEST QUEUE] Action %s failed for guild %s", action.label, guild_id)
            finally:
                queue.task_done()
