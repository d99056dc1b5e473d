"""
In-process registry of armed guest timers.

One :class:`TimerHandle` per grant id. The registry lock is only held while
handles are looked up, inserted or removed, never while a timer's work runs.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from guestcord.datatypes.guest_datatypes import GrantState


@dataclass
class TimerHandle:
    """Warning and expiry tasks armed for one grant."""
    expiry_task: asyncio.Task
    warning_task: Optional[asyncio.Task] = None
    state: GrantState = GrantState.ACTIVE

    @property
    def tasks(self) -> List[asyncio.Task]:
        return [task for task in (self.warning_task, self.expiry_task) if task is not None]

    def cancel(self) -> None:
        """Cancel every pending task except the one currently running."""
        current = asyncio.current_task()
        for task in self.tasks:
            if task is not current and not task.done():
                task.cancel()


class TimerRegistry:
    """Lock-guarded map from grant id to :class:`TimerHandle`."""

    def __init__(self) -> None:
        self._handles: Dict[str, TimerHandle] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, grant_id: object) -> bool:
        return grant_id in self._handles

    def get(self, grant_id: str) -> Optional[TimerHandle]:
        return self._handles.get(grant_id)

    def ids(self) -> List[str]:
        return list(self._handles)

    async def register(self, grant_id: str, factory: Callable[[], TimerHandle]) -> Optional[TimerHandle]:
        """
        Arm timers for ``grant_id`` unless it already has some.

        ``factory`` is called under the lock, so the check and the insert are
        atomic with respect to other ``register`` calls.

        Returns:
            The new handle, or None if the grant was already registered.
        """
        async with self._lock:
            if grant_id in self._handles:
                return None
            handle = factory()
            self._handles[grant_id] = handle
            return handle

    async def pop(self, grant_id: str) -> Optional[TimerHandle]:
        """Remove and return the handle for ``grant_id`` without cancelling it."""
        async with self._lock:
            return self._handles.pop(grant_id, None)

    async def discard(self, grant_id: str, handle: Optional[TimerHandle] = None) -> bool:
        """
        Remove the entry for ``grant_id`` and cancel its pending tasks.

        When ``handle`` is given the entry is only removed if it is still that
        handle, so a finished timer cannot clear a newer one for the same grant.
        """
        async with self._lock:
            current = self._handles.get(grant_id)
            if current is None or (handle is not None and current is not handle):
                return False
            del self._handles[grant_id]
        current.cancel()
        return True

    async def drain(self) -> List[TimerHandle]:
        """Remove and return every handle."""
        async with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        return handles
