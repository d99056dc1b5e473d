"""
Guest access grant flow and component wiring.

``GuestAccessService`` is the live entry point for grants: it persists a new
grant, arms its timers and welcomes the guest. ``build_guest_access`` wires
the registry, dispatcher, enforcement, scheduler and recovery together so the
cog and tests share one construction path.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

import discord

from guestcord.configuration.app_configuration import AppConfig
from guestcord.configuration.guest_settings import GuestAccessSettings
from guestcord.datatypes.discord_datatypes import GuildID, UserID
from guestcord.datatypes.guest_datatypes import GuestRecord
from guestcord.repositories.guest_record_store import GuestRecordStore
from guestcord.scheduler.bootstrap_recovery import BootstrapRecovery
from guestcord.scheduler.guest_scheduler import GuestScheduler
from guestcord.scheduler.timer_registry import TimerRegistry
from guestcord.services.guest_enforcement import GuestEnforcement
from guestcord.services.notification_dispatcher import NotificationDispatcher
from guestcord.util.discord.guest_gateway import GuestAccessGateway
from guestcord.util.format_utils import Clock, utc_now
from guestcord.util.logger import get_logger

logger = get_logger("guest_access_service")

GRANT_ROLE_REASON = "Temporary guest access granted"


class GuestAccessService:
    """Creates, lists and revokes temporary guest grants."""

    def __init__(
        self,
        store: GuestRecordStore,
        scheduler: GuestScheduler,
        dispatcher: NotificationDispatcher,
        gateway: GuestAccessGateway,
        *,
        settings: Optional[GuestAccessSettings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.gateway = gateway
        self.settings = settings or GuestAccessSettings()
        self._clock = clock

    async def grant(self, member: discord.Member, *, duration: Optional[timedelta] = None) -> GuestRecord:
        """
        Give ``member`` temporary access, replacing any grant they already hold.

        Args:
            member: Guild member receiving access.
            duration: Access length; defaults to ``guest_access.access_hours``.

        Returns:
            The persisted grant.

        Raises:
            GuestRecordValidationError: If ``duration`` is not positive.
            StorageError: If the grant could not be saved.
        """
        duration = duration or self.settings.access_duration
        warning_lead = self.settings.warning_lead
        if warning_lead >= duration:
            warning_lead = duration / 2

        guild_id = GuildID(member.guild.id)
        account_id = UserID(member.id)
        record = GuestRecord.create(
            guild_id,
            account_id,
            now=self._clock(),
            access_duration=duration,
            warning_lead=warning_lead,
            account_tag=str(member),
        )

        previous = await self.store.get_by_account(guild_id, account_id)
        await self.store.save(record)
        if previous is not None:
            await self.scheduler.cancel(previous.id)
            logger.info("[GUEST ACCESS] Replaced grant %s for %s", previous.id, record.display_name)

        role_id = self.settings.guest_role_id
        if role_id is not None:
            await self.gateway.add_role(member, role_id, GRANT_ROLE_REASON)

        await self.scheduler.schedule(record)
        await self.dispatcher.send_welcome(member, record)

        logger.info(
            "[GUEST ACCESS] Granted %s access to %s until %s",
            record.display_name, guild_id, record.expires_at.isoformat(),
        )
        return record

    async def revoke(self, guild_id: GuildID, account_id: UserID) -> Optional[GuestRecord]:
        """
        Withdraw a grant without kicking: timers are cancelled and the row deleted.

        Returns:
            The revoked grant, or None if the account held none.
        """
        record = await self.store.get_by_account(GuildID(guild_id), UserID(account_id))
        if record is None:
            return None

        await self.scheduler.cancel(record.id)
        await self.store.delete(record.id)
        logger.info("[GUEST ACCESS] Revoked grant %s for %s", record.id, record.display_name)
        return record

    async def list_grants(self, guild_id: GuildID) -> List[GuestRecord]:
        return await self.store.find_for_guild(GuildID(guild_id))


@dataclass
class GuestAccessComponents:
    """Everything the guest access subsystem needs at runtime."""
    registry: TimerRegistry
    dispatcher: NotificationDispatcher
    enforcement: GuestEnforcement
    scheduler: GuestScheduler
    recovery: BootstrapRecovery
    service: GuestAccessService


def build_guest_access(
    gateway: GuestAccessGateway,
    store: GuestRecordStore,
    config: AppConfig,
    *,
    clock: Clock = utc_now,
) -> GuestAccessComponents:
    """Wire the guest access components from ``config``."""
    settings = config.guest_access
    registry = TimerRegistry()
    dispatcher = NotificationDispatcher(gateway, join_url=settings.join_url, clock=clock)
    enforcement = GuestEnforcement(
        gateway,
        store,
        dispatcher,
        registry,
        settings=settings,
        retry=config.retry,
        clock=clock,
    )
    scheduler = GuestScheduler(
        enforcement,
        dispatcher,
        registry,
        clock=clock,
        max_chunk_seconds=settings.max_timer_chunk_seconds,
    )
    return GuestAccessComponents(
        registry=registry,
        dispatcher=dispatcher,
        enforcement=enforcement,
        scheduler=scheduler,
        recovery=BootstrapRecovery(store, scheduler),
        service=GuestAccessService(store, scheduler, dispatcher, gateway, settings=settings, clock=clock),
    )
