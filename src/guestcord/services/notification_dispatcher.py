"""
Best-effort direct messages to guests.

Nothing in here raises: a guest with closed DMs, a guild the bot left or a
Discord hiccup is logged and reported as ``False``. There are no retries,
and a failed warning never affects the expiry that follows.
"""

from __future__ import annotations

import discord

from guestcord.datatypes.guest_datatypes import GuestRecord
from guestcord.ui.guest_embeds import build_final_notice_embed, build_warning_embed, build_welcome_embed
from guestcord.util.discord.guest_gateway import GuestAccessGateway
from guestcord.util.format_utils import Clock, utc_now
from guestcord.util.logger import get_logger

logger = get_logger("notification_dispatcher")


class NotificationDispatcher:
    """Sends the welcome, warning and final notice embeds of a grant."""

    def __init__(
        self,
        gateway: GuestAccessGateway,
        *,
        join_url: str | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.gateway = gateway
        self.join_url = join_url
        self._clock = clock

    async def send_warning(self, record: GuestRecord) -> bool:
        """
        Warn the guest how long is left until ``record.expires_at``.

        Returns quietly when the guild or the member is gone.

        Returns:
            True if the DM was delivered.
        """
        try:
            space = await self.gateway.fetch_space(record.guild_id)
            if space is None:
                logger.debug("[NOTIFY] Guild %s gone, no warning for %s", record.guild_id, record.display_name)
                return False

            member = await self.gateway.fetch_member(space, record.account_id)
            if member is None:
                logger.debug("[NOTIFY] %s already left %s, no warning", record.display_name, record.guild_id)
                return False

            delivered = await self.gateway.send_direct_message(
                member, build_warning_embed(record, self._clock())
            )
        except Exception as exc:
            logger.warning("[NOTIFY] Warning failed for %s: %s", record.display_name, exc)
            return False

        if delivered:
            logger.info("[NOTIFY] Warning sent to %s", record.display_name)
        else:
            logger.info("[NOTIFY] Warning for %s could not be delivered", record.display_name)
        return delivered

    async def send_final_notice(self, member: discord.Member, record: GuestRecord) -> bool:
        """Tell the guest their access expired, right before removal."""
        return await self._send(member, build_final_notice_embed(record, self.join_url), "final notice", record)

    async def send_welcome(self, member: discord.Member, record: GuestRecord) -> bool:
        """Tell a new guest how long their access lasts."""
        guild_name = getattr(getattr(member, "guild", None), "name", None) or "the server"
        return await self._send(member, build_welcome_embed(record, guild_name), "welcome", record)

    async def _send(self, member: discord.Member, embed: discord.Embed, kind: str, record: GuestRecord) -> bool:
        try:
            delivered = await self.gateway.send_direct_message(member, embed)
        except Exception as exc:
            logger.warning("[NOTIFY] Could not send %s to %s: %s", kind, record.display_name, exc)
            return False
        if not delivered:
            logger.info("[NOTIFY] %s for %s could not be delivered", kind.capitalize(), record.display_name)
        return delivered
