"""
Discord-facing operations needed by the guest access scheduler.

The scheduler services only ever see :class:`GuestAccessGateway`, a narrow
interface over "find the guild", "find the member", "DM the member" and
"kick the member". :class:`DiscordGuestGateway` implements it with py-cord,
bounding every call with a timeout and mapping Discord failures onto the
subsystem's error types:

- not found            -> ``None`` (the account already left; not an error)
- 403 on kick          -> :class:`RemovalError`
- 5xx / 429 / timeout  -> :class:`TransientNetworkError`
"""

from __future__ import annotations

import abc
import asyncio
from typing import Awaitable, Optional, TypeVar

import aiohttp
import discord

from guestcord.datatypes.discord_datatypes import GuildID, RoleID, UserID
from guestcord.datatypes.guest_datatypes import RemovalError, TransientNetworkError
from guestcord.util.logger import get_logger

logger = get_logger("guest_gateway")

T = TypeVar("T")

_NETWORK_ERRORS = (asyncio.TimeoutError, aiohttp.ClientError, OSError)


class GuestAccessGateway(abc.ABC):
    """Capabilities the guest scheduler needs from Discord."""

    @abc.abstractmethod
    async def fetch_space(self, guild_id: GuildID) -> Optional[discord.Guild]:
        """Return the guild, or None if it no longer exists for the bot."""

    @abc.abstractmethod
    async def fetch_member(self, space: discord.Guild, account_id: UserID) -> Optional[discord.Member]:
        """Return the member, or None if the account is not in the guild."""

    @abc.abstractmethod
    async def send_direct_message(self, member: discord.Member, embed: discord.Embed) -> bool:
        """DM the member. Never raises; returns False when delivery failed."""

    @abc.abstractmethod
    async def remove_member(self, member: discord.Member, reason: str) -> None:
        """Kick the member from its guild."""

    @abc.abstractmethod
    async def has_role(self, member: discord.Member, role_id: RoleID) -> bool:
        """Return True if the member currently holds the role."""

    @abc.abstractmethod
    async def add_role(self, member: discord.Member, role_id: RoleID, reason: str) -> bool:
        """Give the member a role. Never raises; returns False on failure."""


class DiscordGuestGateway(GuestAccessGateway):
    """
    py-cord implementation of :class:`GuestAccessGateway`.

    Args:
        bot: Connected Discord client.
        timeout_seconds: Upper bound for each Discord API call.
    """

    def __init__(self, bot: discord.Client, timeout_seconds: float = 10.0) -> None:
        self.bot = bot
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)

    async def fetch_space(self, guild_id: GuildID) -> Optional[discord.Guild]:
        guild_id = GuildID(guild_id)
        guild = self.bot.get_guild(guild_id.to_int())
        if guild is not None:
            return guild

        try:
            return await self._bounded(self.bot.fetch_guild(guild_id.to_int()))
        except (discord.NotFound, discord.Forbidden):
            # Forbidden here means the bot is no longer a member of the guild
            logger.info("[GUEST GATEWAY] Guild %s is gone or inaccessible", guild_id)
            return None
        except discord.HTTPException as exc:
            raise TransientNetworkError(f"Fetching guild {guild_id} failed: {exc}") from exc
        except _NETWORK_ERRORS as exc:
            raise TransientNetworkError(f"Fetching guild {guild_id} failed: {exc!r}") from exc

    async def fetch_member(self, space: discord.Guild, account_id: UserID) -> Optional[discord.Member]:
        account_id = UserID(account_id)
        member = space.get_member(account_id.to_int())
        if member is not None:
            return member

        try:
            return await self._bounded(space.fetch_member(account_id.to_int()))
        except discord.NotFound:
            return None
        except discord.HTTPException as exc:
            raise TransientNetworkError(f"Fetching member {account_id} failed: {exc}") from exc
        except _NETWORK_ERRORS as exc:
            raise TransientNetworkError(f"Fetching member {account_id} failed: {exc!r}") from exc

    async def send_direct_message(self, member: discord.Member, embed: discord.Embed) -> bool:
        try:
            await self._bounded(member.send(embed=embed))
            return True
        except discord.Forbidden:
            logger.info("[GUEST GATEWAY] %s does not accept direct messages", member.id)
        except discord.HTTPException as exc:
            logger.warning("[GUEST GATEWAY] Could not DM %s: %s", member.id, exc)
        except _NETWORK_ERRORS as exc:
            logger.warning("[GUEST GATEWAY] Could not DM %s: %r", member.id, exc)
        return False

    async def remove_member(self, member: discord.Member, reason: str) -> None:
        try:
            await self._bounded(member.kick(reason=reason))
        except discord.NotFound:
            logger.info("[GUEST GATEWAY] %s left before the kick", member.id)
        except discord.Forbidden as exc:
            raise RemovalError(f"Not allowed to kick {member.id}: {exc}") from exc
        except discord.HTTPException as exc:
            raise TransientNetworkError(f"Kicking {member.id} failed: {exc}") from exc
        except _NETWORK_ERRORS as exc:
            raise TransientNetworkError(f"Kicking {member.id} failed: {exc!r}") from exc

    async def has_role(self, member: discord.Member, role_id: RoleID) -> bool:
        return member.get_role(RoleID(role_id).to_int()) is not None

    async def add_role(self, member: discord.Member, role_id: RoleID, reason: str) -> bool:
        role = member.guild.get_role(RoleID(role_id).to_int())
        if role is None:
            logger.warning("[GUEST GATEWAY] Guest role %s not found in guild %s", role_id, member.guild.id)
            return False

        try:
            await self._bounded(member.add_roles(role, reason=reason))
            return True
        except discord.HTTPException as exc:
            logger.warning("[GUEST GATEWAY] Could not give %s the guest role: %s", member.id, exc)
        except _NETWORK_ERRORS as exc:
            logger.warning("[GUEST GATEWAY] Could not give %s the guest role: %r", member.id, exc)
        return False
