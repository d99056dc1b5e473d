"""
Guest access cog: slash commands for temporary grants plus startup recovery.

Slash commands (Kick Members permission, ephemeral replies):
- /guest_grant:  give a member temporary access
- /guest_revoke: withdraw a grant without kicking
- /guest_list:   show the grants of this server

On the first ``on_ready`` the cog runs bootstrap recovery so grants persisted
before a restart get their timers back. Later reconnects do not re-run it.
"""

from __future__ import annotations

from datetime import timedelta

import discord
from discord import Option
from discord.ext import commands

from guestcord.datatypes.discord_datatypes import GuildID, UserID
from guestcord.datatypes.guest_datatypes import GuestAccessError, GrantState
from guestcord.services.guest_access_service import GuestAccessComponents
from guestcord.util.format_utils import discord_timestamp
from guestcord.util.logger import get_logger

logger = get_logger("guest_access_cog")

MAX_LISTED_GRANTS = 25


class GuestAccessCog(commands.Cog):
    """Guest grant commands and the startup recovery hook."""

    def __init__(self, bot: discord.Bot, components: GuestAccessComponents) -> None:
        self.bot = bot
        self.components = components
        self._recovered = False
        logger.info("[GUEST ACCESS COG] Guest access cog loaded")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_ready")
    async def on_ready(self) -> None:
        if self._recovered:
            return
        self._recovered = True
        await self.components.recovery.recover_all()

    def cog_unload(self) -> None:
        logger.info("[GUEST ACCESS COG] Unloaded")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _check_permissions(self, ctx: discord.ApplicationContext) -> bool:
        if not ctx.guild_id:
            await ctx.respond("This command can only be used in a server.", ephemeral=True)
            return False
        permissions = getattr(ctx.user, "guild_permissions", None)
        if not getattr(permissions, "kick_members", False):
            await ctx.respond("You need the Kick Members permission.", ephemeral=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @commands.slash_command(name="guest_grant", description="Give a member temporary guest access.")
    async def guest_grant(
        self,
        ctx: discord.ApplicationContext,
        member: Option(discord.Member, "The member receiving temporary access.", required=True),  # type: ignore
        hours: Option(int, "How long access lasts, in hours.", min_value=1, required=False, default=None),  # type: ignore
    ) -> None:
        if not await self._check_permissions(ctx):
            return
        await ctx.defer(ephemeral=True)

        duration = timedelta(hours=hours) if hours else None
        try:
            record = await self.components.service.grant(member, duration=duration)
        except GuestAccessError as exc:
            logger.error("[GUEST ACCESS COG] Grant for %s failed: %s", member, exc)
            await ctx.send_followup(f"Could not grant access: {exc}")
            return

        await ctx.send_followup(
            f"{member.mention} has temporary access until {discord_timestamp(record.expires_at, 'F')} "
            f"({discord_timestamp(record.expires_at)})."
        )

    @commands.slash_command(name="guest_revoke", description="Withdraw a member's temporary access grant.")
    async def guest_revoke(
        self,
        ctx: discord.ApplicationContext,
        member: Option(discord.Member, "The guest whose grant is withdrawn.", required=True),  # type: ignore
    ) -> None:
        if not await self._check_permissions(ctx):
            return
        await ctx.defer(ephemeral=True)

        try:
            record = await self.components.service.revoke(GuildID(ctx.guild_id), UserID(member.id))
        except GuestAccessError as exc:
            logger.error("[GUEST ACCESS COG] Revoke for %s failed: %s", member, exc)
            await ctx.send_followup(f"Could not revoke access: {exc}")
            return

        if record is None:
            await ctx.send_followup(f"{member.mention} has no temporary access grant.")
            return
        await ctx.send_followup(f"Temporary access grant for {member.mention} withdrawn. They were not removed.")

    @commands.slash_command(name="guest_list", description="List temporary guest grants in this server.")
    async def guest_list(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_permissions(ctx):
            return
        await ctx.defer(ephemeral=True)

        try:
            records = await self.components.service.list_grants(GuildID(ctx.guild_id))
        except GuestAccessError as exc:
            logger.error("[GUEST ACCESS COG] Listing grants failed: %s", exc)
            await ctx.send_followup(f"Could not list grants: {exc}")
            return

        if not records:
            await ctx.send_followup("There are no temporary guest grants in this server.")
            return

        scheduler = self.components.scheduler
        embed = discord.Embed(title="Temporary Guest Grants", color=discord.Color.blurple())
        for record in records[:MAX_LISTED_GRANTS]:
            if record.needs_review:
                status = GrantState.NEEDS_REVIEW.value.replace("_", " ")
            else:
                state = scheduler.state_of(record.id)
                status = state.value.replace("_", " ") if state else GrantState.ACTIVE.value
            embed.add_field(
                name=record.display_name,
                value=f"<@{record.account_id}> expires {discord_timestamp(record.expires_at)} ({status})",
                inline=False,
            )
        if len(records) > MAX_LISTED_GRANTS:
            embed.set_footer(text=f"Showing {MAX_LISTED_GRANTS} of {len(records)} grants")
        await ctx.send_followup(embed=embed)


def setup(bot: discord.Bot, components: GuestAccessComponents) -> None:
    bot.add_cog(GuestAccessCog(bot, components))
