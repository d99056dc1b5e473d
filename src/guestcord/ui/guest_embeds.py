"""
Embeds sent to guests by direct message.

Three messages exist over a grant's life: a welcome when access is granted,
a warning before expiry, and a final notice right before removal.
"""

import datetime

import discord

from guestcord.datatypes.guest_datatypes import GuestRecord
from guestcord.util.format_utils import discord_timestamp, humanize_duration

WELCOME_COLOR = discord.Color.green()
WARNING_COLOR = discord.Color.gold()
EXPIRED_COLOR = discord.Color.red()


def build_welcome_embed(record: GuestRecord, guild_name: str) -> discord.Embed:
    """Embed announcing a new temporary grant and when it ends."""
    embed = discord.Embed(
        title="🎉 Temporary Access Granted",
        description=f"You have been granted **temporary** access to **{guild_name}**.",
        color=WELCOME_COLOR,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.add_field(name="📅 Expires", value=discord_timestamp(record.expires_at), inline=False)
    embed.add_field(
        name="⏰ Reminder",
        value=f"A reminder will be sent {discord_timestamp(record.warning_at)}.",
        inline=False,
    )
    return embed


def build_warning_embed(record: GuestRecord, now: datetime.datetime) -> discord.Embed:
    """Embed warning the guest how long is left before removal."""
    remaining = humanize_duration(record.expires_at - now)
    embed = discord.Embed(
        title="⚠️ Temporary Access Expires Soon",
        description=f"Your temporary access will expire in **{remaining}**.",
        color=WARNING_COLOR,
        timestamp=now,
    )
    embed.add_field(name="⏰ Exact Expiration", value=discord_timestamp(record.expires_at), inline=False)
    embed.add_field(
        name="💡 What happens?",
        value="• You'll be removed from the server\n• Finish any pending conversations before then",
        inline=False,
    )
    embed.add_field(
        name="🔄 Need more time?",
        value="Contact a server moderator if you need extended access.",
        inline=False,
    )
    return embed


def build_final_notice_embed(record: GuestRecord, join_url: str | None = None) -> discord.Embed:
    """Embed sent right before the guest is removed."""
    embed = discord.Embed(
        title="👋 Temporary Access Expired",
        description="Your temporary access has now expired.",
        color=EXPIRED_COLOR,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.add_field(name="What happened?", value="You have been removed from the server.", inline=False)
    if join_url:
        embed.add_field(name="Want to come back?", value=f"[Join us permanently]({join_url})", inline=False)
    return embed
