"""Tests for the py-cord guest gateway."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import discord
import pytest

from guestcord.datatypes.discord_datatypes import GuildID, RoleID, UserID
from guestcord.datatypes.guest_datatypes import RemovalError, TransientNetworkError
from guestcord.util.discord.guest_gateway import DiscordGuestGateway


def make_bot(guild=None):
    bot = MagicMock()
    bot.get_guild.return_value = guild
    bot.fetch_guild = AsyncMock()
    return bot


def make_member():
    member = MagicMock()
    member.id = 200
    member.send = AsyncMock()
    member.kick = AsyncMock()
    member.add_roles = AsyncMock()
    return member


class TestFetchSpace:
    @pytest.mark.asyncio
    async def test_cached_guild(self):
        guild = MagicMock()
        bot = make_bot(guild)

        assert await DiscordGuestGateway(bot).fetch_space(GuildID(100)) is guild
        bot.fetch_guild.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_fetch(self):
        guild = MagicMock()
        bot = make_bot()
        bot.fetch_guild.return_value = guild

        assert await DiscordGuestGateway(bot).fetch_space(GuildID(100)) is guild
        bot.fetch_guild.assert_awaited_once_with(100)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_cls", [discord.NotFound, discord.Forbidden])
    async def test_missing_guild_is_none(self, error_cls):
        bot = make_bot()
        bot.fetch_guild.side_effect = error_cls(MagicMock(), "gone")

        assert await DiscordGuestGateway(bot).fetch_space(GuildID(100)) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            discord.HTTPException(MagicMock(status=503), "unavailable"),
            aiohttp.ClientConnectionError("reset"),
            asyncio.TimeoutError(),
        ],
    )
    async def test_transient_errors(self, error):
        bot = make_bot()
        bot.fetch_guild.side_effect = error

        with pytest.raises(TransientNetworkError):
            await DiscordGuestGateway(bot).fetch_space(GuildID(100))

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self):
        bot = make_bot()

        async def slow(_guild_id):
            await asyncio.sleep(1)

        bot.fetch_guild = slow

        with pytest.raises(TransientNetworkError):
            await DiscordGuestGateway(bot, timeout_seconds=0.01).fetch_space(GuildID(100))


class TestFetchMember:
    @pytest.mark.asyncio
    async def test_cached_member(self):
        guild = MagicMock()
        member = make_member()
        guild.get_member.return_value = member

        assert await DiscordGuestGateway(make_bot()).fetch_member(guild, UserID(200)) is member
        guild.get_member.assert_called_once_with(200)

    @pytest.mark.asyncio
    async def test_member_not_found(self):
        guild = MagicMock()
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(side_effect=discord.NotFound(MagicMock(), "Unknown Member"))

        assert await DiscordGuestGateway(make_bot()).fetch_member(guild, UserID(200)) is None

    @pytest.mark.asyncio
    async def test_member_lookup_server_error(self):
        guild = MagicMock()
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(side_effect=discord.HTTPException(MagicMock(), "oops"))

        with pytest.raises(TransientNetworkError):
            await DiscordGuestGateway(make_bot()).fetch_member(guild, UserID(200))


class TestMemberActions:
    @pytest.mark.asyncio
    async def test_direct_message_delivered(self):
        member = make_member()
        embed = discord.Embed(title="hi")

        assert await DiscordGuestGateway(make_bot()).send_direct_message(member, embed) is True
        member.send.assert_awaited_once_with(embed=embed)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [discord.Forbidden(MagicMock(), "closed"), discord.HTTPException(MagicMock(), "oops"), OSError("down")],
    )
    async def test_direct_message_failures_return_false(self, error):
        member = make_member()
        member.send.side_effect = error

        assert await DiscordGuestGateway(make_bot()).send_direct_message(member, discord.Embed()) is False

    @pytest.mark.asyncio
    async def test_remove_member(self):
        member = make_member()

        await DiscordGuestGateway(make_bot()).remove_member(member, "expired")

        member.kick.assert_awaited_once_with(reason="expired")

    @pytest.mark.asyncio
    async def test_remove_member_already_gone(self):
        member = make_member()
        member.kick.side_effect = discord.NotFound(MagicMock(), "Unknown Member")

        await DiscordGuestGateway(make_bot()).remove_member(member, "expired")

    @pytest.mark.asyncio
    async def test_remove_member_forbidden(self):
        member = make_member()
        member.kick.side_effect = discord.Forbidden(MagicMock(), "Missing Permissions")

        with pytest.raises(RemovalError):
            await DiscordGuestGateway(make_bot()).remove_member(member, "expired")

    @pytest.mark.asyncio
    async def test_remove_member_server_error(self):
        member = make_member()
        member.kick.side_effect = discord.HTTPException(MagicMock(), "Bad Gateway")

        with pytest.raises(TransientNetworkError):
            await DiscordGuestGateway(make_bot()).remove_member(member, "expired")


class TestRoles:
    @pytest.mark.asyncio
    async def test_has_role(self):
        member = make_member()
        member.get_role.side_effect = lambda role_id: object() if role_id == 555 else None
        gateway = DiscordGuestGateway(make_bot())

        assert await gateway.has_role(member, RoleID(555)) is True
        assert await gateway.has_role(member, RoleID(556)) is False

    @pytest.mark.asyncio
    async def test_add_role(self):
        member = make_member()
        role = MagicMock()
        member.guild.get_role.return_value = role

        assert await DiscordGuestGateway(make_bot()).add_role(member, RoleID(555), "granted") is True
        member.add_roles.assert_awaited_once_with(role, reason="granted")

    @pytest.mark.asyncio
    async def test_add_missing_role(self):
        member = make_member()
        member.guild.get_role.return_value = None

        assert await DiscordGuestGateway(make_bot()).add_role(member, RoleID(555), "granted") is False
        member.add_roles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_add_role_forbidden(self):
        member = make_member()
        member.add_roles.side_effect = discord.Forbidden(MagicMock(), "Missing Permissions")

        assert await DiscordGuestGateway(make_bot()).add_role(member, RoleID(555), "granted") is False
