"""Messaging collaborator used by the engine, and its discord.py implementation."""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Set

import discord

from .formatting import ENTRY_EMOJI
from .models import ChannelInfo

log = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised when a message cannot be sent, edited or fetched."""


class MessageNotFound(TransportError):
    """Raised when the target message or channel no longer exists or is hidden."""


class Messenger(Protocol):
    @property
    def self_id(self) -> Optional[int]:
        ...

    async def send(self, channel_id: int, content: str) -> int:
        ...

    async def edit(self, channel_id: int, message_id: int, content: str) -> None:
        ...

    async def fetch(self, channel_id: int, message_id: int) -> Optional[object]:
        ...

    async def list_entrants(self, channel_id: int, message_id: int) -> Set[int]:
        ...

    async def attach_entry_marker(self, channel_id: int, message_id: int) -> None:
        ...

    async def list_text_channels(self, guild_id: int) -> List[ChannelInfo]:
        ...


class DiscordMessenger:
    """Messenger backed by a discord.py client; entrants are 🎉 reactions."""

    def __init__(self, bot: discord.Client, *, entry_emoji: str = ENTRY_EMOJI) -> None:
        self.bot = bot
        self.entry_emoji = entry_emoji

    @property
    def self_id(self) -> Optional[int]:
        return self.bot.user.id if self.bot.user else None

    async def send(self, channel_id: int, content: str) -> int:
        channel = await self._fetch_text_channel(channel_id)
        try:
            message = await channel.send(content)
        except discord.Forbidden as exc:
            raise MessageNotFound(f"Cannot post in channel {channel_id}") from exc
        except discord.HTTPException as exc:
            raise TransportError(f"Failed to send to channel {channel_id}: {exc}") from exc
        return message.id

    async def edit(self, channel_id: int, message_id: int, content: str) -> None:
        channel = await self._fetch_text_channel(channel_id)
        try:
            await channel.get_partial_message(message_id).edit(content=content)
        except (discord.NotFound, discord.Forbidden) as exc:
            raise MessageNotFound(f"Message {message_id} is unavailable") from exc
        except discord.HTTPException as exc:
            raise TransportError(f"Failed to edit message {message_id}: {exc}") from exc

    async def fetch(self, channel_id: int, message_id: int) -> Optional[discord.Message]:
        try:
            channel = await self._fetch_text_channel(channel_id)
        except MessageNotFound:
            return None
        try:
            return await channel.fetch_message(message_id)
        except (discord.NotFound, discord.Forbidden):
            return None
        except discord.HTTPException as exc:
            raise TransportError(f"Failed to fetch message {message_id}: {exc}") from exc

    async def list_entrants(self, channel_id: int, message_id: int) -> Set[int]:
        message = await self.fetch(channel_id, message_id)
        if message is None:
            raise MessageNotFound(f"Message {message_id} is unavailable")
        reaction = discord.utils.find(
            lambda r: str(r.emoji) == self.entry_emoji, message.reactions
        )
        if reaction is None:
            return set()
        entrants: Set[int] = set()
        try:
            async for user in reaction.users():
                if not user.bot:
                    entrants.add(user.id)
        except discord.HTTPException as exc:
            raise TransportError(f"Failed to list entrants of {message_id}: {exc}") from exc
        return entrants

    async def attach_entry_marker(self, channel_id: int, message_id: int) -> None:
        channel = await self._fetch_text_channel(channel_id)
        try:
            await channel.get_partial_message(message_id).add_reaction(self.entry_emoji)
        except (discord.NotFound, discord.Forbidden) as exc:
            raise MessageNotFound(f"Message {message_id} is unavailable") from exc
        except discord.HTTPException as exc:
            raise TransportError(f"Failed to react to {message_id}: {exc}") from exc

    async def list_text_channels(self, guild_id: int) -> List[ChannelInfo]:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            log.debug("Guild %s is not cached; no channels to offer.", guild_id)
            return []
        me = guild.me
        channels: List[ChannelInfo] = []
        for channel in guild.text_channels:
            perms = channel.permissions_for(me)
            channels.append(
                ChannelInfo(
                    id=channel.id,
                    name=channel.name,
                    can_post=perms.read_messages
                    and perms.send_messages
                    and perms.embed_links,
                )
            )
        return channels

    async def _fetch_text_channel(self, channel_id: int) -> discord.TextChannel:
        channel = self.bot.get_channel(channel_id)
        if isinstance(channel, discord.TextChannel):
            return channel
        try:
            fetched = await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden) as exc:
            raise MessageNotFound(f"Channel {channel_id} is unavailable") from exc
        except discord.HTTPException as exc:
            raise TransportError(f"Failed to fetch channel {channel_id}: {exc}") from exc
        if not isinstance(fetched, discord.TextChannel):
            raise MessageNotFound(f"Channel {channel_id} is not a text channel")
        return fetched
