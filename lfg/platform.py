"""
LFG Platform
============
Everything the LFG engine needs from Discord: categories, voice channels,
per-user channel permissions, voice disconnects and status messages.

`Platform` documents the contract; `DiscordPlatform` implements it with
discord.py. Any Discord failure surfaces as ExternalResourceError.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import discord

from .config import CATEGORY_PREFIX, ORPHAN_CHANNEL_GRACE_SECONDS
from .errors import ExternalResourceError
from .models import make_custom_id
from .renderer import BUTTONS, StatusPayload

logger = logging.getLogger(__name__)


class Platform:
    """Contract of the chat platform used by the engine."""

    async def get_or_create_category(self, guild_id: int, name: str) -> int:
        raise NotImplementedError

    async def create_voice_channel(self, guild_id: int, name: str, category_id: Optional[int],
                                   owner_id: int, user_limit: int) -> int:
        raise NotImplementedError

    async def delete_channel(self, guild_id: int, channel_id: int):
        raise NotImplementedError

    async def set_user_permission(self, guild_id: int, channel_id: int, user_id: int):
        """Allow connect, view and speak for one user."""
        raise NotImplementedError

    async def remove_user_permission(self, guild_id: int, channel_id: int, user_id: int):
        raise NotImplementedError

    async def disconnect_user(self, guild_id: int, channel_id: int, user_id: int) -> bool:
        """Disconnect the user if connected to that channel. True if someone was disconnected."""
        raise NotImplementedError

    async def voice_members(self, guild_id: int, channel_id: int) -> List[int]:
        raise NotImplementedError

    async def permitted_users(self, guild_id: int, channel_id: int) -> List[int]:
        """Users holding an explicit permission on the channel (bot excluded)."""
        raise NotImplementedError

    async def post_status(self, guild_id: int, channel_id: int, payload: StatusPayload) -> int:
        raise NotImplementedError

    async def edit_status(self, guild_id: int, channel_id: int, message_id: int, payload: StatusPayload):
        raise NotImplementedError

    async def send_message(self, guild_id: int, channel_id: int, content: str, mentions: Iterable[int] = ()):
        raise NotImplementedError

    async def cleanup_orphan_channels(self, live_channel_ids: Iterable[int], now: datetime) -> int:
        """Delete leftover empty LFG channels/categories. Returns how many were deleted."""
        return 0


@contextmanager
def _discord_call(action: str):
    try:
        yield
    except discord.HTTPException as e:
        raise ExternalResourceError(f"{action} failed: {e}") from e


def build_view(payload: StatusPayload) -> Optional[discord.ui.View]:
    """Buttons of a status payload as a persistent view."""
    if not payload.buttons or not payload.session_id:
        return None

    view = discord.ui.View(timeout=None)
    for kind in payload.buttons:
        label, emoji, style = BUTTONS[kind]
        view.add_item(discord.ui.Button(
            label=label,
            emoji=emoji,
            style=style,
            custom_id=make_custom_id(kind, payload.session_id)
        ))
    return view


def _allowed_mentions(user_ids: Iterable[int]) -> discord.AllowedMentions:
    users = [discord.Object(id=user_id) for user_id in user_ids]
    if not users:
        return discord.AllowedMentions.none()
    return discord.AllowedMentions(everyone=False, roles=False, users=users)


class DiscordPlatform(Platform):
    """discord.py implementation of the platform contract."""

    def __init__(self, bot: discord.Client, orphan_grace_seconds: int = ORPHAN_CHANNEL_GRACE_SECONDS):
        self.bot = bot
        self.orphan_grace = timedelta(seconds=orphan_grace_seconds)
        self._empty_since: Dict[int, datetime] = {}

    # ================================
    #       LOOKUP HELPERS
    # ================================

    def _guild(self, guild_id: int) -> discord.Guild:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise ExternalResourceError(f"Guild {guild_id} is not available")
        return guild

    def _voice_channel(self, guild_id: int, channel_id: int) -> Optional[discord.VoiceChannel]:
        channel = self._guild(guild_id).get_channel(channel_id)
        return channel if isinstance(channel, discord.VoiceChannel) else None

    def _messageable(self, guild_id: int, channel_id: int):
        channel = self._guild(guild_id).get_channel(channel_id) or self.bot.get_channel(channel_id)
        if channel is None or not hasattr(channel, 'send'):
            raise ExternalResourceError(f"Channel {channel_id} is not available")
        return channel

    async def _member(self, guild: discord.Guild, user_id: int) -> Optional[discord.Member]:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except (discord.NotFound, discord.HTTPException):
            return None

    # ================================
    #       CHANNELS
    # ================================

    async def get_or_create_category(self, guild_id: int, name: str) -> int:
        guild = self._guild(guild_id)
        category = discord.utils.get(guild.categories, name=name)
        if category:
            return category.id

        with _discord_call(f"Creating category {name}"):
            category = await guild.create_category(
                name=name,
                overwrites={
                    guild.default_role: discord.PermissionOverwrite(view_channel=True, connect=False)
                },
                reason="LFG game category"
            )
        logger.info(f"✅ Created category: {name}")
        return category.id

    async def create_voice_channel(self, guild_id: int, name: str, category_id: Optional[int],
                                   owner_id: int, user_limit: int) -> int:
        guild = self._guild(guild_id)
        category = guild.get_channel(category_id) if category_id else None

        overwrites = {
            guild.default_role: discord.PermissionOverwrite(connect=False, view_channel=False),
            guild.me: discord.PermissionOverwrite(
                connect=True, view_channel=True, move_members=True, manage_channels=True
            ),
        }
        owner = await self._member(guild, owner_id)
        if owner is not None:
            overwrites[owner] = discord.PermissionOverwrite(connect=True, view_channel=True, speak=True)

        with _discord_call(f"Creating voice channel {name}"):
            channel = await guild.create_voice_channel(
                name,
                category=category if isinstance(category, discord.CategoryChannel) else None,
                overwrites=overwrites,
                user_limit=user_limit,
                reason="LFG session voice channel"
            )
        return channel.id

    async def delete_channel(self, guild_id: int, channel_id: int):
        channel = self._guild(guild_id).get_channel(channel_id)
        if channel is None:
            return

        try:
            await channel.delete(reason="LFG session closed")
        except discord.NotFound:
            return
        except discord.HTTPException as e:
            raise ExternalResourceError(f"Deleting channel {channel_id} failed: {e}") from e
        finally:
            self._empty_since.pop(channel_id, None)

    # ================================
    #       PERMISSIONS / VOICE
    # ================================

    async def set_user_permission(self, guild_id: int, channel_id: int, user_id: int):
        channel = self._voice_channel(guild_id, channel_id)
        if channel is None:
            raise ExternalResourceError(f"Voice channel {channel_id} no longer exists")

        member = await self._member(channel.guild, user_id)
        if member is None:
            raise ExternalResourceError(f"Member {user_id} not found")

        with _discord_call(f"Granting voice access to {user_id}"):
            await channel.set_permissions(member, connect=True, view_channel=True, speak=True,
                                          reason="Joined LFG session")

    async def remove_user_permission(self, guild_id: int, channel_id: int, user_id: int):
        channel = self._voice_channel(guild_id, channel_id)
        if channel is None:
            return

        member = channel.guild.get_member(user_id)
        with _discord_call(f"Revoking voice access from {user_id}"):
            if member is not None:
                await channel.set_permissions(member, overwrite=None, reason="Left LFG session")
                return

            overwrites = channel.overwrites
            remaining = {target: overwrite for target, overwrite in overwrites.items() if target.id != user_id}
            if len(remaining) != len(overwrites):
                await channel.edit(overwrites=remaining, reason="Left LFG session")

    async def disconnect_user(self, guild_id: int, channel_id: int, user_id: int) -> bool:
        guild = self._guild(guild_id)
        member = guild.get_member(user_id)
        if member is None or member.voice is None or member.voice.channel is None:
            return False
        if member.voice.channel.id != channel_id:
            return False

        with _discord_call(f"Disconnecting {user_id}"):
            await member.move_to(None, reason="Not part of this LFG session")
        return True

    async def voice_members(self, guild_id: int, channel_id: int) -> List[int]:
        channel = self._voice_channel(guild_id, channel_id)
        if channel is None:
            return []
        return [member.id for member in channel.members]

    async def permitted_users(self, guild_id: int, channel_id: int) -> List[int]:
        channel = self._voice_channel(guild_id, channel_id)
        if channel is None:
            return []
        me = channel.guild.me
        return [
            target.id for target in channel.overwrites
            if not isinstance(target, discord.Role) and (me is None or target.id != me.id)
        ]

    # ================================
    #       MESSAGES
    # ================================

    async def post_status(self, guild_id: int, channel_id: int, payload: StatusPayload) -> int:
        channel = self._messageable(guild_id, channel_id)
        kwargs = {'embed': payload.embed, 'allowed_mentions': _allowed_mentions(payload.mentions)}
        view = build_view(payload)
        if view is not None:
            kwargs['view'] = view
        if payload.content:
            kwargs['content'] = payload.content

        with _discord_call(f"Posting status in {channel_id}"):
            message = await channel.send(**kwargs)
        return message.id

    async def edit_status(self, guild_id: int, channel_id: int, message_id: int, payload: StatusPayload):
        channel = self._messageable(guild_id, channel_id)
        with _discord_call(f"Editing status message {message_id}"):
            await channel.get_partial_message(message_id).edit(
                content=payload.content,
                embed=payload.embed,
                view=build_view(payload)
            )

    async def send_message(self, guild_id: int, channel_id: int, content: str, mentions: Iterable[int] = ()):
        channel = self._messageable(guild_id, channel_id)
        with _discord_call(f"Sending message in {channel_id}"):
            await channel.send(content=content, allowed_mentions=_allowed_mentions(mentions))

    # ================================
    #       ORPHAN CLEANUP
    # ================================

    def _past_grace(self, object_id: int, now: datetime) -> bool:
        first_empty = self._empty_since.setdefault(object_id, now)
        return now - first_empty >= self.orphan_grace

    async def cleanup_orphan_channels(self, live_channel_ids: Iterable[int], now: datetime) -> int:
        live = set(live_channel_ids)
        deleted = 0

        for guild in self.bot.guilds:
            for category in guild.categories:
                if not category.name.startswith(CATEGORY_PREFIX):
                    continue

                if category.channels:
                    self._empty_since.pop(category.id, None)
                else:
                    # A session may be creating its voice channel in here right now
                    if not self._past_grace(category.id, now):
                        continue
                    try:
                        await category.delete(reason="Empty LFG category")
                        deleted += 1
                        logger.info(f"🧹 Deleted empty category: {category.name}")
                    except discord.HTTPException as e:
                        logger.error(f"❌ Error deleting category {category.name}: {e}")
                    finally:
                        self._empty_since.pop(category.id, None)
                    continue

                for channel in category.voice_channels:
                    if channel.id in live or channel.members:
                        self._empty_since.pop(channel.id, None)
                        continue

                    if not self._past_grace(channel.id, now):
                        continue

                    try:
                        await channel.delete(reason="Empty LFG voice channel")
                        deleted += 1
                        logger.info(f"🧹 Deleted empty voice channel: {channel.name} (no active session)")
                    except discord.HTTPException as e:
                        logger.error(f"❌ Error deleting voice channel {channel.name}: {e}")
                    finally:
                        self._empty_since.pop(channel.id, None)

        return deleted
