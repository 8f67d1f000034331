"""
LFG Commands Module
===================
Discord surface of the LFG system: slash commands, button presses, voice and
member listeners, and the periodic expiry sweep.

Everything here is thin; the session rules live in `engine.LFGEngine`.
"""

import logging
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from . import games
from .config import INFO_MAX_LENGTH, MAX_PLAYERS, MIN_PLAYERS, SWEEP_INTERVAL_MINUTES
from .engine import LFGEngine
from .errors import LFGError, NotFoundError
from .models import ButtonPressed, CreateSessionRequest, utcnow
from .permissions import has_lfg_staff_permissions
from .platform import Platform
from .renderer import channel_set_embed, help_embed, render_expired_control

logger = logging.getLogger(__name__)

GAME_CHOICES = [app_commands.Choice(name=name, value=key) for name, key in games.game_choices()]

GENERIC_ERROR = "❌ Something went wrong. Please try again."


async def _reply(interaction: discord.Interaction, message: str):
    """Ephemeral answer whether or not the interaction was already deferred."""
    if interaction.response.is_done():
        await interaction.followup.send(message, ephemeral=True)
    else:
        await interaction.response.send_message(message, ephemeral=True)


# ================================
#       SLASH COMMANDS
# ================================

class LFGCommands(commands.Cog):
    """LFG system commands."""

    def __init__(self, bot: commands.Bot, engine: LFGEngine, platform: Platform):
        self.bot = bot
        self.engine = engine
        self.platform = platform

        # Start sweep task
        self.sweep_task.start()

    def cog_unload(self):
        self.sweep_task.cancel()

    @tasks.loop(minutes=SWEEP_INTERVAL_MINUTES)
    async def sweep_task(self):
        """Expire stale sessions, reconcile voice access and remove orphan channels."""
        try:
            await self.engine.run_expiry_sweep()
        except Exception:
            logger.exception("❌ Error in LFG expiry sweep")

        try:
            deleted = await self.platform.cleanup_orphan_channels(self.engine.store.voice_channel_ids(), utcnow())
            if deleted:
                logger.info(f"🧹 Cleaned up {deleted} orphan LFG channel(s)")
        except Exception:
            logger.exception("❌ Error cleaning up orphan LFG channels")

    @sweep_task.before_loop
    async def before_sweep(self):
        await self.bot.wait_until_ready()

    @app_commands.command(name="lfg", description="Create a Looking for Group session")
    @app_commands.describe(
        game="Game to play",
        gamemode="Game mode",
        players=f"Team size including you ({MIN_PLAYERS}-{MAX_PLAYERS})",
        info="Additional info for other players"
    )
    @app_commands.choices(game=GAME_CHOICES)
    async def lfg(
        self,
        interaction: discord.Interaction,
        game: app_commands.Choice[str],
        gamemode: str,
        players: app_commands.Range[int, MIN_PLAYERS, MAX_PLAYERS],
        info: Optional[app_commands.Range[str, 1, INFO_MAX_LENGTH]] = None
    ):
        """Create an LFG session with a private voice channel."""
        if not interaction.guild:
            await interaction.response.send_message("❌ LFG only works inside a server!", ephemeral=True)
            return

        request = CreateSessionRequest(
            game=game.value,
            mode=gamemode,
            capacity=players,
            user_id=interaction.user.id,
            guild_id=interaction.guild.id,
            origin_channel_id=interaction.channel_id,
            note=info,
            creator_name=interaction.user.display_name
        )

        await interaction.response.defer(ephemeral=True, thinking=True)

        try:
            session = await self.engine.create_session(request)
        except LFGError as e:
            await _reply(interaction, e.user_message())
            return
        except Exception:
            logger.exception(f"❌ Error creating LFG session for {interaction.user.id}")
            await _reply(interaction, GENERIC_ERROR)
            return

        await _reply(
            interaction,
            f"✅ LFG session created! Your voice channel: <#{session.voice_channel_id}>"
        )

    @lfg.autocomplete('gamemode')
    async def gamemode_autocomplete(
        self,
        interaction: discord.Interaction,
        current: str
    ) -> List[app_commands.Choice[str]]:
        game_key = getattr(interaction.namespace, 'game', None)
        return [
            app_commands.Choice(name=mode, value=mode)
            for mode in games.mode_autocomplete(game_key, current)
        ]

    @app_commands.command(name="endlfg", description="End your active LFG session")
    async def endlfg(self, interaction: discord.Interaction):
        """End the caller's session and delete its voice channel."""
        await interaction.response.defer(ephemeral=True, thinking=True)

        try:
            result = await self.engine.terminate(interaction.user.id)
        except LFGError as e:
            await _reply(interaction, e.user_message())
            return
        except Exception:
            logger.exception(f"❌ Error ending LFG session of {interaction.user.id}")
            await _reply(interaction, GENERIC_ERROR)
            return

        await _reply(interaction, result.message)

    @app_commands.command(name="setchannel", description="Set the channel where LFG commands can be used (Staff only)")
    @app_commands.describe(channel="Channel for LFG commands")
    async def setchannel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        """Restrict /lfg to one channel of this server."""
        if not has_lfg_staff_permissions(interaction):
            await interaction.response.send_message(
                "❌ You need Manage Channels permission to use this command!",
                ephemeral=True
            )
            return

        saved = await self.engine.settings.save_lfg_channel(interaction.guild.id, channel.id)
        if not saved:
            await interaction.response.send_message("❌ Failed to save the LFG channel.", ephemeral=True)
            return

        logger.info(f"LFG channel of guild {interaction.guild.id} set to {channel.id} by {interaction.user.id}")
        await interaction.response.send_message(embed=channel_set_embed(channel.mention), ephemeral=True)

    @app_commands.command(name="lfg_help", description="Show how the LFG system works")
    async def lfg_help(self, interaction: discord.Interaction):
        await interaction.response.send_message(embed=help_embed(), ephemeral=True)

    # ================================
    #       BUTTONS
    # ================================

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route LFG button presses (custom id 'lfg:<kind>:<session id>') to the engine."""
        if interaction.type != discord.InteractionType.component or not interaction.data:
            return

        event = ButtonPressed.from_custom_id(interaction.data.get('custom_id', ''), interaction.user.id)
        if event is None:
            return

        await interaction.response.defer(ephemeral=True)

        try:
            result = await self.engine.handle_button(event)
        except NotFoundError as e:
            await self._expire_control(interaction)
            await _reply(interaction, e.user_message())
            return
        except LFGError as e:
            await _reply(interaction, e.user_message())
            return
        except Exception:
            logger.exception(f"❌ Error handling {event.kind.value} for session {event.session_id}")
            await _reply(interaction, GENERIC_ERROR)
            return

        await _reply(interaction, result.message)

    async def _expire_control(self, interaction: discord.Interaction):
        """Replace the buttons of a message whose session no longer exists."""
        if interaction.message is None:
            return

        try:
            await interaction.message.edit(content=None, embed=render_expired_control().embed, view=None)
        except discord.HTTPException as e:
            logger.error(f"❌ Error replacing expired LFG message {interaction.message.id}: {e}")

    # ================================
    #       LISTENERS
    # ================================

    @commands.Cog.listener()
    async def on_voice_state_update(self, member: discord.Member, before: discord.VoiceState,
                                    after: discord.VoiceState):
        if member.bot:
            return

        try:
            await self.engine.voice_state_changed(
                member.id,
                before.channel.id if before.channel else None,
                after.channel.id if after.channel else None
            )
        except Exception:
            logger.exception(f"❌ Error enforcing LFG voice access for {member.id}")

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member):
        try:
            await self.engine.member_removed(member.guild.id, member.id)
        except Exception:
            logger.exception(f"❌ Error handling removal of {member.id} from LFG sessions")


async def setup(bot: commands.Bot, engine: LFGEngine, platform: Platform):
    """Setup function for loading the cog."""
    await bot.add_cog(LFGCommands(bot, engine, platform))
