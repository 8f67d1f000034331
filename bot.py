"""
LFG BOT - Looking For Group with private voice channels
========================================================
Discord bot for forming ad-hoc gaming teams.

Features:
- /lfg sessions with a private voice channel per team
- Team confirmation with buttons once the team is full
- Auto-expiry of unconfirmed and abandoned sessions
- Health check endpoint for the hosting platform
"""

import asyncio
import discord
from discord import app_commands
from discord.ext import commands
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Setup logging
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from lfg.config import DATABASE_URL, DISCORD_TOKEN, HEALTH_PORT, validate_config

# Intents
intents = discord.Intents.default()
intents.guilds = True
intents.members = True
intents.voice_states = True


class LFGBot(commands.Bot):
    """Bot owning the LFG engine and the health server."""

    def __init__(self):
        super().__init__(
            command_prefix="!",
            intents=intents,
            help_command=None
        )
        self.engine = None
        self.health_runner = None

    async def setup_hook(self):
        """Initialize bot modules."""
        logger.info("🔧 Starting setup_hook...")

        for problem in validate_config():
            logger.warning(f"⚠️ Config: {problem}")

        from lfg.engine import LFGEngine
        from lfg.lfg_commands import setup as setup_lfg
        from lfg.lfg_database import create_settings_store
        from lfg.platform import DiscordPlatform
        from lfg.scheduler import AsyncioScheduler
        from lfg.store import SessionStore

        try:
            # Initialize LFG settings
            settings = await asyncio.to_thread(create_settings_store, DATABASE_URL)
            logger.info("✅ LFG settings initialized")

        except Exception as e:
            logger.error(f"❌ Failed to initialize LFG settings: {e}")
            raise

        store = SessionStore()
        platform = DiscordPlatform(self)
        self.engine = LFGEngine(store, settings, platform, AsyncioScheduler())

        try:
            # Load LFG commands
            await setup_lfg(self, self.engine, platform)
            logger.info("✅ LFG commands loaded")

        except Exception as e:
            logger.error(f"❌ Failed to load LFG commands: {e}")
            raise

        try:
            from lfg.health import start_health_server
            self.health_runner = await start_health_server(lambda: len(store), HEALTH_PORT)

        except OSError as e:
            logger.error(f"❌ Failed to start health check server: {e}")

        try:
            synced = await self.tree.sync()
            logger.info(f"✅ Synced {len(synced)} commands")
        except Exception as e:
            logger.error(f"❌ Failed to sync commands: {e}")

        logger.info("✅ Bot setup complete!")

    async def close(self):
        if self.engine is not None:
            self.engine.shutdown()
            self.engine.scheduler.shutdown()
        if self.health_runner is not None:
            await self.health_runner.cleanup()
        await super().close()


bot = LFGBot()


@bot.event
async def on_ready():
    """Called when bot connects to Discord."""
    logger.info(f"✅ Bot logged in as {bot.user.name} (ID: {bot.user.id})")
    logger.info(f"✅ Connected to {len(bot.guilds)} servers")


@bot.event
async def on_error(event, *args, **kwargs):
    logger.exception(f"❌ Unhandled error in {event}")


@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
    """Handle slash command errors."""
    logger.error(f"Command error in /{interaction.command.name if interaction.command else '?'}: {error}")

    message = "❌ Something went wrong. Please try again."
    if interaction.response.is_done():
        await interaction.followup.send(message, ephemeral=True)
    else:
        await interaction.response.send_message(message, ephemeral=True)


# Basic commands
@bot.tree.command(name="ping", description="Check bot latency")
async def ping(interaction: discord.Interaction):
    """Check bot latency."""
    latency = round(bot.latency * 1000)
    await interaction.response.send_message(f"🏓 Pong! Latency: {latency}ms")


# Run bot
if __name__ == "__main__":
    if not DISCORD_TOKEN:
        logger.error("❌ DISCORD_TOKEN not found in environment variables!")
        exit(1)

    logger.info("🚀 Starting LFG Bot...")

    try:
        bot.run(DISCORD_TOKEN, log_handler=None)
    except Exception as e:
        logger.error(f"❌ Failed to start bot: {e}")
        exit(1)
