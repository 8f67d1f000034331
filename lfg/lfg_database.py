"""
LFG Database Module
===================
Guild settings for the LFG system (which channel accepts /lfg).

Settings always live in memory. When DATABASE_URL is configured they are also
written to PostgreSQL and loaded back on startup. LFG sessions are never
stored here.
"""

import asyncio
import logging
from typing import Dict, Optional

import psycopg2

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS lfg_guild_settings (
        guild_id BIGINT PRIMARY KEY,
        lfg_channel_id BIGINT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""


class GuildSettingsStore:
    """Per-guild settings kept in memory."""

    # Whether writes go to blocking storage and should run off the event loop
    persistent = False

    def __init__(self):
        self._lfg_channels: Dict[int, int] = {}

    def load(self) -> int:
        """Load persisted settings. Returns the number of guilds loaded."""
        return 0

    def get_lfg_channel(self, guild_id: int) -> Optional[int]:
        return self._lfg_channels.get(guild_id)

    def _write_lfg_channel(self, guild_id: int, channel_id: int) -> bool:
        return True

    def _write_clear(self, guild_id: int) -> bool:
        return True

    def _cache_lfg_channel(self, guild_id: int, channel_id: int) -> bool:
        self._lfg_channels[guild_id] = channel_id
        logger.info(f"✅ LFG channel for guild {guild_id} set to {channel_id}")
        return True

    def set_lfg_channel(self, guild_id: int, channel_id: int) -> bool:
        if not self._write_lfg_channel(guild_id, channel_id):
            return False
        return self._cache_lfg_channel(guild_id, channel_id)

    async def save_lfg_channel(self, guild_id: int, channel_id: int) -> bool:
        """Like set_lfg_channel, but the storage write runs in a worker thread.

        The in-memory map is only touched from the event loop.
        """
        if self.persistent:
            written = await asyncio.to_thread(self._write_lfg_channel, guild_id, channel_id)
        else:
            written = self._write_lfg_channel(guild_id, channel_id)

        if not written:
            return False
        return self._cache_lfg_channel(guild_id, channel_id)

    def clear_lfg_channel(self, guild_id: int) -> bool:
        if not self._write_clear(guild_id):
            return False
        return self._lfg_channels.pop(guild_id, None) is not None


class PostgresGuildSettingsStore(GuildSettingsStore):
    """Guild settings with write-through to PostgreSQL."""

    persistent = True

    def __init__(self, database_url: str):
        super().__init__()
        self.database_url = database_url

    def get_db_connection(self):
        """Create and return a database connection."""
        try:
            return psycopg2.connect(self.database_url, connect_timeout=10)
        except Exception as e:
            logger.error(f"❌ Database connection failed: {e}")
            raise

    def initialize(self):
        """Create the settings table if it doesn't exist."""
        conn = self.get_db_connection()
        cur = conn.cursor()

        try:
            cur.execute(SCHEMA)
            conn.commit()
            logger.info("✅ LFG settings table initialized")

        except Exception as e:
            logger.error(f"❌ Failed to initialize LFG settings table: {e}")
            conn.rollback()
            raise
        finally:
            cur.close()
            conn.close()

    def load(self) -> int:
        conn = self.get_db_connection()
        cur = conn.cursor()

        try:
            cur.execute("""
                SELECT guild_id, lfg_channel_id FROM lfg_guild_settings
                WHERE lfg_channel_id IS NOT NULL
            """)
            rows = cur.fetchall()
            self._lfg_channels = {guild_id: channel_id for guild_id, channel_id in rows}
            logger.info(f"✅ Loaded LFG settings for {len(rows)} guild(s)")
            return len(rows)

        except Exception as e:
            logger.error(f"❌ Failed to load LFG settings: {e}")
            return 0
        finally:
            cur.close()
            conn.close()

    def _write_lfg_channel(self, guild_id: int, channel_id: int) -> bool:
        conn = self.get_db_connection()
        cur = conn.cursor()

        try:
            cur.execute("""
                INSERT INTO lfg_guild_settings (guild_id, lfg_channel_id)
                VALUES (%s, %s)
                ON CONFLICT (guild_id)
                DO UPDATE SET
                    lfg_channel_id = EXCLUDED.lfg_channel_id,
                    updated_at = CURRENT_TIMESTAMP
            """, (guild_id, channel_id))
            conn.commit()

        except Exception as e:
            logger.error(f"❌ Failed to save LFG channel for guild {guild_id}: {e}")
            conn.rollback()
            return False
        finally:
            cur.close()
            conn.close()

        return True

    def _write_clear(self, guild_id: int) -> bool:
        conn = self.get_db_connection()
        cur = conn.cursor()

        try:
            cur.execute("""
                UPDATE lfg_guild_settings
                SET lfg_channel_id = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE guild_id = %s
            """, (guild_id,))
            conn.commit()

        except Exception as e:
            logger.error(f"❌ Failed to clear LFG channel for guild {guild_id}: {e}")
            conn.rollback()
            return False
        finally:
            cur.close()
            conn.close()

        return True


def create_settings_store(database_url: Optional[str] = None) -> GuildSettingsStore:
    """PostgreSQL-backed store when a URL is given, memory-only otherwise."""
    if not database_url:
        logger.info("ℹ️ DATABASE_URL not set, LFG settings are kept in memory")
        return GuildSettingsStore()

    store = PostgresGuildSettingsStore(database_url)
    store.initialize()
    store.load()
    return store
