"""
LFG Configuration
=================
Central configuration file for the LFG system.
Edit these values to customize the LFG system for your server.
Timings can also be overridden through environment variables.
"""

import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        return default


# ================================
#    DISCORD CONFIGURATION
# ================================

# Token used by bot.py
DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')

# Optional PostgreSQL URL for guild settings (None = settings kept in memory)
DATABASE_URL = os.getenv('DATABASE_URL')

# Prefix of the per-game categories the bot creates (e.g. "🎮 Valorant")
CATEGORY_PREFIX = '🎮'


# ================================
#    TEAM CONFIGURATION
# ================================

# Allowed team sizes (creator included)
MIN_PLAYERS = 2
MAX_PLAYERS = 10

# Maximum length of the optional "info" note
INFO_MAX_LENGTH = 200


# ================================
#    TIMEOUTS
# ================================

# How long a full team has to confirm
CONFIRMATION_TIMEOUT_SECONDS = _env_int('LFG_CONFIRMATION_TIMEOUT', 120)

# How long a session may wait with nobody but the creator
NO_JOINER_TIMEOUT_MINUTES = _env_int('LFG_NO_JOINER_TIMEOUT', 20)

# How often the expiry sweep runs
SWEEP_INTERVAL_MINUTES = _env_int('LFG_SWEEP_INTERVAL', 1)

# Started sessions are closed once their voice channel stayed empty this long
ACTIVE_IDLE_MINUTES = _env_int('LFG_ACTIVE_IDLE', 5)

# Started sessions are closed after this long no matter what
ACTIVE_MAX_HOURS = _env_int('LFG_ACTIVE_MAX_HOURS', 2)

# Empty LFG voice channels with no session are deleted after this long
ORPHAN_CHANNEL_GRACE_SECONDS = _env_int('LFG_ORPHAN_GRACE', 60)


# ================================
#    HEALTH CHECK
# ================================

HEALTH_PORT = _env_int('PORT', 3000)


# ================================
#    EMBED COLORS
# ================================

COLORS = {
    'listing': 0x5865f2,       # Blurple
    'match': 0x00ff00,         # Green
    'cancelled': 0xff6b6b,     # Red
    'expired': 0x2b2d31,       # Dark grey
    'ended': 0x95a5a6,         # Grey
    'success': 0x2ecc71,       # Green
    'error': 0xe74c3c,         # Red
}


# ================================
#    VALIDATION
# ================================

def validate_config():
    """Validate configuration settings."""
    errors = []

    if MIN_PLAYERS < 2:
        errors.append("❌ MIN_PLAYERS must be at least 2")

    if MAX_PLAYERS < MIN_PLAYERS:
        errors.append("❌ MAX_PLAYERS must not be lower than MIN_PLAYERS")

    if CONFIRMATION_TIMEOUT_SECONDS < 1:
        errors.append("❌ CONFIRMATION_TIMEOUT_SECONDS must be at least 1")

    if NO_JOINER_TIMEOUT_MINUTES < 1:
        errors.append("❌ NO_JOINER_TIMEOUT_MINUTES must be at least 1")

    if SWEEP_INTERVAL_MINUTES < 1:
        errors.append("❌ SWEEP_INTERVAL_MINUTES must be at least 1")

    if SWEEP_INTERVAL_MINUTES * 60 > CONFIRMATION_TIMEOUT_SECONDS * 5:
        errors.append("⚠️ SWEEP_INTERVAL_MINUTES is much longer than the confirmation timeout")

    return errors


if __name__ == "__main__":
    # Test configuration
    errors = validate_config()
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  {error}")
    else:
        print("✅ Configuration valid!")
