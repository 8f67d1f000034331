"""
LFG (Looking For Group) System
===============================
Discord bot system for forming ad-hoc teams with private voice channels.

Main modules:
- engine: session lifecycle (join -> fill -> confirm -> finalize) and expiry sweep
- store: in-memory session registry
- voice_access: voice channel permission handling
- lfg_commands: Discord slash commands, buttons and listeners
"""

__version__ = "2.0.0"
__all__ = [
    'config', 'games', 'errors', 'models', 'store', 'lfg_database',
    'scheduler', 'platform', 'voice_access', 'renderer', 'engine',
    'permissions', 'health', 'lfg_commands',
]
