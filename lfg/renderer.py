"""
LFG Renderer
============
Builds the status message shown for a session after each event.
Pure functions: no Discord API calls, only discord.Embed construction.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import discord

from .config import (
    ACTIVE_MAX_HOURS, COLORS, CONFIRMATION_TIMEOUT_SECONDS, NO_JOINER_TIMEOUT_MINUTES,
)
from .games import SUPPORTED_GAMES
from .models import ButtonKind, Session, SessionEvent, utcnow


# label, emoji, style
BUTTONS = {
    ButtonKind.JOIN: ('Join LFG', '✅', discord.ButtonStyle.primary),
    ButtonKind.LEAVE: ('Leave LFG', '❌', discord.ButtonStyle.danger),
    ButtonKind.CONFIRM: ('Confirm', '✅', discord.ButtonStyle.success),
    ButtonKind.DECLINE: ('Decline', '❌', discord.ButtonStyle.danger),
}


@dataclass
class StatusPayload:
    embed: discord.Embed
    session_id: Optional[str] = None
    buttons: List[ButtonKind] = field(default_factory=list)
    content: Optional[str] = None
    mentions: List[int] = field(default_factory=list)


# ================================
#       HELPER FUNCTIONS
# ================================

def format_players(user_ids: List[int], creator_id: int) -> str:
    """One line per player, crown for the creator."""
    if not user_ids:
        return "Nobody yet"
    return '\n'.join(
        f"{'👑' if user_id == creator_id else '⚔️'} <@{user_id}>"
        for user_id in user_ids
    )


def _voice_field(session: Session) -> str:
    if not session.voice_channel_id:
        return "*Voice channel unavailable*"
    return (f"<#{session.voice_channel_id}>\n"
            "*Private voice channel created for this team.\n"
            "Access granted when you join!*")


def _listing_embed(session: Session, description: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"🎮 LFG: {session.game_name}",
        description=description,
        color=COLORS['listing'],
        timestamp=utcnow()
    )
    embed.add_field(name="🎮 Game", value=session.game_name, inline=True)
    embed.add_field(name="🎯 Mode", value=session.mode, inline=True)
    embed.add_field(name="👥 Players", value=f"{len(session.roster)}/{session.capacity}", inline=True)
    embed.add_field(name="👤 Current Players", value=format_players(session.roster, session.creator_id), inline=False)
    embed.add_field(name="🔊 Voice Channel", value=_voice_field(session), inline=False)

    if session.note:
        embed.add_field(name="📝 Additional Info", value=session.note, inline=False)

    return embed


def _closed_embed(title: str, description: str, color: int) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=color, timestamp=utcnow())


# ================================
#       STATUS MESSAGES
# ================================

def render_status(session: Session, event: SessionEvent) -> StatusPayload:
    """Status message for `session` right after `event`."""
    if event in (SessionEvent.CONFIRMING, SessionEvent.CONFIRMED):
        return _render_confirming(session)

    if event is SessionEvent.FINALIZED:
        return _render_finalized(session)

    if event is SessionEvent.CANCELLED:
        embed = _closed_embed("❌ LFG Session Cancelled",
                              "The session creator cancelled this LFG.", COLORS['cancelled'])
        return StatusPayload(embed=embed, session_id=session.id)

    if event is SessionEvent.ENDED:
        embed = _closed_embed("🔚 LFG Session Ended",
                              f"<@{session.creator_id}> ended their LFG session.", COLORS['ended'])
        return StatusPayload(embed=embed, session_id=session.id)

    if event is SessionEvent.EMPTY:
        embed = _closed_embed("💭 LFG Session Empty",
                              "All players have left this session.", COLORS['ended'])
        return StatusPayload(embed=embed, session_id=session.id)

    if event is SessionEvent.CLOSED:
        embed = _closed_embed("🏁 LFG Session Closed",
                              f"The **{session.game_name}** team channel was closed.", COLORS['ended'])
        return StatusPayload(embed=embed, session_id=session.id)

    if event is SessionEvent.EXPIRED:
        return _render_expired(session)

    # CREATED, JOINED, REOPENED, TIMED_OUT: listing open for joiners
    description = f"Looking for {session.spots_left} more player(s)"
    if event is SessionEvent.TIMED_OUT:
        description = ("⏰ Not everyone confirmed in time. "
                       "Players who didn't confirm were removed.\n" + description)
    elif event is SessionEvent.REOPENED:
        description = "A player left the team.\n" + description

    embed = _listing_embed(session, description)
    embed.set_footer(text=f"LFG #{session.short_id} • Looking for {session.spots_left} more player(s)")
    return StatusPayload(embed=embed, session_id=session.id, buttons=[ButtonKind.JOIN, ButtonKind.LEAVE])


def _render_confirming(session: Session) -> StatusPayload:
    embed = _listing_embed(session, "Team full! Waiting for confirmations...")
    confirmed = [user_id for user_id in session.roster if user_id in session.confirmed]
    embed.add_field(
        name=f"✅ Confirmed ({len(confirmed)}/{len(session.roster)})",
        value=format_players(confirmed, session.creator_id) if confirmed else "Nobody yet",
        inline=False
    )
    minutes = max(1, CONFIRMATION_TIMEOUT_SECONDS // 60)
    embed.set_footer(text=f"LFG #{session.short_id} • Confirm within {minutes} minute(s)")
    return StatusPayload(embed=embed, session_id=session.id, buttons=[ButtonKind.CONFIRM, ButtonKind.DECLINE])


def _render_finalized(session: Session) -> StatusPayload:
    embed = discord.Embed(
        title="🎉 Match Found!",
        description=f"Your **{session.game_name} {session.mode}** team is ready!",
        color=COLORS['match'],
        timestamp=utcnow()
    )
    embed.add_field(name="🎮 Game", value=session.game_name, inline=True)
    embed.add_field(name="🎯 Mode", value=session.mode, inline=True)
    embed.add_field(name="👥 Team Size", value=f"{len(session.roster)} players", inline=True)
    embed.add_field(name="👤 Your Team", value=format_players(session.roster, session.creator_id), inline=False)
    embed.add_field(
        name="🔊 Voice Channel",
        value=(f"<#{session.voice_channel_id}>\n*Click to join voice channel*\n"
               "*Private channel for your team only*") if session.voice_channel_id else "*Voice channel unavailable*",
        inline=False
    )
    embed.add_field(
        name="🚀 Next Steps",
        value="• Join the voice channel above\n• Coordinate with your teammates\n• Have fun gaming together!",
        inline=False
    )
    embed.set_footer(text=f"Voice channel auto-deletes when empty or after {ACTIVE_MAX_HOURS} hours")
    return StatusPayload(embed=embed, session_id=session.id)


def _render_expired(session: Session) -> StatusPayload:
    embed = _closed_embed(
        "LFG queue ended",
        f"No player was found in time ({NO_JOINER_TIMEOUT_MINUTES} minutes)",
        COLORS['expired']
    )
    embed.add_field(
        name="👤 Session Creator",
        value=(f"<@{session.creator_id}>, your LFG session expired because no players joined "
               f"within {NO_JOINER_TIMEOUT_MINUTES} minutes.\n\n"
               "You can create a new LFG session anytime using `/lfg`"),
        inline=False
    )
    return StatusPayload(embed=embed, session_id=session.id)


def render_expired_control() -> StatusPayload:
    """Replacement for a button whose session no longer exists."""
    embed = _closed_embed("❌ LFG Session Expired", "This LFG session is no longer active.", COLORS['ended'])
    return StatusPayload(embed=embed)


def confirmation_ping(session: Session) -> Tuple[str, List[int]]:
    """Message pinging every rostered player to confirm."""
    pings = ' '.join(f"<@{user_id}>" for user_id in session.roster)
    return f"{pings} 🎯 **Confirm matchmaking!**", list(session.roster)


# ================================
#       COMMAND EMBEDS
# ================================

def channel_set_embed(channel_mention: str) -> discord.Embed:
    return discord.Embed(
        title="✅ LFG Channel Set",
        description=f"LFG commands can now only be used in {channel_mention}",
        color=COLORS['success'],
        timestamp=utcnow()
    )


def help_embed() -> discord.Embed:
    embed = discord.Embed(
        title="🎮 LFG Bot - Help & Features",
        description="Find teammates, create parties, and organize your gaming sessions effortlessly!",
        color=COLORS['listing']
    )

    embed.add_field(
        name="🎯 LFG Commands",
        value="`/lfg <game> <gamemode> <players> [info]`\n"
              "• Create a Looking for Group session\n"
              "• Automatically creates a private voice channel\n"
              "• Team confirmation system with buttons\n"
              "`/endlfg` - End your active LFG session",
        inline=False
    )

    embed.add_field(
        name="🛠️ Staff Commands",
        value="`/setchannel <channel>` - Set the LFG-only channel",
        inline=False
    )

    embed.add_field(
        name="🎮 Supported Games",
        value=' • '.join(game.name for game in SUPPORTED_GAMES.values()),
        inline=False
    )

    embed.add_field(
        name="📋 How to Use LFG",
        value="1️⃣ Use `/lfg` with your game, mode, and player count\n"
              "2️⃣ Other players click **Join LFG**\n"
              "3️⃣ When the team is full, everyone gets pinged to confirm\n"
              f"4️⃣ Players who don't confirm within {max(1, CONFIRMATION_TIMEOUT_SECONDS // 60)} minute(s) are removed\n"
              "5️⃣ Voice channel auto-deletes when empty",
        inline=False
    )

    embed.set_footer(text="Need help? Contact server staff")
    return embed
