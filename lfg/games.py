"""
Game Catalog
============
Static list of supported games and the modes each one allows.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .errors import ValidationError


@dataclass(frozen=True)
class Game:
    key: str
    name: str
    modes: Tuple[str, ...]

    def has_mode(self, mode: str) -> bool:
        return mode in self.modes


# ================================
#       SUPPORTED GAMES
# ================================

SUPPORTED_GAMES: Dict[str, Game] = {
    game.key: game for game in (
        Game('valorant', 'Valorant', ('Competitive', 'Unrated', 'Spike Rush', 'Deathmatch')),
        Game('fortnite', 'Fortnite', ('Battle Royale', 'Zero Build', 'Creative', 'Save the World')),
        Game('brawlhalla', 'Brawlhalla', ('1v1', '2v2', 'Ranked', 'Experimental')),
        Game('thefinals', 'The Finals', ('Quick Cash', 'Bank It', 'Tournament')),
        Game('roblox', 'Roblox', ('Various', 'Roleplay', 'Simulator', 'Obby')),
        Game('minecraft', 'Minecraft', ('Survival', 'Creative', 'PvP', 'Minigames')),
        Game('marvelrivals', 'Marvel Rivals', ('Quick Match', 'Competitive', 'Custom')),
        Game('rocketleague', 'Rocket League', ('3v3', '2v2', '1v1', 'Hoops')),
        Game('apexlegends', 'Apex Legends', ('Trios', 'Duos', 'Ranked', 'Arenas')),
        Game('callofduty', 'Call of Duty', ('Multiplayer', 'Warzone', 'Search & Destroy')),
        Game('overwatch', 'Overwatch', ('Competitive', 'Quick Play', 'Arcade')),
        Game('amongus', 'Among Us', ('Classic', 'Hide and Seek', 'Custom Rules', 'Private Lobby')),
    )
}


def get_game(key: str) -> Optional[Game]:
    """Get a game by its key (e.g. 'valorant')."""
    if not key:
        return None
    return SUPPORTED_GAMES.get(key.lower())


def validate(game_key: str, mode: str) -> Game:
    """Return the game if `mode` is one of its modes, raise ValidationError otherwise."""
    game = get_game(game_key)
    if game is None:
        raise ValidationError("Unsupported game selected.")

    if not game.has_mode(mode):
        raise ValidationError(
            f"Invalid mode for {game.name}. Available modes: {', '.join(game.modes)}"
        )

    return game


def game_choices() -> List[Tuple[str, str]]:
    """(display name, key) pairs for the slash command choices."""
    return [(game.name, game.key) for game in SUPPORTED_GAMES.values()]


def mode_autocomplete(game_key: Optional[str], current: str) -> List[str]:
    """Modes of `game_key` containing `current` (case-insensitive), max 25."""
    game = get_game(game_key) if game_key else None
    if game is None:
        return []

    current = (current or '').lower()
    return [mode for mode in game.modes if current in mode.lower()][:25]
