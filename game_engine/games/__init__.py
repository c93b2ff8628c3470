"""
CASINOCORE — Game Registry

Every playable game is built from the shared core (ledger, round state
machine, random source, event bus) and shares one constructor shape:
`(ledger, config=None, rng=None, bus=None)`.

Usage:
    from game_engine.games import get_game
    game = get_game("mines", ledger, rng=SeededRandom(7)).unwrap()
    game.start(10)
    game.reveal(4)
"""

from typing import Optional

from game_engine.core.errors import ConfigurationError, Result
from game_engine.core.events import EventBus
from game_engine.core.ledger import PayoutLedger
from game_engine.core.rng import RandomSource
from game_engine.games.blackjack import BlackjackGame
from game_engine.games.crash import CrashGame
from game_engine.games.mines import MinesGame
from game_engine.plinko.session import PlinkoSession

GAMES = {
    "plinko": PlinkoSession,
    "mines": MinesGame,
    "blackjack": BlackjackGame,
    "crash": CrashGame,
}

GAME_TYPES = list(GAMES.keys())


def get_game(game_type: str, ledger: PayoutLedger, rng: Optional[RandomSource] = None,
             bus: Optional[EventBus] = None, config=None) -> Result:
    """Build a game table bound to `ledger`; Result(game) or a ConfigurationError."""
    cls = GAMES.get(str(game_type).lower())
    if cls is None:
        return Result.failure(ConfigurationError(
            f"Unknown game type: {game_type}. Available: {GAME_TYPES}", game_type=game_type))
    try:
        return Result.success(cls(ledger, config=config, rng=rng, bus=bus))
    except ConfigurationError as e:
        return Result.failure(e)
