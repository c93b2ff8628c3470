"""
CASINOCORE — Shared game core

Errors/results, random sources, the payout ledger, the round state machine,
the event bus and tick schedulers. Every game in `game_engine.plinko` and
`game_engine.games` is assembled from these pieces.
"""

from game_engine.core.errors import (
    ConfigurationError, ErrorKind, GameError, InsufficientFunds, InvalidAmount,
    InvalidStateTransition, Result, SimulationAnomaly,
)
from game_engine.core.events import EventBus, NullSoundSink, SoundCueRouter
from game_engine.core.ledger import InMemoryBalanceService, PayoutLedger
from game_engine.core.rng import (
    ProvablyFairRandom, RandomSource, SeededRandom, SystemRandomSource,
    make_random_source,
)
from game_engine.core.rounds import Outcome, OutcomeKind, Round, RoundState, RoundStateMachine
from game_engine.core.scheduler import AsyncioScheduler, ManualScheduler

__all__ = [
    "ConfigurationError", "ErrorKind", "GameError", "InsufficientFunds", "InvalidAmount",
    "InvalidStateTransition", "Result", "SimulationAnomaly",
    "EventBus", "NullSoundSink", "SoundCueRouter",
    "InMemoryBalanceService", "PayoutLedger",
    "ProvablyFairRandom", "RandomSource", "SeededRandom", "SystemRandomSource",
    "make_random_source",
    "Outcome", "OutcomeKind", "Round", "RoundState", "RoundStateMachine",
    "AsyncioScheduler", "ManualScheduler",
]
