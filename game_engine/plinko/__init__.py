"""
CASINOCORE — Plinko

Board geometry, pocket resolution, multiplier tables, the tick-driven
physics engine and the session that ties them to the payout ledger.
"""

from game_engine.plinko.board import Board, Peg
from game_engine.plinko.multipliers import (
    MultiplierTable, binomial_weights, expected_return, generate_multipliers,
)
from game_engine.plinko.physics import Ball, PhysicsEngine
from game_engine.plinko.pockets import PocketResolver, resolve_pocket
from game_engine.plinko.session import BallResult, PlinkoSession

__all__ = [
    "Board", "Peg",
    "MultiplierTable", "binomial_weights", "expected_return", "generate_multipliers",
    "Ball", "PhysicsEngine",
    "PocketResolver", "resolve_pocket",
    "BallResult", "PlinkoSession",
]
