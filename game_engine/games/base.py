"""
CASINOCORE — Base Round Game

Common plumbing for the single-round games: one RoundStateMachine per
table, the injected random source and event bus, and the guard used by
every in-round action.
"""

from __future__ import annotations

from typing import Optional

from game_engine.core.errors import InvalidStateTransition, Result
from game_engine.core.events import EventBus
from game_engine.core.ledger import PayoutLedger
from game_engine.core.rng import RandomSource, make_random_source
from game_engine.core.rounds import RoundState, RoundStateMachine


class RoundGame:
    """Base for games that play one round at a time."""

    game_type: str = "base"
    display_name: str = "Base Game"

    def __init__(self, ledger: PayoutLedger, rng: Optional[RandomSource] = None,
                 bus: Optional[EventBus] = None):
        self.ledger = ledger
        self.rng = rng or make_random_source()
        self.bus = bus or EventBus()
        self.machine = RoundStateMachine(ledger, game_type=self.game_type, bus=self.bus)

    @property
    def state(self) -> RoundState:
        return self.machine.state

    @property
    def round_id(self) -> str:
        return self.machine.round_id

    def _require_active(self, action: str) -> Optional[Result]:
        if self.machine.state != RoundState.ACTIVE:
            return Result.failure(InvalidStateTransition(
                f"cannot {action}: no {self.game_type} round in progress",
                action=action, state=self.machine.state))
        return None

    def _begin(self, bet) -> Result:
        """Reset a finished round and debit `bet` for a new one."""
        if self.machine.state == RoundState.RESOLVED:
            self.machine.reset()
        return self.machine.place_bet(bet)

    def reset(self) -> Result:
        return self.machine.reset()

    def to_dict(self) -> dict:
        return {
            "game_type": self.game_type,
            "round": self.machine.round.to_dict(),
            "balance": str(self.ledger.balance),
        }
