"""
CASINOCORE — Round State Machine

One bet-to-payout cycle shared by every game:

    IDLE ──place_bet──▶ ACTIVE ──resolve──▶ RESOLVED ──reset──▶ IDLE

The wager is debited exactly once (IDLE → ACTIVE) and the payout credited
exactly once (ACTIVE → RESOLVED). Any action attempted from the wrong state
is refused with an `InvalidStateTransition` result and leaves both the round
and the balance untouched, which is what absorbs double clicks and replayed
requests.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from game_engine.core.errors import InvalidAmount, InvalidStateTransition, Result
from game_engine.core.events import ROUND_STATE_CHANGED, EventBus
from game_engine.core.ledger import Amount, PayoutLedger, parse_amount, quantize_money

logger = logging.getLogger("casinocore.rounds")


class RoundState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    RESOLVED = "resolved"


class OutcomeKind(str, Enum):
    WIN = "win"
    LOSS = "loss"
    PUSH = "push"


@dataclass
class Outcome:
    kind: OutcomeKind
    multiplier: Decimal
    payout: Decimal

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "multiplier": str(self.multiplier),
            "payout": str(self.payout),
        }


@dataclass
class Round:
    round_id: str
    game_type: str
    state: RoundState = RoundState.IDLE
    wager: Optional[Decimal] = None
    outcome: Optional[Outcome] = None
    details: dict = field(default_factory=dict)
    started_at: float = 0.0
    resolved_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "round_id": self.round_id,
            "game_type": self.game_type,
            "state": self.state.value,
            "wager": str(self.wager) if self.wager is not None else None,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "details": dict(self.details),
            "started_at": self.started_at,
            "resolved_at": self.resolved_at,
        }


def _new_round_id() -> str:
    return secrets.token_hex(8)


class RoundStateMachine:
    """Guards one Round's transitions and routes money through the ledger."""

    def __init__(self, ledger: PayoutLedger, game_type: str = "generic",
                 bus: Optional[EventBus] = None):
        self.ledger = ledger
        self.game_type = game_type
        self.bus = bus
        self.round = Round(round_id=_new_round_id(), game_type=game_type)

    @property
    def state(self) -> RoundState:
        return self.round.state

    @property
    def round_id(self) -> str:
        return self.round.round_id

    def _refuse(self, action: str) -> Result:
        logger.info(f"{self.game_type} round {self.round_id}: {action} refused in state "
                    f"{self.round.state.value}")
        return Result.failure(InvalidStateTransition(
            f"cannot {action} while round is {self.round.state.value}",
            action=action, state=self.round.state, round_id=self.round_id))

    def _transition(self, new_state: RoundState) -> None:
        previous = self.round.state
        self.round.state = new_state
        self._announce(self.round_id, previous, new_state)

    def _announce(self, round_id: str, previous: RoundState, new_state: RoundState) -> None:
        if self.bus is not None:
            self.bus.emit(ROUND_STATE_CHANGED, game_type=self.game_type,
                          round_id=round_id, previous=previous.value,
                          state=new_state.value)

    # ── Transitions ────────────────────────────────────────────

    def place_bet(self, amount: Amount) -> Result:
        if self.round.state != RoundState.IDLE:
            return self._refuse("place_bet")
        try:
            wager = parse_amount(amount)
        except InvalidAmount as e:
            return Result.failure(e)

        debit = self.ledger.debit(wager, reference=f"{self.game_type}:{self.round_id}:bet")
        if not debit.ok:
            return debit

        self.round.wager = wager
        self.round.started_at = time.time()
        self._transition(RoundState.ACTIVE)
        return Result.success(self.round)

    def resolve(self, multiplier: Amount, details: Optional[dict] = None) -> Result:
        """Settle the round at `multiplier` × wager (0 for a loss)."""
        if self.round.state != RoundState.ACTIVE:
            return self._refuse("resolve")
        try:
            mult = parse_amount(multiplier, allow_zero=True)
        except InvalidAmount as e:
            return Result.failure(e)

        wager = self.round.wager
        payout = quantize_money(wager * mult)
        if payout > wager:
            kind = OutcomeKind.WIN
        elif payout == wager:
            kind = OutcomeKind.PUSH
        else:
            kind = OutcomeKind.LOSS

        credit = self.ledger.credit(payout, reference=f"{self.game_type}:{self.round_id}:payout")
        if not credit.ok:
            return credit

        self.round.outcome = Outcome(kind=kind, multiplier=mult, payout=payout)
        if details:
            self.round.details.update(details)
        self.round.resolved_at = time.time()
        self._transition(RoundState.RESOLVED)
        return Result.success(self.round.outcome)

    def reset(self) -> Result:
        if self.round.state == RoundState.IDLE:
            return Result.success(self.round)
        if self.round.state != RoundState.RESOLVED:
            return self._refuse("reset")
        # the closing event belongs to the finished round; the new one starts idle
        finished = self.round.round_id
        self.round = Round(round_id=_new_round_id(), game_type=self.game_type)
        self._announce(finished, RoundState.RESOLVED, RoundState.IDLE)
        return Result.success(self.round)
