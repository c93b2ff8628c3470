"""Crash Game — Exponential distribution with crash point, tick-driven multiplier."""

from __future__ import annotations

import logging
import math
from typing import Optional

from config.game_schema import CrashConfig, default_crash_config
from game_engine.core.errors import InvalidAmount, Result
from game_engine.core.events import CRASH_BUSTED, CRASH_TICK, EventBus
from game_engine.core.ledger import PayoutLedger
from game_engine.core.rng import RandomSource
from game_engine.core.rounds import RoundState
from game_engine.games.base import RoundGame

logger = logging.getLogger("casinocore.crash")


def floor2(value: float) -> float:
    return math.floor(value * 100 + 1e-9) / 100


def crash_point(rng: RandomSource, house_edge: float, max_multiplier: float) -> float:
    """Draw a crash point.

    P(crash < x) = 1 - (1-he)/x for x >= 1, so crash_point = (1-he) / (1-r).
    r < he busts instantly at 1.00; the result is floored to 2 dp and
    capped at max_multiplier.
    """
    r = rng.uniform()
    if r < house_edge:
        return 1.0
    point = (1.0 - house_edge) / (1.0 - r)
    return max(1.0, min(max_multiplier, floor2(point)))


class CrashGame(RoundGame):
    game_type = "crash"
    display_name = "Crash"

    def __init__(self, ledger: PayoutLedger, config: Optional[CrashConfig] = None,
                 rng: Optional[RandomSource] = None, bus: Optional[EventBus] = None):
        super().__init__(ledger, rng, bus)
        self.config = config or default_crash_config()
        self.crash_at = 1.0
        self.elapsed = 0.0
        self.multiplier = 1.0
        self.auto_cashout: Optional[float] = None
        self.busted = False

    def multiplier_at(self, elapsed: float) -> float:
        return floor2(math.exp(self.config.growth_rate * elapsed))

    # ── Round actions ──────────────────────────────────────────

    def start(self, bet, auto_cashout: Optional[float] = None) -> Result:
        if auto_cashout is not None and not auto_cashout > 1.0:
            return Result.failure(InvalidAmount(f"auto_cashout must exceed 1.0, got {auto_cashout}",
                                                auto_cashout=auto_cashout))
        placed = self._begin(bet)
        if not placed.ok:
            return placed
        self.crash_at = crash_point(self.rng, self.config.house_edge, self.config.max_multiplier)
        self.elapsed = 0.0
        self.multiplier = 1.0
        self.auto_cashout = auto_cashout
        self.busted = False
        if self.crash_at <= 1.0:
            self._bust()
        return Result.success(self.to_dict())

    def tick(self, dt: float) -> Result:
        """Advance the curve by `dt` seconds."""
        refused = self._require_active("tick")
        if refused:
            return refused
        self.elapsed += dt
        self.multiplier = min(self.multiplier_at(self.elapsed), self.crash_at)

        if self.auto_cashout is not None and self.auto_cashout < self.crash_at \
                and self.multiplier >= self.auto_cashout:
            self.multiplier = self.auto_cashout
            return self._cash_out_at(self.auto_cashout)
        if self.multiplier >= self.crash_at:
            self._bust()
        else:
            self.bus.emit(CRASH_TICK, round_id=self.round_id, multiplier=self.multiplier,
                          elapsed=self.elapsed)
        return Result.success(self.to_dict())

    def cash_out(self) -> Result:
        refused = self._require_active("cash out")
        if refused:
            return refused
        return self._cash_out_at(self.multiplier)

    def run(self, dt: float = 0.1, max_ticks: int = 100_000) -> Result:
        """Tick until the round resolves (auto cash-out or bust)."""
        result = Result.success(self.to_dict())
        ticks = 0
        while self.state == RoundState.ACTIVE and ticks < max_ticks:
            result = self.tick(dt)
            ticks += 1
        return result

    def _cash_out_at(self, multiplier: float) -> Result:
        resolved = self.machine.resolve(multiplier, details={"cashed_out_at": multiplier,
                                                             "crash_point": self.crash_at})
        if not resolved.ok:
            return resolved
        logger.debug(f"Crash round {self.round_id} cashed out at ×{multiplier}")
        return Result.success(self.to_dict())

    def _bust(self) -> None:
        self.busted = True
        self.multiplier = self.crash_at
        self.machine.resolve(0, details={"crash_point": self.crash_at})
        self.bus.emit(CRASH_BUSTED, round_id=self.round_id, crash_point=self.crash_at)
        logger.debug(f"Crash round {self.round_id} busted at ×{self.crash_at}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        finished = self.machine.round.outcome is not None
        data.update({
            "multiplier": self.multiplier,
            "elapsed": round(self.elapsed, 4),
            "auto_cashout": self.auto_cashout,
            "busted": self.busted,
            "crash_point": self.crash_at if finished else None,
        })
        return data
