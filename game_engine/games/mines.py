"""Mines — Combinatorial probability (n choose k) on a rows × cols grid."""

from __future__ import annotations

import logging
import math
from typing import Optional

from config.game_schema import MinesConfig, default_mines_config
from game_engine.core.errors import InvalidAmount, InvalidStateTransition, Result
from game_engine.core.events import MINES_REVEALED, EventBus
from game_engine.core.ledger import PayoutLedger
from game_engine.core.rng import RandomSource, shuffle
from game_engine.games.base import RoundGame

logger = logging.getLogger("casinocore.mines")


def survival_probability(tiles: int, mines: int, reveals: int) -> float:
    """P(the first `reveals` picks are all safe)."""
    safe = tiles - mines
    if reveals < 0 or reveals > safe:
        return 0.0
    prob = 1.0
    for i in range(reveals):
        prob *= (safe - i) / (tiles - i)
    return prob


def fair_multiplier(tiles: int, mines: int, reveals: int, house_edge: float) -> float:
    """(1 - house_edge) / P(survive), floored to 2 dp; 1.0 before any reveal."""
    if reveals == 0:
        return 1.0
    prob = survival_probability(tiles, mines, reveals)
    if prob <= 0:
        return 0.0
    return math.floor((1.0 - house_edge) / prob * 100 + 1e-9) / 100


class MinesGame(RoundGame):
    game_type = "mines"
    display_name = "Mines"

    def __init__(self, ledger: PayoutLedger, config: Optional[MinesConfig] = None,
                 rng: Optional[RandomSource] = None, bus: Optional[EventBus] = None):
        super().__init__(ledger, rng, bus)
        self.config = config or default_mines_config()
        self.mines: set[int] = set()
        self.revealed: list[int] = []

    @property
    def tile_count(self) -> int:
        return self.config.tile_count

    @property
    def safe_count(self) -> int:
        return self.config.tile_count - self.config.mine_count

    def multiplier_at(self, reveals: int) -> float:
        return fair_multiplier(self.tile_count, self.config.mine_count, reveals,
                               self.config.house_edge)

    def current_multiplier(self) -> float:
        return self.multiplier_at(len(self.revealed))

    def next_multiplier(self) -> float:
        return self.multiplier_at(len(self.revealed) + 1)

    def safety_percentage(self) -> float:
        """Chance that the next pick is safe, in percent."""
        hidden = self.tile_count - len(self.revealed)
        safe_left = self.safe_count - len(self.revealed)
        if hidden <= 0 or safe_left <= 0:
            return 0.0
        return round(safe_left / hidden * 100, 2)

    # ── Round actions ──────────────────────────────────────────

    def start(self, bet) -> Result:
        placed = self._begin(bet)
        if not placed.ok:
            return placed
        tiles = list(range(self.tile_count))
        shuffle(self.rng, tiles)
        self.mines = set(tiles[:self.config.mine_count])
        self.revealed = []
        logger.debug(f"Mines round {self.round_id}: {self.config.mine_count} mines placed")
        return Result.success(self.to_dict())

    def reveal(self, index: int) -> Result:
        refused = self._require_active("reveal")
        if refused:
            return refused
        if isinstance(index, bool) or not isinstance(index, int) \
                or not 0 <= index < self.tile_count:
            return Result.failure(InvalidAmount(f"tile {index!r} is not on the board",
                                                index=index))
        if index in self.revealed:
            return Result.failure(InvalidStateTransition(f"tile {index} already revealed",
                                                         index=index))

        self.revealed.append(index)
        hit = index in self.mines
        self.bus.emit(MINES_REVEALED, round_id=self.round_id, index=index, mine=hit,
                      revealed=len(self.revealed))
        if hit:
            self.machine.resolve(0, details={"mine": index, "revealed": list(self.revealed)})
        elif len(self.revealed) == self.safe_count:
            # every safe tile found: cash out automatically
            self._settle()
        return Result.success(self.to_dict())

    def cash_out(self) -> Result:
        refused = self._require_active("cash out")
        if refused:
            return refused
        if not self.revealed:
            return Result.failure(InvalidStateTransition("reveal at least one tile before cashing out"))
        return self._settle()

    def _settle(self) -> Result:
        multiplier = self.current_multiplier()
        resolved = self.machine.resolve(multiplier, details={"revealed": list(self.revealed)})
        if resolved.ok:
            logger.debug(f"Mines round {self.round_id} cashed out at ×{multiplier}")
            return Result.success(self.to_dict())
        return resolved

    def to_dict(self) -> dict:
        data = super().to_dict()
        finished = self.machine.round.outcome is not None
        data.update({
            "rows": self.config.rows,
            "cols": self.config.cols,
            "mine_count": self.config.mine_count,
            "revealed": list(self.revealed),
            "current_multiplier": self.current_multiplier(),
            "next_multiplier": self.next_multiplier(),
            "safety_percentage": self.safety_percentage(),
            "mines": sorted(self.mines) if finished else None,
        })
        return data
