"""
CASINOCORE — Game Configuration Schema

Every tunable constant of the games lives here as data rather than code:
physics coefficients, board geometry, the per-risk multiplier curves and the
house-edge parameters of the round-based games. Engines take these models in
their constructors; nothing in `game_engine` hard-codes a payout constant.

Usage:
    from config.game_schema import PlinkoConfig, default_plinko_config
    cfg = default_plinko_config(pocket_count=10)
    json_str = cfg.model_dump_json(indent=2)
"""

from __future__ import annotations
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


# ═══════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════

class GameType(str, Enum):
    PLINKO = "plinko"
    MINES = "mines"
    BLACKJACK = "blackjack"
    CRASH = "crash"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value) -> "RiskLevel":
        """Accept enum members, names and the legacy "med" alias."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text == "med":
            text = "medium"
        return cls(text)


# ═══════════════════════════════════════════════════════════════
# Betting
# ═══════════════════════════════════════════════════════════════

class BetConfig(BaseModel):
    """Universal betting parameters"""
    starting_balance: float = Field(1000.0, ge=0)
    default_bet: float = Field(10.0, gt=0)
    bet_amounts: list[float] = Field(default=[1.0, 5.0, 10.0, 25.0, 50.0, 100.0])
    currency_decimals: int = Field(2, ge=0, le=8)


# ═══════════════════════════════════════════════════════════════
# Plinko
# ═══════════════════════════════════════════════════════════════

class PhysicsConfig(BaseModel):
    """Per-tick physics coefficients (units per nominal 60 Hz tick)."""
    gravity: float = Field(0.3, gt=0)
    gravity_jitter: float = Field(0.05, ge=0, le=0.05)    # ≤5% perturbation
    friction: float = Field(0.99, gt=0, le=1)
    bounce_damping: float = Field(0.6, gt=0, lt=1)
    bounce_randomness: float = Field(0.08, ge=0, le=0.08)  # ±8% on reflection
    wall_damping: float = Field(0.5, gt=0, lt=1)
    peg_radius: float = Field(5.0, gt=0)
    ball_radius: float = Field(7.0, gt=0)
    max_velocity: float = Field(10.0, gt=0)                # below one contact diameter
    # The first touch on each peg row picks its rebound side with a fair draw
    # and leaves between rebound_speed / 2 and rebound_speed sideways.
    fair_rebound: bool = True
    rebound_speed: float = Field(1.2, gt=0)
    # Stuck-ball recovery
    stuck_window: int = Field(10, ge=2)                    # K positions tracked
    stuck_threshold: float = Field(3.0, gt=0)              # max pairwise spread
    nudge_strength: float = Field(2.0, gt=0)
    nudge_down_bias: float = Field(1.0, ge=0)

    @model_validator(mode="after")
    def _threshold_below_radius(self):
        if self.stuck_threshold >= self.ball_radius:
            raise ValueError("stuck_threshold must be smaller than ball_radius")
        return self


class BoardConfig(BaseModel):
    """Peg lattice + pocket strip geometry.

    Pockets are one peg spacing wide and the bottom peg row stands on the
    pocket boundaries, walls included. The top row has three pegs and every
    row below adds one, so there are pocket_count - 1 peg rows.
    """
    pocket_count: int = Field(10, ge=3, le=33)
    peg_spacing: float = Field(30.0, gt=0)
    row_spacing: float = Field(26.0, gt=0)
    top_margin: float = Field(40.0, gt=0)

    @property
    def width(self) -> float:
        return self.pocket_count * self.peg_spacing

    @property
    def first_row(self) -> int:
        """Triangle index of the top peg row (rows 0 and 1 are left out)."""
        return 2

    @property
    def last_row(self) -> int:
        return self.pocket_count

    @property
    def rows(self) -> int:
        return self.last_row - self.first_row + 1

    @property
    def pocket_line(self) -> float:
        """y coordinate past which a ball has entered a pocket."""
        return self.top_margin + (self.rows - 0.5) * self.row_spacing

    @property
    def spawn_y(self) -> float:
        return self.top_margin - self.row_spacing


class RiskCurve(BaseModel):
    """Shape of one risk level's multiplier curve (centre → edge)."""
    min_multiplier: float = Field(gt=0)
    mid_multiplier: float = Field(gt=0)
    max_multiplier: float = Field(gt=0)
    inner_threshold: float = Field(gt=0, lt=1)
    exponent: float = Field(gt=0)

    @model_validator(mode="after")
    def _ordered(self):
        if not (self.min_multiplier <= self.mid_multiplier <= self.max_multiplier):
            raise ValueError("expected min_multiplier <= mid_multiplier <= max_multiplier")
        return self


def default_risk_curves() -> dict[str, RiskCurve]:
    return {
        "low": RiskCurve(min_multiplier=0.5, mid_multiplier=1.1, max_multiplier=16.0,
                         inner_threshold=0.3, exponent=2.0),
        "medium": RiskCurve(min_multiplier=0.3, mid_multiplier=1.5, max_multiplier=110.0,
                            inner_threshold=0.25, exponent=3.0),
        "high": RiskCurve(min_multiplier=0.2, mid_multiplier=2.0, max_multiplier=1000.0,
                          inner_threshold=0.2, exponent=4.0),
    }


DEFAULT_TARGET_RTP = 0.97


class PlinkoConfig(BaseModel):
    """Plinko — balls drop through pegs into multiplier pockets"""
    board: BoardConfig = Field(default_factory=BoardConfig)
    physics: PhysicsConfig = Field(default_factory=PhysicsConfig)
    risk_curves: dict[str, RiskCurve] = Field(default_factory=default_risk_curves)
    default_risk: RiskLevel = RiskLevel.MEDIUM
    target_rtp: Optional[float] = Field(DEFAULT_TARGET_RTP, gt=0, lt=1)   # None: raw curve
    tick_rate: float = Field(60.0, gt=0)
    retention_seconds: float = Field(1.0, ge=0)    # pocketed ball stays visible
    spawn_spread: float = Field(0.25, ge=0)        # fraction of peg spacing
    spawn_vx: float = Field(0.2, ge=0)
    min_pockets: int = 3
    max_pockets: int = 33
    result_history: int = Field(50, ge=1)

    @field_validator("risk_curves")
    @classmethod
    def _all_risks_present(cls, v):
        missing = [r.value for r in RiskLevel if r.value not in v]
        if missing:
            raise ValueError(f"risk_curves missing: {missing}")
        return v

    @model_validator(mode="after")
    def _ball_fits_lattice(self):
        contact = self.physics.peg_radius + self.physics.ball_radius
        if self.board.peg_spacing <= 2 * contact:
            raise ValueError("peg_spacing must leave room for the ball between two pegs")
        if self.spawn_spread * self.board.peg_spacing >= contact:
            raise ValueError("spawn_spread must keep new balls above the top centre peg")
        return self

    @property
    def nominal_dt(self) -> float:
        return 1.0 / self.tick_rate

    @property
    def retention_ticks(self) -> int:
        return int(round(self.retention_seconds * self.tick_rate))


# ═══════════════════════════════════════════════════════════════
# Round-based games
# ═══════════════════════════════════════════════════════════════

class MinesConfig(BaseModel):
    """Mines — reveal safe tiles on a grid, avoid hidden mines"""
    rows: int = Field(5, ge=2, le=8)
    cols: int = Field(5, ge=2, le=8)
    mine_count: int = Field(3, ge=1)
    house_edge: float = Field(0.03, ge=0, lt=1)   # multiplier = (1-he) / P(safe)

    @property
    def tile_count(self) -> int:
        return self.rows * self.cols

    @model_validator(mode="after")
    def _mines_fit(self):
        if self.mine_count >= self.tile_count:
            raise ValueError("mine_count must leave at least one safe tile")
        return self


class CrashConfig(BaseModel):
    """Crash — multiplier rises until random crash point"""
    house_edge: float = Field(0.03, ge=0, lt=1)   # P(instant bust)
    max_multiplier: float = Field(100.0, gt=1)
    growth_rate: float = Field(0.06, gt=0)        # multiplier = e^(rate * t)
    auto_cashout_options: list[float] = Field(default=[1.5, 2.0, 3.0, 5.0, 10.0, 25.0])


class BlackjackConfig(BaseModel):
    """Blackjack — single hand versus the dealer"""
    soft17_stand: bool = True
    natural_payout: float = 2.5    # returned per unit staked, stake included
    win_payout: float = 2.0
    push_payout: float = 1.0


# ═══════════════════════════════════════════════════════════════
# Defaults
# ═══════════════════════════════════════════════════════════════

def default_plinko_config(
    pocket_count: int = 10,
    risk: str = "medium",
    target_rtp: Optional[float] = DEFAULT_TARGET_RTP,
) -> PlinkoConfig:
    return PlinkoConfig(
        board=BoardConfig(pocket_count=pocket_count),
        default_risk=RiskLevel.parse(risk),
        target_rtp=target_rtp,
    )


def default_mines_config(mine_count: int = 3, rows: int = 5, cols: int = 5) -> MinesConfig:
    return MinesConfig(rows=rows, cols=cols, mine_count=mine_count)


def default_crash_config(house_edge: float = 0.03) -> CrashConfig:
    return CrashConfig(house_edge=house_edge)


def default_blackjack_config() -> BlackjackConfig:
    return BlackjackConfig()
