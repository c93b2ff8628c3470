"""
CASINOCORE — Plinko Multiplier Tables

One parameterised generator for every (risk, pocket count) pair. The curve
shape per risk level is configuration data (`config.game_schema.RiskCurve`):

    position_factor = |i - centre| / centre          0 at centre, 1 at edges
    pf <  inner     → linear        min → mid
    pf >= inner     → power curve   mid → max,  t = ((pf - inner) / (1 - inner)) ** exponent

Values are rounded to one decimal and floored at 0.1, so tables are
symmetric and non-decreasing from the centre outwards.

The raw curve carries no house-edge guarantee. `MultiplierTable.calibrated`,
which sessions use by default, rescales it against the binomial landing
model of the peg lattice (P(pocket k) = C(n-1, k) / 2^(n-1)) so the
theoretical return never exceeds the requested target.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from config.game_schema import RiskCurve, RiskLevel, default_risk_curves
from game_engine.core.errors import ConfigurationError

logger = logging.getLogger("casinocore.multipliers")

MIN_POCKETS = 3
MAX_POCKETS = 33
MIN_MULTIPLIER = 0.1


def _curve_for(risk, curves: Optional[dict[str, RiskCurve]]) -> tuple[RiskLevel, RiskCurve]:
    try:
        level = RiskLevel.parse(risk)
    except ValueError:
        raise ConfigurationError(f"unknown risk level: {risk!r}", risk=risk)
    table = curves if curves is not None else default_risk_curves()
    curve = table.get(level.value)
    if curve is None:
        raise ConfigurationError(f"no multiplier curve configured for risk {level.value}",
                                 risk=level.value)
    return level, curve


def _check_count(count: int, min_pockets: int, max_pockets: int) -> None:
    if not isinstance(count, int) or isinstance(count, bool):
        raise ConfigurationError(f"pocket count must be an integer, got {count!r}")
    if not min_pockets <= count <= max_pockets:
        raise ConfigurationError(
            f"pocket count {count} outside supported range {min_pockets}..{max_pockets}",
            count=count)


def curve_value(curve: RiskCurve, position_factor: float) -> float:
    inner = curve.inner_threshold
    if position_factor < inner:
        return curve.min_multiplier + (curve.mid_multiplier - curve.min_multiplier) * (
            position_factor / inner)
    t = ((position_factor - inner) / (1 - inner)) ** curve.exponent
    return curve.mid_multiplier + (curve.max_multiplier - curve.mid_multiplier) * t


def generate_multipliers(risk, count: int,
                         curves: Optional[dict[str, RiskCurve]] = None,
                         min_pockets: int = MIN_POCKETS,
                         max_pockets: int = MAX_POCKETS) -> list[float]:
    """Raw multiplier list for `count` pockets at `risk`."""
    _check_count(count, min_pockets, max_pockets)
    _, curve = _curve_for(risk, curves)
    centre = (count - 1) / 2
    values = []
    for i in range(count):
        pf = abs(i - centre) / centre
        values.append(max(MIN_MULTIPLIER, round(curve_value(curve, pf), 1)))
    return values


def binomial_weights(count: int) -> list[float]:
    """Landing probabilities of a fair left/right walk over count-1 rows."""
    n = count - 1
    return [math.comb(n, k) / 2 ** n for k in range(count)]


def expected_return(values: Sequence[float], weights: Optional[Sequence[float]] = None) -> float:
    """Σ P(i) × multiplier(i); uniform weights when none are given."""
    if weights is None:
        weights = [1 / len(values)] * len(values)
    if len(weights) != len(values):
        raise ConfigurationError("weights and multipliers differ in length")
    return sum(w * m for w, m in zip(weights, values))


class MultiplierTable:
    """Immutable multiplier row for one (risk, pocket count) pair."""

    def __init__(self, risk: RiskLevel, values: Sequence[float], target_rtp: Optional[float] = None):
        self.risk = RiskLevel.parse(risk)
        self.values = tuple(values)
        self.target_rtp = target_rtp

    @classmethod
    def generate(cls, risk, count: int,
                 curves: Optional[dict[str, RiskCurve]] = None,
                 target_rtp: Optional[float] = None,
                 min_pockets: int = MIN_POCKETS,
                 max_pockets: int = MAX_POCKETS) -> "MultiplierTable":
        values = generate_multipliers(risk, count, curves, min_pockets, max_pockets)
        table = cls(RiskLevel.parse(risk), values)
        if target_rtp is not None:
            table = table.calibrated(target_rtp)
        return table

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, index: int) -> float:
        return self.values[index]

    def __iter__(self):
        return iter(self.values)

    def __eq__(self, other) -> bool:
        if not isinstance(other, MultiplierTable):
            return NotImplemented
        return self.risk == other.risk and self.values == other.values

    def __repr__(self) -> str:
        return f"MultiplierTable({self.risk.value}, {list(self.values)})"

    @property
    def count(self) -> int:
        return len(self.values)

    def is_symmetric(self) -> bool:
        return all(self.values[i] == self.values[-1 - i] for i in range(len(self.values)))

    def is_monotonic(self) -> bool:
        """Non-decreasing as the distance from the centre grows."""
        centre = (len(self.values) - 1) / 2
        order = sorted(range(len(self.values)), key=lambda i: abs(i - centre))
        ranked = [self.values[i] for i in order]
        return all(a <= b for a, b in zip(ranked, ranked[1:]))

    def binomial_rtp(self) -> float:
        return expected_return(self.values, binomial_weights(len(self.values)))

    def calibrated(self, target_rtp: float, max_iterations: int = 200) -> "MultiplierTable":
        """Scale so the binomial-model return is at most `target_rtp`.

        Values are floored to one decimal (never above the scaled curve) and
        kept >= 0.1; the scale is tightened until the rounded table is at or
        below target.
        """
        if not MIN_MULTIPLIER < target_rtp < 1:
            raise ConfigurationError(f"target_rtp must be in ({MIN_MULTIPLIER}, 1), got {target_rtp}")
        weights = binomial_weights(len(self.values))
        raw_rtp = expected_return(self.values, weights)
        scale = target_rtp / raw_rtp
        values = list(self.values)
        for _ in range(max_iterations):
            values = [max(MIN_MULTIPLIER, math.floor(v * scale * 10 + 1e-9) / 10)
                      for v in self.values]
            rtp = expected_return(values, weights)
            if rtp <= target_rtp:
                break
            scale *= (target_rtp / rtp) * 0.999
        else:
            raise ConfigurationError(
                f"could not calibrate {self.risk.value}/{len(self.values)} to rtp {target_rtp}")
        logger.debug(f"Calibrated {self.risk.value}/{len(values)}: raw rtp {raw_rtp:.4f} → "
                     f"{expected_return(values, weights):.4f}")
        return MultiplierTable(self.risk, values, target_rtp=target_rtp)

    def to_dict(self) -> dict:
        return {
            "risk": self.risk.value,
            "pocket_count": len(self.values),
            "multipliers": list(self.values),
            "binomial_rtp": round(self.binomial_rtp(), 6),
            "target_rtp": self.target_rtp,
        }
