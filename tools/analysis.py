"""
CASINOCORE — Payout Analysis & Monte Carlo

Theoretical and measured return for the Plinko tables. The theoretical side
uses the binomial landing model of the peg lattice; the measured side drops
real balls through the real physics engine, many in flight at once, against
a throw-away in-memory ledger.

Usage:
    from tools.analysis import simulate_drops
    result = simulate_drops(drops=2_000, risk="low", pocket_count=10, seed=7)
    print(result.summary())
"""

from __future__ import annotations

import logging
import statistics
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from config.game_schema import PlinkoConfig, default_crash_config, default_plinko_config
from game_engine.core.events import BALL_POCKETED
from game_engine.core.ledger import InMemoryBalanceService, PayoutLedger
from game_engine.core.rng import SeededRandom
from game_engine.games.crash import CrashGame
from game_engine.plinko.multipliers import MultiplierTable, binomial_weights, expected_return
from game_engine.plinko.session import PlinkoSession

logger = logging.getLogger("casinocore.analysis")

__all__ = ["binomial_weights", "expected_return", "table_report", "SimResult",
           "simulate_drops", "simulate_crash"]


def table_report(risk: str, pocket_count: int, target_rtp: Optional[float] = None) -> dict:
    """Multipliers with their binomial landing probabilities and RTP."""
    table = MultiplierTable.generate(risk, pocket_count, target_rtp=target_rtp)
    weights = binomial_weights(pocket_count)
    return {
        **table.to_dict(),
        "pockets": [
            {"index": i, "multiplier": m, "probability": round(w, 6),
             "contribution": round(w * m, 6)}
            for i, (m, w) in enumerate(zip(table, weights))
        ],
    }


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass
class SimResult:
    """Results from a Monte Carlo run of one game."""
    game_type: str
    rounds: int
    theoretical_rtp: float
    measured_rtp: float
    total_wagered: float
    total_returned: float
    hit_frequency: float = 0.0       # fraction of rounds returning more than the stake
    max_multiplier_hit: float = 0.0
    std_dev: float = 0.0
    anomalies: int = 0
    nudges: int = 0
    ticks: int = 0
    histogram: dict = field(default_factory=dict)
    parameters: dict = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def rtp_delta(self) -> float:
        return abs(self.measured_rtp - self.theoretical_rtp)

    def summary(self) -> str:
        lines = [
            f"═══ Monte Carlo: {self.game_type.upper()} ═══",
            f"  Rounds:      {self.rounds:,}",
            f"  Theoretical: {self.theoretical_rtp*100:.4f}%",
            f"  Measured:    {self.measured_rtp*100:.4f}%",
            f"  Delta:       {self.rtp_delta*100:.4f}%",
            f"  Hit Freq:    {self.hit_frequency*100:.2f}%",
            f"  Max Win:     {self.max_multiplier_hit:.2f}x",
            f"  Std Dev:     {self.std_dev:.4f}",
            f"  Duration:    {self.duration_seconds:.2f}s",
        ]
        if self.game_type == "plinko":
            lines.append(f"  Ticks:       {self.ticks:,}")
            lines.append(f"  Nudges:      {self.nudges:,}")
            lines.append(f"  Anomalies:   {self.anomalies:,}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "game_type": self.game_type,
            "rounds": self.rounds,
            "theoretical_rtp": round(self.theoretical_rtp, 6),
            "measured_rtp": round(self.measured_rtp, 6),
            "rtp_delta": round(self.rtp_delta, 6),
            "total_wagered": round(self.total_wagered, 2),
            "total_returned": round(self.total_returned, 2),
            "hit_frequency": round(self.hit_frequency, 4),
            "max_multiplier_hit": round(self.max_multiplier_hit, 2),
            "std_dev": round(self.std_dev, 4),
            "anomalies": self.anomalies,
            "nudges": self.nudges,
            "ticks": self.ticks,
            "histogram": self.histogram,
            "parameters": self.parameters,
            "duration_seconds": round(self.duration_seconds, 3),
        }


# ═══════════════════════════════════════════════════════════════
# Simulations
# ═══════════════════════════════════════════════════════════════

def simulate_drops(drops: int = 1_000, risk: str = "medium", pocket_count: int = 10,
                   seed: int = 42, batch: int = 100, wager: float = 1.0,
                   config: Optional[PlinkoConfig] = None,
                   max_ticks: int = 20_000) -> SimResult:
    """Drop `drops` balls, `batch` at a time, and measure the realised return."""
    cfg = config or default_plinko_config(pocket_count=pocket_count, risk=risk)
    stake = Decimal(str(wager))
    ledger = PayoutLedger(InMemoryBalanceService(stake * drops), history_limit=10)
    session = PlinkoSession(ledger, config=cfg, rng=SeededRandom(seed), default_wager=stake)

    multipliers: list[float] = []
    histogram = {i: 0 for i in range(cfg.board.pocket_count)}
    anomalies = 0

    def _on_pocket(event):
        nonlocal anomalies
        multipliers.append(event.payload["multiplier"])
        histogram[event.payload["pocket_index"]] += 1
        anomalies += int(event.payload["anomaly"])

    session.bus.subscribe(BALL_POCKETED, _on_pocket)

    start = time.time()
    ticks = 0
    dropped = 0
    nudges = 0
    while dropped < drops:
        n = min(batch, drops - dropped)
        for _ in range(n):
            session.drop().unwrap()
        dropped += n
        session.tick()
        ticks += 1
        in_flight = [b for b in session.balls if not b.in_pocket]
        ticks += session.run_until_settled(max_ticks)
        nudges += sum(b.nudges for b in in_flight)

    rounds = len(multipliers)
    total_returned = float(ledger.total_credited)
    total_wagered = float(ledger.total_debited)
    elapsed = time.time() - start
    logger.info(f"Simulated {rounds} drops ({session.risk.value}/{cfg.board.pocket_count}) "
                f"in {elapsed:.2f}s")
    session.close()

    return SimResult(
        game_type="plinko",
        rounds=rounds,
        theoretical_rtp=session.table.binomial_rtp(),
        measured_rtp=total_returned / total_wagered if total_wagered else 0.0,
        total_wagered=total_wagered,
        total_returned=total_returned,
        hit_frequency=sum(1 for m in multipliers if m > 1) / rounds if rounds else 0.0,
        max_multiplier_hit=max(multipliers, default=0.0),
        std_dev=statistics.pstdev(multipliers) if rounds > 1 else 0.0,
        anomalies=anomalies,
        nudges=nudges,
        ticks=ticks,
        histogram={str(k): v for k, v in histogram.items()},
        parameters={"risk": session.risk.value, "pocket_count": cfg.board.pocket_count,
                    "seed": seed, "batch": batch, "multipliers": list(session.table)},
        duration_seconds=elapsed,
    )


def simulate_crash(rounds: int = 10_000, auto_cashout: float = 2.0, seed: int = 42,
                   house_edge: float = 0.03) -> SimResult:
    """Play `rounds` crash rounds with a fixed auto cash-out target."""
    cfg = default_crash_config(house_edge=house_edge)
    ledger = PayoutLedger(InMemoryBalanceService(Decimal(rounds)), history_limit=10)
    game = CrashGame(ledger, config=cfg, rng=SeededRandom(seed))

    start = time.time()
    multipliers = []
    for _ in range(rounds):
        game.start(1, auto_cashout=auto_cashout).unwrap()
        game.run(dt=0.25)
        multipliers.append(float(game.machine.round.outcome.multiplier))

    theoretical = (1 - house_edge) if auto_cashout <= cfg.max_multiplier else 0.0
    buckets: dict[str, int] = {}
    for m in multipliers:
        key = "0x" if m == 0 else f"{m:g}x"
        buckets[key] = buckets.get(key, 0) + 1

    return SimResult(
        game_type="crash",
        rounds=rounds,
        theoretical_rtp=theoretical,
        measured_rtp=float(ledger.total_credited) / float(ledger.total_debited),
        total_wagered=float(ledger.total_debited),
        total_returned=float(ledger.total_credited),
        hit_frequency=sum(1 for m in multipliers if m > 0) / rounds,
        max_multiplier_hit=max(multipliers, default=0.0),
        std_dev=statistics.pstdev(multipliers) if rounds > 1 else 0.0,
        histogram=buckets,
        parameters={"auto_cashout": auto_cashout, "house_edge": house_edge, "seed": seed},
        duration_seconds=time.time() - start,
    )
