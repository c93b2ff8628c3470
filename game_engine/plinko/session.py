"""
CASINOCORE — Plinko Session

Orchestrates one player's Plinko table: drops, risk/wager changes, the tick
loop, settlement and history. Every ball is its own round:

    drop()    → RoundStateMachine.place_bet   (debit, synchronous)
    pocket    → RoundStateMachine.resolve     (credit wager × multiplier)
    purge     → RoundStateMachine.reset       (after the retention window)

Tick order:
    1. apply queued actions (wager, risk, when the risk lock allows)
    2. admit balls spawned since the last tick
    3. PhysicsEngine.tick over the active balls, in creation order
    4. settle balls that reached a pocket this tick
    5. purge settled balls past the retention window
    6. publish a snapshot to the PresentationSink

The multiplier table only changes at step 1 with no ball in flight, so a
ball is always paid from the table that was showing when it was dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from config.game_schema import PlinkoConfig, RiskLevel, default_plinko_config
from game_engine.core.errors import (
    ConfigurationError, InvalidAmount, InvalidStateTransition, Result,
)
from game_engine.core.events import (
    BALL_DROPPED, BALL_POCKETED, BALL_PURGED, PAYOUT_CREDITED, RISK_CHANGED,
    RISK_DEFERRED, WAGER_CHANGED, EventBus, PresentationSink, SoundCueRouter, SoundSink,
)
from game_engine.core.ledger import Amount, PayoutLedger, parse_amount
from game_engine.core.rng import RandomSource, make_random_source
from game_engine.core.rounds import RoundStateMachine
from game_engine.core.scheduler import ScheduleHandle, Scheduler
from game_engine.plinko.board import Board
from game_engine.plinko.multipliers import MultiplierTable
from game_engine.plinko.physics import Ball, PhysicsEngine

logger = logging.getLogger("casinocore.plinko")


@dataclass
class BallResult:
    ball_id: int
    round_id: str
    pocket_index: int
    multiplier: float
    wager: Decimal
    payout: Decimal
    risk: str
    anomaly: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def profit(self) -> Decimal:
        return self.payout - self.wager

    def to_dict(self) -> dict:
        return {
            "ball_id": self.ball_id,
            "round_id": self.round_id,
            "pocket_index": self.pocket_index,
            "multiplier": self.multiplier,
            "wager": str(self.wager),
            "payout": str(self.payout),
            "profit": str(self.profit),
            "risk": self.risk,
            "anomaly": self.anomaly,
            "timestamp": self.timestamp,
        }


@dataclass
class _Flight:
    """A ball together with the round that paid for it."""
    ball: Ball
    machine: RoundStateMachine
    wager: Decimal
    round_id: str
    settled: bool = False
    result: Optional[BallResult] = None


class PlinkoSession:

    def __init__(self, ledger: PayoutLedger,
                 config: Optional[PlinkoConfig] = None,
                 rng: Optional[RandomSource] = None,
                 bus: Optional[EventBus] = None,
                 sound_sink: Optional[SoundSink] = None,
                 presentation_sink: Optional[PresentationSink] = None,
                 default_wager: Amount = Decimal("10")):
        self.ledger = ledger
        self.config = config or default_plinko_config()
        self.rng = rng or make_random_source()
        self.bus = bus or EventBus()
        self.presentation_sink = presentation_sink

        self.board = Board(self.config.board)
        self.physics = PhysicsEngine(self.board, self.config.physics, self.rng,
                                     nominal_dt=self.config.nominal_dt, bus=self.bus)
        self.pockets = self.physics.pockets

        self.risk = self.config.default_risk
        self.table = self._build_table(self.risk)
        self.wager = parse_amount(default_wager)

        self._pending_risk: Optional[RiskLevel] = None
        self._actions: deque = deque()
        self._spawned: list[_Flight] = []
        self._active: list[_Flight] = []
        self.results: deque[BallResult] = deque(maxlen=self.config.result_history)
        self.tick_count = 0
        self._next_ball_id = 1
        self._lock = threading.RLock()
        self._handle: Optional[ScheduleHandle] = None
        self._closed = False

        self._sound: Optional[SoundCueRouter] = None
        if sound_sink is not None:
            self._sound = SoundCueRouter(sound_sink)
            self._sound.attach(self.bus)

    def _build_table(self, risk: RiskLevel) -> MultiplierTable:
        return MultiplierTable.generate(
            risk, self.board.pocket_count,
            curves=self.config.risk_curves,
            target_rtp=self.config.target_rtp,
            min_pockets=self.config.min_pockets,
            max_pockets=self.config.max_pockets,
        )

    # ── State queries ──────────────────────────────────────────

    @property
    def balls_in_flight(self) -> int:
        with self._lock:
            return len(self._spawned) + sum(1 for f in self._active if not f.settled)

    @property
    def risk_locked(self) -> bool:
        return self.balls_in_flight > 0

    @property
    def pending_risk(self) -> Optional[RiskLevel]:
        return self._pending_risk

    @property
    def balls(self) -> list[Ball]:
        """Balls currently on the board (in flight or retained in a pocket)."""
        with self._lock:
            return [f.ball for f in self._active]

    def find(self, ball_id: int) -> Optional[dict]:
        """State of a ball that is pending, on the board or in recent history."""
        with self._lock:
            for flight in self._spawned:
                if flight.ball.id == ball_id:
                    return {"status": "pending", "round_id": flight.round_id,
                            "ball": flight.ball.to_dict()}
            for flight in self._active:
                if flight.ball.id == ball_id:
                    status = "settled" if flight.settled else "in_flight"
                    return {"status": status, "round_id": flight.round_id,
                            "ball": flight.ball.to_dict(),
                            "result": flight.result.to_dict() if flight.result else None}
            for result in self.results:
                if result.ball_id == ball_id:
                    return {"status": "settled", "round_id": result.round_id,
                            "ball": None, "result": result.to_dict()}
        return None

    # ── Player actions ─────────────────────────────────────────

    def drop(self, wager: Optional[Amount] = None, risk=None) -> Result:
        """Debit `wager` and queue one ball; returns Result(ball_id)."""
        with self._lock:
            if self._closed:
                return Result.failure(InvalidStateTransition("session is closed"))
            level = self.risk
            if risk is not None:
                try:
                    level = RiskLevel.parse(risk)
                except ValueError:
                    return Result.failure(ConfigurationError(f"unknown risk level: {risk!r}",
                                                             risk=risk))
                if level != self.risk and self.risk_locked:
                    return Result.failure(InvalidStateTransition(
                        f"cannot drop at {level.value} risk while "
                        f"{self.balls_in_flight} ball(s) fly at {self.risk.value}",
                        risk=level.value, balls_in_flight=self.balls_in_flight))

            amount = self.wager if wager is None else wager
            machine = RoundStateMachine(self.ledger, game_type="plinko", bus=self.bus)
            placed = machine.place_bet(amount)
            if not placed.ok:
                logger.info(f"Drop refused: {placed.error.message}")
                return placed
            # the table only changes once the wager is taken
            if level != self.risk:
                self._apply_risk(level)

            ball = self._spawn_ball()
            flight = _Flight(ball=ball, machine=machine, wager=machine.round.wager,
                             round_id=machine.round_id)
            self._spawned.append(flight)
            self.bus.emit(BALL_DROPPED, ball_id=ball.id, round_id=flight.round_id,
                          wager=str(flight.wager), risk=self.risk.value, x=ball.x)
            logger.debug(f"Ball {ball.id} dropped: wager={flight.wager} risk={self.risk.value}")
            return Result.success(ball.id)

    def _spawn_ball(self) -> Ball:
        cfg = self.config
        offset = ((self.rng.uniform() + self.rng.uniform()) / 2 - 0.5) * 2
        x = self.board.center_x + offset * cfg.spawn_spread * self.board.peg_spacing
        vx = (self.rng.uniform() - 0.5) * 2 * cfg.spawn_vx
        ball = Ball(id=self._next_ball_id, x=x, y=self.board.spawn_y, vx=vx, vy=0.0)
        self._next_ball_id += 1
        return ball

    def set_risk(self, risk) -> Result:
        """Queue a risk change; applied once no ball is in flight."""
        try:
            level = RiskLevel.parse(risk)
        except ValueError:
            return Result.failure(ConfigurationError(f"unknown risk level: {risk!r}", risk=risk))
        with self._lock:
            self._actions.append(("risk", level))
            if self.risk_locked and level != self.risk:
                self.bus.emit(RISK_DEFERRED, risk=level.value,
                              balls_in_flight=self.balls_in_flight)
                logger.info(f"Risk change to {level.value} deferred: "
                            f"{self.balls_in_flight} ball(s) in flight")
            return Result.success(level)

    def set_wager(self, amount: Amount) -> Result:
        try:
            wager = parse_amount(amount)
        except InvalidAmount as e:
            return Result.failure(e)
        with self._lock:
            self._actions.append(("wager", wager))
        return Result.success(wager)

    # ── Tick loop ──────────────────────────────────────────────

    def tick(self, dt: Optional[float] = None) -> dict:
        with self._lock:
            self._apply_actions()
            if self._spawned:
                self._active.extend(self._spawned)
                self._spawned.clear()

            self.physics.tick([f.ball for f in self._active if not f.ball.in_pocket], dt)
            for flight in self._active:
                if flight.ball.in_pocket and not flight.settled:
                    self._settle(flight)

            self._purge()
            self.tick_count += 1
            snapshot = self.snapshot()

        if self.presentation_sink is not None:
            self.presentation_sink.publish(snapshot)
        return snapshot

    def _apply_actions(self) -> None:
        while self._actions:
            kind, value = self._actions.popleft()
            if kind == "wager":
                self.wager = value
                self.bus.emit(WAGER_CHANGED, wager=str(value))
            elif kind == "risk":
                self._pending_risk = value

        if self._pending_risk is None:
            return
        if self._pending_risk == self.risk:
            self._pending_risk = None
        elif not self.risk_locked:
            self._apply_risk(self._pending_risk)

    def _apply_risk(self, level: RiskLevel) -> None:
        previous = self.risk
        self.table = self._build_table(level)
        self.risk = level
        self._pending_risk = None
        self.bus.emit(RISK_CHANGED, previous=previous.value, risk=level.value,
                      multipliers=list(self.table))
        logger.info(f"Risk {previous.value} → {level.value}: {list(self.table)}")

    def _settle(self, flight: _Flight) -> None:
        ball = flight.ball
        multiplier = self.table[ball.pocket_index]
        resolved = flight.machine.resolve(Decimal(str(multiplier)),
                                          details={"ball_id": ball.id,
                                                   "pocket_index": ball.pocket_index,
                                                   "anomaly": ball.anomaly})
        if not resolved.ok:
            # retried on the next tick
            logger.error(f"Settlement of ball {ball.id} failed: {resolved.error.message}")
            return

        outcome = resolved.value
        flight.settled = True
        flight.result = BallResult(
            ball_id=ball.id, round_id=flight.round_id, pocket_index=ball.pocket_index,
            multiplier=multiplier, wager=flight.wager, payout=outcome.payout,
            risk=self.risk.value, anomaly=ball.anomaly,
        )
        self.results.appendleft(flight.result)
        self.bus.emit(BALL_POCKETED, ball_id=ball.id, round_id=flight.round_id,
                      pocket_index=ball.pocket_index, multiplier=multiplier,
                      anomaly=ball.anomaly)
        self.bus.emit(PAYOUT_CREDITED, ball_id=ball.id, round_id=flight.round_id,
                      wager=str(flight.wager), payout=str(outcome.payout),
                      outcome=outcome.kind.value, balance=str(self.ledger.balance))
        logger.debug(f"Ball {ball.id} → pocket {ball.pocket_index} ×{multiplier} "
                     f"payout={outcome.payout}")

    def _purge(self) -> None:
        keep = []
        for flight in self._active:
            if not flight.settled:
                keep.append(flight)
                continue
            flight.ball.decay_ticks += 1
            if flight.ball.decay_ticks <= self.config.retention_ticks:
                keep.append(flight)
                continue
            flight.machine.reset()
            self.bus.emit(BALL_PURGED, ball_id=flight.ball.id, round_id=flight.round_id)
        self._active = keep

    def run_until_settled(self, max_ticks: int = 20_000, dt: Optional[float] = None) -> int:
        """Tick until nothing is pending or in flight; returns ticks run."""
        ticks = 0
        while (self._spawned or self.balls_in_flight) and ticks < max_ticks:
            self.tick(dt)
            ticks += 1
        if self.balls_in_flight:
            logger.warning(f"{self.balls_in_flight} ball(s) still in flight after {ticks} ticks")
        return ticks

    # ── Host integration ───────────────────────────────────────

    def attach(self, scheduler: Scheduler) -> ScheduleHandle:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._handle = scheduler.schedule_repeating(self.config.nominal_dt, self.tick)
            return self._handle

    def close(self) -> None:
        """Stop ticking and release the sound sink. Balls in flight are kept."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None
            if self._sound is not None:
                self._sound.detach()
                self._sound = None
        logger.info(f"Plinko session closed after {self.tick_count} ticks")

    def __enter__(self) -> "PlinkoSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "tick": self.tick_count,
                "risk": self.risk.value,
                "pending_risk": self._pending_risk.value if self._pending_risk else None,
                "wager": str(self.wager),
                "balance": str(self.ledger.balance),
                "multipliers": list(self.table),
                "balls_in_flight": self.balls_in_flight,
                "balls": [f.ball.to_dict() for f in self._active],
                "results": [r.to_dict() for r in list(self.results)[:10]],
            }
