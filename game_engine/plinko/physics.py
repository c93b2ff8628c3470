"""
CASINOCORE — Plinko Physics Engine

Advances every in-flight ball by one tick. Per ball, in order:

    1. gravity with ≤5% random jitter
    2. horizontal friction
    3. stuck detection → random nudge
    4. closest-peg collision (damped reflection, ±8% randomisation; the
       first touch on a row picks its rebound side at random)
    5. position integration
    6. side-rail reflection (rails follow the lattice outline)
    7. velocity clamp
    8. pocket-line check (terminal, exactly once)

Balls already in a pocket are skipped, so a tick never moves a settled ball.
Numerical blow-ups are recovered locally: the ball is parked in the centre
pocket, flagged, and logged; the tick carries on with the remaining balls.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from config.game_schema import PhysicsConfig
from game_engine.core.errors import SimulationAnomaly
from game_engine.core.events import BALL_ANOMALY, BALL_NUDGED, BALL_PEG_HIT, EventBus
from game_engine.core.rng import RandomSource, uniform_between
from game_engine.plinko.board import Board
from game_engine.plinko.pockets import PocketResolver

logger = logging.getLogger("casinocore.physics")


@dataclass
class Ball:
    id: int
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    current_row: int = 0
    in_pocket: bool = False
    pocket_index: Optional[int] = None
    history: list = field(default_factory=list)   # recent (x, y) for stuck detection
    nudges: int = 0
    peg_hits: int = 0
    ticks: int = 0
    anomaly: bool = False
    decay_ticks: int = 0                          # ticks spent in the pocket

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "x": round(self.x, 3),
            "y": round(self.y, 3),
            "vx": round(self.vx, 3),
            "vy": round(self.vy, 3),
            "current_row": self.current_row,
            "in_pocket": self.in_pocket,
            "pocket_index": self.pocket_index,
            "nudges": self.nudges,
            "anomaly": self.anomaly,
        }


def max_pairwise_distance(points: list) -> float:
    best = 0.0
    for i in range(len(points)):
        xi, yi = points[i]
        for j in range(i + 1, len(points)):
            xj, yj = points[j]
            d = math.hypot(xi - xj, yi - yj)
            if d > best:
                best = d
    return best


class PhysicsEngine:
    """Stateless stepper; all randomness comes from the injected RandomSource."""

    def __init__(self, board: Board, physics: PhysicsConfig, rng: RandomSource,
                 nominal_dt: float = 1 / 60, bus: Optional[EventBus] = None):
        self.board = board
        self.physics = physics
        self.rng = rng
        self.nominal_dt = nominal_dt
        self.bus = bus
        self.contact_distance = physics.ball_radius + physics.peg_radius
        self.pockets = PocketResolver(board.width, board.pocket_count)

    def tick(self, balls: list[Ball], dt: Optional[float] = None) -> list[Ball]:
        """Advance `balls` in list order; mutates and returns the same list."""
        step = (dt if dt is not None else self.nominal_dt) / self.nominal_dt
        for ball in balls:
            if ball.in_pocket:
                continue
            try:
                self._advance(ball, step)
            except SimulationAnomaly as e:
                self._recover(ball, e)
        return balls

    # ── Per-ball step ──────────────────────────────────────────

    def _advance(self, ball: Ball, step: float) -> None:
        p = self.physics
        self._ensure_finite(ball)
        ball.ticks += 1

        jitter = uniform_between(self.rng, -p.gravity_jitter, p.gravity_jitter)
        ball.vy += p.gravity * (1 + jitter) * step
        ball.vx *= p.friction ** step

        self._check_stuck(ball)
        self._collide(ball)

        ball.x += ball.vx * step
        ball.y += ball.vy * step

        self._reflect_rails(ball)
        ball.vx = max(-p.max_velocity, min(p.max_velocity, ball.vx))
        ball.vy = max(-p.max_velocity, min(p.max_velocity, ball.vy))

        self._ensure_finite(ball)
        if ball.y >= self.board.pocket_line:
            self._enter_pocket(ball, self.pockets.resolve(ball.x))

    def _ensure_finite(self, ball: Ball) -> None:
        if not all(math.isfinite(v) for v in (ball.x, ball.y, ball.vx, ball.vy)):
            raise SimulationAnomaly(f"ball {ball.id} left the real numbers",
                                    x=ball.x, y=ball.y, vx=ball.vx, vy=ball.vy)

    def _check_stuck(self, ball: Ball) -> None:
        p = self.physics
        ball.history.append((ball.x, ball.y))
        if len(ball.history) > p.stuck_window:
            del ball.history[0]
        if len(ball.history) < p.stuck_window:
            return
        if max_pairwise_distance(ball.history) >= p.stuck_threshold:
            return

        angle = self.rng.uniform() * 2 * math.pi
        ball.vx += math.cos(angle) * p.nudge_strength
        ball.vy += math.sin(angle) * p.nudge_strength + p.nudge_down_bias
        ball.nudges += 1
        ball.history.clear()
        logger.debug(f"Ball {ball.id} stuck at ({ball.x:.1f}, {ball.y:.1f}), nudge #{ball.nudges}")
        if self.bus is not None:
            self.bus.emit(BALL_NUDGED, ball_id=ball.id, x=ball.x, y=ball.y, nudges=ball.nudges)

    def _collide(self, ball: Ball) -> None:
        reach = self.contact_distance
        closest = None
        closest_d = reach
        for peg in self.board.pegs_near(ball.x, ball.y, reach):
            d = math.hypot(ball.x - peg.x, ball.y - peg.y)
            if d < closest_d:
                closest, closest_d = peg, d
        if closest is None:
            return

        if closest_d == 0:
            nx, ny = 0.0, -1.0
        else:
            nx = (ball.x - closest.x) / closest_d
            ny = (ball.y - closest.y) / closest_d

        vn = ball.vx * nx + ball.vy * ny
        if vn < 0:
            p = self.physics
            tx = ball.vx - vn * nx
            ty = ball.vy - vn * ny
            factor = 1 + uniform_between(self.rng, -p.bounce_randomness, p.bounce_randomness)
            ball.vx = (tx - vn * nx * p.bounce_damping) * factor
            ball.vy = (ty - vn * ny * p.bounce_damping) * factor
            if p.fair_rebound and closest.row + 1 > ball.current_row:
                side = -1.0 if self.rng.uniform() < 0.5 else 1.0
                speed = min(max(abs(ball.vx), p.rebound_speed / 2), p.rebound_speed)
                ball.vx = side * speed
            ball.peg_hits += 1
            if self.bus is not None:
                self.bus.emit(BALL_PEG_HIT, ball_id=ball.id, row=closest.row, col=closest.col)

        # push the ball back onto the contact circle
        ball.x = closest.x + nx * reach
        ball.y = closest.y + ny * reach
        ball.current_row = max(ball.current_row, closest.row + 1)

    def _reflect_rails(self, ball: Ball) -> None:
        r = self.physics.ball_radius
        damping = self.physics.wall_damping
        left, right = self.board.rail_bounds(ball.y)
        if ball.x < left + r:
            ball.x = left + r
            ball.vx = abs(ball.vx) * damping
        elif ball.x > right - r:
            ball.x = right - r
            ball.vx = -abs(ball.vx) * damping

    def _enter_pocket(self, ball: Ball, pocket_index: int) -> None:
        ball.in_pocket = True
        ball.pocket_index = pocket_index
        ball.y = self.board.pocket_line
        ball.vx = 0.0
        ball.vy = 0.0
        ball.history.clear()

    def _recover(self, ball: Ball, error: SimulationAnomaly) -> None:
        logger.warning(f"SimulationAnomaly on ball {ball.id}: {error.message}; "
                       f"forcing centre pocket")
        ball.anomaly = True
        ball.x = self.board.center_x
        self._enter_pocket(ball, self.pockets.center_index)
        if self.bus is not None:
            self.bus.emit(BALL_ANOMALY, ball_id=ball.id, pocket_index=ball.pocket_index,
                          reason=error.message)
