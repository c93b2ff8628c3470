#!/usr/bin/env python3
"""
Tests for the Plinko engine: board, pockets, multipliers, physics

Validates:
1. Peg lattice is triangular and symmetric about the centre
2. Pocket resolution covers [0, W] with no gaps and clamps outside it
3. Multiplier tables are symmetric, centre-out non-decreasing, and >= 0.1
4. Calibrated tables never exceed the requested binomial-model return
5. Terminal balls are never moved again
6. Non-finite state is recovered into the centre pocket and logged
7. Peg collisions reflect, side rails reflect, velocities are clamped
8. A ball resting on a peg is nudged and eventually lands
9. 150 balls in one engine all land in valid pockets, deterministically
"""

import logging
import math
import sys
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.game_schema import BoardConfig, PhysicsConfig, RiskLevel  # noqa: E402
from game_engine.core.errors import ConfigurationError, SimulationAnomaly  # noqa: E402
from game_engine.core.events import BALL_ANOMALY, BALL_NUDGED, BALL_PEG_HIT, EventBus  # noqa: E402
from game_engine.core.rng import SeededRandom  # noqa: E402
from game_engine.plinko.board import Board  # noqa: E402
from game_engine.plinko.multipliers import (  # noqa: E402
    MultiplierTable, binomial_weights, expected_return, generate_multipliers,
)
from game_engine.plinko.physics import Ball, PhysicsEngine  # noqa: E402
from game_engine.plinko.pockets import PocketResolver, resolve_pocket  # noqa: E402


def _engine(seed=42, bus=None, **board):
    b = Board(BoardConfig(**board))
    return PhysicsEngine(b, PhysicsConfig(), SeededRandom(seed), bus=bus), b


def _expect(exc_type, fn, *args):
    try:
        fn(*args)
    except exc_type:
        return
    assert False, f"{fn.__name__}{args} should raise {exc_type.__name__}"


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _run_to_pocket(engine, ball, max_ticks=20_000):
    for _ in range(max_ticks):
        if ball.in_pocket:
            break
        engine.tick([ball])
    return ball


# ============================================================
# Board & pockets
# ============================================================

def test_peg_lattice_is_triangular_and_symmetric():
    """Row r has r+1 pegs mirrored about the board centre."""
    board = Board(BoardConfig())
    assert board.rows == board.pocket_count - 1
    for r in board.row_indices():
        row = board.pegs_in_row(r)
        assert len(row) == r + 1
        for c, peg in enumerate(row):
            mirror = row[r - c]
            assert abs((peg.x - board.center_x) + (mirror.x - board.center_x)) < 1e-9
            assert peg.y == board.row_y(r)
    assert len(board.pegs_in_row(board.first_row)) == 3
    assert len(list(board.all_pegs())) == sum(r + 1 for r in board.row_indices())
    _expect(IndexError, board.peg_position, board.first_row, board.first_row + 1)
    _expect(IndexError, board.peg_position, board.last_row + 1, 0)
    _expect(IndexError, board.pegs_in_row, 0)
    print("✅ Peg lattice: triangular + symmetric")


def test_lattice_spans_the_pocket_strip():
    """Bottom pegs sit on pocket boundaries; each row's gaps sit over the next row's pegs."""
    board = Board(BoardConfig(pocket_count=12))
    bottom = [p.x for p in board.pegs_in_row(board.last_row)]
    edges = [board.pocket_bounds(0)[0]] + [board.pocket_bounds(i)[1] for i in range(12)]
    assert all(abs(a - b) < 1e-9 for a, b in zip(bottom, edges))
    for r in list(board.row_indices())[:-1]:
        row = board.pegs_in_row(r)
        gaps = [(a.x + b.x) / 2 for a, b in zip(row, row[1:])]
        below = [p.x for p in board.pegs_in_row(r + 1)[1:-1]]
        assert all(abs(g - x) < 1e-9 for g, x in zip(gaps, below))
    top = board.top_peg()
    assert top.x == board.center_x and top.row == board.first_row
    assert board.rail_bounds(board.spawn_y) == board.rail_bounds(board.top_margin)
    assert board.rail_bounds(board.pocket_line) == (0.0, board.width)
    print("✅ Lattice spans the pocket strip")


def test_pegs_near_finds_contact_candidates():
    board = Board(BoardConfig())
    near = list(board.pegs_near(board.center_x, board.top_margin, 10))
    assert (board.first_row, 1) in [(p.row, p.col) for p in near]
    assert list(board.pegs_near(board.center_x, -500, 10)) == []
    print("✅ pegs_near: local lookup")


def test_pocket_boundaries():
    """floor(x / width) with both walls clamped; x == W lands in the last pocket."""
    assert resolve_pocket(0, 800, 10) == 0
    assert resolve_pocket(79.999, 800, 10) == 0
    assert resolve_pocket(80, 800, 10) == 1
    assert resolve_pocket(799.99, 800, 10) == 9
    assert resolve_pocket(800, 800, 10) == 9
    assert resolve_pocket(-5, 800, 10) == 0
    assert resolve_pocket(900, 800, 10) == 9
    _expect(SimulationAnomaly, resolve_pocket, float("nan"), 800, 10)
    _expect(ConfigurationError, resolve_pocket, 10, 800, 0)
    _expect(ConfigurationError, PocketResolver, 0, 10)
    print("✅ Pocket boundaries")


def test_pocket_range_property():
    rng = SeededRandom(11)
    for n in (3, 8, 10, 17, 33):
        for _ in range(500):
            x = rng.uniform() * 1000 - 100
            assert 0 <= resolve_pocket(x, 800, n) <= n - 1
    board = Board(BoardConfig(pocket_count=7))
    bounds = [board.pocket_bounds(i) for i in range(7)]
    assert bounds[0][0] == 0 and abs(bounds[-1][1] - board.width) < 1e-9
    for (_, hi), (lo, _) in zip(bounds, bounds[1:]):
        assert hi == lo
    assert PocketResolver(800, 10).center_index == 5
    assert PocketResolver(800, 9).center_index == 4
    print("✅ Pocket range: 0..N-1 for any x")


# ============================================================
# Multiplier tables
# ============================================================

def test_tables_symmetric_and_monotonic():
    for risk in RiskLevel:
        for n in range(3, 34):
            table = MultiplierTable.generate(risk, n)
            assert len(table) == n
            assert table.is_symmetric(), (risk, n, list(table))
            assert table.is_monotonic(), (risk, n, list(table))
            assert min(table) >= 0.1
    print("✅ Tables: symmetric + monotonic for 3..33 pockets × 3 risks")


def test_table_shape_follows_risk_curve():
    low = generate_multipliers("low", 10)
    high = generate_multipliers("high", 10)
    assert low[0] == 16.0 and low[-1] == 16.0
    assert high[0] == 1000.0
    assert high[0] > low[0]
    assert MultiplierTable.generate("med", 10) == MultiplierTable.generate(RiskLevel.MEDIUM, 10)
    print("✅ Table edges match the risk curves")


def test_table_rejects_bad_parameters():
    for count in (2, 34, 10.5):
        _expect(ConfigurationError, MultiplierTable.generate, "low", count)
    _expect(ConfigurationError, MultiplierTable.generate, "extreme", 10)
    _expect(ConfigurationError, MultiplierTable.generate("low", 10).calibrated, 1.5)
    print("✅ Table parameter validation")


def test_calibrated_tables_respect_target():
    """Binomial-model return never exceeds the calibration target."""
    for risk in RiskLevel:
        for n in (3, 8, 10, 12, 16, 33):
            table = MultiplierTable.generate(risk, n, target_rtp=0.97)
            assert table.binomial_rtp() <= 0.97 + 1e-12, (risk, n, table.binomial_rtp())
            assert table.binomial_rtp() > 0.5
            assert table.is_symmetric() and table.is_monotonic()
            assert min(table) >= 0.1
            assert table.target_rtp == 0.97
    print("✅ Calibrated tables ≤ 97% binomial RTP")


def test_binomial_model():
    weights = binomial_weights(10)
    assert abs(sum(weights) - 1) < 1e-12
    assert weights[0] == weights[-1] == 1 / 2 ** 9
    assert abs(expected_return([1, 2, 3]) - 2.0) < 1e-12
    _expect(ConfigurationError, expected_return, [1, 2], [0.5])
    print("✅ Binomial weights")


# ============================================================
# Physics
# ============================================================

def test_terminal_ball_is_idempotent():
    engine, board = _engine()
    ball = Ball(id=1, x=123.0, y=board.pocket_line, in_pocket=True, pocket_index=1)
    before = ball.to_dict()
    for _ in range(5):
        engine.tick([ball])
    assert ball.to_dict() == before
    assert ball.ticks == 0
    print("✅ Terminal idempotence")


def test_ball_falls_into_valid_pocket():
    engine, board = _engine(seed=3)
    ball = Ball(id=1, x=board.center_x + 3, y=board.spawn_y)
    rows = []
    for _ in range(20_000):
        if ball.in_pocket:
            break
        engine.tick([ball])
        rows.append(ball.current_row)
    assert ball.in_pocket
    assert 0 <= ball.pocket_index < board.pocket_count
    assert ball.y == board.pocket_line
    assert ball.vx == 0 and ball.vy == 0
    assert rows == sorted(rows), "current_row must never decrease"
    assert ball.peg_hits > 0
    print(f"✅ Ball landed in pocket {ball.pocket_index} after {ball.ticks} ticks")


def test_nan_recovered_to_centre_pocket():
    bus = EventBus()
    anomalies = []
    bus.subscribe(BALL_ANOMALY, lambda e: anomalies.append(e.payload))
    engine, board = _engine(bus=bus)
    bad = Ball(id=1, x=float("nan"), y=100.0)
    good = Ball(id=2, x=200.0, y=10.0)
    capture = _Capture()
    physics_log = logging.getLogger("casinocore.physics")
    physics_log.addHandler(capture)
    try:
        engine.tick([bad, good])
    finally:
        physics_log.removeHandler(capture)
    assert bad.in_pocket and bad.anomaly
    assert bad.pocket_index == PocketResolver(board.width, board.pocket_count).center_index
    assert math.isfinite(bad.x) and bad.y == board.pocket_line
    assert good.y > 10.0 and not good.in_pocket
    assert anomalies and anomalies[0]["ball_id"] == 1
    assert any("SimulationAnomaly" in r.getMessage() for r in capture.records)
    print("✅ NaN → centre pocket, other balls unaffected")


def test_velocity_clamp_and_rails():
    engine, board = _engine()
    fast = Ball(id=1, x=board.center_x, y=board.top_margin + board.row_spacing / 2,
                vx=100.0, vy=100.0)
    engine.tick([fast])
    limit = engine.physics.max_velocity
    assert abs(fast.vx) <= limit and abs(fast.vy) <= limit

    r = engine.physics.ball_radius
    wall = Ball(id=2, x=3.0, y=20.0, vx=-5.0)
    engine.tick([wall])
    left, _ = board.rail_bounds(wall.y)
    assert left > 0
    assert wall.x >= left + r - 1e-9
    assert wall.vx >= 0
    right = Ball(id=3, x=board.width - 2, y=20.0, vx=5.0)
    engine.tick([right])
    assert right.x <= board.rail_bounds(right.y)[1] - r + 1e-9
    assert right.vx <= 0

    # the rails widen row by row and meet the walls at the bottom row
    low = Ball(id=4, x=1.0, y=board.row_y(board.last_row) + 1, vx=-2.0)
    engine.tick([low])
    assert r - 1e-9 <= low.x < board.pocket_bounds(0)[1]
    print("✅ Velocity clamp + rail reflection")


def test_peg_collision_reflects():
    bus = EventBus()
    hits = []
    bus.subscribe(BALL_PEG_HIT, lambda e: hits.append((e.payload["row"], e.payload["col"])))
    engine, board = _engine(bus=bus)
    peg = board.top_peg()
    ball = Ball(id=1, x=peg.x, y=peg.y - 9, vy=3.0)
    engine.tick([ball])
    assert ball.vy < 0, "ball must bounce upwards off the peg"
    assert ball.peg_hits == 1
    assert ball.current_row == board.first_row + 1
    assert hits == [(peg.row, peg.col)]
    print("✅ Peg collision reflects with damping")


def test_first_touch_picks_rebound_side():
    """Each row's first contact leaves sideways at a bounded speed, either way."""
    sides = set()
    for seed in range(40):
        engine, board = _engine(seed=seed)
        peg = board.top_peg()
        ball = Ball(id=1, x=peg.x, y=peg.y - 9, vy=3.0)
        engine.tick([ball])
        speed = engine.physics.rebound_speed
        assert speed / 2 - 1e-9 <= abs(ball.vx) <= speed + 1e-9
        sides.add(ball.vx > 0)
    assert sides == {True, False}

    b = Board(BoardConfig())
    plain = PhysicsEngine(b, PhysicsConfig(fair_rebound=False), SeededRandom(1))
    peg = b.top_peg()
    ball = Ball(id=1, x=peg.x, y=peg.y - 9, vy=3.0)
    plain.tick([ball])
    assert ball.vx == 0.0 and ball.vy < 0
    print("✅ Fair rebound on the first touch of a row")


def test_stuck_ball_is_nudged_and_lands():
    """A ball resting on top of a peg is nudged within a second and terminates."""
    bus = EventBus()
    nudges = []
    bus.subscribe(BALL_NUDGED, lambda e: nudges.append(e.payload["ball_id"]))
    engine, board = _engine(seed=9, bus=bus)
    peg = board.top_peg()
    # already bounced off this row, so only the stuck detector can move it
    ball = Ball(id=7, x=peg.x, y=peg.y - engine.contact_distance, vx=0.0, vy=0.0,
                current_row=peg.row + 1)

    for _ in range(60):          # one second at 60 Hz
        engine.tick([ball])
    assert ball.nudges >= 1
    assert nudges and nudges[0] == 7

    _run_to_pocket(engine, ball)
    assert ball.in_pocket
    assert 0 <= ball.pocket_index < board.pocket_count
    print(f"✅ Stuck ball nudged {ball.nudges}× and landed in pocket {ball.pocket_index}")


def test_many_balls_deterministic():
    """150 balls in one engine land in valid pockets; same seed → same pockets."""
    def run(seed):
        engine, board = _engine(seed=seed)
        rng = SeededRandom(seed + 1)
        balls = [Ball(id=i, x=board.center_x + (rng.uniform() - 0.5) * 30, y=board.spawn_y)
                 for i in range(150)]
        for _ in range(20_000):
            if all(b.in_pocket for b in balls):
                break
            engine.tick(balls)
        return balls, board

    balls, board = run(21)
    assert all(b.in_pocket for b in balls)
    pockets = [b.pocket_index for b in balls]
    assert all(0 <= p < board.pocket_count for p in pockets)
    assert len(set(pockets)) > 1
    again, _ = run(21)
    assert [b.pocket_index for b in again] == pockets
    print(f"✅ 150 balls → {len(set(pockets))} distinct pockets, reproducible")


def test_variable_dt_scales_step():
    engine_a, board = _engine(seed=1)
    engine_b, _ = _engine(seed=1)
    a = Ball(id=1, x=100.0, y=0.0)
    b = Ball(id=1, x=100.0, y=0.0)
    engine_a.tick([a])
    engine_b.tick([b], dt=engine_b.nominal_dt * 2)
    assert b.vy > a.vy
    print("✅ dt scales the integration step")


if __name__ == "__main__":
    tests = [
        test_peg_lattice_is_triangular_and_symmetric,
        test_lattice_spans_the_pocket_strip,
        test_pegs_near_finds_contact_candidates,
        test_pocket_boundaries,
        test_pocket_range_property,
        test_tables_symmetric_and_monotonic,
        test_table_shape_follows_risk_curve,
        test_table_rejects_bad_parameters,
        test_calibrated_tables_respect_target,
        test_binomial_model,
        test_terminal_ball_is_idempotent,
        test_ball_falls_into_valid_pocket,
        test_nan_recovered_to_centre_pocket,
        test_velocity_clamp_and_rails,
        test_peg_collision_reflects,
        test_first_touch_picks_rebound_side,
        test_stuck_ball_is_nudged_and_lands,
        test_many_balls_deterministic,
        test_variable_dt_scales_step,
    ]

    print(f"\n{'='*60}")
    print(f"Plinko Engine Tests — {len(tests)} tests")
    print(f"{'='*60}\n")

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"❌ {test.__name__}: {e}")
            failed += 1
        print()

    print(f"{'='*60}")
    print(f"Results: {passed} passed, {failed} failed, {passed + failed} total")
    print(f"{'='*60}")

    sys.exit(0 if failed == 0 else 1)
