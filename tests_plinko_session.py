#!/usr/bin/env python3
"""
CASINOCORE — Plinko Session Tests

Run: python tests_plinko_session.py
     python -m pytest tests_plinko_session.py -v

Test categories:
  TestDropAndSettle   — debit on drop, credit on pocket, balance conservation
  TestRiskAndWager    — risk lock / deferral, queued wager changes
  TestConcurrency     — 120 balls in flight at once
  TestLifecycle       — retention + purge, events, sinks, schedulers
"""

import logging
import sys
import unittest
from decimal import Decimal
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.game_schema import (  # noqa: E402
    DEFAULT_TARGET_RTP, BoardConfig, PlinkoConfig, RiskLevel, default_plinko_config,
)
from game_engine.core.errors import ErrorKind  # noqa: E402
from game_engine.core.events import (  # noqa: E402
    BALL_DROPPED, BALL_POCKETED, BALL_PURGED, PAYOUT_CREDITED, RISK_CHANGED,
    RISK_DEFERRED, WILDCARD, EventBus,
)
from game_engine.core.ledger import InMemoryBalanceService, PayoutLedger, quantize_money  # noqa: E402
from game_engine.core.rng import SeededRandom  # noqa: E402
from game_engine.core.scheduler import ManualScheduler  # noqa: E402
from game_engine.plinko.multipliers import MultiplierTable  # noqa: E402
from game_engine.plinko.pockets import PocketResolver  # noqa: E402
from game_engine.plinko.session import PlinkoSession  # noqa: E402


def _session(balance="1000", risk="low", pockets=10, seed=1, config=None, **kw):
    ledger = PayoutLedger(InMemoryBalanceService(Decimal(balance)))
    cfg = config or default_plinko_config(pocket_count=pockets, risk=risk)
    return PlinkoSession(ledger, config=cfg, rng=SeededRandom(seed), **kw), ledger


class RecordingSink:
    def __init__(self):
        self.snapshots = []
        self.cues = []
        self.is_open = False
        self.closed = 0

    def publish(self, snapshot):
        self.snapshots.append(snapshot)

    def open(self):
        self.is_open = True

    def play(self, cue):
        self.cues.append(cue)

    def close(self):
        self.is_open = False
        self.closed += 1


# ============================================================
# Drop → settle
# ============================================================

class TestDropAndSettle(unittest.TestCase):

    def test_single_drop_low_risk_ten_pockets(self):
        """Wager 10, low risk, 10 pockets: debit 10, then credit 10 × multiplier[pocket]."""
        session, ledger = _session()
        result = session.drop(10)
        self.assertTrue(result.ok)
        self.assertEqual(result.value, 1)
        self.assertEqual(ledger.balance, Decimal("990"))

        session.run_until_settled()
        self.assertEqual(len(session.results), 1)
        settled = session.results[0]
        self.assertIn(settled.pocket_index, range(10))
        expected = quantize_money(Decimal("10") * Decimal(str(session.table[settled.pocket_index])))
        self.assertEqual(settled.payout, expected)
        self.assertEqual(ledger.balance, Decimal("990") + expected)
        self.assertEqual(session.balls_in_flight, 0)

    def test_invalid_amount(self):
        session, ledger = _session()
        self.assertEqual(session.drop(-5).kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(session.drop("abc").kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(ledger.balance, Decimal("1000"))
        self.assertEqual(session.balls_in_flight, 0)

    def test_insufficient_funds(self):
        session, ledger = _session(balance="15")
        self.assertTrue(session.drop(10).ok)
        second = session.drop(10)
        self.assertEqual(second.kind, ErrorKind.INSUFFICIENT_FUNDS)
        self.assertEqual(ledger.balance, Decimal("5"))
        self.assertEqual(session.balls_in_flight, 1)

    def test_balance_conservation(self):
        """final = initial − Σ wagers + Σ payouts."""
        session, ledger = _session(seed=5)
        for wager in ("1", "2.5", "10", "0.35") * 10:
            session.drop(wager).unwrap()
        session.run_until_settled()
        wagers = sum(r.wager for r in session.results)
        payouts = sum(r.payout for r in session.results)
        self.assertEqual(len(session.results), 40)
        self.assertEqual(wagers, ledger.total_debited)
        self.assertEqual(payouts, ledger.total_credited)
        self.assertEqual(ledger.balance, Decimal("1000") - wagers + payouts)

    def test_anomalous_ball_pays_centre_pocket(self):
        session, ledger = _session()
        session.drop(10)
        session.tick()
        ball = session.balls[0]
        ball.vx = float("nan")
        session.tick()
        self.assertTrue(ball.anomaly)
        centre = PocketResolver(session.board.width, 10).center_index
        self.assertEqual(session.results[0].pocket_index, centre)
        self.assertTrue(session.results[0].anomaly)
        self.assertEqual(ledger.balance, Decimal("990") + session.results[0].payout)

    def test_find_reports_progress(self):
        session, _ = _session()
        ball_id = session.drop(10).value
        self.assertEqual(session.find(ball_id)["status"], "pending")
        session.tick()
        self.assertEqual(session.find(ball_id)["status"], "in_flight")
        session.run_until_settled()
        found = session.find(ball_id)
        self.assertEqual(found["status"], "settled")
        self.assertEqual(found["result"]["ball_id"], ball_id)
        self.assertIsNone(session.find(999))

    def test_calibrated_table(self):
        session, _ = _session(config=default_plinko_config(pocket_count=12, risk="high",
                                                           target_rtp=0.97))
        self.assertLessEqual(session.table.binomial_rtp(), 0.97)

    def test_default_tables_return_less_than_staked(self):
        for risk in RiskLevel:
            for pockets in range(3, 34):
                session, _ = _session(risk=risk.value, pockets=pockets)
                self.assertEqual(session.table.target_rtp, DEFAULT_TARGET_RTP)
                self.assertLess(session.table.binomial_rtp(), 1.0, f"{risk.value}/{pockets}")


# ============================================================
# Risk & wager changes
# ============================================================

class TestRiskAndWager(unittest.TestCase):

    def test_risk_change_deferred_while_ball_in_flight(self):
        """Table stays unchanged until every ball has settled."""
        bus = EventBus()
        deferred = []
        bus.subscribe(RISK_DEFERRED, lambda e: deferred.append(e.payload["risk"]))
        session, _ = _session(bus=bus)
        low_table = MultiplierTable.generate("low", 10, target_rtp=DEFAULT_TARGET_RTP)
        self.assertEqual(session.table, low_table)

        session.drop(10)
        self.assertTrue(session.risk_locked)
        self.assertTrue(session.set_risk("high").ok)
        self.assertEqual(deferred, ["high"])

        session.tick()
        self.assertEqual(session.risk.value, "low")
        self.assertEqual(session.table, low_table)
        self.assertEqual(session.pending_risk.value, "high")

        session.run_until_settled()
        settled = session.results[0]
        self.assertEqual(settled.risk, "low")
        self.assertEqual(settled.multiplier, low_table[settled.pocket_index])

        session.tick()
        self.assertEqual(session.risk.value, "high")
        self.assertEqual(session.table,
                         MultiplierTable.generate("high", 10, target_rtp=DEFAULT_TARGET_RTP))
        self.assertIsNone(session.pending_risk)

    def test_drop_at_other_risk_rejected_while_locked(self):
        session, ledger = _session()
        session.drop(10)
        result = session.drop(10, risk="high")
        self.assertEqual(result.kind, ErrorKind.INVALID_STATE_TRANSITION)
        self.assertEqual(ledger.balance, Decimal("990"))
        self.assertTrue(session.drop(10, risk="low").ok)

    def test_drop_at_other_risk_applies_when_idle(self):
        bus = EventBus()
        changes = []
        bus.subscribe(RISK_CHANGED, lambda e: changes.append((e.payload["previous"],
                                                             e.payload["risk"])))
        session, _ = _session(bus=bus)
        self.assertTrue(session.drop(10, risk="medium").ok)
        self.assertEqual(session.risk.value, "medium")
        self.assertEqual(changes, [("low", "medium")])

    def test_set_risk_applies_on_next_tick_when_idle(self):
        session, _ = _session()
        session.set_risk("high")
        self.assertEqual(session.risk.value, "low")
        session.tick()
        self.assertEqual(session.risk.value, "high")

    def test_rejected_drop_keeps_risk(self):
        """A drop that fails validation or the debit leaves the table alone."""
        session, ledger = _session(balance="100")
        table = session.table
        self.assertEqual(session.drop(-5, risk="high").kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(session.drop(5000, risk="medium").kind, ErrorKind.INSUFFICIENT_FUNDS)
        self.assertEqual(session.risk.value, "low")
        self.assertEqual(session.table, table)
        self.assertEqual(ledger.balance, Decimal("100"))
        self.assertEqual(session.balls_in_flight, 0)

    def test_unknown_risk(self):
        session, _ = _session()
        self.assertEqual(session.set_risk("extreme").kind, ErrorKind.CONFIGURATION_ERROR)
        self.assertEqual(session.drop(10, risk="extreme").kind, ErrorKind.CONFIGURATION_ERROR)

    def test_set_wager_is_queued(self):
        session, ledger = _session()
        self.assertEqual(session.set_wager(0).kind, ErrorKind.INVALID_AMOUNT)
        self.assertTrue(session.set_wager("25").ok)
        self.assertEqual(session.wager, Decimal("10"))
        session.tick()
        self.assertEqual(session.wager, Decimal("25"))
        session.drop()
        self.assertEqual(ledger.balance, Decimal("975"))


# ============================================================
# Many balls
# ============================================================

class TestConcurrency(unittest.TestCase):

    def test_120_balls_in_flight(self):
        """Balls dropped in the same tick window settle independently."""
        session, ledger = _session(balance="10000", seed=17)
        pocketed = []
        session.bus.subscribe(BALL_POCKETED, lambda e: pocketed.append(
            (e.payload["ball_id"], e.payload["pocket_index"])))

        ids = [session.drop(1).unwrap() for _ in range(120)]
        self.assertEqual(len(set(ids)), 120)
        self.assertEqual(session.balls_in_flight, 120)
        session.run_until_settled()

        self.assertEqual(session.balls_in_flight, 0)
        self.assertEqual(sorted(b for b, _ in pocketed), sorted(ids))
        pockets = [p for _, p in pocketed]
        self.assertTrue(all(0 <= p < 10 for p in pockets))
        self.assertGreater(len(set(pockets)), 1)
        self.assertEqual(ledger.total_debited, Decimal("120"))
        self.assertEqual(ledger.balance,
                         Decimal("10000") - ledger.total_debited + ledger.total_credited)


# ============================================================
# Lifecycle
# ============================================================

class TestLifecycle(unittest.TestCase):

    def test_retention_then_purge(self):
        config = PlinkoConfig(board=BoardConfig(pocket_count=10), retention_seconds=0.5)
        session, _ = _session(config=config)
        names = []
        session.bus.subscribe(WILDCARD, lambda e: names.append(e.name))

        session.drop(10)
        session.run_until_settled()
        self.assertEqual(len(session.balls), 1)           # still visible in its pocket
        for _ in range(config.retention_ticks + 1):
            session.tick()
        self.assertEqual(session.balls, [])

        ball_events = [n for n in names if n in (BALL_DROPPED, BALL_POCKETED,
                                                  PAYOUT_CREDITED, BALL_PURGED)]
        self.assertEqual(ball_events, [BALL_DROPPED, BALL_POCKETED, PAYOUT_CREDITED,
                                       BALL_PURGED])

    def test_result_history_is_bounded(self):
        config = PlinkoConfig(board=BoardConfig(pocket_count=10), result_history=5)
        session, _ = _session(config=config)
        for _ in range(8):
            session.drop(1)
        session.run_until_settled()
        self.assertEqual(len(session.results), 5)

    def test_presentation_and_sound_sinks(self):
        sink = RecordingSink()
        session, _ = _session(sound_sink=sink, presentation_sink=sink)
        self.assertTrue(sink.is_open)
        session.drop(10)
        ticks = session.run_until_settled()
        self.assertEqual(len(sink.snapshots), ticks)
        self.assertIn("balls", sink.snapshots[-1])
        self.assertIn("plinko_drop", sink.cues)
        self.assertIn("plinko_win", sink.cues)

        session.close()
        session.close()
        self.assertFalse(sink.is_open)
        self.assertEqual(sink.closed, 1)

    def test_scheduler_attach_and_close(self):
        session, _ = _session()
        scheduler = ManualScheduler()
        session.attach(scheduler)
        self.assertAlmostEqual(scheduler.interval, 1 / 60)
        scheduler.advance(5)
        self.assertEqual(session.tick_count, 5)

        session.close()
        scheduler.advance(5)
        self.assertEqual(session.tick_count, 5)
        self.assertEqual(session.drop(10).kind, ErrorKind.INVALID_STATE_TRANSITION)

    def test_context_manager_and_snapshot(self):
        sink = RecordingSink()
        with _session(sound_sink=sink)[0] as session:
            snapshot = session.snapshot()
            for key in ("tick", "risk", "wager", "balance", "multipliers", "balls", "results"):
                self.assertIn(key, snapshot)
            self.assertEqual(len(snapshot["multipliers"]), 10)
        self.assertFalse(sink.is_open)


if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
