#!/usr/bin/env python3
"""
CASINOCORE — Core Unit Test Suite

Run: python tests.py
     python tests.py -v                    # verbose
     python tests.py TestRoundStateMachine # run specific class

Test categories:
  TestResults            — error taxonomy, Result serialisation
  TestRandomSources      — seeded replay, provably-fair verification, helpers
  TestPayoutLedger       — amount parsing, atomic debit/credit, totals
  TestRoundStateMachine  — Idle → Active → Resolved, no double debit
  TestEventBus           — subscribe/unsubscribe, wildcard, sound routing
  TestSchedulers         — manual + asyncio tick drivers
  TestConfiguration      — settings accessors, pydantic schema validation
"""

import asyncio
import hashlib
import logging
import sys
import threading
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.game_schema import (  # noqa: E402
    BoardConfig, MinesConfig, PhysicsConfig, PlinkoConfig, RiskCurve, RiskLevel,
)
from config.settings import Settings, configure_logging  # noqa: E402
from game_engine.core.errors import (  # noqa: E402
    ErrorKind, InsufficientFunds, InvalidAmount, Result,
)
from game_engine.core.events import (  # noqa: E402
    BALL_DROPPED, BALL_POCKETED, ROUND_STATE_CHANGED, EventBus, SoundCueRouter,
)
from game_engine.core.ledger import (  # noqa: E402
    InMemoryBalanceService, PayoutLedger, parse_amount,
)
from game_engine.core.rng import (  # noqa: E402
    ProvablyFairRandom, RandomSource, SeededRandom, SystemRandomSource,
    make_random_source, randint, shuffle, uniform_between,
)
from game_engine.core.rounds import OutcomeKind, RoundState, RoundStateMachine  # noqa: E402
from game_engine.core.scheduler import AsyncioScheduler, ManualScheduler  # noqa: E402


def _ledger(balance="1000") -> PayoutLedger:
    return PayoutLedger(InMemoryBalanceService(Decimal(balance)))


class RecordingSoundSink:
    def __init__(self):
        self.is_open = False
        self.cues = []
        self.opened = 0
        self.closed = 0

    def open(self):
        self.is_open = True
        self.opened += 1

    def play(self, cue):
        self.cues.append(cue)

    def close(self):
        self.is_open = False
        self.closed += 1


# ============================================================
# Errors & Results
# ============================================================

class TestResults(unittest.TestCase):

    def test_failure_serialises_kind_and_context(self):
        """A failed Result exposes the error kind, message and JSON-safe context."""
        result = Result.failure(InvalidAmount("bad wager", amount=Decimal("-5")))
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(result.to_dict(), {
            "ok": False,
            "error": "invalid_amount",
            "message": "bad wager",
            "context": {"amount": "-5"},
        })

    def test_unwrap(self):
        """unwrap returns the value on success and raises the error on failure."""
        self.assertEqual(Result.success(7).unwrap(), 7)
        with self.assertRaises(InsufficientFunds):
            Result.failure(InsufficientFunds("nope")).unwrap()

    def test_default_message_is_kind(self):
        self.assertEqual(InsufficientFunds().message, "insufficient_funds")


# ============================================================
# Random sources
# ============================================================

class TestRandomSources(unittest.TestCase):

    def test_seeded_replay(self):
        """Same seed → identical stream."""
        a, b = SeededRandom(99), SeededRandom(99)
        self.assertEqual([a.uniform() for _ in range(20)], [b.uniform() for _ in range(20)])

    def test_protocol_conformance(self):
        for source in (SeededRandom(1), SystemRandomSource(), ProvablyFairRandom()):
            self.assertIsInstance(source, RandomSource)
            u = source.uniform()
            self.assertTrue(0 <= u < 1)

    def test_provably_fair_verification(self):
        """Every drawn value can be recomputed from the revealed seeds."""
        rng = ProvablyFairRandom(server_seed="server", client_seed="client", nonce=3)
        self.assertEqual(rng.server_seed_hash, hashlib.sha256(b"server").hexdigest())
        self.assertNotIn("server_seed", rng.verification_data())

        values = [rng.uniform() for _ in range(20)]   # spans three HMAC blocks
        seed = rng.reveal()
        self.assertEqual(seed, "server")
        self.assertTrue(rng.revealed)
        for i, v in enumerate(values):
            self.assertEqual(ProvablyFairRandom.verify("server", "client", 3, i), v)
        self.assertEqual(rng.verification_data()["server_seed"], "server")
        self.assertEqual(rng.verification_data()["values_drawn"], 20)

    def test_next_nonce_starts_fresh_stream(self):
        rng = ProvablyFairRandom(server_seed="s", client_seed="c", nonce=0)
        first = [rng.uniform() for _ in range(4)]
        self.assertEqual(rng.next_nonce(), 1)
        self.assertEqual(rng.cursor, 0)
        second = [rng.uniform() for _ in range(4)]
        self.assertNotEqual(first, second)
        self.assertEqual(second[0], ProvablyFairRandom.verify("s", "c", 1, 0))

    def test_helpers(self):
        rng = SeededRandom(5)
        for _ in range(200):
            self.assertIn(randint(rng, 6), range(6))
            v = uniform_between(rng, -0.05, 0.05)
            self.assertTrue(-0.05 <= v <= 0.05)
        items = list(range(25))
        shuffle(rng, items)
        self.assertEqual(sorted(items), list(range(25)))
        with self.assertRaises(ValueError):
            randint(rng, 0)

    def test_make_random_source(self):
        self.assertIsInstance(make_random_source(7), SeededRandom)
        self.assertIsInstance(make_random_source(None), SystemRandomSource)


# ============================================================
# Payout ledger
# ============================================================

class TestPayoutLedger(unittest.TestCase):

    def test_parse_amount(self):
        self.assertEqual(parse_amount("10.50"), Decimal("10.50"))
        self.assertEqual(parse_amount(3), Decimal("3"))
        self.assertEqual(parse_amount(0, allow_zero=True), Decimal("0"))
        for bad in ("-5", -5, 0, float("nan"), float("inf"), "abc", None, True, "Infinity"):
            with self.assertRaises(InvalidAmount, msg=repr(bad)):
                parse_amount(bad)

    def test_debit_beyond_balance_has_no_side_effects(self):
        ledger = _ledger("500")
        result = ledger.debit(1000)
        self.assertEqual(result.kind, ErrorKind.INSUFFICIENT_FUNDS)
        self.assertEqual(ledger.balance, Decimal("500"))
        self.assertEqual(ledger.total_debited, Decimal("0"))
        self.assertEqual(len(ledger.transactions), 0)

    def test_debit_and_credit_totals(self):
        ledger = _ledger("100")
        self.assertEqual(ledger.debit("10", reference="r1:bet").value, Decimal("90"))
        self.assertEqual(ledger.credit("25.5", reference="r1:payout").value, Decimal("115.5"))
        summary = ledger.summary()
        self.assertEqual(summary["total_debited"], "10")
        self.assertEqual(summary["total_credited"], "25.5")
        self.assertEqual(summary["net"], "15.5")
        self.assertEqual([t["type"] for t in ledger.transactions], ["debit", "credit"])

    def test_zero_credit_is_noop(self):
        ledger = _ledger("100")
        result = ledger.credit(0)
        self.assertTrue(result.ok)
        self.assertEqual(len(ledger.transactions), 0)

    def test_invalid_amounts_rejected(self):
        ledger = _ledger("100")
        self.assertEqual(ledger.debit(-5).kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(ledger.credit(-1).kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(ledger.balance, Decimal("100"))

    def test_balance_service_refuses_negative(self):
        service = InMemoryBalanceService(Decimal("5"))
        self.assertEqual(service.apply_delta(Decimal("-6")).kind, ErrorKind.INSUFFICIENT_FUNDS)
        self.assertEqual(service.get_balance(), Decimal("5"))

    def test_concurrent_debits_never_overdraw(self):
        """400 concurrent 1-unit debits against 100 → exactly 100 succeed."""
        ledger = _ledger("100")
        ok = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                if ledger.debit(1).ok:
                    with lock:
                        ok.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(ok), 100)
        self.assertEqual(ledger.balance, Decimal("0"))


# ============================================================
# Round state machine
# ============================================================

class TestRoundStateMachine(unittest.TestCase):

    def test_negative_bet_rejected(self):
        """place_bet(-5) → InvalidAmount; balance unchanged."""
        ledger = _ledger()
        machine = RoundStateMachine(ledger)
        result = machine.place_bet(-5)
        self.assertEqual(result.kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(ledger.balance, Decimal("1000"))
        self.assertEqual(machine.state, RoundState.IDLE)

    def test_bet_above_balance_rejected(self):
        """place_bet(1000) with balance 500 → InsufficientFunds; balance unchanged."""
        ledger = _ledger("500")
        machine = RoundStateMachine(ledger)
        result = machine.place_bet(1000)
        self.assertEqual(result.kind, ErrorKind.INSUFFICIENT_FUNDS)
        self.assertEqual(ledger.balance, Decimal("500"))
        self.assertEqual(machine.state, RoundState.IDLE)

    def test_no_double_debit(self):
        """A second place_bet while Active is refused and debits nothing."""
        ledger = _ledger()
        machine = RoundStateMachine(ledger)
        self.assertTrue(machine.place_bet(10).ok)
        second = machine.place_bet(10)
        self.assertEqual(second.kind, ErrorKind.INVALID_STATE_TRANSITION)
        self.assertEqual(ledger.balance, Decimal("990"))
        self.assertEqual(ledger.total_debited, Decimal("10"))

    def test_resolve_credits_once(self):
        ledger = _ledger()
        machine = RoundStateMachine(ledger)
        machine.place_bet(10)
        outcome = machine.resolve(2.5).unwrap()
        self.assertEqual(outcome.kind, OutcomeKind.WIN)
        self.assertEqual(outcome.payout, Decimal("25.00"))
        self.assertEqual(ledger.balance, Decimal("1015.00"))

        again = machine.resolve(2.5)
        self.assertEqual(again.kind, ErrorKind.INVALID_STATE_TRANSITION)
        self.assertEqual(ledger.balance, Decimal("1015.00"))

    def test_outcome_kinds(self):
        ledger = _ledger()
        for multiplier, kind in ((1, OutcomeKind.PUSH), (0.5, OutcomeKind.LOSS),
                                 (0, OutcomeKind.LOSS), (3, OutcomeKind.WIN)):
            machine = RoundStateMachine(ledger)
            machine.place_bet(4)
            self.assertEqual(machine.resolve(multiplier).value.kind, kind, multiplier)

    def test_loss_skips_credit(self):
        ledger = _ledger()
        machine = RoundStateMachine(ledger)
        machine.place_bet(10)
        machine.resolve(0)
        self.assertEqual(ledger.balance, Decimal("990"))
        self.assertEqual([t["type"] for t in ledger.transactions], ["debit"])

    def test_payout_rounds_half_up_to_cents(self):
        ledger = _ledger()
        machine = RoundStateMachine(ledger)
        machine.place_bet("0.33")
        self.assertEqual(machine.resolve("1.5").value.payout, Decimal("0.50"))

    def test_reset_rules(self):
        machine = RoundStateMachine(_ledger())
        self.assertTrue(machine.reset().ok)                       # Idle: no-op
        first_id = machine.round_id
        self.assertEqual(machine.round_id, first_id)
        machine.place_bet(10)
        self.assertEqual(machine.reset().kind, ErrorKind.INVALID_STATE_TRANSITION)
        machine.resolve(1.2)
        self.assertTrue(machine.reset().ok)
        self.assertEqual(machine.state, RoundState.IDLE)
        self.assertNotEqual(machine.round_id, first_id)
        self.assertTrue(machine.place_bet(10).ok)

    def test_transitions_emit_events(self):
        bus = EventBus()
        seen = []
        bus.subscribe(ROUND_STATE_CHANGED, lambda e: seen.append((e.payload["previous"],
                                                                  e.payload["state"])))
        machine = RoundStateMachine(_ledger(), game_type="test", bus=bus)
        machine.place_bet(10)
        machine.place_bet(10)      # refused, no event
        machine.resolve(2)
        machine.reset()
        self.assertEqual(seen, [("idle", "active"), ("active", "resolved"),
                                ("resolved", "idle")])

    def test_reset_event_belongs_to_finished_round(self):
        bus = EventBus()
        seen = []
        bus.subscribe(ROUND_STATE_CHANGED, lambda e: seen.append((e.payload["round_id"],
                                                                  e.payload["state"])))
        machine = RoundStateMachine(_ledger(), bus=bus)
        machine.place_bet(10)
        machine.resolve(1)
        finished = machine.round_id
        machine.reset()
        self.assertEqual(seen[-1], (finished, "idle"))
        self.assertEqual({rid for rid, _ in seen}, {finished})
        self.assertNotEqual(machine.round_id, finished)
        self.assertEqual(machine.round.state, RoundState.IDLE)
        self.assertIsNone(machine.round.wager)


# ============================================================
# Event bus & sound routing
# ============================================================

class TestEventBus(unittest.TestCase):

    def test_subscribe_and_unsubscribe(self):
        bus = EventBus()
        got = []
        unsubscribe = bus.subscribe(BALL_DROPPED, lambda e: got.append(e.payload["ball_id"]))
        bus.emit(BALL_DROPPED, ball_id=1)
        unsubscribe()
        bus.emit(BALL_DROPPED, ball_id=2)
        self.assertEqual(got, [1])

    def test_wildcard_and_failing_handler(self):
        """A raising subscriber is logged and does not stop the others."""
        bus = EventBus()
        names = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(BALL_POCKETED, broken)
        bus.subscribe("*", lambda e: names.append(e.name))
        with self.assertLogs("casinocore.events", level="ERROR"):
            event = bus.emit(BALL_POCKETED, ball_id=3)
        self.assertEqual(names, [BALL_POCKETED])
        self.assertGreater(event.timestamp, 0)

    def test_sound_router_lifecycle(self):
        bus = EventBus()
        sink = RecordingSoundSink()
        router = SoundCueRouter(sink)
        router.attach(bus)
        self.assertTrue(sink.is_open)
        bus.emit(BALL_DROPPED, ball_id=1)
        bus.emit("unmapped.event")
        self.assertEqual(sink.cues, ["plinko_drop"])
        router.detach()
        self.assertFalse(sink.is_open)
        bus.emit(BALL_DROPPED, ball_id=2)
        self.assertEqual(sink.cues, ["plinko_drop"])


# ============================================================
# Schedulers
# ============================================================

class TestSchedulers(unittest.TestCase):

    def test_manual_scheduler(self):
        scheduler = ManualScheduler()
        calls = []
        handle = scheduler.schedule_repeating(0.5, lambda: calls.append(1))
        scheduler.advance(3)
        self.assertEqual(len(calls), 3)
        self.assertAlmostEqual(scheduler.elapsed, 1.5)
        handle.cancel()
        self.assertFalse(scheduler.active)
        scheduler.advance(2)
        self.assertEqual(len(calls), 3)

    def test_asyncio_scheduler(self):
        calls = []

        async def run():
            handle = AsyncioScheduler().schedule_repeating(0.005, lambda: calls.append(1))
            await asyncio.sleep(0.1)
            handle.cancel()
            await asyncio.sleep(0.01)
            return len(calls)

        count = asyncio.run(run())
        self.assertGreaterEqual(count, 2)
        self.assertEqual(len(calls), count)


# ============================================================
# Configuration
# ============================================================

class TestConfiguration(unittest.TestCase):

    def test_target_rtp_accessor(self):
        with patch.object(Settings, "TARGET_RTP", 0.0):
            self.assertIsNone(Settings.target_rtp())
        with patch.object(Settings, "TARGET_RTP", 0.95):
            self.assertEqual(Settings.target_rtp(), 0.95)

    def test_tick_interval(self):
        with patch.object(Settings, "TICK_RATE", 50.0):
            self.assertAlmostEqual(Settings.tick_interval(), 0.02)
        with patch.object(Settings, "TICK_RATE", 0.0):
            self.assertAlmostEqual(Settings.tick_interval(), 1 / 60)

    def test_configure_logging_idempotent(self):
        logger = configure_logging("DEBUG")
        handlers = len(logger.handlers)
        configure_logging("WARNING")
        self.assertEqual(logger.name, "casinocore")
        self.assertEqual(len(logger.handlers), handlers)
        self.assertEqual(logger.level, logging.WARNING)

    def test_board_geometry(self):
        board = BoardConfig()
        self.assertEqual(board.width, 10 * board.peg_spacing)
        self.assertEqual((board.first_row, board.last_row, board.rows), (2, 10, 9))
        self.assertEqual(board.pocket_line, 40 + 8.5 * 26)
        self.assertLess(board.spawn_y, board.top_margin)
        self.assertEqual(BoardConfig(pocket_count=16).rows, 15)

    def test_schema_validation(self):
        with self.assertRaises(ValueError):
            PhysicsConfig(stuck_threshold=7.0)            # not below ball radius
        with self.assertRaises(ValueError):
            MinesConfig(rows=2, cols=2, mine_count=4)
        with self.assertRaises(ValueError):
            PlinkoConfig(board=BoardConfig(peg_spacing=20))      # ball cannot pass two pegs
        with self.assertRaises(ValueError):
            PlinkoConfig(spawn_spread=0.5)                       # spawn misses the top peg
        with self.assertRaises(ValueError):
            RiskCurve(min_multiplier=2, mid_multiplier=1, max_multiplier=3,
                      inner_threshold=0.3, exponent=2)
        with self.assertRaises(ValueError):
            PlinkoConfig(risk_curves={"low": RiskCurve(min_multiplier=0.5, mid_multiplier=1,
                                                       max_multiplier=5, inner_threshold=0.3,
                                                       exponent=2)})

    def test_risk_parse(self):
        self.assertEqual(RiskLevel.parse("med"), RiskLevel.MEDIUM)
        self.assertEqual(RiskLevel.parse(" HIGH "), RiskLevel.HIGH)
        self.assertIs(RiskLevel.parse(RiskLevel.LOW), RiskLevel.LOW)
        with self.assertRaises(ValueError):
            RiskLevel.parse("extreme")


# ============================================================
# Main
# ============================================================

if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
