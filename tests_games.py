#!/usr/bin/env python3
"""
CASINOCORE — Round Game Tests (Mines, Blackjack, Crash)

Run: python tests_games.py
     python -m pytest tests_games.py -v
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
    BlackjackConfig, CrashConfig, MinesConfig, default_plinko_config,
)
from game_engine.core.errors import ConfigurationError, ErrorKind  # noqa: E402
from game_engine.core.events import CARD_DEALT, CRASH_BUSTED, MINES_REVEALED, EventBus  # noqa: E402
from game_engine.core.ledger import InMemoryBalanceService, PayoutLedger  # noqa: E402
from game_engine.core.rng import SeededRandom  # noqa: E402
from game_engine.core.rounds import OutcomeKind, RoundState  # noqa: E402
from game_engine.games import GAME_TYPES, get_game  # noqa: E402
from game_engine.games.blackjack import (  # noqa: E402
    BlackjackGame, hand_total_details, is_blackjack, new_deck,
)
from game_engine.games.crash import CrashGame, crash_point  # noqa: E402
from game_engine.games.mines import MinesGame, fair_multiplier, survival_probability  # noqa: E402
from game_engine.plinko.session import PlinkoSession  # noqa: E402


def _ledger(balance="1000") -> PayoutLedger:
    return PayoutLedger(InMemoryBalanceService(Decimal(balance)))


class ConstantRandom:
    """RandomSource that always returns the same draw."""

    def __init__(self, value: float):
        self.value = value

    def uniform(self) -> float:
        return self.value


def card(rank, suit="H"):
    return {"rank": rank, "suit": suit, "code": f"{rank}{suit}"}


# ============================================================
# Mines
# ============================================================

class TestMines(unittest.TestCase):

    def test_probability_and_multipliers(self):
        self.assertAlmostEqual(survival_probability(25, 3, 1), 22 / 25)
        self.assertAlmostEqual(survival_probability(25, 3, 2), 22 / 25 * 21 / 24)
        self.assertEqual(survival_probability(25, 3, 23), 0.0)
        self.assertEqual(fair_multiplier(25, 3, 0, 0.03), 1.0)
        self.assertEqual(fair_multiplier(25, 3, 1, 0.03), 1.10)
        self.assertEqual(fair_multiplier(25, 3, 2, 0.03), 1.25)

    def test_mine_loses_wager(self):
        ledger = _ledger()
        game = MinesGame(ledger, rng=SeededRandom(3))
        game.start(10).unwrap()
        self.assertIsNone(game.to_dict()["mines"])
        safe = next(i for i in range(game.tile_count) if i not in game.mines)
        mine = next(iter(game.mines))

        game.reveal(safe).unwrap()
        game.reveal(mine).unwrap()
        self.assertEqual(game.state, RoundState.RESOLVED)
        self.assertEqual(game.machine.round.outcome.kind, OutcomeKind.LOSS)
        self.assertEqual(ledger.balance, Decimal("990"))
        self.assertEqual(game.to_dict()["mines"], sorted(game.mines))

    def test_cash_out_pays_current_multiplier(self):
        ledger = _ledger()
        bus = EventBus()
        reveals = []
        bus.subscribe(MINES_REVEALED, lambda e: reveals.append(e.payload["index"]))
        game = MinesGame(ledger, rng=SeededRandom(11), bus=bus)
        game.start(10)
        self.assertEqual(game.cash_out().kind, ErrorKind.INVALID_STATE_TRANSITION)

        safe = next(i for i in range(game.tile_count) if i not in game.mines)
        game.reveal(safe)
        self.assertEqual(game.reveal(safe).kind, ErrorKind.INVALID_STATE_TRANSITION)
        self.assertEqual(game.reveal(99).kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(game.reveal(True).kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(game.reveal(False).kind, ErrorKind.INVALID_AMOUNT)
        self.assertTrue(game.cash_out().ok)
        self.assertEqual(reveals, [safe])
        self.assertEqual(game.machine.round.outcome.payout, Decimal("11.00"))
        self.assertEqual(ledger.balance, Decimal("1001.00"))

    def test_last_safe_tile_cashes_out(self):
        ledger = _ledger()
        game = MinesGame(ledger, config=MinesConfig(rows=2, cols=2, mine_count=3),
                         rng=SeededRandom(5))
        game.start(10)
        (safe,) = set(range(4)) - game.mines
        game.reveal(safe)
        self.assertEqual(game.state, RoundState.RESOLVED)
        self.assertEqual(game.machine.round.outcome.payout, Decimal("38.80"))

    def test_actions_need_a_round(self):
        game = MinesGame(_ledger(), rng=SeededRandom(1))
        self.assertEqual(game.reveal(0).kind, ErrorKind.INVALID_STATE_TRANSITION)
        game.start(5)
        first_round = game.round_id
        game.reveal(next(iter(game.mines)))
        self.assertTrue(game.start(5).ok)
        self.assertNotEqual(game.round_id, first_round)
        self.assertEqual(game.revealed, [])

    def test_safety_percentage(self):
        game = MinesGame(_ledger(), rng=SeededRandom(2))
        game.start(1)
        self.assertEqual(game.safety_percentage(), 88.0)


# ============================================================
# Blackjack
# ============================================================

class TestBlackjack(unittest.TestCase):

    def test_hand_totals(self):
        self.assertEqual(hand_total_details([card("A"), card("A"), card("9")]), (21, True))
        self.assertEqual(hand_total_details([card("K"), card("7"), card("5")]), (22, False))
        self.assertTrue(is_blackjack([card("A"), card("Q")]))
        self.assertFalse(is_blackjack([card("7"), card("7"), card("7")]))
        self.assertEqual(len(new_deck()), 52)

    def test_player_natural_pays_three_to_two(self):
        # j == 0 on every swap rotates the deck: A♥ then K♠ Q♠ J♠ are dealt
        ledger = _ledger()
        bus = EventBus()
        dealt = []
        bus.subscribe(CARD_DEALT, lambda e: dealt.append((e.payload["to"], e.payload["card"])))
        game = BlackjackGame(ledger, rng=ConstantRandom(0.0), bus=bus)
        game.start(10)
        self.assertEqual(game.result, "blackjack")
        self.assertEqual(ledger.balance, Decimal("1015.00"))
        self.assertEqual(dealt[:4], [("player", "AH"), ("dealer", "KS"),
                                     ("player", "QS"), ("dealer", None)])

    def test_hit_to_bust(self):
        # identity shuffle: K♠ Q♠ J♠ 10♠ dealt, 9♠ next
        ledger = _ledger()
        game = BlackjackGame(ledger, rng=ConstantRandom(0.999999))
        game.start(10)
        self.assertEqual(game.phase, "player_turn")
        self.assertEqual(game.to_dict()["dealer_hand"][1], {"hidden": True})
        game.hit()
        self.assertEqual(game.result, "lose")
        self.assertEqual(ledger.balance, Decimal("990"))
        self.assertEqual(game.hit().kind, ErrorKind.INVALID_STATE_TRANSITION)

    def test_stand_push(self):
        ledger = _ledger()
        game = BlackjackGame(ledger, rng=ConstantRandom(0.999999))
        game.start(10)
        game.stand()
        self.assertEqual(game.result, "push")
        self.assertEqual(game.machine.round.outcome.kind, OutcomeKind.PUSH)
        self.assertEqual(ledger.balance, Decimal("1000"))

    def _soft_seventeen(self, soft17_stand: bool) -> BlackjackGame:
        game = BlackjackGame(_ledger(), config=BlackjackConfig(soft17_stand=soft17_stand),
                             rng=ConstantRandom(0.999999))
        game.start(10)
        game.player_hand = [card("K"), card("Q")]
        game.dealer_hand = [card("A"), card("6")]
        game.deck = [card("3")]
        game.stand()
        return game

    def test_dealer_stands_on_soft_17(self):
        game = self._soft_seventeen(True)
        self.assertEqual(len(game.dealer_hand), 2)
        self.assertEqual(game.result, "win")

    def test_dealer_hits_soft_17(self):
        game = self._soft_seventeen(False)
        self.assertEqual(hand_total_details(game.dealer_hand), (20, True))
        self.assertEqual(game.result, "push")


# ============================================================
# Crash
# ============================================================

class TestCrash(unittest.TestCase):

    def test_crash_point(self):
        self.assertEqual(crash_point(ConstantRandom(0.01), 0.03, 100), 1.0)
        self.assertEqual(crash_point(ConstantRandom(0.5), 0.03, 100), 1.94)
        self.assertEqual(crash_point(ConstantRandom(0.999999), 0.03, 100), 100)

    def test_auto_cashout_before_crash(self):
        ledger = _ledger()
        game = CrashGame(ledger, rng=ConstantRandom(0.5))
        game.start(10, auto_cashout=1.5)
        game.run(dt=0.1)
        self.assertFalse(game.busted)
        self.assertEqual(game.multiplier, 1.5)
        self.assertEqual(ledger.balance, Decimal("1005.00"))

    def test_bust_without_cashout(self):
        ledger = _ledger()
        bus = EventBus()
        busts = []
        bus.subscribe(CRASH_BUSTED, lambda e: busts.append(e.payload["crash_point"]))
        game = CrashGame(ledger, rng=ConstantRandom(0.5), bus=bus)
        game.start(10)
        game.run(dt=0.1)
        self.assertTrue(game.busted)
        self.assertEqual(busts, [1.94])
        self.assertEqual(ledger.balance, Decimal("990"))
        self.assertEqual(game.tick(0.1).kind, ErrorKind.INVALID_STATE_TRANSITION)

    def test_manual_cash_out(self):
        ledger = _ledger()
        game = CrashGame(ledger, rng=ConstantRandom(0.5))
        game.start(10)
        game.tick(5.0)                      # e^0.3 → 1.34
        self.assertEqual(game.multiplier, 1.34)
        game.cash_out().unwrap()
        self.assertEqual(ledger.balance, Decimal("1003.40"))

    def test_instant_bust(self):
        ledger = _ledger()
        game = CrashGame(ledger, config=CrashConfig(house_edge=0.03), rng=ConstantRandom(0.01))
        game.start(10)
        self.assertTrue(game.busted)
        self.assertEqual(game.state, RoundState.RESOLVED)
        self.assertEqual(game.to_dict()["crash_point"], 1.0)

    def test_bad_auto_cashout_does_not_debit(self):
        ledger = _ledger()
        game = CrashGame(ledger, rng=ConstantRandom(0.5))
        self.assertEqual(game.start(10, auto_cashout=1.0).kind, ErrorKind.INVALID_AMOUNT)
        self.assertEqual(ledger.balance, Decimal("1000"))


# ============================================================
# Registry
# ============================================================

class TestRegistry(unittest.TestCase):

    def test_get_game(self):
        self.assertEqual(sorted(GAME_TYPES), ["blackjack", "crash", "mines", "plinko"])
        self.assertIsInstance(get_game("Mines", _ledger()).unwrap(), MinesGame)
        session = get_game("plinko", _ledger(), rng=SeededRandom(1),
                           config=default_plinko_config(pocket_count=8)).unwrap()
        self.assertIsInstance(session, PlinkoSession)
        self.assertEqual(len(session.table), 8)

    def test_unknown_game(self):
        result = get_game("roulette", _ledger())
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.CONFIGURATION_ERROR)
        with self.assertRaises(ConfigurationError):
            result.unwrap()

    def test_table_config_errors_come_back_as_results(self):
        config = default_plinko_config(pocket_count=12).model_copy(update={"max_pockets": 10})
        result = get_game("plinko", _ledger(), config=config)
        self.assertEqual(result.kind, ErrorKind.CONFIGURATION_ERROR)


if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
