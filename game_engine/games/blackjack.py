"""Blackjack — single hand against the dealer, one fresh deck per round."""

from __future__ import annotations

import logging
from typing import Optional

from config.game_schema import BlackjackConfig, default_blackjack_config
from game_engine.core.errors import Result
from game_engine.core.events import CARD_DEALT, EventBus
from game_engine.core.ledger import PayoutLedger
from game_engine.core.rng import RandomSource, shuffle
from game_engine.games.base import RoundGame

logger = logging.getLogger("casinocore.blackjack")

RANKS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]
SUITS = ["H", "D", "C", "S"]


def new_deck() -> list[dict]:
    return [{"rank": r, "suit": s, "code": f"{r}{s}"} for s in SUITS for r in RANKS]


def _card_value(rank: str) -> int:
    if rank in {"J", "Q", "K"}:
        return 10
    if rank == "A":
        return 11
    return int(rank)


def hand_total_details(cards: list[dict]) -> tuple[int, bool]:
    """(best total, soft) with aces counted as 11 while that does not bust."""
    total = 0
    aces = 0
    for card in cards:
        if card["rank"] == "A":
            aces += 1
        total += _card_value(card["rank"])
    while total > 21 and aces > 0:
        total -= 10
        aces -= 1
    return total, aces > 0


def is_blackjack(cards: list[dict]) -> bool:
    return len(cards) == 2 and hand_total_details(cards)[0] == 21


class BlackjackGame(RoundGame):
    game_type = "blackjack"
    display_name = "Blackjack"

    def __init__(self, ledger: PayoutLedger, config: Optional[BlackjackConfig] = None,
                 rng: Optional[RandomSource] = None, bus: Optional[EventBus] = None):
        super().__init__(ledger, rng, bus)
        self.config = config or default_blackjack_config()
        self.deck: list[dict] = []
        self.player_hand: list[dict] = []
        self.dealer_hand: list[dict] = []
        self.phase = "idle"
        self.result = ""
        self.dealer_hole_hidden = True

    def _draw(self, hand: list[dict], who: str) -> dict:
        card = self.deck.pop()
        hand.append(card)
        hole = who == "dealer" and len(hand) == 2 and self.dealer_hole_hidden
        self.bus.emit(CARD_DEALT, round_id=self.round_id, to=who,
                      card=None if hole else card["code"])
        return card

    # ── Round actions ──────────────────────────────────────────

    def start(self, bet) -> Result:
        placed = self._begin(bet)
        if not placed.ok:
            return placed
        self.deck = new_deck()
        shuffle(self.rng, self.deck)
        self.player_hand = []
        self.dealer_hand = []
        self.result = ""
        self.dealer_hole_hidden = True
        self.phase = "player_turn"

        self._draw(self.player_hand, "player")
        self._draw(self.dealer_hand, "dealer")
        self._draw(self.player_hand, "player")
        self._draw(self.dealer_hand, "dealer")

        player_bj = is_blackjack(self.player_hand)
        dealer_bj = is_blackjack(self.dealer_hand)
        if player_bj and dealer_bj:
            self._finish("push")
        elif player_bj:
            self._finish("blackjack")
        elif dealer_bj:
            self._finish("lose")
        return Result.success(self.to_dict())

    def hit(self) -> Result:
        refused = self._require_active("hit")
        if refused:
            return refused
        self._draw(self.player_hand, "player")
        total, _ = hand_total_details(self.player_hand)
        if total > 21:
            self._finish("lose")
        elif total == 21:
            return self.stand()
        return Result.success(self.to_dict())

    def stand(self) -> Result:
        refused = self._require_active("stand")
        if refused:
            return refused
        self.phase = "dealer_turn"
        self.dealer_hole_hidden = False
        while True:
            total, soft = hand_total_details(self.dealer_hand)
            if total < 17 or (total == 17 and soft and not self.config.soft17_stand):
                self._draw(self.dealer_hand, "dealer")
                continue
            break

        player_total, _ = hand_total_details(self.player_hand)
        dealer_total, _ = hand_total_details(self.dealer_hand)
        if dealer_total > 21 or player_total > dealer_total:
            self._finish("win")
        elif player_total == dealer_total:
            self._finish("push")
        else:
            self._finish("lose")
        return Result.success(self.to_dict())

    def _finish(self, result: str) -> None:
        multiplier = {
            "blackjack": self.config.natural_payout,
            "win": self.config.win_payout,
            "push": self.config.push_payout,
            "lose": 0,
        }[result]
        self.phase = "finished"
        self.result = result
        self.dealer_hole_hidden = False
        self.machine.resolve(multiplier, details={
            "result": result,
            "player": [c["code"] for c in self.player_hand],
            "dealer": [c["code"] for c in self.dealer_hand],
        })
        logger.debug(f"Blackjack round {self.round_id}: {result} ×{multiplier}")

    def _public_dealer_hand(self) -> list[dict]:
        return [{"hidden": True} if i == 1 and self.dealer_hole_hidden else card
                for i, card in enumerate(self.dealer_hand)]

    def to_dict(self) -> dict:
        data = super().to_dict()
        player_total, _ = hand_total_details(self.player_hand)
        visible = self.dealer_hand[:1] if self.dealer_hole_hidden else self.dealer_hand
        dealer_total, _ = hand_total_details(visible)
        data.update({
            "phase": self.phase,
            "result": self.result,
            "player_hand": list(self.player_hand),
            "dealer_hand": self._public_dealer_hand(),
            "player_total": player_total,
            "dealer_total": dealer_total,
            "deck_count": len(self.deck),
        })
        return data
