"""
CASINOCORE — Payout Ledger

The only write path to the player's balance. The balance itself belongs to an
external `BalanceService`; games never touch it directly, they ask the
ledger to debit a wager or credit a payout. The check-then-apply sequence
runs under one lock so a debit can never drive the balance negative, even if
the HTTP layer calls in from several worker threads.

Usage:
    ledger = PayoutLedger(InMemoryBalanceService(Decimal("500")))
    ledger.debit(Decimal("10"), reference="round:ab12")
    ledger.credit(Decimal("25"), reference="round:ab12")
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Protocol, Union

from game_engine.core.errors import InsufficientFunds, InvalidAmount, Result

logger = logging.getLogger("casinocore.ledger")

CENT = Decimal("0.01")
Amount = Union[Decimal, int, float, str]


def parse_amount(value: Amount, allow_zero: bool = False) -> Decimal:
    """Normalise a user-supplied amount to Decimal or raise InvalidAmount."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"amount must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount(f"amount must be finite, got {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"amount must be a number, got {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"amount must be finite, got {value!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(f"amount must be positive, got {amount}", amount=amount)
    return amount


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# ═══════════════════════════════════════════════════════════════
# External collaborator
# ═══════════════════════════════════════════════════════════════

class BalanceService(Protocol):
    def get_balance(self) -> Decimal:
        ...

    def apply_delta(self, delta: Decimal) -> Result:
        ...


class InMemoryBalanceService:
    """Process-local balance store used by the CLI, the API and the tests."""

    def __init__(self, balance: Amount = Decimal("1000")):
        self._balance = parse_amount(balance, allow_zero=True)

    def get_balance(self) -> Decimal:
        return self._balance

    def apply_delta(self, delta: Decimal) -> Result:
        new_balance = self._balance + delta
        if new_balance < 0:
            return Result.failure(InsufficientFunds(
                f"balance {self._balance} cannot cover {-delta}",
                balance=self._balance, requested=-delta))
        self._balance = new_balance
        return Result.success(new_balance)


# ═══════════════════════════════════════════════════════════════
# Ledger façade
# ═══════════════════════════════════════════════════════════════

class PayoutLedger:
    """Serialises every balance mutation issued by the games."""

    def __init__(self, service: BalanceService, history_limit: int = 500):
        self._service = service
        self._lock = threading.RLock()
        self.total_debited = Decimal("0")
        self.total_credited = Decimal("0")
        self.transactions: deque[dict] = deque(maxlen=history_limit)

    @property
    def balance(self) -> Decimal:
        with self._lock:
            return self._service.get_balance()

    def can_afford(self, amount: Decimal) -> bool:
        with self._lock:
            return amount <= self._service.get_balance()

    def debit(self, amount: Amount, reference: str = "") -> Result:
        """Withdraw a wager. Fails without side effects when unaffordable."""
        try:
            value = parse_amount(amount)
        except InvalidAmount as e:
            return Result.failure(e)

        with self._lock:
            balance = self._service.get_balance()
            if value > balance:
                logger.info(f"Debit rejected ({reference or 'no ref'}): {value} > balance {balance}")
                return Result.failure(InsufficientFunds(
                    f"wager {value} exceeds balance {balance}",
                    balance=balance, requested=value))
            applied = self._service.apply_delta(-value)
            if not applied.ok:
                return applied
            self.total_debited += value
            self._record("debit", value, applied.value, reference)
            return Result.success(applied.value)

    def credit(self, amount: Amount, reference: str = "") -> Result:
        """Pay out winnings. A zero credit is a successful no-op."""
        try:
            value = parse_amount(amount, allow_zero=True)
        except InvalidAmount as e:
            return Result.failure(e)

        with self._lock:
            if value == 0:
                return Result.success(self._service.get_balance())
            applied = self._service.apply_delta(value)
            if not applied.ok:
                logger.error(f"Credit of {value} refused by balance service ({reference}): "
                             f"{applied.error.message}")
                return applied
            self.total_credited += value
            self._record("credit", value, applied.value, reference)
            return Result.success(applied.value)

    def _record(self, kind: str, amount: Decimal, balance_after: Decimal, reference: str):
        self.transactions.append({
            "type": kind,
            "amount": amount,
            "balance_after": balance_after,
            "reference": reference,
            "timestamp": time.time(),
        })
        logger.debug(f"{kind} {amount} ({reference}) → balance {balance_after}")

    def summary(self) -> dict:
        with self._lock:
            return {
                "balance": str(self._service.get_balance()),
                "total_debited": str(self.total_debited),
                "total_credited": str(self.total_credited),
                "net": str(self.total_credited - self.total_debited),
                "transactions": len(self.transactions),
            }
