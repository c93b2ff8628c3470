"""
CASINOCORE — Random Sources

Every source of randomness the engines touch goes through the one-method
`RandomSource` port (`uniform() -> float in [0, 1)`), so tests can swap in a
seeded generator and replay any trajectory bit-for-bit.

Three implementations:
    SeededRandom         deterministic (tests, replays, Monte Carlo)
    SystemRandomSource   OS entropy (default for live sessions)
    ProvablyFairRandom   HMAC-SHA256(server_seed, client_seed:nonce:block)
                         stream; server_seed_hash is published up front and
                         the seed revealed when the session closes.

Usage:
    rng = ProvablyFairRandom(client_seed="player-42")
    print(rng.server_seed_hash)      # share before play
    u = rng.uniform()
    seed = rng.reveal()              # after play
    assert ProvablyFairRandom.verify(seed, "player-42", 0, 0) == u
"""

from __future__ import annotations

import hashlib
import hmac
import os
import random
from typing import MutableSequence, Optional, Protocol, runtime_checkable


@runtime_checkable
class RandomSource(Protocol):
    def uniform(self) -> float:
        """Uniform float in [0, 1)."""
        ...


class SeededRandom:
    """Deterministic source backed by `random.Random`."""

    def __init__(self, seed: Optional[int] = 42):
        self.seed = seed
        self._rng = random.Random(seed)

    def uniform(self) -> float:
        return self._rng.random()


class SystemRandomSource:
    """OS-entropy source; not reproducible."""

    def __init__(self):
        self._rng = random.SystemRandom()

    def uniform(self) -> float:
        return self._rng.random()


# ═══════════════════════════════════════════════════════════════
# Provably fair stream
# ═══════════════════════════════════════════════════════════════

_HEX_PER_VALUE = 8                      # 32 bits per float
_VALUES_PER_BLOCK = 64 // _HEX_PER_VALUE


def _derive_hash(server_seed: str, client_seed: str, nonce: int, block: int) -> str:
    message = f"{client_seed}:{nonce}:{block}"
    return hmac.new(server_seed.encode(), message.encode(), hashlib.sha256).hexdigest()


def _hash_to_float(hex_hash: str, offset: int = 0) -> float:
    """Convert 8 hex characters to float in [0, 1)."""
    return int(hex_hash[offset:offset + _HEX_PER_VALUE], 16) / 0x100000000


class ProvablyFairRandom:
    """Verifiable random stream for one nonce (one session or round).

    Value `i` of the stream is hex segment `i % 8` of
    HMAC-SHA256(server_seed, f"{client_seed}:{nonce}:{i // 8}").
    """

    def __init__(self, server_seed: Optional[str] = None,
                 client_seed: Optional[str] = None, nonce: int = 0):
        self._server_seed = server_seed or os.urandom(32).hex()
        self.server_seed_hash = hashlib.sha256(self._server_seed.encode()).hexdigest()
        self.client_seed = client_seed if client_seed is not None else os.urandom(16).hex()
        self.nonce = nonce
        self.cursor = 0
        self._block = -1
        self._block_hash = ""
        self._revealed = False

    def uniform(self) -> float:
        block, index = divmod(self.cursor, _VALUES_PER_BLOCK)
        if block != self._block:
            self._block_hash = _derive_hash(self._server_seed, self.client_seed, self.nonce, block)
            self._block = block
        self.cursor += 1
        return _hash_to_float(self._block_hash, index * _HEX_PER_VALUE)

    def next_nonce(self) -> int:
        """Start a fresh stream under the same seeds (new round)."""
        self.nonce += 1
        self.cursor = 0
        self._block = -1
        return self.nonce

    def reveal(self) -> str:
        """Disclose the server seed; the stream stays usable for audit replays."""
        self._revealed = True
        return self._server_seed

    @property
    def revealed(self) -> bool:
        return self._revealed

    @staticmethod
    def verify(server_seed: str, client_seed: str, nonce: int, position: int) -> float:
        """Recompute stream value `position` from disclosed seeds."""
        block, index = divmod(position, _VALUES_PER_BLOCK)
        return _hash_to_float(_derive_hash(server_seed, client_seed, nonce, block),
                              index * _HEX_PER_VALUE)

    def verification_data(self) -> dict:
        data = {
            "server_seed_hash": self.server_seed_hash,
            "client_seed": self.client_seed,
            "nonce": self.nonce,
            "values_drawn": self.cursor,
            "verification_steps": [
                "1. Check SHA-256(server_seed) == server_seed_hash",
                "2. block = HMAC-SHA256(server_seed, client_seed + ':' + nonce + ':' + i // 8)",
                "3. value_i = int(block[(i % 8) * 8 : (i % 8) * 8 + 8], 16) / 2^32",
            ],
        }
        if self._revealed:
            data["server_seed"] = self._server_seed
        return data


# ═══════════════════════════════════════════════════════════════
# Helpers over any RandomSource
# ═══════════════════════════════════════════════════════════════

def uniform_between(rng: RandomSource, lo: float, hi: float) -> float:
    return lo + (hi - lo) * rng.uniform()


def randint(rng: RandomSource, n: int) -> int:
    """Integer in [0, n)."""
    if n <= 0:
        raise ValueError("n must be positive")
    return min(int(rng.uniform() * n), n - 1)


def shuffle(rng: RandomSource, items: MutableSequence) -> None:
    """In-place Fisher-Yates shuffle driven by `rng`."""
    for i in range(len(items) - 1, 0, -1):
        j = randint(rng, i + 1)
        items[i], items[j] = items[j], items[i]


def make_random_source(seed: Optional[int] = None) -> RandomSource:
    """Seeded source when a seed is given, OS entropy otherwise."""
    if seed is None:
        return SystemRandomSource()
    return SeededRandom(seed)
