"""Pocket resolution — horizontal landing position → pocket index."""

import math

from game_engine.core.errors import ConfigurationError, SimulationAnomaly


def resolve_pocket(x: float, board_width: float, pocket_count: int) -> int:
    """floor(x / pocket_width), clamped to [0, pocket_count - 1].

    x == board_width lands in the last pocket; positions past either wall
    clamp to the edge pockets.
    """
    if pocket_count <= 0:
        raise ConfigurationError(f"pocket_count must be positive, got {pocket_count}")
    if not board_width > 0:
        raise ConfigurationError(f"board_width must be positive, got {board_width}")
    if not math.isfinite(x):
        raise SimulationAnomaly(f"cannot resolve pocket for x={x}", x=x)
    index = math.floor(x / (board_width / pocket_count))
    return max(0, min(pocket_count - 1, index))


class PocketResolver:
    """Binds the board geometry so callers only pass x."""

    def __init__(self, board_width: float, pocket_count: int):
        if pocket_count <= 0 or not board_width > 0:
            raise ConfigurationError(
                f"invalid pocket geometry: width={board_width}, count={pocket_count}")
        self.board_width = board_width
        self.pocket_count = pocket_count

    @property
    def pocket_width(self) -> float:
        return self.board_width / self.pocket_count

    @property
    def center_index(self) -> int:
        return self.resolve(self.board_width / 2)

    def resolve(self, x: float) -> int:
        return resolve_pocket(x, self.board_width, self.pocket_count)
