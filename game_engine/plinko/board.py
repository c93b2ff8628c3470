"""Plinko board geometry — triangular peg lattice over the pocket strip."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator

from config.game_schema import BoardConfig


@dataclass(frozen=True)
class Peg:
    row: int
    col: int
    x: float
    y: float


class Board:
    """Row `r` holds `r + 1` pegs centred on the board's vertical axis.

    Only rows `first_row..last_row` of the triangle are built: the top row
    has three pegs and the bottom row puts a peg on every pocket boundary.
    Pocket width equals the peg spacing, so the gaps of each row sit straight
    above the pegs of the next one and every row is a single left/right step
    (pocket_count - 1 steps in all).

    The side rails run through the outermost peg of each row; above the top
    row they stay at the top row's width.
    """

    def __init__(self, config: BoardConfig):
        self.config = config
        self.width = config.width
        self.rows = config.rows
        self.first_row = config.first_row
        self.last_row = config.last_row
        self.pocket_count = config.pocket_count
        self.peg_spacing = config.peg_spacing
        self.row_spacing = config.row_spacing
        self.top_margin = config.top_margin
        self.pocket_line = config.pocket_line
        self.spawn_y = config.spawn_y
        self.center_x = config.width / 2
        self._rows = [[Peg(r, c, *self.peg_position(r, c)) for c in range(r + 1)]
                      for r in range(self.first_row, self.last_row + 1)]

    def row_indices(self) -> range:
        return range(self.first_row, self.last_row + 1)

    def row_y(self, row: int) -> float:
        return self.top_margin + (row - self.first_row) * self.row_spacing

    def peg_position(self, row: int, col: int) -> tuple[float, float]:
        if not (self.first_row <= row <= self.last_row and 0 <= col <= row):
            raise IndexError(f"no peg at row={row}, col={col}")
        x = self.center_x + (col - row / 2) * self.peg_spacing
        return x, self.row_y(row)

    def pegs_in_row(self, row: int) -> list[Peg]:
        if row not in self.row_indices():
            raise IndexError(f"no peg row {row}")
        return list(self._rows[row - self.first_row])

    def top_peg(self) -> Peg:
        """Centre peg of the top row, straight under the spawn point."""
        return self._rows[0][self.first_row // 2]

    def all_pegs(self) -> Iterator[Peg]:
        for row in self._rows:
            yield from row

    def pegs_near(self, x: float, y: float, reach: float) -> Iterator[Peg]:
        """Pegs whose centre may lie within `reach` of (x, y)."""
        first = self.first_row + math.floor((y - reach - self.top_margin) / self.row_spacing)
        last = self.first_row + math.ceil((y + reach - self.top_margin) / self.row_spacing)
        span = int(reach // self.peg_spacing) + 1
        for r in range(max(self.first_row, first), min(self.last_row, last) + 1):
            row = self._rows[r - self.first_row]
            col = round((x - self.center_x) / self.peg_spacing + r / 2)
            for c in range(max(0, col - span), min(r, col + span) + 1):
                yield row[c]

    def rail_bounds(self, y: float) -> tuple[float, float]:
        """Left and right rail x at height y."""
        row = self.first_row + (y - self.top_margin) / self.row_spacing
        row = max(self.first_row, min(self.last_row, row))
        half = row / 2 * self.peg_spacing
        return self.center_x - half, self.center_x + half

    def pocket_bounds(self, index: int) -> tuple[float, float]:
        if not 0 <= index < self.pocket_count:
            raise IndexError(f"pocket {index} out of range")
        w = self.width / self.pocket_count
        return index * w, (index + 1) * w

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "rows": self.rows,
            "first_row": self.first_row,
            "pocket_count": self.pocket_count,
            "peg_spacing": self.peg_spacing,
            "row_spacing": self.row_spacing,
            "pocket_line": self.pocket_line,
        }
