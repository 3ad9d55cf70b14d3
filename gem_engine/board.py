"""
GEMFALL — Board Model

Fixed columns, a growing number of active rows, row 0 at the bottom.
Cells hold an immutable Gem or None. The board is created empty per round,
mutated in place by every cascade step and discarded at round end.
"""

from __future__ import annotations

from typing import Iterator, Optional

from gem_engine.errors import CellOccupied, OutOfBounds
from gem_engine.gems import Gem
from gem_engine.grid import Coord

Snapshot = tuple[tuple[Optional[str], ...], ...]


class Board:
    def __init__(self, columns: int, active_rows: int, max_rows: int):
        if columns < 1 or active_rows < 1 or max_rows < active_rows:
            raise ValueError(f"bad board shape {columns}x{active_rows} (max {max_rows})")
        self.columns = columns
        self.max_rows = max_rows
        self.active_rows = active_rows
        # cells[col][row], sized to max_rows so growth never reallocates
        self.cells: list[list[Optional[Gem]]] = [[None] * max_rows for _ in range(columns)]

    @classmethod
    def from_rows(cls, rows: list[list[Optional[Gem]]], max_rows: Optional[int] = None) -> "Board":
        """Build from a list of rows given bottom-up (rows[0] is row 0)."""
        height = len(rows)
        width = len(rows[0]) if rows else 0
        board = cls(width, height, max_rows or height)
        for r, line in enumerate(rows):
            for c, gem in enumerate(line):
                if gem is not None:
                    board.place(c, r, gem)
        return board

    # ── Access ────────────────────────────────────────────────

    def in_bounds(self, col: int, row: int) -> bool:
        return 0 <= col < self.columns and 0 <= row < self.active_rows

    def get(self, col: int, row: int) -> Optional[Gem]:
        if not self.in_bounds(col, row):
            return None
        return self.cells[col][row]

    def place(self, col: int, row: int, gem: Gem) -> None:
        if not self.in_bounds(col, row):
            raise OutOfBounds(col, row, self.columns, self.active_rows)
        occupant = self.cells[col][row]
        if occupant is not None:
            raise CellOccupied(col, row, occupant.key)
        self.cells[col][row] = gem

    def remove(self, col: int, row: int) -> Optional[Gem]:
        """Empty a cell and return what was there. Removing an empty cell is a no-op."""
        if not self.in_bounds(col, row):
            return None
        gem = self.cells[col][row]
        self.cells[col][row] = None
        return gem

    def coords(self) -> Iterator[Coord]:
        for col in range(self.columns):
            for row in range(self.active_rows):
                yield col, row

    def occupied(self) -> Iterator[tuple[Coord, Gem]]:
        for col, row in self.coords():
            gem = self.cells[col][row]
            if gem is not None:
                yield (col, row), gem

    def empty_cells(self) -> list[Coord]:
        return [(c, r) for c, r in self.coords() if self.cells[c][r] is None]

    def is_empty(self) -> bool:
        return all(self.cells[c][r] is None for c, r in self.coords())

    def is_full(self) -> bool:
        return not self.empty_cells()

    # ── Gravity & growth ──────────────────────────────────────

    def compact_column(self, col: int) -> None:
        """Slide gems toward row 0 keeping their order; freed rows end up on top."""
        column = self.cells[col]
        stack = [g for g in column[:self.active_rows] if g is not None]
        for row in range(self.active_rows):
            column[row] = stack[row] if row < len(stack) else None

    def compact(self) -> None:
        for col in range(self.columns):
            self.compact_column(col)

    def grow_active_rows(self, by: int) -> int:
        """Add up to `by` rows, never past max_rows. Returns rows actually added."""
        if by <= 0:
            return 0
        new_rows = min(self.max_rows, self.active_rows + by)
        added = new_rows - self.active_rows
        self.active_rows = new_rows
        return added

    def has_floating_gems(self) -> bool:
        for col in range(self.columns):
            seen_gap = False
            for row in range(self.active_rows):
                if self.cells[col][row] is None:
                    seen_gap = True
                elif seen_gap:
                    return True
        return False

    # ── Export ────────────────────────────────────────────────

    def snapshot(self) -> Snapshot:
        """Kind keys per column (bottom-up), None for empty cells."""
        return tuple(
            tuple(g.key if g is not None else None for g in self.cells[col][:self.active_rows])
            for col in range(self.columns)
        )

    def render(self) -> str:
        """Top row first, for logs and the CLI."""
        lines = []
        for row in reversed(range(self.active_rows)):
            cells = []
            for col in range(self.columns):
                gem = self.cells[col][row]
                cells.append(f"{gem.key[:8]:>8}" if gem else f"{'.':>8}")
            lines.append(" ".join(cells))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Board({self.columns}x{self.active_rows}/{self.max_rows})"
