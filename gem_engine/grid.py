"""Rectangular grid helpers: neighbour functions and the one shared flood fill."""

from __future__ import annotations

from collections import deque
from typing import Callable, Iterable

Coord = tuple[int, int]

RECT_OFFSETS = ((0, 1), (0, -1), (-1, 0), (1, 0))
KING_OFFSETS = tuple((dc, dr) for dc in (-1, 0, 1) for dr in (-1, 0, 1) if (dc, dr) != (0, 0))


def rect_neighbors(col: int, row: int, columns: int, rows: int) -> list[Coord]:
    """4-directional neighbours inside the grid."""
    return [
        (col + dc, row + dr) for dc, dr in RECT_OFFSETS
        if 0 <= col + dc < columns and 0 <= row + dr < rows
    ]


def king_neighbors(col: int, row: int, columns: int, rows: int) -> list[Coord]:
    """8-directional neighbours inside the grid."""
    return [
        (col + dc, row + dr) for dc, dr in KING_OFFSETS
        if 0 <= col + dc < columns and 0 <= row + dr < rows
    ]


def flood_fill(
    start: Coord,
    neighbors: Callable[[Coord], Iterable[Coord]],
    accept: Callable[[Coord], bool],
) -> list[Coord]:
    """Breadth-first fill from `start` over cells where `accept` holds.

    Returns cells in visit order; empty if `start` itself is rejected.
    """
    if not accept(start):
        return []
    seen = {start}
    order = [start]
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for nxt in neighbors(current):
            if nxt in seen:
                continue
            seen.add(nxt)
            if accept(nxt):
                order.append(nxt)
                queue.append(nxt)
    return order


def chebyshev(a: Coord, b: Coord) -> int:
    return max(abs(a[0] - b[0]), abs(a[1] - b[1]))
