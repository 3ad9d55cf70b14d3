"""
GEMFALL — Match Detector

Finds everything that pays on a settled board:
  1. Special-piece (Lord) activations — a special touching a common gem of
     its bound colour explodes every gem of that colour.
  2. Bomb blasts — area (Chebyshev radius), line (row or column), colour.
  3. Runs (per row / per column) and flood-fill clusters, wild-aware.

All detection functions are pure: they read the board and never raise.
Randomised choices (line orientation, colour-bomb colour) come from the
injected `rng`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence

from config.engine_schema import BombType, MatchMode
from gem_engine.board import Board
from gem_engine.gems import WILD_COLOR, Gem
from gem_engine.grid import Coord, chebyshev, flood_fill, king_neighbors, rect_neighbors

MIN_MATCH = 3


class MatchSource(str, Enum):
    SPECIAL = "special"
    BOMB    = "bomb"
    RUN     = "run"
    CLUSTER = "cluster"


@dataclass(frozen=True)
class Match:
    coords: tuple[Coord, ...]
    matched_color: Optional[str]
    source: MatchSource
    origin: Optional[Coord] = None

    @property
    def size(self) -> int:
        return len(self.coords)

    def to_dict(self) -> dict:
        return {
            "coords": [list(c) for c in self.coords],
            "matched_color": self.matched_color,
            "size": self.size,
            "source": self.source.value,
            "origin": list(self.origin) if self.origin else None,
        }


def _joins(gem: Optional[Gem], color: str) -> bool:
    """Whether `gem` extends a run/cluster of concrete `color`."""
    if gem is None or not gem.kind.matchable:
        return False
    return gem.is_wild or gem.color == color


# ═══════════════════════════════════════════════════════════════
# Runs
# ═══════════════════════════════════════════════════════════════

def _scan_line(board: Board, line: Sequence[Coord]) -> list[Match]:
    matches: list[Match] = []
    run: list[Coord] = []
    run_color: Optional[str] = None
    trailing_wilds = 0

    def flush():
        if len(run) < MIN_MATCH:
            return
        matches.append(Match(tuple(run), run_color or WILD_COLOR, MatchSource.RUN))

    for coord in line:
        gem = board.get(*coord)
        if gem is None or not gem.kind.matchable:
            flush()
            run, run_color, trailing_wilds = [], None, 0
            continue
        if gem.is_wild:
            run.append(coord)
            trailing_wilds += 1
            continue
        if run_color is None or gem.color == run_color:
            run.append(coord)
            run_color = gem.color
            trailing_wilds = 0
            continue
        # Colour change: trailing wilds carry over into the new run
        flush()
        run = run[len(run) - trailing_wilds:] + [coord]
        run_color = gem.color
        trailing_wilds = 0
    flush()
    return matches


def find_runs(board: Board) -> list[Match]:
    """Horizontal runs (row by row) then vertical runs (column by column)."""
    matches: list[Match] = []
    for row in range(board.active_rows):
        matches.extend(_scan_line(board, [(col, row) for col in range(board.columns)]))
    for col in range(board.columns):
        matches.extend(_scan_line(board, [(col, row) for row in range(board.active_rows)]))
    return matches


# ═══════════════════════════════════════════════════════════════
# Clusters
# ═══════════════════════════════════════════════════════════════

def find_clusters(board: Board) -> list[Match]:
    """4-directional flood-fill groups of one colour (wilds join any colour).

    A wild may sit in clusters of several colours. Wild-only regions not
    absorbed by any coloured cluster are reported with colour 'wild'.
    """
    def nbrs(p: Coord):
        return rect_neighbors(p[0], p[1], board.columns, board.active_rows)

    visited: set[Coord] = set()
    absorbed_wilds: set[Coord] = set()
    clusters: list[Match] = []

    for coord, gem in board.occupied():
        if coord in visited or not gem.kind.matchable or gem.is_wild:
            continue
        color = gem.color
        cells = flood_fill(coord, nbrs, lambda p: _joins(board.get(*p), color))
        for p in cells:
            if board.get(*p).is_wild:
                absorbed_wilds.add(p)
            else:
                visited.add(p)
        if len(cells) >= MIN_MATCH:
            clusters.append(Match(tuple(sorted(cells)), color, MatchSource.CLUSTER))

    for coord, gem in board.occupied():
        if not gem.is_wild or coord in absorbed_wilds:
            continue
        cells = flood_fill(coord, nbrs, lambda p: board.get(*p) is not None and board.get(*p).is_wild)
        absorbed_wilds.update(cells)
        if len(cells) >= MIN_MATCH:
            clusters.append(Match(tuple(sorted(cells)), WILD_COLOR, MatchSource.CLUSTER))

    return clusters


# ═══════════════════════════════════════════════════════════════
# Special pieces
# ═══════════════════════════════════════════════════════════════

def cells_of_color(board: Board, color: str) -> list[Coord]:
    return [coord for coord, gem in board.occupied() if gem.color == color]


def check_special_power(board: Board, col: int, row: int) -> Optional[str]:
    """Colour to explode if the special at (col,row) touches a common of its colour."""
    gem = board.get(col, row)
    if gem is None or not gem.kind.is_special:
        return None
    for nc, nr in rect_neighbors(col, row, board.columns, board.active_rows):
        neighbor = board.get(nc, nr)
        if neighbor is not None and neighbor.kind.is_common and neighbor.color == gem.color:
            return gem.color
    return None


def find_special_activations(board: Board) -> list[Match]:
    matches = []
    for (col, row), gem in board.occupied():
        if not gem.kind.is_special:
            continue
        color = check_special_power(board, col, row)
        if color is None:
            continue
        coords = set(cells_of_color(board, color))
        coords.add((col, row))
        matches.append(Match(tuple(sorted(coords)), color, MatchSource.SPECIAL, origin=(col, row)))
    return matches


# ═══════════════════════════════════════════════════════════════
# Bomb blast sets
# ═══════════════════════════════════════════════════════════════

def area_blast(board: Board, origin: Coord, radius: int) -> list[Coord]:
    """Occupied cells within Chebyshev `radius` of origin, clipped to the board."""
    cells = flood_fill(
        origin,
        lambda p: king_neighbors(p[0], p[1], board.columns, board.active_rows),
        lambda p: chebyshev(p, origin) <= radius,
    )
    return sorted(p for p in cells if board.get(*p) is not None)


def line_blast(board: Board, origin: Coord, horizontal: bool) -> list[Coord]:
    col, row = origin
    if horizontal:
        line = [(c, row) for c in range(board.columns)]
    else:
        line = [(col, r) for r in range(board.active_rows)]
    return [p for p in line if board.get(*p) is not None]


def color_blast(board: Board, color: str) -> list[Coord]:
    return sorted(cells_of_color(board, color))


def board_colors(board: Board) -> list[str]:
    return sorted({
        gem.color for _, gem in board.occupied()
        if gem.color is not None and (gem.kind.is_common or gem.kind.is_special)
    })


def blast_set(
    board: Board,
    origin: Coord,
    rng,
    fallback_colors: Iterable[str] = (),
) -> tuple[list[Coord], Optional[str]]:
    """Cells destroyed by the bomb at origin (always including the bomb itself).

    Returns (coords, resolved colour); the colour is only set for colour bombs.
    """
    gem = board.get(*origin)
    if gem is None or not gem.kind.is_bomb:
        return [], None

    color = None
    if gem.kind.bomb == BombType.AREA:
        cells = area_blast(board, origin, gem.kind.radius)
    elif gem.kind.bomb == BombType.LINE:
        cells = line_blast(board, origin, horizontal=rng.random() > 0.5)
    else:
        palette = board_colors(board) or sorted(fallback_colors)
        if palette:
            color = rng.choice(palette)
            cells = color_blast(board, color)
        else:
            cells = []

    if origin not in cells:
        cells = sorted(cells + [origin])
    return cells, color


def find_bomb_blasts(board: Board, rng, fallback_colors: Iterable[str] = ()) -> list[Match]:
    """Every bomb on a settled board detonates."""
    matches = []
    for origin, gem in list(board.occupied()):
        if not gem.kind.is_bomb:
            continue
        cells, color = blast_set(board, origin, rng, fallback_colors)
        matches.append(Match(tuple(cells), color, MatchSource.BOMB, origin=origin))
    return matches


# ═══════════════════════════════════════════════════════════════
# Combined scan
# ═══════════════════════════════════════════════════════════════

def detect_matches(
    board: Board,
    mode: MatchMode,
    rng,
    fallback_colors: Iterable[str] = (),
) -> list[Match]:
    """Everything that resolves this step, in priority order.

    Specials first, then bombs, then runs and/or clusters. A cluster with the
    same cells as an already reported run is dropped.
    """
    found = find_special_activations(board)
    found.extend(find_bomb_blasts(board, rng, fallback_colors))

    seen: set[frozenset] = set()
    if mode in (MatchMode.RUNS, MatchMode.BOTH):
        for m in find_runs(board):
            seen.add(frozenset(m.coords))
            found.append(m)
    if mode in (MatchMode.CLUSTERS, MatchMode.BOTH):
        for m in find_clusters(board):
            key = frozenset(m.coords)
            if key in seen:
                continue
            seen.add(key)
            found.append(m)
    return found
