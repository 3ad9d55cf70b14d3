"""
GEMFALL — Cascade Resolver

State machine driving one round to a stable board:

    SCANNING ──(nothing found)──────────────────────────▶ DONE
        │
        ▼
    RESOLVING ─▶ COMPACTING ─▶ REFILLING ─▶ SCANNING  (cascade_level += 1)

Each full pass is returned as a CascadeStep event. The presentation layer
replays these at its own pace; the resolver never waits on it.

Payout per match (sum-then-multiply):
    Σ payout_for(gem) × factor × combo_multiplier(cascade_level) × payout_scale
where factor is match_multiplier(size) for runs/clusters, the special power
multiplier for Lord activations and 1.0 for bomb blasts. Within one step a
gem's value is counted by the first match that claims it; removal is
idempotent across overlapping matches.

The loop stops when a scan finds nothing or when max_cascades steps have
been resolved (cap reached: not an error, the round keeps what it won).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from config.engine_schema import MatchMode
from gem_engine.board import Board, Snapshot
from gem_engine.gems import GemCatalog
from gem_engine.matcher import Match, MatchSource, detect_matches
from gem_engine.rtp import GemSpawner, OutcomeBand, populate_board

logger = logging.getLogger("gemfall.cascade")


class CascadeState(str, Enum):
    SCANNING   = "scanning"
    RESOLVING  = "resolving"
    COMPACTING = "compacting"
    REFILLING  = "refilling"
    DONE       = "done"


@dataclass
class CascadeStep:
    """One remove → compact → refill pass, as an orderable event."""
    cascade_level: int
    matches: list[Match]
    removed_gem_kinds: list[str]
    payout_delta: float
    board_after_removal: Snapshot
    board_snapshot_after_refill: Snapshot
    rows_added: int = 0
    board_cleared: bool = False
    specials_removed: int = 0
    match_payouts: list[float] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "cascade_level": self.cascade_level,
            "matches": [m.to_dict() for m in self.matches],
            "match_payouts": [round(p, 4) for p in self.match_payouts],
            "removed_gem_kinds": list(self.removed_gem_kinds),
            "payout_delta": round(self.payout_delta, 4),
            "board_after_removal": [list(c) for c in self.board_after_removal],
            "board_snapshot_after_refill": [list(c) for c in self.board_snapshot_after_refill],
            "rows_added": self.rows_added,
            "board_cleared": self.board_cleared,
            "specials_removed": self.specials_removed,
        }


class CascadeResolver:
    def __init__(
        self,
        board: Board,
        catalog: GemCatalog,
        spawner: GemSpawner,
        band: OutcomeBand,
        rng,
        match_mode: MatchMode = MatchMode.CLUSTERS,
        max_cascades: int = 5,
        refill_rows_per_cascade: int = 0,
        payout_scale: float = 1.0,
    ):
        self.board = board
        self.catalog = catalog
        self.spawner = spawner
        self.band = band
        self.rng = rng
        self.match_mode = match_mode
        self.max_cascades = max_cascades
        self.refill_rows_per_cascade = refill_rows_per_cascade
        self.payout_scale = payout_scale

        self.state = CascadeState.SCANNING
        self.cascade_level = 1
        self.total_payout = 0.0
        self.scan_passes = 0
        self.cap_reached = False
        self.steps: list[CascadeStep] = []

    @property
    def done(self) -> bool:
        return self.state == CascadeState.DONE

    # ── Public API ────────────────────────────────────────────

    def step(self) -> Optional[CascadeStep]:
        """Advance one full cascade. Returns None once the resolver is DONE."""
        if self.done:
            return None

        matches = self._scan()
        if not matches:
            self.state = CascadeState.DONE
            return None
        if len(self.steps) >= self.max_cascades:
            self.cap_reached = True
            self.state = CascadeState.DONE
            logger.info(f"Cascade cap {self.max_cascades} reached with {len(matches)} matches pending")
            return None

        self.state = CascadeState.RESOLVING
        payouts, removed = self._resolve(matches)
        after_removal = self.board.snapshot()
        cleared = self.board.is_empty()

        self.state = CascadeState.COMPACTING
        self.board.compact()

        self.state = CascadeState.REFILLING
        rows_added = self._refill()

        delta = sum(payouts)
        self.total_payout += delta
        step = CascadeStep(
            cascade_level=self.cascade_level,
            matches=matches,
            removed_gem_kinds=[g.key for g in removed],
            payout_delta=delta,
            board_after_removal=after_removal,
            board_snapshot_after_refill=self.board.snapshot(),
            rows_added=rows_added,
            board_cleared=cleared,
            specials_removed=sum(1 for g in removed if g.kind.is_special),
            match_payouts=payouts,
        )
        self.steps.append(step)
        logger.debug(
            f"Cascade {self.cascade_level}: {len(matches)} matches, "
            f"{len(removed)} gems removed, +{delta:.2f}"
        )

        self.cascade_level += 1
        self.state = CascadeState.SCANNING
        return step

    def resolve(self) -> list[CascadeStep]:
        """Run to DONE and return every step taken."""
        while self.step() is not None:
            pass
        return self.steps

    # ── States ────────────────────────────────────────────────

    def _scan(self) -> list[Match]:
        self.scan_passes += 1
        return detect_matches(self.board, self.match_mode, self.rng, self.catalog.colors)

    def _factor(self, match: Match) -> float:
        if match.source == MatchSource.SPECIAL:
            return self.catalog.special_power_multiplier
        if match.source == MatchSource.BOMB:
            return 1.0
        return self.catalog.match_multiplier(match.size)

    def _resolve(self, matches: list[Match]):
        combo = self.catalog.combo_multiplier(self.cascade_level)
        claimed: set = set()
        payouts = []
        for match in matches:
            fresh = [c for c in match.coords if c not in claimed]
            claimed.update(match.coords)
            base = 0.0
            for col, row in fresh:
                gem = self.board.get(col, row)
                if gem is not None:
                    base += self.catalog.payout_for(gem.kind)
            payouts.append(base * self._factor(match) * combo * self.payout_scale)

        removed = []
        for col, row in sorted(claimed):
            gem = self.board.remove(col, row)
            if gem is not None:
                removed.append(gem)
        return payouts, removed

    def _refill(self) -> int:
        added = 0
        if self.refill_rows_per_cascade > 0 and self.board.active_rows < self.board.max_rows:
            added = self.board.grow_active_rows(self.rng.randint(0, self.refill_rows_per_cascade))
        populate_board(self.board, self.spawner, self.band)
        return added
