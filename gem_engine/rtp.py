"""
GEMFALL — RTP Outcome Controller

Steers rounds toward the target Return-to-Player:

    current_rtp > target + drift     → force LOSS
    current_rtp < target - drift     → force MEDIUM or BIG
    win streak  ≥ max_consecutive    → force LOSS   (streak reset)
    loss streak ≥ min_consecutive    → force a win  (streak reset)
    otherwise                        → sample win_distribution

The chosen band only biases gem generation (GemSpawner); the actual payout
is whatever the Match Detector finds.

SessionState is frozen. The controller returns a new state instead of
mutating, and the engine swaps it in only at round boundaries.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Mapping, Optional

from config.engine_schema import RTPConfig
from gem_engine.board import Board
from gem_engine.gems import Gem, GemCatalog

logger = logging.getLogger("gemfall.rtp")


class OutcomeBand(str, Enum):
    LOSS   = "loss"
    SMALL  = "small"
    MEDIUM = "medium"
    BIG    = "big"
    MEGA   = "mega"


# ═══════════════════════════════════════════════════════════════
# Session State
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SessionState:
    """Cross-round statistics. Default: 100% running RTP, no history."""
    total_staked: float = 0.0
    total_paid: float = 0.0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    rounds_played: int = 0
    # Max-win meter
    specials_collected: int = 0
    max_win_level: int = 0

    @property
    def current_rtp(self) -> float:
        """Running RTP in percent; 100 before anything is staked."""
        if self.total_staked <= 0:
            return 100.0
        return self.total_paid / self.total_staked * 100.0

    def snapshot(self) -> dict:
        data = asdict(self)
        data["current_rtp"] = round(self.current_rtp, 4)
        return data


def choose_outcome_band(state: SessionState, config: RTPConfig, rng) -> tuple[OutcomeBand, SessionState]:
    """Pick the next round's target band. Returns (band, state with streak resets)."""
    rtp = state.current_rtp

    if rtp > config.target_rtp + config.drift_band:
        logger.debug(f"RTP {rtp:.2f}% above band — forcing loss")
        return OutcomeBand.LOSS, state
    if rtp < config.target_rtp - config.drift_band:
        band = OutcomeBand.MEDIUM if rng.random() < 0.5 else OutcomeBand.BIG
        logger.debug(f"RTP {rtp:.2f}% below band — forcing {band.value}")
        return band, state

    if state.consecutive_wins >= config.max_consecutive_wins:
        logger.debug(f"{state.consecutive_wins} wins in a row — forcing loss")
        return OutcomeBand.LOSS, replace(state, consecutive_wins=0)
    if state.consecutive_losses >= config.min_consecutive_losses:
        band = OutcomeBand.MEDIUM if rng.random() < config.forced_win_medium_weight else OutcomeBand.BIG
        logger.debug(f"{state.consecutive_losses} losses in a row — forcing {band.value}")
        return band, replace(state, consecutive_losses=0)

    return sample_band(config.win_distribution, rng), state


def sample_band(distribution: dict[str, float], rng) -> OutcomeBand:
    """Sample a band from the cumulative distribution (weights in any unit)."""
    total = sum(distribution.values())
    roll = rng.random() * total
    cumulative = 0.0
    for band in OutcomeBand:
        cumulative += distribution.get(band.value, 0.0)
        if roll < cumulative:
            return band
    return OutcomeBand.LOSS


def record_round(state: SessionState, stake: float, payout: float) -> SessionState:
    """Fold one finished round into the session statistics."""
    won = payout > 0
    return replace(
        state,
        total_staked=state.total_staked + stake,
        total_paid=state.total_paid + payout,
        consecutive_wins=state.consecutive_wins + 1 if won else 0,
        consecutive_losses=0 if won else state.consecutive_losses + 1,
        rounds_played=state.rounds_played + 1,
    )


# ═══════════════════════════════════════════════════════════════
# Biased generation
# ═══════════════════════════════════════════════════════════════

class GemSpawner:
    """Draws gems for initial spawn and refill, biased by the outcome band."""

    def __init__(self, catalog: GemCatalog, config: RTPConfig, rng, weights: Optional[Mapping[str, float]] = None):
        self.catalog = catalog
        self.config = config
        self.rng = rng
        # Spawn table for this round (specials not enabled this round are absent)
        self.weights = dict(catalog.weights if weights is None else weights)
        self.fallbacks = 0      # Loss-bias cells with no safe colour (informational)

    def spawn(self, board: Board, col: int, row: int, band: OutcomeBand) -> Gem:
        if band == OutcomeBand.LOSS:
            return self._spawn_avoiding(board, col, row)
        chance = self.config.seed_match_chance.get(band.value, 0.0)
        if chance > 0 and self.rng.random() < chance:
            seeded = self._copy_neighbor(board, col, row)
            if seeded is not None:
                return seeded
        return self.catalog.draw_gem(self.rng, self.weights)

    def _placed_neighbors(self, board: Board, col: int, row: int) -> list[Gem]:
        """Left and below — the cells already filled in bottom-up column order."""
        return [g for g in (board.get(col - 1, row), board.get(col, row - 1)) if g is not None]

    def _spawn_avoiding(self, board: Board, col: int, row: int) -> Gem:
        """Common gem whose colour no placed neighbour shares.

        Drawn from the spawn table restricted to such commons, so no draw is
        wasted. Falls back to the full table only when every common colour is
        taken by a neighbour.
        """
        taken = {g.color for g in self._placed_neighbors(board, col, row) if g.color}
        safe = {
            key: w for key, w in self.weights.items()
            if self.catalog.kinds[key].is_common and self.catalog.kinds[key].color not in taken
        }
        if safe:
            return self.catalog.draw_gem(self.rng, safe)
        self.fallbacks += 1
        logger.debug(f"Loss bias: no safe colour at ({col}, {row}) next to {sorted(taken)}; unbiased draw")
        return self.catalog.draw_gem(self.rng, self.weights)

    def _copy_neighbor(self, board: Board, col: int, row: int) -> Optional[Gem]:
        commons = [g for g in self._placed_neighbors(board, col, row) if g.kind.is_common]
        if not commons:
            return None
        return self.catalog.create(self.rng.choice(commons).kind)


def populate_board(board: Board, spawner: GemSpawner, band: OutcomeBand) -> int:
    """Fill every empty active cell, column by column, bottom-up. Returns gems placed."""
    placed = 0
    for col in range(board.columns):
        for row in range(board.active_rows):
            if board.get(col, row) is None:
                board.place(col, row, spawner.spawn(board, col, row, band))
                placed += 1
    return placed
