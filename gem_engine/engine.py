"""
GEMFALL — Match-Cascade Engine Facade

The inbound API used by the round controller / presentation layer:

    engine = MatchCascadeEngine(seed=7)
    engine.start_round(stake=100)
    while (step := engine.advance_cascade_step()) is not None:
        animate(step.to_dict())            # replay at any pace
    result = engine.resolve_round_fully()  # {total_payout, cascade_count, outcome_band}

or simply `engine.play_round(stake=100)`.

Session state is replaced exactly once per round, when the round finishes.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from config.engine_schema import BoardConfig, EngineConfig, default_config
from gem_engine.board import Board
from gem_engine.cascade import CascadeResolver, CascadeStep
from gem_engine.errors import NoActiveRoundError, RoundInProgressError
from gem_engine.gems import GemCatalog
from gem_engine.max_win import MaxWinMeter
from gem_engine.rtp import (
    GemSpawner, OutcomeBand, SessionState, choose_outcome_band, populate_board, record_round,
)

logger = logging.getLogger("gemfall.engine")


@dataclass
class RoundResult:
    stake: float
    outcome_band: OutcomeBand
    total_payout: float
    cascade_payout: float
    cascade_count: int
    cap_reached: bool = False
    max_win_reward: float = 0.0
    max_win_levels: list[str] = field(default_factory=list)
    steps: list[CascadeStep] = field(default_factory=list)

    @property
    def win_multiple(self) -> float:
        return self.total_payout / self.stake if self.stake > 0 else 0.0

    def to_dict(self, include_steps: bool = False) -> dict:
        data = {
            "stake": self.stake,
            "outcome_band": self.outcome_band.value,
            "total_payout": round(self.total_payout, 4),
            "cascade_payout": round(self.cascade_payout, 4),
            "cascade_count": self.cascade_count,
            "cap_reached": self.cap_reached,
            "max_win_reward": round(self.max_win_reward, 4),
            "max_win_levels": list(self.max_win_levels),
        }
        if include_steps:
            data["steps"] = [s.to_dict() for s in self.steps]
        return data


@dataclass
class RoundState:
    """Everything owned by the round in progress."""
    stake: float
    band: OutcomeBand
    board: Board
    resolver: CascadeResolver
    base_state: SessionState          # Session state after band selection
    result: Optional[RoundResult] = None

    @property
    def finished(self) -> bool:
        return self.result is not None


class MatchCascadeEngine:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        seed: Optional[int] = None,
        state: Optional[SessionState] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or default_config()
        self.rng = rng or random.Random(seed)
        self.catalog = GemCatalog(self.config)
        self.meter = MaxWinMeter(self.config.max_win)
        self.session = state or SessionState()
        self.round: Optional[RoundState] = None

    # ── Inbound API ───────────────────────────────────────────

    def start_round(self, stake: float, board_config: Optional[BoardConfig] = None) -> RoundState:
        if stake <= 0:
            raise ValueError(f"stake must be positive, got {stake}")
        if self.round is not None and not self.round.finished:
            raise RoundInProgressError("finish the current round before starting another")

        bc = board_config or self.config.board
        band, base_state = choose_outcome_band(self.session, self.config.rtp, self.rng)

        board = Board(bc.columns, self.rng.randint(*bc.start_row_range()), bc.max_rows)
        weights = self.catalog.round_weights(self.rng)
        spawner = GemSpawner(self.catalog, self.config.rtp, self.rng, weights)
        populate_board(board, spawner, band)

        resolver = CascadeResolver(
            board, self.catalog, spawner, band, self.rng,
            match_mode=bc.match_mode,
            max_cascades=self.config.max_cascades,
            refill_rows_per_cascade=bc.refill_rows_per_cascade,
            payout_scale=self.payout_scale(stake),
        )
        self.round = RoundState(stake=stake, band=band, board=board, resolver=resolver, base_state=base_state)
        enabled = sorted(k for k in weights if k in self.catalog.round_chances)
        logger.debug(f"Round {self.session.rounds_played + 1}: stake={stake} band={band.value} "
                     f"rtp={self.session.current_rtp:.2f}% rows={board.active_rows} enabled={enabled}")
        return self.round

    def advance_cascade_step(self) -> Optional[CascadeStep]:
        """Resolve one cascade. Returns None (and finishes the round) once stable."""
        rnd = self._active_round()
        if rnd.finished:
            return None
        step = rnd.resolver.step()
        if step is None:
            self._finish(rnd)
        return step

    def resolve_round_fully(self) -> RoundResult:
        rnd = self._active_round()
        if not rnd.finished:
            rnd.resolver.resolve()
            self._finish(rnd)
        return rnd.result

    def play_round(self, stake: float, board_config: Optional[BoardConfig] = None) -> RoundResult:
        self.start_round(stake, board_config)
        return self.resolve_round_fully()

    def get_rtp_session_snapshot(self) -> dict:
        snap = self.session.snapshot()
        snap["target_rtp"] = self.config.rtp.target_rtp
        snap["drift_band"] = self.config.rtp.drift_band
        snap["max_win"] = self.meter.progress(self.session)
        return snap

    # ── Internals ─────────────────────────────────────────────

    def payout_scale(self, stake: float) -> float:
        return stake / self.config.reference_stake

    def _active_round(self) -> RoundState:
        if self.round is None:
            raise NoActiveRoundError("no round has been started")
        return self.round

    def _finish(self, rnd: RoundState) -> None:
        resolver = rnd.resolver
        cascade_payout = max(0.0, resolver.total_payout)
        specials = sum(s.specials_removed for s in resolver.steps)

        state, award = self.meter.collect(rnd.base_state, specials)
        reward = award.reward * self.payout_scale(rnd.stake)
        total = cascade_payout + reward

        self.session = record_round(state, rnd.stake, total)
        rnd.result = RoundResult(
            stake=rnd.stake,
            outcome_band=rnd.band,
            total_payout=total,
            cascade_payout=cascade_payout,
            cascade_count=len(resolver.steps),
            cap_reached=resolver.cap_reached,
            max_win_reward=reward,
            max_win_levels=award.levels,
            steps=list(resolver.steps),
        )
        if resolver.spawner.fallbacks:
            logger.info(f"Round used {resolver.spawner.fallbacks} unbiased loss-bias fallbacks")
