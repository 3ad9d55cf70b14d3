"""
GEMFALL — Match-Cascade & RTP-Controlled Outcome Engine

Board model, run/cluster/special/bomb detection, cascade resolution and an
RTP feedback loop that biases gem generation toward a target payout band.

Usage:
    from gem_engine import MatchCascadeEngine
    engine = MatchCascadeEngine(seed=42)
    result = engine.play_round(stake=100)
    print(result.to_dict(), engine.get_rtp_session_snapshot())
"""

from gem_engine.errors import (
    CellOccupied, ConfigurationError, EngineError, NoActiveRoundError,
    OutOfBounds, PlacementError, RoundInProgressError, RoundStateError,
)
from gem_engine.gems import Gem, GemCatalog, GemKind
from gem_engine.board import Board
from gem_engine.matcher import Match, MatchSource, detect_matches
from gem_engine.rtp import OutcomeBand, SessionState, choose_outcome_band, record_round
from gem_engine.cascade import CascadeResolver, CascadeState, CascadeStep
from gem_engine.engine import MatchCascadeEngine, RoundResult
from gem_engine.simulate import SimResult, simulate

__all__ = [
    "Board", "CascadeResolver", "CascadeState", "CascadeStep", "CellOccupied",
    "ConfigurationError", "EngineError", "Gem", "GemCatalog", "GemKind", "Match",
    "MatchCascadeEngine", "MatchSource", "NoActiveRoundError", "OutOfBounds",
    "OutcomeBand", "PlacementError", "RoundInProgressError", "RoundResult",
    "RoundStateError", "SessionState", "SimResult", "choose_outcome_band",
    "detect_matches", "record_round", "simulate",
]
