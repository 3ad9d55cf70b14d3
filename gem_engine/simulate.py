"""
GEMFALL — Monte Carlo Session Simulator

Plays N rounds through the full engine (RTP controller included) and reports
measured RTP, hit rate, cascade depth, band mix and win distribution.
Seeded, so results are reproducible.

Usage:
    from gem_engine.simulate import simulate
    result = simulate(rounds=50_000, stake=100, seed=42)
    print(result.summary())
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Optional

from config.engine_schema import EngineConfig, default_config
from gem_engine.engine import MatchCascadeEngine
from gem_engine.rtp import OutcomeBand

logger = logging.getLogger("gemfall.simulate")


@dataclass
class SimResult:
    """Simulation results for a session of rounds."""
    rounds: int
    stake: float
    target_rtp: float
    total_wagered: float
    total_returned: float
    rtp: float                      # Measured, percent
    hit_rate: float                 # Fraction of rounds with payout > 0
    max_win_multiple: float
    avg_cascades: float
    cap_hits: int = 0
    max_win_awards: int = 0
    band_distribution: dict = field(default_factory=dict)
    distribution: dict = field(default_factory=dict)
    streaks: dict = field(default_factory=dict)
    duration_seconds: float = 0.0
    seed: Optional[int] = None
    config_hash: str = ""

    def to_dict(self) -> dict:
        return {
            "rounds": self.rounds,
            "stake": self.stake,
            "target_rtp": self.target_rtp,
            "rtp": round(self.rtp, 4),
            "total_wagered": round(self.total_wagered, 2),
            "total_returned": round(self.total_returned, 2),
            "hit_rate": round(self.hit_rate, 4),
            "max_win_multiple": round(self.max_win_multiple, 2),
            "avg_cascades": round(self.avg_cascades, 3),
            "cap_hits": self.cap_hits,
            "max_win_awards": self.max_win_awards,
            "band_distribution": self.band_distribution,
            "distribution": self.distribution,
            "streaks": self.streaks,
            "duration_s": round(self.duration_seconds, 2),
            "seed": self.seed,
            "config_hash": self.config_hash,
        }

    def summary(self) -> str:
        lines = [
            f"═══ Gemfall simulation: {self.rounds:,} rounds @ {self.stake:g} ═══",
            f"  Target RTP:  {self.target_rtp:.2f}%",
            f"  Measured:    {self.rtp:.2f}%",
            f"  Hit Rate:    {self.hit_rate*100:.2f}%",
            f"  Max Win:     {self.max_win_multiple:.2f}x",
            f"  Cascades:    {self.avg_cascades:.2f} avg, cap hit {self.cap_hits:,}x",
            f"  Max-Win:     {self.max_win_awards:,} level awards",
            f"  Duration:    {self.duration_seconds:.2f}s",
        ]
        if self.streaks:
            lines.append(f"  Max Loss Streak: {self.streaks.get('max_loss_streak', 'N/A')}")
            lines.append(f"  Max Win Streak:  {self.streaks.get('max_win_streak', 'N/A')}")
        return "\n".join(lines)


def categorize_win(multiple: float) -> str:
    """Bucket a round's payout by multiple of stake."""
    if multiple == 0:
        return "0x"
    if multiple < 1:
        return "0-1x"
    if multiple < 2:
        return "1-2x"
    if multiple < 5:
        return "2-5x"
    if multiple < 10:
        return "5-10x"
    if multiple < 50:
        return "10-50x"
    if multiple < 100:
        return "50-100x"
    return "100x+"


def analyze_streaks(payouts: list[float]) -> dict:
    """Longest win/loss streaks from per-round payouts."""
    if not payouts:
        return {}
    max_win = max_loss = cur_win = cur_loss = 0
    for p in payouts:
        if p > 0:
            cur_win += 1
            cur_loss = 0
            max_win = max(max_win, cur_win)
        else:
            cur_loss += 1
            cur_win = 0
            max_loss = max(max_loss, cur_loss)
    return {"max_win_streak": max_win, "max_loss_streak": max_loss}


def simulate(
    config: Optional[EngineConfig] = None,
    rounds: int = 10_000,
    stake: Optional[float] = None,
    seed: Optional[int] = 42,
) -> SimResult:
    """Play `rounds` rounds in one session. Stake defaults to the reference stake."""
    config = config or default_config()
    stake = stake if stake is not None else config.reference_stake
    engine = MatchCascadeEngine(config, rng=random.Random(seed))

    start = time.time()
    payouts: list[float] = []
    buckets: dict[str, int] = {}
    bands = {b.value: 0 for b in OutcomeBand}
    cascades = 0
    cap_hits = 0
    awards = 0
    max_multiple = 0.0

    for i in range(rounds):
        result = engine.play_round(stake)
        payouts.append(result.total_payout)
        bands[result.outcome_band.value] += 1
        cascades += result.cascade_count
        cap_hits += int(result.cap_reached)
        awards += len(result.max_win_levels)
        max_multiple = max(max_multiple, result.win_multiple)
        bucket = categorize_win(result.win_multiple)
        buckets[bucket] = buckets.get(bucket, 0) + 1
        if rounds >= 10 and (i + 1) % max(1, rounds // 10) == 0:
            logger.info(f"{i + 1:,}/{rounds:,} rounds — running RTP {engine.session.current_rtp:.2f}%")

    n = max(rounds, 1)
    session = engine.session
    return SimResult(
        rounds=rounds,
        stake=stake,
        target_rtp=config.rtp.target_rtp,
        total_wagered=session.total_staked,
        total_returned=session.total_paid,
        rtp=session.current_rtp,
        hit_rate=sum(1 for p in payouts if p > 0) / n,
        max_win_multiple=max_multiple,
        avg_cascades=cascades / n,
        cap_hits=cap_hits,
        max_win_awards=awards,
        band_distribution={k: round(v / n, 4) for k, v in bands.items()},
        distribution={k: round(v / n, 4) for k, v in sorted(buckets.items())},
        streaks=analyze_streaks(payouts),
        duration_seconds=time.time() - start,
        seed=seed,
        config_hash=config.config_hash,
    )
