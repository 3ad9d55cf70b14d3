"""
GEMFALL — Max-Win Meter

Special gems removed during a round fill a meter that persists across rounds.
Each level pays its reward once when its threshold is crossed. Reaching the
top level resets the meter if configured to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from config.engine_schema import MaxWinConfig
from gem_engine.rtp import SessionState

logger = logging.getLogger("gemfall.max_win")


@dataclass
class MeterAward:
    reward: float = 0.0
    levels: list[str] = field(default_factory=list)
    reset: bool = False


class MaxWinMeter:
    def __init__(self, config: MaxWinConfig):
        self.config = config

    def collect(self, state: SessionState, specials: int) -> tuple[SessionState, MeterAward]:
        """Add `specials` to the meter; return the new state and any unscaled reward."""
        award = MeterAward()
        if not self.config.enabled or specials <= 0:
            return state, award

        collected = state.specials_collected + specials
        level = state.max_win_level
        levels = self.config.levels
        while level < len(levels) and collected >= levels[level].specials_required:
            award.reward += levels[level].reward
            award.levels.append(levels[level].name)
            level += 1

        if award.levels:
            logger.info(f"Max-win meter: {', '.join(award.levels)} (+{award.reward:g}) at {collected} specials")

        if level >= len(levels) and self.config.reset_on_max_win:
            award.reset = True
            return replace(state, specials_collected=0, max_win_level=0), award
        return replace(state, specials_collected=collected, max_win_level=level), award

    def progress(self, state: SessionState) -> dict:
        levels = self.config.levels
        nxt = levels[state.max_win_level] if state.max_win_level < len(levels) else None
        return {
            "specials_collected": state.specials_collected,
            "level": state.max_win_level,
            "next_level": nxt.name if nxt else None,
            "next_threshold": nxt.specials_required if nxt else None,
        }
