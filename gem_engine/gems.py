"""
GEMFALL — Gem Catalog

Static tables of gem kinds, payout values, match-size and combo multipliers,
and spawn weights. Gems are immutable values created only by the catalog.
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from config.engine_schema import BombType, EngineConfig, GemCategory, GemSpec

logger = logging.getLogger("gemfall.gems")

WILD_COLOR = "wild"


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GemKind:
    """Closed tagged variant: common | special(color) | penalty | bomb(type) | wild."""
    key: str
    category: GemCategory
    color: Optional[str] = None
    bomb: Optional[BombType] = None
    radius: int = 0

    @property
    def is_wild(self) -> bool:
        return self.category == GemCategory.WILD

    @property
    def is_common(self) -> bool:
        return self.category == GemCategory.COMMON

    @property
    def is_special(self) -> bool:
        return self.category == GemCategory.SPECIAL

    @property
    def is_penalty(self) -> bool:
        return self.category == GemCategory.PENALTY

    @property
    def is_bomb(self) -> bool:
        return self.category == GemCategory.BOMB

    @property
    def matchable(self) -> bool:
        """Takes part in runs and clusters (commons, specials, wilds)."""
        return self.category in (GemCategory.COMMON, GemCategory.SPECIAL, GemCategory.WILD)

    @classmethod
    def from_spec(cls, spec: GemSpec) -> "GemKind":
        return cls(
            key=spec.key,
            category=spec.category,
            color=spec.color,
            bomb=spec.bomb,
            radius=spec.radius,
        )


@dataclass(frozen=True)
class Gem:
    kind: GemKind
    payout_value: float

    @property
    def key(self) -> str:
        return self.kind.key

    @property
    def color(self) -> Optional[str]:
        return self.kind.color

    @property
    def is_wild(self) -> bool:
        return self.kind.is_wild

    def __repr__(self) -> str:
        return f"Gem({self.kind.key})"


# ═══════════════════════════════════════════════════════════════
# Multiplier step functions
# ═══════════════════════════════════════════════════════════════

def step_lookup(table: Mapping[int, float], x: int) -> float:
    """Value at the largest breakpoint <= x.

    Below the first breakpoint the first value applies; beyond the last
    breakpoint the last value applies (clamped, never zero).
    """
    if not table:
        return 1.0
    points = sorted(table)
    idx = bisect_right(points, x) - 1
    if idx < 0:
        idx = 0
    return table[points[idx]]


# ═══════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════

class GemCatalog:
    """Kinds, values, weights and multiplier tables from an EngineConfig."""

    def __init__(self, config: EngineConfig):
        self.config = config
        self.kinds: dict[str, GemKind] = {g.key: GemKind.from_spec(g) for g in config.gems}
        self.values: dict[str, float] = {g.key: g.value for g in config.gems}
        self.weights: dict[str, float] = {g.key: g.weight for g in config.gems if g.weight > 0}
        # Kinds that are only enabled for some rounds (Lords by default)
        self.round_chances: dict[str, float] = {
            g.key: g.round_chance for g in config.gems if g.round_chance < 1.0
        }
        self.colors: list[str] = sorted({
            g.color for g in config.gems if g.category == GemCategory.COMMON
        })
        self._match_table = dict(config.multipliers.match)
        self._combo_table = dict(config.multipliers.combo)

    @property
    def most_common_key(self) -> str:
        """Highest-weight common kind; the fallback for degenerate draws."""
        commons = [g for g in self.config.gems if g.category == GemCategory.COMMON]
        return max(commons, key=lambda g: g.weight).key

    def kind(self, key: str) -> Optional[GemKind]:
        return self.kinds.get(key)

    def common_kind(self, color: str) -> Optional[GemKind]:
        for k in self.kinds.values():
            if k.is_common and k.color == color:
                return k
        return None

    # ── Draws ─────────────────────────────────────────────────

    def draw_weighted(self, weights: Mapping[str, float], rng) -> str:
        """Sample one kind key. Weights may sum to any positive total.

        An empty or zero-sum map falls back to the most common kind.
        """
        positive = [(k, w) for k, w in weights.items() if w > 0]
        total = sum(w for _, w in positive)
        if not positive or total <= 0:
            logger.warning(f"Degenerate weight table {dict(weights)} — defaulting to {self.most_common_key}")
            return self.most_common_key
        roll = rng.random() * total
        cumulative = 0.0
        for key, w in positive:
            cumulative += w
            if roll < cumulative:
                return key
        return positive[-1][0]

    def create(self, kind: Union[GemKind, str]) -> Gem:
        if isinstance(kind, str):
            kind = self.kinds[kind]
        return Gem(kind=kind, payout_value=self.payout_for(kind))

    def round_weights(self, rng) -> dict[str, float]:
        """Spawn table for one round: each gated kind is rolled in or out once."""
        weights = {}
        for key, w in self.weights.items():
            chance = self.round_chances.get(key)
            if chance is None or rng.random() < chance:
                weights[key] = w
        return weights

    def draw_gem(self, rng, weights: Optional[Mapping[str, float]] = None) -> Gem:
        return self.create(self.draw_weighted(self.weights if weights is None else weights, rng))

    # ── Lookups ───────────────────────────────────────────────

    def payout_for(self, kind: Union[GemKind, str, None]) -> float:
        if kind is None:
            return 0.0
        key = kind.key if isinstance(kind, GemKind) else kind
        return self.values.get(key, 0.0)

    def match_multiplier(self, size: int) -> float:
        return step_lookup(self._match_table, size)

    def combo_multiplier(self, cascade_level: int) -> float:
        return step_lookup(self._combo_table, cascade_level)

    @property
    def special_power_multiplier(self) -> float:
        return self.config.multipliers.special_power_multiplier
