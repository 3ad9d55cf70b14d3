"""
GEMFALL — Engine Configuration Schema

Every table the match-cascade engine reads lives here: board dimensions,
the gem catalog (kinds, payout values, spawn weights), match-size and combo
multipliers, bomb radii, RTP control and the max-win meter.

The config is loaded once and is immutable for the duration of a round.
Invalid tables fail fast at load time (ConfigurationError), never mid-round.

Usage:
    from config.engine_schema import default_config, load_config
    config = default_config()
    config = load_config("gemfall.json")
    json_str = config.model_dump_json(indent=2)
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


# ═══════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════

class GemCategory(str, Enum):
    COMMON  = "common"
    SPECIAL = "special"
    PENALTY = "penalty"
    BOMB    = "bomb"
    WILD    = "wild"


class BombType(str, Enum):
    AREA  = "area"
    LINE  = "line"
    COLOR = "color"


class MatchMode(str, Enum):
    RUNS     = "runs"
    CLUSTERS = "clusters"
    BOTH     = "both"


# ═══════════════════════════════════════════════════════════════
# Sub-Models
# ═══════════════════════════════════════════════════════════════

class BoardConfig(BaseModel):
    """Grid dimensions and detection policy."""
    columns: int = Field(6, ge=1)
    min_rows: int = Field(3, ge=1)               # Lowest start height
    start_rows_max: int = Field(4, ge=1)         # Highest start height (drawn per round)
    max_rows: int = Field(8, ge=1)               # Ceiling for row growth
    match_mode: MatchMode = MatchMode.CLUSTERS
    refill_rows_per_cascade: int = Field(2, ge=0)  # Max rows added per cascade

    @model_validator(mode="after")
    def check_rows(self):
        if self.min_rows > self.max_rows:
            raise ValueError(f"min_rows ({self.min_rows}) exceeds max_rows ({self.max_rows})")
        return self

    def start_row_range(self) -> tuple[int, int]:
        """Inclusive bounds for the round's starting active rows."""
        high = min(max(self.start_rows_max, self.min_rows), self.max_rows)
        return self.min_rows, high


class GemSpec(BaseModel):
    """One catalog entry. `key` is what snapshots and payout tables refer to."""
    key: str
    category: GemCategory
    color: Optional[str] = None       # Bound colour for common/special gems
    bomb: Optional[BombType] = None
    radius: int = 0                   # Chebyshev radius, area bombs only
    value: float = 0.0                # Payout value in currency units
    weight: float = Field(0.0, ge=0.0)  # Spawn weight (any total)
    round_chance: float = Field(1.0, ge=0.0, le=1.0)  # Chance the kind is enabled for a round

    @model_validator(mode="after")
    def check_variant(self):
        if self.category in (GemCategory.COMMON, GemCategory.SPECIAL) and not self.color:
            raise ValueError(f"{self.category.value} gem '{self.key}' needs a color")
        if self.category not in (GemCategory.COMMON, GemCategory.SPECIAL) and self.color:
            raise ValueError(f"{self.category.value} gem '{self.key}' cannot carry a color")
        if self.category == GemCategory.BOMB:
            if self.bomb is None:
                raise ValueError(f"bomb '{self.key}' needs a bomb type")
            if self.bomb == BombType.AREA and self.radius not in (1, 2, 3):
                raise ValueError(f"area bomb '{self.key}' radius must be 1, 2 or 3")
        elif self.bomb is not None:
            raise ValueError(f"'{self.key}' is not a bomb but declares bomb={self.bomb.value}")
        return self


class MultiplierConfig(BaseModel):
    """Step-function tables keyed by breakpoint."""
    match: dict[int, float] = Field(default_factory=lambda: {
        3: 1.0, 4: 1.5, 5: 2.0, 6: 2.5, 7: 3.0, 8: 4.0, 9: 4.5, 10: 5.0,
    })
    combo: dict[int, float] = Field(default_factory=lambda: {
        1: 1.0, 2: 1.2, 3: 1.5, 4: 2.0, 5: 3.0, 6: 4.0,
    })
    special_power_multiplier: float = Field(10.0, gt=0.0)

    @field_validator("match", "combo")
    @classmethod
    def positive_table(cls, v: dict[int, float]) -> dict[int, float]:
        if not v:
            raise ValueError("multiplier table is empty")
        bad = {k: m for k, m in v.items() if m <= 0}
        if bad:
            raise ValueError(f"multipliers must be positive, got {bad}")
        return dict(sorted(v.items()))


class RTPConfig(BaseModel):
    """Return-to-player feedback loop and streak control (percent units)."""
    target_rtp: float = Field(96.0, gt=0.0)
    drift_band: float = Field(5.0, ge=0.0)
    max_consecutive_wins: int = Field(3, ge=1)    # Force loss after N wins
    min_consecutive_losses: int = Field(2, ge=1)  # Force win after N losses
    win_distribution: dict[str, float] = Field(default_factory=lambda: {
        "loss": 45.0, "small": 35.0, "medium": 15.0, "big": 4.0, "mega": 1.0,
    })
    forced_win_medium_weight: float = Field(0.7, ge=0.0, le=1.0)
    seed_match_chance: dict[str, float] = Field(default_factory=lambda: {
        "big": 0.35, "mega": 0.6,
    })

    @field_validator("win_distribution")
    @classmethod
    def check_distribution(cls, v: dict[str, float]) -> dict[str, float]:
        bands = ("loss", "small", "medium", "big", "mega")
        unknown = set(v) - set(bands)
        if unknown:
            raise ValueError(f"unknown outcome bands {sorted(unknown)}")
        if any(w < 0 for w in v.values()) or sum(v.values()) <= 0:
            raise ValueError("win_distribution needs non-negative weights with a positive total")
        return {b: float(v.get(b, 0.0)) for b in bands}

    @field_validator("seed_match_chance")
    @classmethod
    def check_seed_chance(cls, v: dict[str, float]) -> dict[str, float]:
        for band, p in v.items():
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"seed_match_chance[{band}]={p} is not a probability")
        return v


class MaxWinLevel(BaseModel):
    name: str
    specials_required: int = Field(ge=1)
    reward: float = Field(ge=0.0)


class MaxWinConfig(BaseModel):
    """Meter filled by special gems removed across rounds."""
    enabled: bool = True
    reset_on_max_win: bool = True
    levels: list[MaxWinLevel] = Field(default_factory=lambda: [
        MaxWinLevel(name="Bronze", specials_required=3, reward=50),
        MaxWinLevel(name="Silver", specials_required=5, reward=100),
        MaxWinLevel(name="Gold", specials_required=7, reward=200),
        MaxWinLevel(name="Platinum", specials_required=10, reward=500),
        MaxWinLevel(name="MAX WIN", specials_required=15, reward=1000),
    ])

    @field_validator("levels")
    @classmethod
    def ascending(cls, v: list[MaxWinLevel]) -> list[MaxWinLevel]:
        required = [lvl.specials_required for lvl in v]
        if required != sorted(set(required)):
            raise ValueError("max-win levels must have strictly ascending thresholds")
        return v


def _default_gems() -> list[GemSpec]:
    return [
        # Commons
        GemSpec(key="red", category=GemCategory.COMMON, color="red", value=5, weight=22),
        GemSpec(key="green", category=GemCategory.COMMON, color="green", value=8, weight=22),
        GemSpec(key="blue", category=GemCategory.COMMON, color="blue", value=12, weight=18),
        GemSpec(key="yellow", category=GemCategory.COMMON, color="yellow", value=15, weight=18),
        # Lords: each rolled in for a round with round_chance, then spawn at weight 5
        GemSpec(key="lord_ignis", category=GemCategory.SPECIAL, color="red", value=100, weight=5, round_chance=0.30),
        GemSpec(key="lord_ventus", category=GemCategory.SPECIAL, color="green", value=120, weight=5, round_chance=0.30),
        GemSpec(key="lord_aqua", category=GemCategory.SPECIAL, color="blue", value=150, weight=5, round_chance=0.25),
        GemSpec(key="lord_terra", category=GemCategory.SPECIAL, color="yellow", value=200, weight=5, round_chance=0.25),
        # Bombs
        GemSpec(key="bomb_small", category=GemCategory.BOMB, bomb=BombType.AREA, radius=1, value=25, weight=3.0),
        GemSpec(key="bomb_medium", category=GemCategory.BOMB, bomb=BombType.AREA, radius=2, value=50, weight=1.5),
        GemSpec(key="bomb_large", category=GemCategory.BOMB, bomb=BombType.AREA, radius=3, value=100, weight=0.8),
        GemSpec(key="bomb_line", category=GemCategory.BOMB, bomb=BombType.LINE, value=150, weight=0.5),
        GemSpec(key="bomb_color", category=GemCategory.BOMB, bomb=BombType.COLOR, value=300, weight=0.2),
        # Penalty + wild
        GemSpec(key="black_gem", category=GemCategory.PENALTY, value=-50, weight=2.0),
        GemSpec(key="wild", category=GemCategory.WILD, value=0, weight=1.0),
    ]


# ═══════════════════════════════════════════════════════════════
# Main Config Model
# ═══════════════════════════════════════════════════════════════

class EngineConfig(BaseModel):
    """Complete configuration surface of the engine."""
    version: str = "1.0.0"
    board: BoardConfig = Field(default_factory=BoardConfig)
    gems: list[GemSpec] = Field(default_factory=_default_gems)
    multipliers: MultiplierConfig = Field(default_factory=MultiplierConfig)
    rtp: RTPConfig = Field(default_factory=RTPConfig)
    max_win: MaxWinConfig = Field(default_factory=MaxWinConfig)
    max_cascades: int = Field(5, ge=1)        # Hard cap per round
    reference_stake: float = Field(250.0, gt=0.0)  # Stake at which gem values pay 1:1
    config_hash: str = ""                     # SHA-256 of the tables for audit

    @model_validator(mode="after")
    def check_catalog(self):
        keys = [g.key for g in self.gems]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"duplicate gem keys: {dupes}")
        if not any(g.category == GemCategory.COMMON for g in self.gems):
            raise ValueError("catalog needs at least one common gem")
        if sum(g.weight for g in self.gems) <= 0:
            raise ValueError("spawn weights are empty or sum to zero")
        colors = {g.color for g in self.gems if g.category == GemCategory.COMMON}
        orphans = [g.key for g in self.gems if g.category == GemCategory.SPECIAL and g.color not in colors]
        if orphans:
            raise ValueError(f"special gems bound to colors with no common gem: {orphans}")
        return self

    def model_post_init(self, __context):
        """Compute config hash after init."""
        tables = self.model_dump_json(exclude={"config_hash", "version"})
        self.config_hash = hashlib.sha256(tables.encode()).hexdigest()[:16]

    def gem(self, key: str) -> Optional[GemSpec]:
        for spec in self.gems:
            if spec.key == key:
                return spec
        return None


# ═══════════════════════════════════════════════════════════════
# Loading
# ═══════════════════════════════════════════════════════════════

def default_config(**overrides) -> EngineConfig:
    """The stock game tables, optionally with top-level overrides."""
    from gem_engine.errors import ConfigurationError
    try:
        return EngineConfig(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"invalid engine config: {e}") from e


def load_config(path: str | Path) -> EngineConfig:
    """Load and validate a JSON config file. Fails fast on any bad table."""
    from gem_engine.errors import ConfigurationError

    path = Path(path)
    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigurationError(f"cannot read config {path}: {e}") from e
    try:
        return EngineConfig.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigurationError(f"{path}: {e}") from e


def config_from_dict(data: dict) -> EngineConfig:
    from gem_engine.errors import ConfigurationError
    try:
        return EngineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid engine config: {e}") from e


def validate_config(config: EngineConfig) -> list[str]:
    """Run sanity checks on a config and return list of warnings."""
    warnings = []

    r = config.rtp
    if r.target_rtp < 85:
        warnings.append(f"RTP {r.target_rtp}% is unusually low — most jurisdictions require ≥85%")
    if r.target_rtp > 99:
        warnings.append(f"RTP {r.target_rtp}% is very high — house edge only {100 - r.target_rtp:.2f}%")
    if r.drift_band > r.target_rtp / 2:
        warnings.append(f"Drift band ±{r.drift_band}% is too wide to steer toward {r.target_rtp}%")

    b = config.board
    if b.columns < 3 and b.max_rows < 3:
        warnings.append(f"Board {b.columns}x{b.max_rows} cannot hold a 3-gem match")

    if min(config.multipliers.match) > 3:
        warnings.append(
            f"Smallest match breakpoint is {min(config.multipliers.match)}; "
            f"3-gem matches will pay its multiplier"
        )

    for band in ("big", "mega"):
        if band not in r.seed_match_chance:
            warnings.append(f"No seed_match_chance for '{band}' — band behaves like unbiased")

    if config.max_win.enabled and not any(g.category == GemCategory.SPECIAL for g in config.gems):
        warnings.append("Max-win meter enabled but the catalog has no special gems")

    return warnings


if __name__ == "__main__":
    cfg = default_config()
    print(json.dumps(json.loads(cfg.model_dump_json()), indent=2))
    for w in validate_config(cfg):
        print(f"  - {w}")
