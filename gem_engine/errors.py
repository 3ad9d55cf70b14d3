"""
GEMFALL — Engine Error Taxonomy

Configuration and placement failures are the only errors the engine raises.
Pure computation (match detection, multiplier lookups) never raises.
"""


class EngineError(Exception):
    """Base for every error raised by the gem engine."""


class ConfigurationError(EngineError):
    """Invalid engine configuration. Fatal: raised before any round starts."""


# ── Placement (caller programming errors) ──

class PlacementError(EngineError):
    """A gem could not be placed on the board."""

    def __init__(self, col: int, row: int, message: str):
        self.col = col
        self.row = row
        super().__init__(f"({col}, {row}): {message}")


class OutOfBounds(PlacementError):
    def __init__(self, col: int, row: int, columns: int, active_rows: int):
        super().__init__(col, row, f"outside board {columns}x{active_rows}")


class CellOccupied(PlacementError):
    def __init__(self, col: int, row: int, occupant: str = ""):
        super().__init__(col, row, f"cell already holds {occupant or 'a gem'}")


# ── Round lifecycle ──

class RoundStateError(EngineError):
    """Round API called out of order."""


class RoundInProgressError(RoundStateError):
    pass


class NoActiveRoundError(RoundStateError):
    pass
