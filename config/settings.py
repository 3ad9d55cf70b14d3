"""
Gemfall - Runtime Settings

Environment-driven knobs (read from .env when present):

    GEMFALL_CONFIG       path to an engine config JSON (default: built-in tables)
    GEMFALL_SEED         RNG seed for simulations and the CLI (default: 42)
    GEMFALL_LOG_LEVEL    DEBUG | INFO | WARNING (default: INFO)
    SIMULATION_ROUNDS    default round count for `gem_cli simulate`
    OUTPUT_DIR           where reports are written
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "./output"))


class EngineSettings:

    CONFIG_PATH = os.getenv("GEMFALL_CONFIG", "")
    SEED = int(os.getenv("GEMFALL_SEED", "42"))
    LOG_LEVEL = os.getenv("GEMFALL_LOG_LEVEL", "INFO").upper()
    SIMULATION_ROUNDS = int(os.getenv("SIMULATION_ROUNDS", "10000"))

    @classmethod
    def load_engine_config(cls, path: str = ""):
        """Engine config from `path`, GEMFALL_CONFIG, or the built-in defaults."""
        from config.engine_schema import default_config, load_config

        path = path or cls.CONFIG_PATH
        if path:
            return load_config(path)
        return default_config()


def configure_logging(level: str = "") -> logging.Logger:
    """Attach one stream handler to the `gemfall` logger tree."""
    logger = logging.getLogger("gemfall")
    if not logger.handlers:
        _h = logging.StreamHandler()
        _h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s", datefmt="%H:%M:%S"))
        logger.addHandler(_h)
    logger.setLevel(getattr(logging, (level or EngineSettings.LOG_LEVEL).upper(), logging.INFO))
    return logger
