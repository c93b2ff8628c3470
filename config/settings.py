"""
CASINOCORE — Runtime Settings

Environment-driven knobs for the simulation core, the CLI and the HTTP API.
Values are read once at import (after `load_dotenv()`), the same way every
other entry point in the project picks up its configuration.

    from config.settings import Settings, configure_logging
    configure_logging()
    rate = Settings.TICK_RATE
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger("casinocore.settings").warning(
            f"{name}={raw!r} is not a number, using {default}")
        return default


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger("casinocore.settings").warning(
            f"{name}={raw!r} is not an integer, using {default}")
        return default


# ============================================================
# SIMULATION / SESSION DEFAULTS
#
# TICK_RATE        → scheduler frequency in Hz (≈60 = one tick per 16 ms)
# STARTING_BALANCE → balance of the in-memory ledger used by CLI + API
# SEED             → fixed RNG seed; unset = OS entropy
# TARGET_RTP       → binomial-model return the Plinko tables are scaled to;
#                    unset or 0 = raw curve from the risk profile
# ============================================================

class Settings:

    TICK_RATE = _env_float("CASINOCORE_TICK_RATE", 60.0)
    STARTING_BALANCE = _env_float("CASINOCORE_STARTING_BALANCE", 1000.0)
    SEED = _env_int("CASINOCORE_SEED", None)
    TARGET_RTP = _env_float("CASINOCORE_TARGET_RTP", 0.97)
    DEFAULT_RISK = os.getenv("CASINOCORE_DEFAULT_RISK", "medium").strip().lower()
    RESULT_HISTORY = _env_int("CASINOCORE_RESULT_HISTORY", 50)

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # --- HTTP API ---
    API_HOST = os.getenv("CASINOCORE_API_HOST", "127.0.0.1")
    API_PORT = _env_int("CASINOCORE_API_PORT", 5000)

    @classmethod
    def tick_interval(cls) -> float:
        """Seconds between scheduler ticks."""
        rate = cls.TICK_RATE if cls.TICK_RATE > 0 else 60.0
        return 1.0 / rate

    @classmethod
    def target_rtp(cls) -> Optional[float]:
        """Calibration target for multiplier tables, or None for the raw curve."""
        if not cls.TARGET_RTP or cls.TARGET_RTP <= 0:
            return None
        return cls.TARGET_RTP


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach one stream handler to the `casinocore` logger tree (idempotent)."""
    logger = logging.getLogger("casinocore")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        logger.addHandler(handler)
    logger.setLevel((level or Settings.LOG_LEVEL).upper())
    return logger
