"""
Configuration for runwaykit.
Loads settings from environment variables and an optional .env file.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .anomaly import (
    BASE_MAGNITUDE_MULTIPLIER,
    BASE_Z_THRESHOLD,
    DEFAULT_CONTAMINATION,
    DUPLICATE_WINDOW_DAYS,
    Z_SENSITIVITY,
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _bool(val: str) -> bool:
    return val.strip().lower() in ("true", "1", "yes")


def _float(val: str | None, default: float = 0.0) -> float:
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def _int(val: str | None, default: int = 0) -> int:
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


@dataclass
class Settings:
    # --- Logging ---
    log_level: str = "INFO"

    # --- Anomaly detection ---
    default_contamination: float = DEFAULT_CONTAMINATION
    base_z_threshold: float = BASE_Z_THRESHOLD
    z_sensitivity: float = Z_SENSITIVITY
    magnitude_multiplier: float = BASE_MAGNITUDE_MULTIPLIER
    duplicate_window_days: int = DUPLICATE_WINDOW_DAYS

    # --- Rate limiting ---
    sweep_interval_seconds: float = 60.0
    auto_sweep: bool = True


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Read RUNWAYKIT_* variables; a .env file never overrides the real environment."""
    if env_file is not None:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(Path.cwd() / ".env", override=False)

    return Settings(
        log_level=os.getenv("RUNWAYKIT_LOG_LEVEL", "INFO").upper(),
        default_contamination=_float(
            os.getenv("RUNWAYKIT_DEFAULT_CONTAMINATION"), DEFAULT_CONTAMINATION
        ),
        base_z_threshold=_float(
            os.getenv("RUNWAYKIT_BASE_Z_THRESHOLD"), BASE_Z_THRESHOLD
        ),
        z_sensitivity=_float(os.getenv("RUNWAYKIT_Z_SENSITIVITY"), Z_SENSITIVITY),
        magnitude_multiplier=_float(
            os.getenv("RUNWAYKIT_MAGNITUDE_MULTIPLIER"), BASE_MAGNITUDE_MULTIPLIER
        ),
        duplicate_window_days=_int(
            os.getenv("RUNWAYKIT_DUPLICATE_WINDOW_DAYS"), DUPLICATE_WINDOW_DAYS
        ),
        sweep_interval_seconds=_float(
            os.getenv("RUNWAYKIT_SWEEP_INTERVAL_SECONDS"), 60.0
        ),
        auto_sweep=_bool(os.getenv("RUNWAYKIT_AUTO_SWEEP", "true")),
    )


def configure_logging(settings: Settings | None = None):
    settings = settings or load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
