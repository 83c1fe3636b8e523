"""Logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

from config.settings import AppConfig

LOGGER_NAME = "panorama"


def resolve_level(name: str) -> int:
    """Map a level name such as ``"debug"`` to its numeric value; unknown names mean INFO."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: AppConfig) -> logging.Logger:
    """Configure the root handlers and return the package logger.

    Module loggers are created with ``logging.getLogger(__name__)`` under the
    ``panorama`` namespace, so they all inherit the level set here.
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = resolve_level(config.log_level)
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_dir / "panorama.log", encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    return logger
