"""Logging helpers."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

GUARDIAN_LOG_DIR: str = os.getenv("GUARDIAN_LOG_DIR", "")
GUARDIAN_LOG_LEVEL: str = os.getenv("GUARDIAN_LOG_LEVEL", "INFO")


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """Configure the `guardian` logger: console always, rotating file when a directory is set."""
    log_dir = GUARDIAN_LOG_DIR if log_dir is None else log_dir
    level_name = (level or GUARDIAN_LOG_LEVEL).upper()

    logger = logging.getLogger("guardian")
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not logger.handlers:
        fmt = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        logger.addHandler(console)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "guardian.log"), maxBytes=2_000_000, backupCount=3
            )
            handler.setFormatter(fmt)
            logger.addHandler(handler)

    return logger
