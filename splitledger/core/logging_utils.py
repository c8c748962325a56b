"""Logging helpers shared by every module.

``get_logger`` configures the root logger exactly once per process, so
modules can create their logger at import time without stacking handlers
when the app is reloaded in development.
"""

from __future__ import annotations

import logging
from typing import Optional

from splitledger.core.config import settings

_LOGGER_INITIALISED = False


def configure_root_logger(level: int | str = logging.INFO) -> None:
    """Attach a single stream handler to the root logger."""

    global _LOGGER_INITIALISED
    if _LOGGER_INITIALISED:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    _LOGGER_INITIALISED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module logger, configuring the root logger on first use."""

    configure_root_logger(settings.LOG_LEVEL.upper())
    return logging.getLogger(name)
