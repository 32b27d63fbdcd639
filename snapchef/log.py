from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "snapchef"


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Attach a single rich handler to the package logger.

    Level falls back to SNAPCHEF_LOG_LEVEL, then WARNING. Calling this again
    only updates the level.
    """
    if level is None:
        level = os.environ.get("SNAPCHEF_LOG_LEVEL", "WARNING")
    if isinstance(level, str):
        level = getattr(logging, level.strip().upper(), logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
    return logger
