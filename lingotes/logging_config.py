"""Logging setup shared by the console and scripts."""

from __future__ import annotations

import logging
import os

ENV_LOG_LEVEL = "LINGOTES_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def configure_logging(level: str | int | None = None) -> None:
    """Attach one stream handler to the ``lingotes`` logger. Safe to call on every rerun."""
    global _configured
    logger = logging.getLogger("lingotes")
    if level is None:
        level = os.getenv(ENV_LOG_LEVEL, "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    _configured = True


def reset_logging() -> None:
    global _configured
    logger = logging.getLogger("lingotes")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.propagate = True
    _configured = False
