"""Logging setup for the tile service.

Modules log through ``logging.getLogger(__name__)``; configure_logging()
attaches one stream handler to the package logger so messages from every
``spectral_tiler.*`` module share a format and level.
"""

from __future__ import annotations

import logging
import sys

PACKAGE_LOGGER = "spectral_tiler"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Configure the package logger once.

    Repeated calls only update the level, so creating several applications
    in one process (tests) does not stack handlers.

    Args:
        level: Level name (e.g. "DEBUG") or numeric level. Unknown names
            fall back to INFO.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO

    logger.setLevel(level)
    if not getattr(logger, "_spectral_tiler_configured", False):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger._spectral_tiler_configured = True  # type: ignore[attr-defined]

    return logger
