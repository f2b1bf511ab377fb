"""strata - Selective, state-aware builds for SQL model DAGs."""

from __future__ import annotations

import logging

__version__ = "0.1.0"

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "WARNING") -> logging.Logger:
    """Route ``strata.*`` records to stderr at the given level.

    The handler is attached once; later calls only change the level, so
    repeated CLI invocations in one process don't duplicate output. Unknown
    level names fall back to WARNING.
    """
    logger = logging.getLogger("strata")
    resolved = logging.getLevelName(level.upper())
    logger.setLevel(resolved if isinstance(resolved, int) else logging.WARNING)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)
    return logger
