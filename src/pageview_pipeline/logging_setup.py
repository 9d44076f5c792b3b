"""Process logging for the pageview import: stderr, level from LOG_LEVEL."""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# chatty below WARNING on every checkout/return
_NOISY_LOGGERS = ("psycopg.pool",)


def _level_from_env(default: str = "INFO") -> int:
    name = os.getenv("LOG_LEVEL", default).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> int:
    """
    Configure the root logger once per process. Returns the effective level.

    Existing handlers (ex: pytest's capture handler) are reused and reformatted
    rather than duplicated.
    """
    level = _level_from_env()
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    root = logging.getLogger()

    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    root.setLevel(level)
    for handler in root.handlers:
        handler.setFormatter(formatter)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return level
