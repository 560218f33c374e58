"""Package logger for kdbxreader.

The library stays silent by default (a ``NullHandler`` is attached). Stages
only emit DEBUG progress messages; failures are raised, never logged, and
reporting them is left to the caller.
"""

from __future__ import annotations

import logging
import os
from typing import Final

DEFAULT_LOG_LEVEL = "WARNING"
LOG_LEVEL_ENV = "KDBXREADER_LOG_LEVEL"

_LOGGER: Final[logging.Logger] = logging.getLogger("kdbxreader")
_LOGGER.addHandler(logging.NullHandler())


def get_logger() -> logging.Logger:
    """Expose the package logger so applications may attach handlers."""
    return _LOGGER


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger for command-line use."""
    log_level = (level or os.getenv(LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )
