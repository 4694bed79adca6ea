"""Logging setup for peas entry points.

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
installed here, once, by whatever process embeds the store (the CLI, a TUI,
a test).
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional, Union

__all__ = ["setup_logging", "LOG_ENV_VAR", "LOG_FORMAT"]

LOG_ENV_VAR = "PEAS_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_ROOT_LOGGER = "peas_core"


def _level_from_env(default: int) -> int:
    name = os.environ.get(LOG_ENV_VAR)
    if not name:
        return default
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Union[str, Path]] = None,
    quiet: bool = False,
) -> logging.Logger:
    """Configure the peas_core logger.

    Args:
        verbose: Log at DEBUG instead of WARNING
        log_file: Also write to this file, rotated daily (7 files kept)
        quiet: Install no stderr handler (for full-screen front ends)

    Returns:
        The configured package logger

    The PEAS_LOG environment variable (e.g. ``PEAS_LOG=info``) overrides the
    level chosen by ``verbose``. Calling this again replaces the handlers it
    installed before.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    level = _level_from_env(logging.DEBUG if verbose else logging.WARNING)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    if not quiet:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_path, when="midnight", backupCount=7, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
