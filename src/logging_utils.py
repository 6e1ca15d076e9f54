"""
Standardized logging configuration.

Library modules only create loggers; entry points (CLI, service hosts)
call configure_logging() once.
"""

import logging
import os
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV = "STANCE_LOG_LEVEL"

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Module logger; use as logger = get_logger(__name__)."""
    return logging.getLogger(name)


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """
    Install a single stream handler on the root logger.

    Level comes from the argument, else STANCE_LOG_LEVEL, else INFO.
    Safe to call repeatedly: later calls only adjust the level.
    """
    global _configured

    if level is None:
        level = os.getenv(LOG_LEVEL_ENV, "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True
