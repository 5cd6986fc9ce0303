#!/usr/bin/env python3
"""
Shared logger setup helpers for the controller and the simulator.
"""

import logging
import os
import sys
from typing import Optional, Union

from config import LOG_FILE, LOG_LEVEL

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = LOG_LEVEL
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        return value if isinstance(value, int) else logging.INFO
    return level


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def get_app_logger(
    name: str,
    level: Union[int, str, None] = None,
    log_file: Optional[str] = LOG_FILE,
) -> logging.Logger:
    """Attach a stderr handler (and a file handler when ``log_file`` is set) to ``name`` once.

    ``level`` accepts a logging constant or a name such as ``"DEBUG"``;
    it defaults to ``LOG_LEVEL`` from the environment.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    resolved = _resolve_level(level)
    logger.setLevel(resolved)
    _attach(logger, logging.StreamHandler(sys.stderr), resolved)

    if not log_file:
        return logger
    try:
        if os.path.dirname(log_file):
            os.makedirs(os.path.dirname(log_file), exist_ok=True)
        _attach(logger, logging.FileHandler(log_file, mode="a"), resolved)
    except OSError as e:
        logger.warning(f"File logging disabled ({log_file}): {e}")
    return logger
