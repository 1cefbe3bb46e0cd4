"""
Logging configuration for the ``tweengraph`` package logger.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union


def setup_logging(level: Union[int, str, None] = None, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Configure the ``tweengraph`` logger with a console handler and an optional file.

    Parameters
    ----------
    level:
        Logging level (``logging.DEBUG``, ``"INFO"``...). Defaults to the
        ``TWEENGRAPH_LOG_LEVEL`` setting.
    log_file:
        Optional path that receives the same records.
    """
    if level is None:
        from .settings import get_settings

        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger("tweengraph")
    logger.setLevel(level)

    # Avoid duplicate records when called more than once.
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized at %s", logging.getLevelName(level))
    return logger
