#!/usr/bin/env python3
"""
Logging setup for timeguru commands.
"""

from __future__ import annotations

import logging
import sys
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "timeguru"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "app.log"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5

FILE_HANDLER_NAME = f"{LOGGER_NAME}:file"
CONSOLE_HANDLER_NAME = f"{LOGGER_NAME}:console"


def get_log_dir() -> Path:
    return Path(tempfile.gettempdir()) / LOGGER_NAME


def _find_handler(logger: logging.Logger, name: str) -> Optional[logging.Handler]:
    for handler in logger.handlers:
        if handler.get_name() == name:
            return handler
    return None


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.ERROR)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    handler.set_name(CONSOLE_HANDLER_NAME)
    return handler


def configure_logging(
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Attach the file and console handlers to the package logger.

    Calling this more than once reuses the handlers already attached.

    Parameters
    ----------
    verbose : bool, optional
        Log DEBUG records to the file instead of INFO.
    log_dir : Optional[Path], optional
        Directory for ``app.log`` (defaults to a temp subdirectory).
    console : bool, optional
        Also report errors on stderr.

    Returns
    -------
    logging.Logger
        The ``timeguru`` logger.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False
    logger.setLevel(level)

    file_handler = _find_handler(logger, FILE_HANDLER_NAME)
    if file_handler is None:
        directory = log_dir or get_log_dir()
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=directory / LOG_FILE_NAME,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        file_handler.set_name(FILE_HANDLER_NAME)
        logger.addHandler(file_handler)
    file_handler.setLevel(level)

    set_console_logging(console)
    return logger


def set_console_logging(enabled: bool) -> None:
    """
    Attach or detach the stderr handler.

    The full-screen interface detaches it so log output cannot corrupt the
    terminal.
    """
    logger = logging.getLogger(LOGGER_NAME)
    handler = _find_handler(logger, CONSOLE_HANDLER_NAME)
    if enabled and handler is None:
        logger.addHandler(_console_handler())
    elif not enabled and handler is not None:
        logger.removeHandler(handler)


def console_logging_enabled() -> bool:
    logger = logging.getLogger(LOGGER_NAME)
    return _find_handler(logger, CONSOLE_HANDLER_NAME) is not None
