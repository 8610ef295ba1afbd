"""
Logging Utilities

This module sets up logging for the project: a consistently formatted console
handler per module logger, with an optional file handler.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER_PREFIX = "pso_registration"

_CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
_FILE_FORMAT = '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _file_handler(log_file: str, level: int) -> logging.FileHandler:
    # Create parent directories if they don't exist
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_file)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        logger.addHandler(_file_handler(log_file, level))

    return logger


def set_package_log_level(level: int, log_file: Optional[str] = None) -> None:
    """
    Apply a level (and optionally a log file) to every package logger created so far.

    Module loggers are configured at import time with the default level; the
    command-line driver calls this once the configuration is known.

    Args:
        level: New logging level
        log_file: Optional log file to attach to each package logger
    """
    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger):
            continue
        if not name.startswith(PACKAGE_LOGGER_PREFIX):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
        if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            logger.addHandler(_file_handler(log_file, level))
