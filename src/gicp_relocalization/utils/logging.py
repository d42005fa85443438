"""
Logging Utilities

This module sets up logging for the relocalization package. All modules
obtain their logger through `setup_logger(__name__)`; the operator-facing
entry points call `configure_logging` once with the configured level/file.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "gicp_relocalization"

_CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
_FILE_FORMAT = '%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


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
        _add_file_handler(logger, log_file, level)

    return logger


def configure_logging(level: Union[str, int] = "INFO", log_file: Optional[str] = None) -> None:
    """
    Apply a level (and optional log file) to every logger of the package.

    Loggers created with `setup_logger` carry their own handlers, so the level
    (and the file handler) has to be pushed down to each of them.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or numeric level
        log_file: Optional file that additionally receives every record
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level: {level}")

    logging.getLogger(PACKAGE_LOGGER).setLevel(level)

    for name, candidate in list(logging.root.manager.loggerDict.items()):
        if not name.startswith(PACKAGE_LOGGER + ".") or not isinstance(candidate, logging.Logger):
            continue
        candidate.setLevel(level)
        for handler in candidate.handlers:
            handler.setLevel(level)
        if log_file and not any(isinstance(h, logging.FileHandler) for h in candidate.handlers):
            _add_file_handler(candidate, log_file, level)


def _add_file_handler(logger: logging.Logger, log_file: str, level: int) -> None:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)
