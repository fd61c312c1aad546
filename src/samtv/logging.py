"""Logging setup for the samtv client.

Library modules only create ``logging.getLogger(__name__)`` loggers. The
CLI attaches handlers to the ``samtv`` package logger, once.
"""

import logging
import sys
from pathlib import Path

from samtv.config import Config

PACKAGE_LOGGER = "samtv"

# 2025-01-27 10:30:45 [INFO] message
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured: logging.Logger | None = None


def _resolve_level(config: Config) -> int:
    if config.debug:
        return logging.DEBUG
    level = logging.getLevelName(config.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Config) -> logging.Logger:
    """Attach console (and optional file) handlers to the package logger.

    Console records go to stderr so command output on stdout stays
    clean. In debug mode each record also names its module.

    Args:
        config: Configuration with ``log_level``, ``log_file`` and ``debug``.

    Returns:
        The ``samtv`` logger. Later calls return it unchanged.
    """
    global _configured

    if _configured is not None:
        return _configured

    level = _resolve_level(config)
    formatter = logging.Formatter(
        DEBUG_FORMAT if level == logging.DEBUG else LOG_FORMAT, DATE_FORMAT
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    _configured = logger
    return logger


def reset_logging() -> None:
    """Detach and close the package handlers. Used by tests."""
    global _configured
    if _configured is None:
        return
    for handler in _configured.handlers:
        handler.close()
    _configured.handlers.clear()
    _configured = None
