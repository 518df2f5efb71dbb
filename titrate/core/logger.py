"""
Centralized logger configuration for Titrate.

By default every component logs through Python's standard logging under the
'titrate' namespace. A host application can swap in its own logger object.

Usage:
    from titrate.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Message")

    # Route everything to an application logger
    from titrate.core.logger import set_logger
    set_logger(app_logger)
"""

import logging
from typing import Any

_custom_logger: Any = None


class NullLogger:
    """A logger that does nothing (for when logging is disabled)."""

    def debug(self, *args, **kwargs): pass
    def info(self, *args, **kwargs): pass
    def warning(self, *args, **kwargs): pass
    def error(self, *args, **kwargs): pass
    def exception(self, *args, **kwargs): pass
    def critical(self, *args, **kwargs): pass


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all Titrate components.

    Args:
        logger: Any object exposing debug/info/warning/error/exception/critical.
                Pass None to go back to standard logging.
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = "titrate") -> Any:
    """
    Get a logger instance.

    Returns the logger installed with set_logger(), otherwise a standard
    logger with the given name.

    Args:
        name: Logger name (typically __name__ of the calling module)
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
