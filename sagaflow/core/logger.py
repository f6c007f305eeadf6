"""
Centralized logger configuration for sagaflow.

Both engines, the notification dispatcher and the storage backends obtain
their logger from here, so a single `set_logger()` call redirects every
sagaflow log line.

Usage:
    from sagaflow.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Message")

    # Route everything through a custom logger (e.g. structlog)
    from sagaflow.core.logger import set_logger
    set_logger(structlog.get_logger())
"""

import logging
from typing import Any

_custom_logger: Any = None


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all sagaflow components.

    Args:
        logger: Any object exposing debug/info/warning/error/exception.
                Pass None to go back to stdlib loggers.
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = "sagaflow") -> Any:
    """
    Get a logger instance.

    Returns the custom logger if one was installed with set_logger(),
    otherwise a stdlib logger with a NullHandler attached so library use
    never prints "No handler found" warnings.
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger
