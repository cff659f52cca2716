"""
Logging configuration (loguru).

Structured context is passed as keyword arguments, e.g.
``logger.info("Request approved", request_id=rid)``; the console format
renders it from ``extra``.
"""

import sys
from loguru import logger

from .config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> {extra}"
)


def setup_logging(level: str | None = None):
    """
    Configure the application logger.

    Args:
        level: Minimum level to emit (defaults to LOG_LEVEL setting)

    Returns:
        The configured loguru logger
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level=level or settings.log_level,
        colorize=True,
        backtrace=False,
    )
    return logger
