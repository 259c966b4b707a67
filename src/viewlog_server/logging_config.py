"""Logging configuration for the viewlog server."""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

LEVELS = {
    "info": logging.INFO,
    "timer": logging.DEBUG,
    "debug": logging.DEBUG,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "info") -> None:
    """Install the stdout handler on the root logger.

    Args:
        level: One of the configured level names (info, timer, debug, warn, error)
    """
    logging.basicConfig(
        level=LEVELS.get(level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
