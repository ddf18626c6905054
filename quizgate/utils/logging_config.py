"""Logging configuration helpers for the quiz service."""

from __future__ import annotations

import logging
from logging import Logger

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: int = logging.INFO) -> Logger:
    """Configure process-wide logging once and return the ``quizgate`` logger."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    return logging.getLogger("quizgate")
