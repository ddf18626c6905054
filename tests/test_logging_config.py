"""Tests for the logging helper."""

from __future__ import annotations

import logging

from quizgate.utils.logging_config import configure_logging


class TestConfigureLogging:
    """Test the process-wide logging setup."""

    def test_returns_package_logger(self):
        """Test that the package logger is returned."""
        logger = configure_logging()
        assert logger.name == "quizgate"

    def test_module_loggers_are_children(self):
        """Test that module loggers propagate to the package logger."""
        logger = configure_logging(logging.DEBUG)
        assert logging.getLogger("quizgate.gate").parent is logger
