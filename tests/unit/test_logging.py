"""Unit tests for scanchor._logging module."""

from __future__ import annotations

import logging

from scanchor._logging import get_logger, log_progress, setup_logging


class TestLogging:
    """Tests for logger configuration."""

    def test_root_logger_has_handler(self) -> None:
        """Test that the package logger writes somewhere by default."""
        assert get_logger().handlers

    def test_child_logger_propagates(self) -> None:
        """Test that module loggers get no handler of their own."""
        child = get_logger("scanchor.core.test")
        assert not child.handlers
        assert child.propagate

    def test_setup_logging_replaces_handler(self) -> None:
        """Test that reconfiguring leaves exactly one handler."""
        setup_logging("DEBUG", format_string="%(message)s")
        logger = get_logger()
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        setup_logging(logging.INFO)
        assert logger.level == logging.INFO

    def test_log_progress_is_debug(self, caplog) -> None:
        """Test that chunk progress is reported at DEBUG only."""
        with caplog.at_level(logging.INFO, logger="scanchor"):
            log_progress("Exact neighbor search", 10, 40)
        assert "Exact neighbor search" not in caplog.text
        with caplog.at_level(logging.DEBUG, logger="scanchor"):
            log_progress("Exact neighbor search", 20, 40)
        assert "Exact neighbor search: 20/40." in caplog.text
