"""
Unit tests for logging configuration and setup.
"""

import logging
from unittest.mock import patch

import pytest

from main import setup_logging


@pytest.fixture(autouse=True)
def reset_root_logger():
    """Restore the root logger after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


class TestSetupLogging:
    """Test setup_logging function."""

    def test_basic_logging_config(self):
        """Level and a console handler are configured."""
        setup_logging({"logging": {"level": "DEBUG"}})

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)

    def test_file_logging_enabled(self, tmp_path):
        """A file handler is added when a log file is configured."""
        log_file = tmp_path / "logs" / "budget.log"
        setup_logging({"logging": {"level": "INFO", "file": str(log_file)}})

        file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert log_file.exists()

    def test_invalid_log_level_defaults_to_info(self):
        """Unknown levels warn and fall back to INFO."""
        with patch("main.logger") as mock_logger:
            setup_logging({"logging": {"level": "INVALID_LEVEL"}})
            mock_logger.warning.assert_called()

        assert logging.getLogger().level == logging.INFO

    def test_log_format_includes_timestamp(self):
        """Formats without a timestamp get one."""
        setup_logging({"logging": {"format": "%(levelname)s - %(message)s"}})

        formatter = logging.getLogger().handlers[0].formatter
        assert "%(asctime)s" in formatter._fmt

    def test_file_logging_failure_non_fatal(self, tmp_path):
        """A log file that cannot be opened leaves console logging in place."""
        with patch("main.logging.FileHandler", side_effect=PermissionError("denied")):
            with patch("main.logger") as mock_logger:
                setup_logging({"logging": {"file": str(tmp_path / "app.log")}})
                mock_logger.warning.assert_called()

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)

    def test_missing_logging_config_uses_defaults(self):
        """No logging section means INFO."""
        setup_logging({})
        assert logging.getLogger().level == logging.INFO
