"""
Tests for logging helpers
"""

import io
import logging

import pytest

from cartsync.logging import (
    configure_logging,
    level_from_env,
    sanitize_id_for_logging,
    sanitize_string_for_logging,
)


@pytest.fixture
def root_logger():
    """Root logger whose level is restored afterwards."""
    root = logging.getLogger()
    level = root.level
    yield root
    root.setLevel(level)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_import_leaves_root_alone(self):
        """Test that the package itself only installs a NullHandler."""
        handlers = logging.getLogger("cartsync").handlers
        assert any(isinstance(h, logging.NullHandler) for h in handlers)

    def test_adds_console_handler(self, root_logger, monkeypatch):
        """Test standalone configuration."""
        monkeypatch.setattr(root_logger, "handlers", [])
        stream = io.StringIO()

        configure_logging(logging.DEBUG, stream=stream)
        logging.getLogger("cartsync.cart.service").debug("Cart merged")

        assert len(root_logger.handlers) == 1
        assert "[cartsync.cart.service] Cart merged" in stream.getvalue()
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_keeps_host_handlers(self, root_logger, monkeypatch):
        """Test that an app that configured logging first is not overridden."""
        monkeypatch.setattr(root_logger, "handlers", [])
        host_handler = logging.StreamHandler(io.StringIO())
        root_logger.addHandler(host_handler)

        configure_logging(logging.DEBUG)

        assert root_logger.handlers == [host_handler]

    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        assert level_from_env() == logging.WARNING

        monkeypatch.setenv("LOG_LEVEL", "chatty")
        assert level_from_env() == logging.INFO


class TestSanitizers:
    """Tests for log sanitizers."""

    def test_id_is_escaped_and_truncated(self):
        assert sanitize_id_for_logging("prod\nFAKE ENTRY") == "prod\\nFA"
        assert sanitize_id_for_logging(None) == "N/A"

    def test_string_is_truncated(self):
        assert sanitize_string_for_logging("x" * 60) == "x" * 50 + "..."
        assert sanitize_string_for_logging("ok\r") == "ok\\r"
