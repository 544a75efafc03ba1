import json
import logging
import sys

import pytest
from pythonjsonlogger.json import JsonFormatter

from logging_config import build_logging_config, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestBuildLoggingConfig:
    def test_level_override(self):
        config = build_logging_config("debug")
        assert config["root"]["level"] == "DEBUG"

    def test_fields_renamed(self):
        formatter = build_logging_config("info")["formatters"]["json"]
        assert formatter["rename_fields"] == {
            "asctime": "timestamp",
            "levelname": "level",
            "name": "logger",
        }


class TestSetupLogging:
    def test_setup_logging_configures_root_logger(self):
        """
        verify setup_logging returns the root logger with a single JSON stdout handler
        """
        # Act
        configured = setup_logging("info")
        # Assert
        assert configured is logging.getLogger()
        assert configured.level == logging.INFO
        assert len(configured.handlers) == 1
        handler = configured.handlers[0]
        assert isinstance(handler, logging.StreamHandler)
        assert handler.stream is sys.stdout
        assert isinstance(handler.formatter, JsonFormatter)

    def test_setup_logging_is_idempotent(self):
        """
        verify calling setup_logging twice does not add duplicate handlers
        """
        first = setup_logging("info")
        second = setup_logging("info")
        assert first is second
        assert len(second.handlers) == 1

    def test_integration_logging_output(self, capsys):
        """
        verify a logged record is written to stdout as one JSON line with extra fields
        """
        # Arrange
        setup_logging("info")
        logger = logging.getLogger("relay")
        # Act
        logger.info("stream finished", extra={"fragments": 3, "state": "completed"})
        captured = capsys.readouterr().out.strip()
        # Assert
        payload = json.loads(captured)
        assert payload["level"] == "INFO"
        assert payload["logger"] == "relay"
        assert payload["message"] == "stream finished"
        assert payload["fragments"] == 3
        assert payload["state"] == "completed"
        assert "T" in payload["timestamp"]

    def test_records_below_level_dropped(self, capsys):
        setup_logging("warning")
        logging.getLogger("relay").info("quiet")
        assert capsys.readouterr().out == ""
