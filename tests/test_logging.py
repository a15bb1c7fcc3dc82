"""Tests for logging setup and the JSON formatter."""

import json
import logging

import pytest

from app.logging_config import JsonFormatter, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    def test_standard_format(self):
        setup_logging("debug", "standard")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_json_format(self):
        setup_logging("INFO", "json")
        root = logging.getLogger()
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_unknown_level_falls_back_to_info(self):
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.INFO


class TestJsonFormatter:
    def test_record_fields(self):
        record = logging.LogRecord(
            "app.services.payment_service", logging.WARNING, __file__, 1,
            "Payment of %s rejected", ("500 CAD",), None,
        )
        data = json.loads(JsonFormatter().format(record))
        assert data["level"] == "WARNING"
        assert data["logger"] == "app.services.payment_service"
        assert data["message"] == "Payment of 500 CAD rejected"
        assert "timestamp" in data
