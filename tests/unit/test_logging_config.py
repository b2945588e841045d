"""
Unit tests for logging configuration.
"""

import json
import logging
import sys

import pytest

from src.utils.correlation import CorrelationContext, correlation_id_filter
from src.utils.logging_config import (
    StructuredJSONFormatter,
    configure_logging,
    json_logging_enabled,
)


@pytest.fixture
def root_logger():
    """Restore the root logger after configure_logging replaces its handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def make_record(msg="merged table", exc_info=None, **extra):
    record = logging.LogRecord("src.merge.orchestrator", logging.INFO, __file__, 42, msg, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJSONFormatter:
    """Test JSON log output."""

    def test_base_fields(self):
        record = make_record()
        with CorrelationContext("m-1"):
            correlation_id_filter(record)

        data = json.loads(StructuredJSONFormatter().format(record))

        assert data["message"] == "merged table"
        assert data["level"] == "INFO"
        assert data["logger"] == "src.merge.orchestrator"
        assert data["merge_id"] == "m-1"
        assert data["line"] == 42
        assert "timestamp" in data

    def test_extra_fields(self):
        record = make_record(table="public.users", node="A", duration=1.5)

        data = json.loads(StructuredJSONFormatter().format(record))

        assert data["table"] == "public.users"
        assert data["node"] == "A"
        assert data["duration"] == 1.5
        assert "status" not in data

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record(exc_info=sys.exc_info())

        data = json.loads(StructuredJSONFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]


class TestConfigureLogging:
    """Test root logger setup."""

    def test_console_output(self, root_logger):
        handler = configure_logging()

        assert root_logger.handlers == [handler]
        assert root_logger.level == logging.INFO
        assert not isinstance(handler.formatter, StructuredJSONFormatter)
        assert "%(merge_id)s" in handler.formatter._fmt

    def test_verbose_json_output(self, root_logger):
        handler = configure_logging(verbose=True, json_output=True)

        assert root_logger.level == logging.DEBUG
        assert isinstance(handler.formatter, StructuredJSONFormatter)

    def test_handler_stamps_merge_id(self, root_logger):
        handler = configure_logging()
        record = make_record()

        with CorrelationContext("m-9"):
            assert handler.filter(record)

        assert record.merge_id == "m-9"

    def test_json_from_environment(self, root_logger, monkeypatch):
        monkeypatch.setenv("JSON_LOGGING", "TRUE")

        handler = configure_logging()

        assert json_logging_enabled() is True
        assert isinstance(handler.formatter, StructuredJSONFormatter)

    def test_json_disabled_by_default(self, monkeypatch):
        monkeypatch.delenv("JSON_LOGGING", raising=False)

        assert json_logging_enabled() is False
