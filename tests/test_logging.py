"""Tests for structured logging configuration."""

import json
import logging
import sys

import pytest

from s3wire.logging_config import JSONFormatter, configure_logging


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    transport = {name: logging.getLogger(name).level for name in ("httpx", "httpcore")}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, saved in transport.items():
        logging.getLogger(name).setLevel(saved)


def _record(msg="hello %s", args=("world",), **extra):
    record = logging.LogRecord("s3wire.client", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_base_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "s3wire.client"
        assert entry["message"] == "hello world"
        assert entry["timestamp"].endswith("+00:00")

    def test_request_extras(self):
        record = _record(method="GET", bucket="data", object="k", status=404, request_id="R1")
        entry = json.loads(JSONFormatter().format(record))
        assert entry["method"] == "GET"
        assert entry["bucket"] == "data"
        assert entry["object"] == "k"
        assert entry["status"] == 404
        assert entry["request_id"] == "R1"

    def test_none_extras_omitted(self):
        entry = json.loads(JSONFormatter().format(_record(bucket=None)))
        assert "bucket" not in entry

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "s3wire", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_json_format(self):
        configure_logging(level="DEBUG", fmt="json")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_text_format(self):
        configure_logging(level="warning", fmt="text")
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_transport_loggers_quiet_unless_debug(self):
        configure_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING
        configure_logging(level="DEBUG")
        assert logging.getLogger("httpcore").level == logging.NOTSET
