"""Tests for stackup.core.logging — structlog configuration and context."""

from __future__ import annotations

import io
import json

import pytest

from stackup.core.logging import LogContext, LogLevel, configure_logging, get_logger


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_events_with_service(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, stream=stream)
        get_logger("test").info("stage.started", stage="teardown")
        (event,) = _events(stream)
        assert event["event"] == "stage.started"
        assert event["stage"] == "teardown"
        assert event["service"] == "stackup"
        assert event["level"] == "info"

    def test_level_filtering(self):
        stream = io.StringIO()
        configure_logging(level="WARNING", json_format=True, stream=stream)
        logger = get_logger("test")
        logger.info("hidden")
        logger.warning("shown")
        assert [e["event"] for e in _events(stream)] == ["shown"]

    def test_level_is_case_insensitive(self):
        stream = io.StringIO()
        configure_logging(level="error", json_format=True, stream=stream)
        logger = get_logger("test")
        logger.warning("hidden")
        logger.error("shown")
        assert [e["event"] for e in _events(stream)] == ["shown"]

    def test_enum_level(self):
        stream = io.StringIO()
        configure_logging(level=LogLevel.DEBUG, json_format=True, stream=stream)
        get_logger("test").debug("shown")
        assert [e["event"] for e in _events(stream)] == ["shown"]

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            configure_logging(level="verbose", stream=io.StringIO())

    def test_non_tty_defaults_to_json(self):
        stream = io.StringIO()
        configure_logging(stream=stream)
        get_logger("test").info("event")
        assert _events(stream)[0]["event"] == "event"


class TestLogContext:
    def test_binds_and_unbinds(self):
        stream = io.StringIO()
        configure_logging(json_format=True, stream=stream)
        logger = get_logger("test")
        with LogContext(run_id="abc123"):
            logger.info("inside")
        logger.info("outside")
        inside, outside = _events(stream)
        assert inside["run_id"] == "abc123"
        assert "run_id" not in outside
