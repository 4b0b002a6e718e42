"""Tests for logging configuration, context and setup."""

import io
import json
import logging
import sys

from drone_controller.exceptions import LinkConnectionError
from drone_controller.logging import (
    HumanFormatter,
    JSONFormatter,
    LoggingConfig,
    bind_link_context,
    clear_context,
    generate_session_id,
    get_extra_context,
    get_logger,
    get_session_id,
    reset_logging,
    set_extra_context,
    set_session_id,
    setup_logging,
)
from drone_controller.logging.config import LogFormat, LogLevel, get_logging_config


def _make_record(message="test message", level=logging.INFO, **extras):
    """Create a test log record."""
    record = logging.LogRecord(
        name="drone_controller.storage.settings",
        level=level,
        pathname="settings.py",
        lineno=42,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extras.items():
        setattr(record, key, value)
    return record


class TestLoggingConfig:
    def test_default_log_level(self):
        assert LoggingConfig().log_level == LogLevel.INFO

    def test_default_log_format(self):
        assert LoggingConfig().log_format == LogFormat.HUMAN

    def test_default_service_name(self):
        assert LoggingConfig().service_name == "drone-controller"

    def test_custom_log_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        assert LoggingConfig().log_format == LogFormat.JSON

    def test_get_logging_config_is_cached(self):
        assert get_logging_config() is get_logging_config()


class TestSessionContext:
    def setup_method(self):
        clear_context()

    def test_default_empty(self):
        assert get_session_id() == ""

    def test_set_and_get(self):
        set_session_id("abc")
        assert get_session_id() == "abc"

    def test_generate_sets_short_id(self):
        result = generate_session_id()
        assert len(result) == 12
        assert get_session_id() == result

    def test_extra_context_returns_copy(self):
        set_extra_context(vehicle="192.168.4.1")
        first = get_extra_context()
        first["other"] = "x"
        assert get_extra_context() == {"vehicle": "192.168.4.1"}

    def test_bind_link_context_replaces_fields(self):
        set_extra_context(stale="value")
        new_id = bind_link_context(host="192.168.4.1", port=8888)
        assert get_session_id() == new_id
        assert get_extra_context() == {"vehicle": "192.168.4.1:8888"}

    def test_clear_context(self):
        set_session_id("abc")
        set_extra_context(key="value")
        clear_context()
        assert get_session_id() == ""
        assert get_extra_context() == {}


class TestJSONFormatter:
    def setup_method(self):
        clear_context()

    def test_includes_core_fields(self):
        parsed = json.loads(JSONFormatter(service_name="test-service").format(_make_record("hello")))
        assert parsed["message"] == "hello"
        assert parsed["level"] == "INFO"
        assert parsed["service"] == "test-service"
        assert parsed["line"] == 42

    def test_includes_session_id(self):
        set_session_id("session-1")
        parsed = json.loads(JSONFormatter().format(_make_record()))
        assert parsed["session_id"] == "session-1"
        clear_context()

    def test_includes_extras(self):
        parsed = json.loads(JSONFormatter().format(_make_record(host="192.168.4.1")))
        assert parsed["host"] == "192.168.4.1"

    def test_excludes_location_when_disabled(self):
        parsed = json.loads(JSONFormatter(include_location=False).format(_make_record()))
        assert "line" not in parsed

    def test_excludes_timestamp_when_disabled(self):
        parsed = json.loads(JSONFormatter(include_timestamp=False).format(_make_record()))
        assert "timestamp" not in parsed


class TestHumanFormatter:
    def setup_method(self):
        clear_context()

    def test_plain_output(self):
        output = HumanFormatter(use_colors=False).format(_make_record("link up"))
        assert "INFO" in output
        assert "link up" in output
        assert "\033[" not in output

    def test_truncates_long_logger_names(self):
        output = HumanFormatter(use_colors=False).format(_make_record())
        assert "..." in output

    def test_appends_context(self):
        set_session_id("s-1")
        output = HumanFormatter(use_colors=False).format(_make_record(port=8888))
        assert "session_id=s-1" in output
        assert "port=8888" in output
        clear_context()


class TestSetupLogging:
    def setup_method(self):
        reset_logging()

    def teardown_method(self):
        reset_logging()
        logging.getLogger().setLevel(logging.WARNING)

    def test_human_format_by_default(self):
        stream = io.StringIO()
        setup_logging(stream=stream)
        get_logger("test").info("test message")
        assert "[test] test message" in stream.getvalue()

    def test_json_format(self):
        stream = io.StringIO()
        setup_logging(config=LoggingConfig(log_format=LogFormat.JSON), stream=stream)
        get_logger("test").info("test message")
        assert json.loads(stream.getvalue())["message"] == "test message"

    def test_idempotent_without_force(self):
        setup_logging(stream=io.StringIO())
        root = logging.getLogger()
        handler_count = len(root.handlers)
        setup_logging(stream=io.StringIO())
        assert len(root.handlers) == handler_count

    def test_respects_log_level(self):
        setup_logging(config=LoggingConfig(log_level=LogLevel.ERROR), stream=io.StringIO())
        assert logging.getLogger().level == logging.ERROR

    def test_reset_removes_handlers(self):
        setup_logging(stream=io.StringIO())
        reset_logging()
        assert logging.getLogger().handlers == []

    def test_log_file_receives_json_lines(self, tmp_path):
        log_file = tmp_path / "logs" / "flight.jsonl"
        setup_logging(config=LoggingConfig(log_file=str(log_file)), stream=io.StringIO())

        get_logger("test").warning("battery low", extra={"battery": 19})
        reset_logging()

        entry = json.loads(log_file.read_text().strip())
        assert entry["message"] == "battery low"
        assert entry["battery"] == 19


class TestExceptionFields:
    def setup_method(self):
        clear_context()

    def test_controller_error_adds_code_and_context(self):
        try:
            raise LinkConnectionError("unreachable", host="192.168.4.1", port=8888)
        except LinkConnectionError:
            record = _make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["exception"]["type"] == "LinkConnectionError"
        assert parsed["exception"]["error_code"] == "CONNECTION_ERROR"
        assert parsed["exception"]["context"] == {"host": "192.168.4.1", "port": 8888}

    def test_builtin_error_has_no_code(self):
        try:
            raise OSError("socket closed")
        except OSError:
            record = _make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["exception"]["message"] == "socket closed"
        assert "error_code" not in parsed["exception"]
