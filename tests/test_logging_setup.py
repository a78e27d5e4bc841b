"""
Tests for logging_setup module.

Verifies:
- JSON structured logging format
- Component and severity tagging
- Session ID correlation
- Credential redaction helpers
- Log level configuration
"""
import json
import logging
from io import StringIO
from datetime import datetime

import pytest

from logging_setup import (
    setup_logging,
    get_logger,
    redact_text,
    redact_url,
    Component,
    JSONFormatter,
)


@pytest.fixture
def capture_logs():
    """Capture log output to a string buffer."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())

    logger = logging.getLogger()
    logger.handlers = []
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield buffer

    logger.handlers = []


def test_json_formatter_basic(capture_logs):
    """Test basic JSON log formatting."""
    logger = get_logger(Component.RELAY_SERVER)
    logger.info("Test message", extra_field="value")

    log_entry = json.loads(capture_logs.getvalue().strip())

    assert log_entry["severity"] == "info"
    assert log_entry["component"] == "relay_server"
    assert log_entry["message"] == "Test message"
    assert log_entry["extra_field"] == "value"
    assert "timestamp" in log_entry


def test_json_formatter_timestamp_format(capture_logs):
    get_logger(Component.ENDPOINTING).info("Timestamp test")

    log_entry = json.loads(capture_logs.getvalue().strip())

    dt = datetime.fromisoformat(log_entry["timestamp"].replace("Z", "+00:00"))
    assert dt.tzinfo is not None


def test_session_id_correlation(capture_logs):
    """Test that session_id is included when provided."""
    get_logger(Component.SESSION_RELAY, session_id="sess_123").info("Session test")

    log_entry = json.loads(capture_logs.getvalue().strip())

    assert log_entry["session_id"] == "sess_123"


def test_session_id_absent_when_not_provided(capture_logs):
    get_logger(Component.PROVIDER_POLICY).info("No session")

    log_entry = json.loads(capture_logs.getvalue().strip())

    assert "session_id" not in log_entry


def test_with_session_creates_new_logger(capture_logs):
    """Test that with_session creates a new logger with session ID."""
    base_logger = get_logger(Component.SUPERVISOR)
    session_logger = base_logger.with_session("sess_456")

    session_logger.info("With session")

    log_entry = json.loads(capture_logs.getvalue().strip())
    assert log_entry["session_id"] == "sess_456"
    assert log_entry["component"] == "supervisor"
    assert base_logger.session_id is None


def test_severity_levels(capture_logs):
    """Test all severity levels."""
    logger = get_logger(Component.QUOTA_LEDGER)

    logger.debug("Debug message")
    logger.info("Info message")
    logger.warning("Warning message")
    logger.error("Error message")
    logger.critical("Critical message")

    lines = [line for line in capture_logs.getvalue().strip().split("\n") if line]
    severities = [json.loads(line)["severity"] for line in lines]
    assert severities == ["debug", "info", "warning", "error", "critical"]


def test_component_string_fallback(capture_logs):
    """Test that component can be a plain string."""
    get_logger("custom_component").info("Test")

    log_entry = json.loads(capture_logs.getvalue().strip())
    assert log_entry["component"] == "custom_component"


def test_non_json_values_are_stringified(capture_logs):
    get_logger(Component.UPSTREAM).info("Odd value", when=datetime(2026, 1, 1), tags={"a"})

    log_entry = json.loads(capture_logs.getvalue().strip())
    assert log_entry["when"].startswith("2026-01-01")


def test_setup_logging_json():
    setup_logging(level="DEBUG", use_json=True)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)


def test_setup_logging_text():
    setup_logging(level="INFO", use_json=False)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO
    assert len(root_logger.handlers) == 1
    assert not isinstance(root_logger.handlers[0].formatter, JSONFormatter)


def test_exception_logging(capture_logs):
    logger = get_logger(Component.ERROR_HANDLER)

    try:
        raise ValueError("Test exception")
    except ValueError:
        logger.exception("Exception occurred")

    log_entry = json.loads(capture_logs.getvalue().strip())
    assert log_entry["severity"] == "error"
    assert "ValueError: Test exception" in log_entry["exception"]


class TestRedaction:
    def test_redact_url_query_keys(self):
        url = "wss://generativelanguage.googleapis.com/v1alpha/models/m:stream?key=AIzaSECRET&alt=json"
        redacted = redact_url(url)
        assert "AIzaSECRET" not in redacted
        assert "key=***" in redacted
        assert "alt=json" in redacted

    def test_redact_url_drops_userinfo(self):
        assert redact_url("wss://user:pw@example.com:8443/path") == "wss://example.com:8443/path"

    def test_redact_url_without_secrets_unchanged(self):
        url = "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview"
        assert redact_url(url) == url

    def test_redact_text_bearer(self):
        assert redact_text("header was Bearer sk-abc123 here") == "header was Bearer *** here"
