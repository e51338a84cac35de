"""Tests for JSON log formatter.

Tests verify that logs are formatted correctly with:
- Required schema fields (timestamp, level, service, correlation_id, message)
- Optional context fields
- Exception information
- Redaction of session tokens, passwords and client secrets
"""

import json
import logging
import sys

import pytest

from libs.common.logging.formatter import JSONFormatter

SESSION_KEY = "Zm9vYmFyYmF6cXV4Zm9vYmFyYmF6cXV4Zm9vYmFyYmF6cXV4Zm9vYmFyYmF6cXV4=="


def _record(msg: str = "Test message", exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="/path/to/file.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    @pytest.fixture
    def formatter(self) -> JSONFormatter:
        return JSONFormatter(service_name="test_service")

    def test_basic_log_format(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record(correlation_id="corr-123")))

        assert log_dict["level"] == "INFO"
        assert log_dict["service"] == "test_service"
        assert log_dict["correlation_id"] == "corr-123"
        assert log_dict["message"] == "Test message"
        assert log_dict["source"] == {"file": "/path/to/file.py", "line": 42, "function": None}

    def test_timestamp_format(self, formatter: JSONFormatter) -> None:
        record = _record()
        record.created = 1736942400.5

        log_dict = json.loads(formatter.format(record))

        assert log_dict["timestamp"] == "2025-01-15T12:00:00.500Z"

    def test_extra_fields_become_context(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record(operation="sync", attempt=2)))

        assert log_dict["context"] == {"operation": "sync", "attempt": 2}

    def test_fields_from_other_formatters_not_in_context(self, formatter: JSONFormatter) -> None:
        record = _record(operation="sync")
        logging.Formatter("%(asctime)s %(message)s").format(record)

        log_dict = json.loads(formatter.format(record))

        assert log_dict["context"] == {"operation": "sync"}

    def test_context_omitted_when_disabled(self) -> None:
        formatter = JSONFormatter(service_name="test_service", include_context=False)
        log_dict = json.loads(formatter.format(_record(operation="sync")))

        assert "context" not in log_dict

    def test_message_redacted(self, formatter: JSONFormatter) -> None:
        record = _record(f"export BW_SESSION={SESSION_KEY}")

        log_dict = json.loads(formatter.format(record))

        assert SESSION_KEY not in log_dict["message"]
        assert "BW_SESSION=***" in log_dict["message"]

    def test_sensitive_context_keys_masked(self, formatter: JSONFormatter) -> None:
        record = _record(client_secret="s3cr3t", master_password="hunter2", client_id="user.1")

        context = json.loads(formatter.format(record))["context"]

        assert context == {"client_secret": "***", "master_password": "***", "client_id": "user.1"}

    def test_exception_redacted(self, formatter: JSONFormatter) -> None:
        try:
            raise RuntimeError(f"unlock failed with --session {SESSION_KEY}")
        except RuntimeError:
            exc_info = sys.exc_info()

        output = formatter.format(_record("Vault error", exc_info=exc_info))
        log_dict = json.loads(output)

        assert log_dict["exception"]["type"] == "RuntimeError"
        assert SESSION_KEY not in output
        assert "Traceback" in log_dict["exception"]["traceback"]
