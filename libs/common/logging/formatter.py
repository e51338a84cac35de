"""JSON log formatter for structured logging.

Formats records as single-line JSON with a fixed schema. Message, context and
exception text are passed through the redaction helpers so that session
tokens, master passwords and client secrets never reach the log stream.

Example log output:
    {
        "timestamp": "2025-10-21T10:30:00.000Z",
        "level": "INFO",
        "service": "vault_session",
        "correlation_id": "abc123-def456",
        "message": "Vault unlocked",
        "context": {"operation": "unlock", "attempt": 2}
    }
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from types import TracebackType
from typing import Any

from libs.common.logging.redaction import redact_text, redact_value

# Attributes every LogRecord carries; anything else arrived through `extra=`
RESERVED_RECORD_FIELDS = frozenset(
    {
        "name",
        "msg",
        "message",
        "asctime",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "correlation_id",
        "context",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class JSONFormatter(logging.Formatter):
    """Formatter that outputs redacted JSON log lines.

    Attributes:
        service_name: Name of the service emitting logs
        include_context: Whether to include extra context fields

    Example:
        >>> formatter = JSONFormatter(service_name="vault_session")
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(formatter)
    """

    def __init__(
        self, service_name: str, include_context: bool = True, *args: Any, **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 - matches logging API
        """Format a log record as a JSON string."""
        log_entry: dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "correlation_id": getattr(record, "correlation_id", None),
            "message": redact_text(record.getMessage()),
        }

        if self.include_context:
            context = self._extract_context(record)
            if context:
                log_entry["context"] = redact_value(context)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": redact_text(str(record.exc_info[1])) if record.exc_info[1] else None,
                "traceback": redact_text(self._format_exception(record.exc_info)),
            }

        log_entry["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_entry, default=str)

    def _format_timestamp(self, created: float) -> str:
        """Format timestamp as ISO 8601 in UTC with millisecond precision."""
        dt = datetime.fromtimestamp(created, tz=UTC)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def _extract_context(self, record: logging.LogRecord) -> dict[str, Any] | None:
        """Return the explicit `context` dict, or all non-reserved extra fields."""
        context = getattr(record, "context", None)
        if context and isinstance(context, dict):
            return dict(context)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in RESERVED_RECORD_FIELDS
        }
        return extra if extra else None

    def _format_exception(
        self,
        exc_info: tuple[type[BaseException] | None, BaseException | None, TracebackType | None],
    ) -> str:
        return "".join(traceback.format_exception(*exc_info))
