"""Centralized logging configuration.

Sets up structured JSON output with correlation ID support. Entry points
(scripts, host services) call configure_logging() once at startup; library
modules only ever use ``logging.getLogger(__name__)``.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="vault_session", log_level="INFO")
    >>> logger.info("Connecting", extra={"context": {"server": "https://vault.example.com"}})
"""

import logging
import sys
from typing import TextIO

from libs.common.logging.context import get_correlation_id
from libs.common.logging.formatter import JSONFormatter


class CorrelationIdFilter(logging.Filter):
    """Logging filter that stamps the current correlation ID onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 - matches logging API
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure structured JSON logging on the root logger.

    Args:
        service_name: Name reported in every log line
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether to include context dict in output
        stream: Output stream (default: sys.stdout)

    Returns:
        Configured root logger instance

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(
        JSONFormatter(
            service_name=service_name,
            include_context=include_context,
        )
    )
    handler.addFilter(CorrelationIdFilter())

    root_logger.addHandler(handler)

    return root_logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger by name (root logger if None)."""
    return logging.getLogger(name)
