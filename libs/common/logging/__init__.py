"""Structured logging for the vault session manager.

JSON output with correlation IDs and secret redaction.

Usage:
    # At process startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="vault_session", log_level="INFO")

    # Around one unit of work
    from libs.common.logging import correlation_scope
    with correlation_scope():
        connection.connect(credential, unlock_with=password)
"""

from libs.common.logging.config import (
    CorrelationIdFilter,
    configure_logging,
    get_logger,
)
from libs.common.logging.context import (
    clear_correlation_id,
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from libs.common.logging.formatter import JSONFormatter
from libs.common.logging.redaction import (
    mask_token,
    redact_argv,
    redact_mapping,
    redact_text,
)

__all__ = [
    # Configuration
    "configure_logging",
    "get_logger",
    "CorrelationIdFilter",
    # Correlation ID management
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
    # Formatter
    "JSONFormatter",
    # Redaction
    "mask_token",
    "redact_argv",
    "redact_mapping",
    "redact_text",
]
