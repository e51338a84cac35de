"""Secret masking utilities for logs and error diagnostics.

Vault CLI output and log context can contain session tokens, master passwords
and API client secrets. Everything that leaves this package as a log line or an
exception message is passed through these helpers first.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

MASK = "***"

# `--session <token>` / `--passwordenv` style CLI arguments
SESSION_ARG_PATTERN = re.compile(r"(--session[ =])(\S+)")
# KEY=value assignments for the variables the vault CLI reads
ENV_ASSIGNMENT_PATTERN = re.compile(
    r"\b(BW_SESSION|BW_PASSWORD|BW_CLIENTSECRET)=(\S+)",
    re.IGNORECASE,
)
# Session keys are long base64 blobs (88 chars in practice)
SESSION_KEY_PATTERN = re.compile(r"(?<![A-Za-z0-9+/])[A-Za-z0-9+/]{40,}={0,2}")

_SENSITIVE_KEY_FRAGMENTS = ("password", "secret", "token", "session_key", "passphrase")


def mask_token(token: str | None) -> str:
    """Mask a session token, keeping only the last four characters."""
    if not token:
        return MASK
    if len(token) <= 8:
        return MASK
    return f"{MASK}{token[-4:]}"


def redact_text(text: str | None, extra_values: Iterable[str] = ()) -> str:
    """Mask secrets embedded in free text.

    Args:
        text: Text to sanitize (CLI stderr, exception message, log message)
        extra_values: Literal values known to be secret in this context

    Returns:
        Sanitized text ("" for None)
    """
    if not text:
        return ""
    sanitized = text
    for value in extra_values:
        if value:
            sanitized = sanitized.replace(value, MASK)
    sanitized = SESSION_ARG_PATTERN.sub(lambda m: f"{m.group(1)}{MASK}", sanitized)
    sanitized = ENV_ASSIGNMENT_PATTERN.sub(lambda m: f"{m.group(1)}={MASK}", sanitized)
    sanitized = SESSION_KEY_PATTERN.sub(MASK, sanitized)
    return sanitized


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered in {"session", "bw_session"}:
        return True
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def redact_value(value: Any) -> Any:
    """Recursively sanitize arbitrary values, preserving container types."""
    if isinstance(value, dict):
        return redact_mapping(value)
    if isinstance(value, list):
        return [redact_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_value(item) for item in value)
    if isinstance(value, str):
        return redact_text(value)
    return value


def redact_mapping(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with sensitive keys masked and strings sanitized."""
    sanitized: dict[str, Any] = {}
    for raw_key, raw_value in data.items():
        if _is_sensitive_key(str(raw_key)) and raw_value is not None:
            sanitized[raw_key] = MASK
        else:
            sanitized[raw_key] = redact_value(raw_value)
    return sanitized


def redact_argv(args: Iterable[str]) -> list[str]:
    """Mask the value following ``--session`` in a command line."""
    redacted: list[str] = []
    hide_next = False
    for arg in args:
        if hide_next:
            redacted.append(MASK)
            hide_next = False
            continue
        if arg == "--session":
            hide_next = True
        redacted.append(redact_text(arg) if arg.startswith("--session=") else arg)
    return redacted


__all__ = [
    "MASK",
    "mask_token",
    "redact_argv",
    "redact_mapping",
    "redact_text",
    "redact_value",
]
