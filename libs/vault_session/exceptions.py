"""
Vault Session Exception Hierarchy.

This module defines all exceptions raised by the vault session lifecycle
manager, giving callers precise semantics for each failing step of a
configure → login → unlock → verify sequence.

Exception hierarchy:
    VaultSessionError (base)
    ├── AdapterUnavailableError - Vault CLI missing or cannot be executed (fatal)
    ├── VaultConfigurationError - Server configuration or local setup invalid (fatal)
    ├── AuthenticationError - API-key login/logout failed
    ├── UnlockError - Unlock or lock failed (retryable)
    ├── SyncError - Remote synchronization failed (retryable)
    ├── ParseError - CLI produced malformed structured output
    ├── VerificationError - Post-operation status check disagreed with expectation
    ├── ExpiredSessionError - Session token expired (detected at read time)
    ├── VaultLockedError - Session token requested while vault is not unlocked
    └── RetryCancelledError - Retry sleep aborted by shutdown

All exceptions carry the operation name and an optional sanitized diagnostic
(CLI stderr/stdout). Messages MUST NOT include tokens, passwords or client
secrets; diagnostics are redacted before they are attached.
"""

from __future__ import annotations

from libs.common.logging.redaction import redact_text


class VaultSessionError(Exception):
    """
    Base exception for all vault session errors.

    Attributes:
        message: Human-readable error message (MUST NOT include secret values)
        operation: Vault operation that failed (e.g., "unlock", "sync")
        diagnostic: Redacted diagnostic text from the vault CLI, if any

    Example:
        >>> try:
        ...     connection.sync()
        ... except VaultSessionError as e:
        ...     logger.error("Vault error", extra={"operation": e.operation})
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        diagnostic: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.diagnostic = redact_text(diagnostic.strip()) if diagnostic else None

    def __str__(self) -> str:
        """
        Format error message with operation context.

        Example:
            >>> str(UnlockError("Unlock failed", diagnostic="Invalid master password."))
            'Unlock failed (operation: unlock): Invalid master password.'
        """
        text = self.message
        if self.operation:
            text = f"{text} (operation: {self.operation})"
        if self.diagnostic:
            text = f"{text}: {self.diagnostic}"
        return text


class AdapterUnavailableError(VaultSessionError):
    """
    Raised when the vault CLI is not installed or cannot be executed.

    Never retried: a missing binary will not appear between attempts.

    Resolution:
    - Verify the CLI is on PATH: `bw --version`
    - Check VAULT_SESSION_CLI_PATH points to an executable file
    """


class VaultConfigurationError(VaultSessionError):
    """
    Raised when server configuration fails or local configuration is incomplete.

    Covers `bw config server` failures, a vault already logged in to a
    different server, and missing credential/unlock settings. Never retried.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = "configure",
        diagnostic: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, diagnostic=diagnostic)


class AuthenticationError(VaultSessionError):
    """
    Raised when API-key login (or logout) fails.

    Common causes:
    - Wrong client id / client secret pair
    - API key rotated on the server
    - Ambient BW_CLIENTID / BW_CLIENTSECRET not bound before login
    """

    def __init__(
        self,
        message: str,
        operation: str | None = "login",
        diagnostic: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, diagnostic=diagnostic)


class UnlockError(VaultSessionError):
    """
    Raised when unlocking (or locking) the vault fails.

    Retried by RetryController up to the configured bound before surfacing.
    The diagnostic carries the CLI's redacted explanation
    (e.g., "Invalid master password.").
    """

    def __init__(
        self,
        message: str,
        operation: str | None = "unlock",
        diagnostic: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, diagnostic=diagnostic)


class SyncError(VaultSessionError):
    """Raised when `bw sync` fails. Retried like UnlockError."""

    def __init__(
        self,
        message: str,
        operation: str | None = "sync",
        diagnostic: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, diagnostic=diagnostic)


class ParseError(VaultSessionError):
    """Raised when CLI structured output (status JSON) is not well-formed."""

    def __init__(
        self,
        message: str,
        operation: str | None = "status",
        diagnostic: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, diagnostic=diagnostic)


class VerificationError(VaultSessionError):
    """
    Raised when the status check following an operation disagrees with it.

    Distinct from the original operation's error: a sync that succeeded
    followed by a failing status check is a VerificationError, not a SyncError.

    Attributes:
        expected: Expected vault state name
        actual: Observed vault state name (None if status itself failed)
    """

    def __init__(
        self,
        message: str,
        operation: str | None = "verify",
        expected: str | None = None,
        actual: str | None = None,
        diagnostic: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, diagnostic=diagnostic)
        self.expected = expected
        self.actual = actual


class ExpiredSessionError(VaultSessionError):
    """
    Raised when a session token is read after its expiry.

    Expiry is lazy: the state machine transitions to LoggedInLocked at the
    read that notices it, then raises this error.
    """

    def __init__(self, message: str = "Vault session expired", operation: str | None = "session") -> None:
        super().__init__(message, operation=operation)


class VaultLockedError(VaultSessionError):
    """Raised when a session token is requested while the vault is not unlocked."""

    def __init__(self, message: str = "Vault is not unlocked", operation: str | None = "session") -> None:
        super().__init__(message, operation=operation)


class RetryCancelledError(VaultSessionError):
    """Raised when a retry sleep is aborted by an explicit shutdown signal."""

    def __init__(self, message: str = "Retry cancelled by shutdown", operation: str | None = None) -> None:
        super().__init__(message, operation=operation)
