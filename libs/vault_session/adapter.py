"""
Vault CLI Adapter.

This module is the only place that talks to the external vault client
(a Bitwarden-CLI shaped ``bw`` executable). It exposes typed operations and
normalizes the CLI's exit codes, JSON and text output into results or
VaultSessionError subclasses.

Architecture:
    - VaultClient: Protocol for the capability {status, configure_server,
      login_api_key, unlock, sync, lock, logout}; the orchestrator depends on
      this, so tests mock it without spawning processes
    - VaultCliAdapter: implementation over a CommandRunner
    - Exit code is authoritative; the error-marker regex is only a fallback
      applied to stderr of exit-0 results for configure/login/sync
    - Unlock success is structural (exit 0 + single-line ``--raw`` token);
      the token itself is never scanned for error words

Security Considerations:
    - Master password reaches the CLI through the child environment only
      (``--passwordenv``), exposed via with_secret and removed right after
    - Session tokens are passed through the child environment (BW_SESSION),
      never on the command line where other users could see them
    - All diagnostics are redacted before being attached to exceptions

Usage Example:
    >>> adapter = VaultCliAdapter(SubprocessRunner(), cli_path="bw")
    >>> adapter.status().state
    <VaultState.LOCKED: 'locked'>
    >>> token = adapter.unlock(Password(SecretBuffer("master-password")))
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, MutableMapping, Sequence
from datetime import datetime
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from libs.common.logging.redaction import redact_argv, redact_text
from libs.vault_session.exceptions import (
    AdapterUnavailableError,
    AuthenticationError,
    ParseError,
    SyncError,
    UnlockError,
    VaultConfigurationError,
    VaultSessionError,
)
from libs.vault_session.models import (
    AmbientVariableNames,
    Certificate,
    Password,
    SessionToken,
    UnlockMethod,
    VaultState,
    VaultStatus,
)
from libs.vault_session.runner import CommandResult, CommandRunner, CommandTimeoutError
from libs.vault_session.secret_material import SecretBuffer, with_secret

logger = logging.getLogger(__name__)

# Legacy fallback heuristic; exit codes take precedence
ERROR_MARKER_PATTERN = re.compile(r"error|failed|not found|invalid|unauthorized", re.IGNORECASE)

CertificatePasswordProvider = Callable[[str], SecretBuffer]


class VaultClient(Protocol):
    """Operations the connection orchestrator needs from a vault client."""

    def status(self, session: str | None = None) -> VaultStatus: ...

    def configure_server(self, url: str) -> None: ...

    def login_api_key(self) -> None: ...

    def unlock(self, method: UnlockMethod) -> str: ...

    def sync(self, force: bool = False, session: str | None = None) -> bool: ...

    def lock(self) -> None: ...

    def logout(self) -> None: ...


class _StatusPayload(BaseModel):
    """Shape of ``bw status`` JSON output."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Literal["unauthenticated", "locked", "unlocked"]
    server_url: str | None = Field(default=None, alias="serverUrl")
    user_email: str | None = Field(default=None, alias="userEmail")
    last_sync: str | None = Field(default=None, alias="lastSync")


def _extract_json_object(stdout: str) -> str:
    """Return the JSON object in stdout, ignoring banner lines the CLI may print."""
    start = stdout.find("{")
    end = stdout.rfind("}")
    if start == -1 or end < start:
        raise ParseError("Vault CLI status output is not JSON", diagnostic=stdout[:200])
    return stdout[start : end + 1]


class VaultCliAdapter:
    """
    VaultClient implementation that shells out to the vault CLI.

    Args:
        runner: CommandRunner used to execute the CLI
        cli_path: Executable name or path (default: "bw")
        environ: Ambient environment the child environment is derived from
            (default: os.environ); the CredentialEnvironmentBinder writes the
            API-key variables here
        timeout_seconds: Per-call timeout for the CLI process
        names: Environment variable names read by the CLI
        certificate_password_provider: Resolves a certificate thumbprint to
            the master password (certificate store access lives outside this
            package); required only for Certificate unlock
    """

    def __init__(
        self,
        runner: CommandRunner,
        cli_path: str = "bw",
        environ: MutableMapping[str, str] | None = None,
        timeout_seconds: float = 60.0,
        names: AmbientVariableNames | None = None,
        certificate_password_provider: CertificatePasswordProvider | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._runner = runner
        self._cli_path = cli_path
        self._environ = environ if environ is not None else os.environ
        self._timeout = timeout_seconds
        self._names = names or AmbientVariableNames()
        self._certificate_password_provider = certificate_password_provider

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def _child_env(self, session: str | None = None) -> dict[str, str]:
        env = dict(self._environ)
        # Per-call values only: never inherit a stray session or password
        env.pop(self._names.session, None)
        env.pop(self._names.password, None)
        env["BW_NOINTERACTION"] = "true"
        if session:
            env[self._names.session] = session
        return env

    def _execute(
        self,
        args: Sequence[str],
        env: dict[str, str],
        error_cls: type[VaultSessionError],
        operation: str,
    ) -> CommandResult:
        argv = [self._cli_path, *args, "--nointeraction"]
        try:
            result = self._runner.run(argv, env, self._timeout)
        except CommandTimeoutError as e:
            raise error_cls(str(e), operation=operation) from e
        logger.debug(
            "Vault CLI command completed",
            extra={
                "operation": operation,
                "argv": redact_argv(argv),
                "returncode": result.returncode,
            },
        )
        return result

    @staticmethod
    def _diagnostic(result: CommandResult) -> str:
        return (result.stderr or result.stdout or "").strip()

    def _check(
        self,
        result: CommandResult,
        error_cls: type[VaultSessionError],
        message: str,
        operation: str,
    ) -> None:
        if not result.succeeded:
            raise error_cls(
                f"{message} (exit code {result.returncode})",
                operation=operation,
                diagnostic=self._diagnostic(result),
            )
        if result.stderr and ERROR_MARKER_PATTERN.search(result.stderr):
            raise error_cls(message, operation=operation, diagnostic=result.stderr)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def status(self, session: str | None = None) -> VaultStatus:
        """
        Query lock state via ``bw status``.

        Raises:
            AdapterUnavailableError: CLI missing, timed out, or exited non-zero
            ParseError: Output is not the expected JSON document
        """
        result = self._execute(
            ["status"], self._child_env(session), AdapterUnavailableError, "status"
        )
        if not result.succeeded:
            raise AdapterUnavailableError(
                f"Vault CLI status failed (exit code {result.returncode})",
                operation="status",
                diagnostic=self._diagnostic(result),
            )
        try:
            payload = _StatusPayload.model_validate_json(_extract_json_object(result.stdout))
        except ValidationError as e:
            raise ParseError(
                "Vault CLI status output has unexpected shape",
                diagnostic=str(e.errors(include_input=False)),
            ) from e

        status = VaultStatus(
            state=VaultState(payload.status),
            server_url=payload.server_url,
            user_email=payload.user_email,
            last_sync=_parse_timestamp(payload.last_sync),
            raw=payload.model_dump(by_alias=True),
        )
        logger.debug(
            "Vault status read",
            extra={"operation": "status", "state": status.state.value, "server_url": status.server_url},
        )
        return status

    def configure_server(self, url: str) -> None:
        """
        Point the CLI at ``url`` via ``bw config server``.

        Raises:
            VaultConfigurationError: Non-zero exit or error output
        """
        result = self._execute(
            ["config", "server", url], self._child_env(), VaultConfigurationError, "configure"
        )
        self._check(result, VaultConfigurationError, f"Failed to configure server {url}", "configure")
        logger.info("Vault server configured", extra={"operation": "configure", "server_url": url})

    def login_api_key(self) -> None:
        """
        Log in with the ambient client id / client secret (``bw login --apikey``).

        Raises:
            AuthenticationError: Ambient API-key variables missing, non-zero
                exit, or error output
        """
        missing = [
            name
            for name in (self._names.client_id, self._names.client_secret)
            if not self._environ.get(name)
        ]
        if missing:
            raise AuthenticationError(
                f"API-key login requires ambient variables: {', '.join(missing)}"
            )
        result = self._execute(
            ["login", "--apikey"], self._child_env(), AuthenticationError, "login"
        )
        self._check(result, AuthenticationError, "API-key login failed", "login")
        logger.info("Vault API-key login succeeded", extra={"operation": "login"})

    def unlock(self, method: UnlockMethod) -> str:
        """
        Unlock the vault and return the session token.

        Raises:
            UnlockError: Unlock rejected, timed out, or produced no token
            AdapterUnavailableError: CLI missing
        """
        if isinstance(method, Password):
            return self._unlock_with_password(method.secret)
        if isinstance(method, Certificate):
            return self._unlock_with_certificate(method.thumbprint)
        if isinstance(method, SessionToken):
            return self._adopt_session_token(method.token)
        raise UnlockError(f"Unsupported unlock method: {type(method).__name__}")

    def _unlock_with_password(self, secret: SecretBuffer) -> str:
        password_var = self._names.password

        def _run(plaintext: bytearray) -> CommandResult:
            env = self._child_env()
            env[password_var] = plaintext.decode("utf-8")
            try:
                return self._execute(
                    ["unlock", "--passwordenv", password_var, "--raw"],
                    env,
                    UnlockError,
                    "unlock",
                )
            finally:
                env.pop(password_var, None)

        result = with_secret(secret, _run)
        if not result.succeeded:
            raise UnlockError(
                f"Vault unlock failed (exit code {result.returncode})",
                diagnostic=self._diagnostic(result),
            )

        token = result.stdout.strip()
        if not token:
            raise UnlockError("Vault unlock returned no session token", diagnostic=result.stderr)
        if len(token.split()) != 1:
            raise UnlockError(
                "Vault unlock output is not a raw session token",
                diagnostic=redact_text(token, extra_values=(token,)),
            )
        logger.info("Vault unlocked", extra={"operation": "unlock", "method": "password"})
        return token

    def _unlock_with_certificate(self, thumbprint: str) -> str:
        if self._certificate_password_provider is None:
            raise UnlockError(
                "Certificate unlock requested but no certificate password provider is configured"
            )
        secret = self._certificate_password_provider(thumbprint)
        try:
            return self._unlock_with_password(secret)
        finally:
            secret.wipe()

    def _adopt_session_token(self, token: str) -> str:
        try:
            status = self.status(session=token)
        except ParseError as e:
            raise UnlockError("Could not verify session token", diagnostic=str(e)) from e
        if status.state is not VaultState.UNLOCKED:
            raise UnlockError(
                f"Session token does not unlock the vault (state: {status.state.value})"
            )
        logger.info("Vault session token adopted", extra={"operation": "unlock", "method": "session"})
        return token

    def sync(self, force: bool = False, session: str | None = None) -> bool:
        """
        Synchronize the local vault copy with the server (``bw sync``).

        Raises:
            SyncError: Non-zero exit, timeout, or error output
        """
        args = ["sync", "--force"] if force else ["sync"]
        result = self._execute(args, self._child_env(session), SyncError, "sync")
        self._check(result, SyncError, "Vault sync failed", "sync")
        logger.info("Vault synchronized", extra={"operation": "sync", "force": force})
        return True

    def lock(self) -> None:
        """Lock the vault (``bw lock``). Raises UnlockError on failure."""
        result = self._execute(["lock"], self._child_env(), UnlockError, "lock")
        self._check(result, UnlockError, "Vault lock failed", "lock")
        logger.info("Vault locked", extra={"operation": "lock"})

    def logout(self) -> None:
        """Log out (``bw logout``). Raises AuthenticationError on failure."""
        result = self._execute(["logout"], self._child_env(), AuthenticationError, "logout")
        self._check(result, AuthenticationError, "Vault logout failed", "logout")
        logger.info("Vault logged out", extra={"operation": "logout"})


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse the CLI's ISO-8601 ``lastSync`` value; None when absent or unparseable."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable lastSync timestamp", extra={"last_sync": value})
        return None
