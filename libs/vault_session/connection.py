"""
Connection Orchestrator: the public entry point of the vault session manager.

VaultConnection composes the Credential Environment Binder, the vault client,
the Retry Controller and the Session State Machine into a single
configure → login → unlock → verify sequence with one success/failure outcome.

Architecture:
    - One VaultConnection owns one SessionStateMachine, one SyncThrottle and
      the ambient binding (no process-global session); tests create as many
      independent connections as they need
    - A single threading.RLock serializes every public operation: the CLI is
      a shared resource whose login/unlock/sync calls must not interleave
    - Ambient credentials are bound for the duration of connect() only and
      restored on every exit path (scoped acquisition, not manual rollback)

Usage Example:
    >>> connection = create_vault_connection()
    >>> with Credential("user.1", client_secret, "https://vault.example.com") as cred, \\
    ...         SecretBuffer(master_password) as password:
    ...     result = connection.connect(cred, unlock_with=Password(password))
    >>> if not result:
    ...     logger.error("Vault connect failed", extra={"step": result.failed_step})
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import datetime
from types import TracebackType

from libs.common.logging.context import correlation_scope
from libs.vault_session.adapter import VaultClient
from libs.vault_session.environment import CredentialEnvironmentBinder
from libs.vault_session.exceptions import (
    AuthenticationError,
    VaultConfigurationError,
    VaultSessionError,
    VerificationError,
)
from libs.vault_session.models import (
    ConnectResult,
    ConnectStep,
    Credential,
    UnlockMethod,
    VaultState,
    VaultStatus,
    normalize_server_url,
)
from libs.vault_session.retry import RetryController
from libs.vault_session.secret_material import SecretMaterialError
from libs.vault_session.session import (
    CacheState,
    SessionState,
    SessionStateMachine,
    SyncThrottle,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_MINUTES = 30


class VaultConnection:
    """
    Orchestrates authentication and session state against the vault CLI.

    Args:
        client: VaultClient implementation (VaultCliAdapter in production)
        binder: Binder writing into the same environment the client reads
        retry: RetryController for unlock and sync (default: 3 retries, 2s)
        state: Session state machine (default: a new one)
        throttle: Sync throttle (default: 5 minute cool-down)
        session_ttl_minutes: Validity window recorded for new session tokens

    Thread Safety:
        All public methods are serialized by one re-entrant lock.
    """

    def __init__(
        self,
        client: VaultClient,
        binder: CredentialEnvironmentBinder,
        retry: RetryController | None = None,
        state: SessionStateMachine | None = None,
        throttle: SyncThrottle | None = None,
        session_ttl_minutes: float = DEFAULT_SESSION_TTL_MINUTES,
    ) -> None:
        if session_ttl_minutes <= 0:
            raise ValueError("session_ttl_minutes must be positive")
        self._client = client
        self._binder = binder
        self._retry = retry or RetryController()
        self._state = state or SessionStateMachine()
        self._throttle = throttle or SyncThrottle()
        self._session_ttl_minutes = session_ttl_minutes
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def session_state(self) -> SessionState:
        """Current session state (lazy expiry applied)."""
        with self._lock:
            return self._state.state

    @property
    def cache_state(self) -> CacheState:
        with self._lock:
            self._state.check_expiry()
            return dataclasses.replace(self._state.cache)

    @property
    def last_sync_time(self) -> datetime | None:
        with self._lock:
            return self._throttle.last_sync_time

    @property
    def is_unlocked(self) -> bool:
        with self._lock:
            return self._state.is_unlocked

    def session_token(self) -> str:
        """
        Return the active session token.

        Raises:
            ExpiredSessionError: The session has expired
            VaultLockedError: The vault is not unlocked
        """
        with self._lock:
            return self._state.require_token()

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    def connect(
        self,
        credential: Credential,
        *,
        unlock_with: UnlockMethod | None = None,
        force: bool = False,
        auto_unlock: bool = True,
        unlock_retries: int | None = None,
        preserve_existing: bool = False,
    ) -> ConnectResult:
        """
        Configure, log in, optionally unlock, and verify.

        Args:
            credential: API-key credential (caller owns and wipes it)
            unlock_with: Unlock method; required when auto_unlock is True
            force: Redo every step even if the session is already unlocked
            auto_unlock: Unlock after login; otherwise stop at LoggedInLocked
            unlock_retries: Additional unlock attempts (default: controller setting)
            preserve_existing: Keep ambient variables that are already set

        Returns:
            ConnectResult; on failure ``failed_step`` names the failing step.
            The ambient environment is restored before this returns.
        """
        with self._lock, correlation_scope():
            if not force:
                token = self._state.current_token()
                if token is not None:
                    logger.info(
                        "Vault already unlocked, skipping connect",
                        extra={"operation": "connect"},
                    )
                    return ConnectResult.success("Vault already unlocked", session_token=token)

            logger.info(
                "Connecting to vault",
                extra={
                    "operation": "connect",
                    "server_url": credential.server_url,
                    "client_id": credential.client_id,
                    "force": force,
                    "auto_unlock": auto_unlock,
                },
            )

            step = ConnectStep.BIND
            token: str | None = None
            try:
                with self._binder.bind(credential, preserve_existing=preserve_existing):
                    step = ConnectStep.STATUS
                    status = self._client.status()

                    step = ConnectStep.CONFIGURE
                    status = self._ensure_server(credential.server_url, status, force)

                    step = ConnectStep.LOGIN
                    self._ensure_login(status, force)

                    if auto_unlock:
                        step = ConnectStep.UNLOCK
                        if unlock_with is None:
                            raise VaultConfigurationError(
                                "auto_unlock requires an unlock method", operation="unlock"
                            )
                        token = self._unlock(unlock_with, force=force, retries=unlock_retries)

                    step = ConnectStep.VERIFY
                    expected = VaultState.UNLOCKED if auto_unlock else VaultState.LOCKED
                    self._verify(expected, session=token, operation="connect")
            except SecretMaterialError as e:
                error = VaultConfigurationError(
                    f"Secret material unavailable: {e}", operation=step.value
                )
                return self._connect_failed(step, error, auto_unlock)
            except VaultSessionError as e:
                return self._connect_failed(step, e, auto_unlock)

            if auto_unlock:
                message = "Vault connected and unlocked"
            else:
                message = "Vault connected (locked)"
            logger.info(message, extra={"operation": "connect"})
            return ConnectResult.success(message, session_token=token)

    def _connect_failed(
        self, step: ConnectStep, error: VaultSessionError, auto_unlock: bool
    ) -> ConnectResult:
        if step is ConnectStep.VERIFY and auto_unlock:
            self._state.force_relock()
        logger.error(
            "Vault connect failed",
            extra={
                "operation": "connect",
                "failed_step": step.value,
                "error_type": type(error).__name__,
                "error": str(error),
                "state": self._state.state.name,
            },
        )
        return ConnectResult.failure(step, error)

    def _ensure_server(self, server_url: str, status: VaultStatus, force: bool) -> VaultStatus:
        if status.server_url is None and status.is_logged_in:
            # `bw status` reports null for the default cloud server
            if not force:
                logger.debug(
                    "Vault server URL not reported, keeping current configuration",
                    extra={"operation": "configure"},
                )
                return status
        elif status.server_url is not None and normalize_server_url(
            status.server_url
        ) == normalize_server_url(server_url):
            return status

        if status.is_logged_in:
            if not force:
                raise VaultConfigurationError(
                    f"Vault is logged in to a different server ({status.server_url or 'default'}); "
                    f"use force to log out and reconfigure"
                )
            self._client.logout()
            self._state.logout()
            status = dataclasses.replace(status, state=VaultState.NOT_LOGGED_IN)

        self._client.configure_server(server_url)
        return dataclasses.replace(status, server_url=server_url)

    def _ensure_login(self, status: VaultStatus, force: bool) -> None:
        if status.is_logged_in:
            if not force:
                self._state.record_login(True)
                return
            self._client.logout()
            self._state.logout()

        try:
            self._client.login_api_key()
        except AuthenticationError:
            self._state.record_login(False)
            raise
        self._state.record_login(True)

    def _unlock(self, method: UnlockMethod, *, force: bool, retries: int | None) -> str:
        if not force:
            token = self._state.current_token()
            if token is not None:
                return token
        token = self._retry.with_retry(
            lambda: self._client.unlock(method),
            max_retries=retries,
            operation="unlock",
        )
        self._state.record_unlock(token, self._session_ttl_minutes)
        return token

    def _verify(self, expected: VaultState, *, session: str | None, operation: str) -> VaultStatus:
        try:
            status = self._client.status(session=session)
        except VaultSessionError as e:
            raise VerificationError(
                f"Status check after {operation} failed",
                expected=expected.value,
                diagnostic=str(e),
            ) from e
        if status.state is not expected:
            raise VerificationError(
                f"Expected vault state '{expected.value}' after {operation}, "
                f"got '{status.state.value}'",
                expected=expected.value,
                actual=status.state.value,
            )
        return status

    # ------------------------------------------------------------------
    # Individual operations
    # ------------------------------------------------------------------

    def login(self, credential: Credential, *, force: bool = False) -> None:
        """
        Log in with the API key without unlocking.

        A no-op when the session is already unlocked and not forced.

        Raises:
            VaultConfigurationError, AuthenticationError, AdapterUnavailableError
        """
        with self._lock, correlation_scope():
            if not force and self._state.is_unlocked:
                logger.debug("Vault already unlocked, skipping login", extra={"operation": "login"})
                return
            with self._binder.bind(credential):
                status = self._client.status()
                status = self._ensure_server(credential.server_url, status, force)
                self._ensure_login(status, force)

    def unlock(
        self,
        method: UnlockMethod,
        *,
        force: bool = False,
        retries: int | None = None,
    ) -> str:
        """
        Unlock the vault and record the session token.

        Re-unlocking an unlocked session is a no-op that returns the current
        token unless ``force`` is set.

        Raises:
            UnlockError: All attempts failed
            RetryCancelledError: Shutdown during a retry delay
        """
        with self._lock, correlation_scope():
            return self._unlock(method, force=force, retries=retries)

    def sync(self, *, force: bool = False) -> bool:
        """
        Synchronize the vault, throttled to one non-forced sync per cool-down.

        Returns:
            True on success (including a throttled no-op)

        Raises:
            SyncError: All sync attempts failed
            VerificationError: Sync succeeded but the follow-up status check failed
        """
        with self._lock, correlation_scope():
            if self._throttle.should_skip(self._state.now(), force=force):
                logger.debug(
                    "Vault sync skipped, within cool-down",
                    extra={"operation": "sync", "last_sync_time": self._throttle.last_sync_time},
                )
                return True

            session = self._state.current_token()
            self._retry.with_retry(
                lambda: self._client.sync(force=force, session=session),
                operation="sync",
            )
            self._throttle.record(self._state.now())

            expected = VaultState.UNLOCKED if session else VaultState.LOCKED
            try:
                self._verify(expected, session=session, operation="sync")
            except VerificationError:
                self._state.cache.invalidate()
                if session is not None:
                    self._state.force_relock()
                logger.error(
                    "Vault sync verification failed",
                    extra={"operation": "sync", "state": self._state.state.name},
                )
                raise
            self._state.mark_cache_refreshed()
            return True

    def lock(self) -> None:
        """Lock the vault and drop the local session."""
        with self._lock:
            self._client.lock()
            self._state.force_relock()

    def logout(self) -> None:
        """Log out of the vault and reset the local session."""
        with self._lock:
            self._client.logout()
            self._state.logout()

    def status(self) -> VaultStatus:
        """Query the vault's status using the current session token, if any."""
        with self._lock:
            return self._client.status(session=self._state.current_token())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Cancel pending retry delays. Does not wait for the lock."""
        self._retry.shutdown()

    def close(self) -> None:
        self.shutdown()
        logger.info("VaultConnection closed", extra={"operation": "close"})

    def __enter__(self) -> VaultConnection:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
