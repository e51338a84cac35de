"""
Factory for creating VaultConnection instances from settings.

Wires the production object graph:
    SubprocessRunner → VaultCliAdapter → CredentialEnvironmentBinder
    → RetryController → SessionStateMachine/SyncThrottle → VaultConnection

The adapter and binder always share one environment mapping: the binder
writes the API-key variables that ``bw login --apikey`` reads from the child
environment the adapter derives.

Example Usage:
    >>> settings = get_settings()
    >>> connection = create_vault_connection(settings)
    >>> with credential_from_settings(settings) as credential, \\
    ...         password_from_settings(settings) as password:
    ...     result = connection.connect(credential, unlock_with=Password(password))

Environment Variables:
    VAULT_SESSION_SERVER_URL, VAULT_SESSION_CLIENT_ID,
    VAULT_SESSION_CLIENT_SECRET, VAULT_SESSION_MASTER_PASSWORD (see config/settings.py)
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from datetime import timedelta

from config.settings import VaultSessionSettings, get_settings
from libs.vault_session.adapter import CertificatePasswordProvider, VaultCliAdapter
from libs.vault_session.connection import VaultConnection
from libs.vault_session.environment import CredentialEnvironmentBinder
from libs.vault_session.exceptions import VaultConfigurationError
from libs.vault_session.models import Credential
from libs.vault_session.retry import RetryController
from libs.vault_session.runner import CommandRunner, SubprocessRunner
from libs.vault_session.secret_material import SecretBuffer
from libs.vault_session.session import SessionStateMachine, SyncThrottle

logger = logging.getLogger(__name__)


def create_vault_connection(
    settings: VaultSessionSettings | None = None,
    runner: CommandRunner | None = None,
    environ: MutableMapping[str, str] | None = None,
    certificate_password_provider: CertificatePasswordProvider | None = None,
) -> VaultConnection:
    """
    Create a VaultConnection configured from settings.

    Args:
        settings: Settings to use (default: cached get_settings())
        runner: CommandRunner override (default: SubprocessRunner)
        environ: Ambient environment shared by binder and adapter
            (default: os.environ)
        certificate_password_provider: Resolver for Certificate unlock

    Returns:
        VaultConnection with its own state machine and sync throttle
    """
    settings = settings or get_settings()
    adapter = VaultCliAdapter(
        runner or SubprocessRunner(),
        cli_path=settings.cli_path,
        environ=environ,
        timeout_seconds=settings.command_timeout_seconds,
        certificate_password_provider=certificate_password_provider,
    )
    binder = CredentialEnvironmentBinder(environ=environ)
    retry = RetryController(
        max_retries=settings.unlock_retries,
        delay_seconds=settings.retry_delay_seconds,
    )
    connection = VaultConnection(
        client=adapter,
        binder=binder,
        retry=retry,
        state=SessionStateMachine(),
        throttle=SyncThrottle(cooldown=timedelta(seconds=settings.sync_cooldown_seconds)),
        session_ttl_minutes=settings.session_ttl_minutes,
    )
    logger.info(
        "VaultConnection created",
        extra={
            "cli_path": settings.cli_path,
            "unlock_retries": settings.unlock_retries,
            "session_ttl_minutes": settings.session_ttl_minutes,
        },
    )
    return connection


def credential_from_settings(settings: VaultSessionSettings | None = None) -> Credential:
    """
    Build a Credential from settings.

    The caller owns the returned Credential and should wipe it (use ``with``).

    Raises:
        VaultConfigurationError: If server_url, client_id or client_secret is
            missing, or the server URL is invalid
    """
    settings = settings or get_settings()
    missing = [
        name
        for name, present in (
            ("VAULT_SESSION_SERVER_URL", settings.server_url),
            ("VAULT_SESSION_CLIENT_ID", settings.client_id),
            ("VAULT_SESSION_CLIENT_SECRET", settings.client_secret.get_secret_value()),
        )
        if not present
    ]
    if missing:
        raise VaultConfigurationError(
            f"Vault credential settings missing: {', '.join(missing)}", operation="bind"
        )
    try:
        return Credential(
            settings.client_id or "",
            SecretBuffer(settings.client_secret.get_secret_value()),
            settings.server_url or "",
        )
    except ValueError as e:
        raise VaultConfigurationError(str(e), operation="bind") from e


def password_from_settings(settings: VaultSessionSettings | None = None) -> SecretBuffer:
    """
    Return the configured master password as a SecretBuffer.

    The caller wipes it; wrap it in Password(...) to unlock.

    Raises:
        VaultConfigurationError: If no master password is configured
    """
    settings = settings or get_settings()
    value = settings.master_password.get_secret_value()
    if not value:
        raise VaultConfigurationError(
            "VAULT_SESSION_MASTER_PASSWORD is required for password unlock", operation="unlock"
        )
    return SecretBuffer(value)
