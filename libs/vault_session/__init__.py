"""
Vault session lifecycle manager.

Authenticates a process against a password-manager vault through its CLI,
tracks the resulting session token with its expiry, and keeps the local vault
cache in sync, with bounded retries and deterministic wiping of secrets.

Example:
    >>> from libs.vault_session import (
    ...     Credential, Password, SecretBuffer, create_vault_connection,
    ... )
    >>> connection = create_vault_connection()
    >>> with Credential("user.1", "s3cr3t", "https://vault.example.com") as cred, \\
    ...         SecretBuffer("master-password") as password:
    ...     result = connection.connect(cred, unlock_with=Password(password))
    >>> result.ok
    True
"""

from libs.vault_session.adapter import VaultCliAdapter, VaultClient
from libs.vault_session.connection import VaultConnection
from libs.vault_session.environment import (
    CredentialEnvironmentBinder,
    OriginalEnvironmentSnapshot,
    ScopedBinding,
)
from libs.vault_session.exceptions import (
    AdapterUnavailableError,
    AuthenticationError,
    ExpiredSessionError,
    ParseError,
    RetryCancelledError,
    SyncError,
    UnlockError,
    VaultConfigurationError,
    VaultLockedError,
    VaultSessionError,
    VerificationError,
)
from libs.vault_session.factory import (
    create_vault_connection,
    credential_from_settings,
    password_from_settings,
)
from libs.vault_session.models import (
    Certificate,
    ConnectResult,
    ConnectStep,
    Credential,
    Password,
    SessionToken,
    UnlockMethod,
    VaultState,
    VaultStatus,
)
from libs.vault_session.retry import RetryController
from libs.vault_session.runner import CommandResult, CommandRunner, SubprocessRunner
from libs.vault_session.secret_material import SecretBuffer, exposed, with_secret
from libs.vault_session.session import (
    CacheState,
    LoggedInLocked,
    LoggedOut,
    SessionStateMachine,
    SyncThrottle,
    Unlocked,
)

__all__ = [
    # Entry points
    "VaultConnection",
    "create_vault_connection",
    "credential_from_settings",
    "password_from_settings",
    # Model
    "Credential",
    "Password",
    "SessionToken",
    "Certificate",
    "UnlockMethod",
    "ConnectResult",
    "ConnectStep",
    "VaultState",
    "VaultStatus",
    # Components
    "VaultClient",
    "VaultCliAdapter",
    "CommandRunner",
    "CommandResult",
    "SubprocessRunner",
    "CredentialEnvironmentBinder",
    "OriginalEnvironmentSnapshot",
    "ScopedBinding",
    "RetryController",
    "SessionStateMachine",
    "SyncThrottle",
    "CacheState",
    "LoggedOut",
    "LoggedInLocked",
    "Unlocked",
    # Secret material
    "SecretBuffer",
    "exposed",
    "with_secret",
    # Exceptions
    "VaultSessionError",
    "AdapterUnavailableError",
    "VaultConfigurationError",
    "AuthenticationError",
    "UnlockError",
    "SyncError",
    "ParseError",
    "VerificationError",
    "ExpiredSessionError",
    "VaultLockedError",
    "RetryCancelledError",
]
