"""
Typed data model for the vault session manager.

Value types exchanged between the binder, adapter, state machine and
connection orchestrator. Secret material is always held in a SecretBuffer;
``repr`` of every type here is safe to log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from libs.common.logging.redaction import mask_token
from libs.vault_session.secret_material import SecretBuffer

if TYPE_CHECKING:
    from libs.vault_session.exceptions import VaultSessionError


class VaultState(str, Enum):
    """Lock state reported by the vault CLI."""

    NOT_LOGGED_IN = "unauthenticated"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class VaultStatus:
    """Parsed result of ``bw status``."""

    state: VaultState
    server_url: str | None = None
    user_email: str | None = None
    last_sync: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_logged_in(self) -> bool:
        return self.state is not VaultState.NOT_LOGGED_IN


@dataclass(frozen=True)
class AmbientVariableNames:
    """Environment variable names the vault CLI reads its configuration from."""

    server_url: str = "BW_SERVER"
    client_id: str = "BW_CLIENTID"
    client_secret: str = "BW_CLIENTSECRET"
    password: str = "BW_PASSWORD"
    session: str = "BW_SESSION"


def normalize_server_url(url: str | None) -> str | None:
    """Normalize a server URL for comparison (case-insensitive host, no trailing slash)."""
    if not url:
        return None
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/")
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}"


class Credential:
    """
    API-key credential for one connect attempt.

    The client secret is owned by a SecretBuffer; leaving a ``with`` block (or
    calling ``wipe()``) zeroes it.

    Example:
        >>> with Credential("user.1", "s3cr3t", "https://vault.example.com") as cred:
        ...     result = connection.connect(cred, unlock_with=Password(pw))
        >>> cred.client_secret.is_wiped
        True

    Raises:
        ValueError: If client_id is empty or server_url is not an http(s) URL
    """

    __slots__ = ("client_id", "client_secret", "server_url")

    def __init__(
        self,
        client_id: str,
        client_secret: SecretBuffer | str | bytes,
        server_url: str,
    ) -> None:
        if not client_id or not client_id.strip():
            raise ValueError("client_id must be a non-empty string")
        parsed = urlparse(server_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"server_url must be an absolute http(s) URL, got {server_url!r}")
        self.client_id = client_id.strip()
        self.client_secret = (
            client_secret if isinstance(client_secret, SecretBuffer) else SecretBuffer(client_secret)
        )
        self.server_url = server_url.strip()

    def wipe(self) -> None:
        self.client_secret.wipe()

    def __repr__(self) -> str:
        return (
            f"Credential(client_id={self.client_id!r}, client_secret={self.client_secret!r}, "
            f"server_url={self.server_url!r})"
        )

    def __enter__(self) -> Credential:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.wipe()


@dataclass(frozen=True)
class Password:
    """Unlock with the master password."""

    secret: SecretBuffer


@dataclass(frozen=True)
class SessionToken:
    """Adopt an existing session token after checking it unlocks the vault."""

    token: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("Session token must be non-empty")


@dataclass(frozen=True)
class Certificate:
    """Unlock with a password protected by the certificate with this thumbprint."""

    thumbprint: str

    def __post_init__(self) -> None:
        if not self.thumbprint:
            raise ValueError("Certificate thumbprint must be non-empty")


UnlockMethod = Password | SessionToken | Certificate


class ConnectStep(str, Enum):
    """Steps of a connect attempt, reported on failure."""

    BIND = "bind"
    STATUS = "status"
    CONFIGURE = "configure"
    LOGIN = "login"
    UNLOCK = "unlock"
    VERIFY = "verify"


@dataclass(frozen=True)
class ConnectResult:
    """
    Outcome of VaultConnection.connect().

    Truthy on success. On failure ``failed_step`` names the step that failed
    and ``error`` holds the exception that stopped it.
    """

    ok: bool
    message: str
    session_token: str | None = field(default=None, repr=False)
    failed_step: ConnectStep | None = None
    error: VaultSessionError | None = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, message: str, session_token: str | None = None) -> ConnectResult:
        return cls(ok=True, message=message, session_token=session_token)

    @classmethod
    def failure(cls, step: ConnectStep, error: VaultSessionError) -> ConnectResult:
        return cls(
            ok=False,
            message=f"Connect failed at {step.value}: {error}",
            failed_step=step,
            error=error,
        )

    def as_dict(self) -> dict[str, Any]:
        """Loggable summary (token masked)."""
        return {
            "ok": self.ok,
            "message": self.message,
            "session_token": mask_token(self.session_token) if self.session_token else None,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error_type": type(self.error).__name__ if self.error else None,
        }
