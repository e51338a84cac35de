"""
Credential Environment Binder.

``bw login --apikey`` reads the API key from environment variables, so the
credentials of a connect attempt have to be placed in the ambient environment
for the duration of that attempt. The binder does this as a scoped
acquisition: ``bind()`` snapshots the prior values, sets the new ones, and the
returned ScopedBinding restores the snapshot on exit however the block exits.
Callers can never observe a half-configured environment after a failure.

Example:
    >>> binder = CredentialEnvironmentBinder()
    >>> with binder.bind(credential):
    ...     adapter.login_api_key()
    >>> # BW_SERVER / BW_CLIENTID / BW_CLIENTSECRET restored to prior values
"""

from __future__ import annotations

import logging
import os
from collections.abc import MutableMapping
from dataclasses import dataclass
from types import TracebackType

from libs.vault_session.models import AmbientVariableNames, Credential
from libs.vault_session.secret_material import with_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OriginalEnvironmentSnapshot:
    """Ambient values before a bind; None means the variable was absent."""

    server_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None

    def __repr__(self) -> str:
        secret_state = "<absent>" if self.client_secret is None else "***"
        return (
            f"OriginalEnvironmentSnapshot(server_url={self.server_url!r}, "
            f"client_id={self.client_id!r}, client_secret={secret_state})"
        )


class ScopedBinding:
    """
    Handle for one bind; releasing it restores the snapshot.

    Only variables this binding wrote are restored, so preserve-existing
    binds leave pre-set values untouched. ``release()`` is idempotent.
    """

    def __init__(
        self,
        binder: CredentialEnvironmentBinder,
        snapshot: OriginalEnvironmentSnapshot,
        touched: frozenset[str],
    ) -> None:
        self._binder = binder
        self.snapshot = snapshot
        self.touched = touched
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._binder._restore_fields(self.snapshot, self.touched)

    def __enter__(self) -> ScopedBinding:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()


class CredentialEnvironmentBinder:
    """
    Sets and restores the ambient variables consumed by the vault CLI.

    Args:
        environ: Mapping to bind into (default: os.environ); the adapter
            must derive its child environment from the same mapping
        names: Variable names for server URL, client id and client secret
    """

    _FIELDS = ("server_url", "client_id", "client_secret")

    def __init__(
        self,
        environ: MutableMapping[str, str] | None = None,
        names: AmbientVariableNames | None = None,
    ) -> None:
        self._environ = environ if environ is not None else os.environ
        self._names = names or AmbientVariableNames()

    @property
    def environ(self) -> MutableMapping[str, str]:
        return self._environ

    def _var(self, field_name: str) -> str:
        return getattr(self._names, field_name)

    def snapshot(self) -> OriginalEnvironmentSnapshot:
        """Capture the current ambient values."""
        return OriginalEnvironmentSnapshot(
            **{name: self._environ.get(self._var(name)) for name in self._FIELDS}
        )

    def restore(self, snapshot: OriginalEnvironmentSnapshot) -> None:
        """Apply ``snapshot`` to all three variables."""
        self._restore_fields(snapshot, frozenset(self._FIELDS))

    def _restore_fields(
        self, snapshot: OriginalEnvironmentSnapshot, fields: frozenset[str]
    ) -> None:
        for name in self._FIELDS:
            if name not in fields:
                continue
            var = self._var(name)
            original = getattr(snapshot, name)
            if original is None:
                self._environ.pop(var, None)
            else:
                self._environ[var] = original
        logger.debug(
            "Ambient vault credentials restored",
            extra={"variables": sorted(self._var(name) for name in fields)},
        )

    def bind(self, credential: Credential, preserve_existing: bool = False) -> ScopedBinding:
        """
        Place ``credential`` in the ambient environment.

        Args:
            credential: Credential of this connect attempt
            preserve_existing: Leave already-present variables untouched
                instead of overwriting (and later restoring) them

        Returns:
            ScopedBinding whose release restores the prior values

        Raises:
            Exception: Anything raised while writing, after partial writes
                have been rolled back
        """
        snapshot = self.snapshot()
        touched: set[str] = set()

        def _should_write(name: str) -> bool:
            return not (preserve_existing and getattr(snapshot, name) is not None)

        try:
            if _should_write("server_url"):
                touched.add("server_url")
                self._environ[self._var("server_url")] = credential.server_url
            if _should_write("client_id"):
                touched.add("client_id")
                self._environ[self._var("client_id")] = credential.client_id
            if _should_write("client_secret"):
                touched.add("client_secret")
                secret_var = self._var("client_secret")

                def _write_secret(plaintext: bytearray) -> None:
                    self._environ[secret_var] = plaintext.decode("utf-8")

                with_secret(credential.client_secret, _write_secret)
        except BaseException:
            self._restore_fields(snapshot, frozenset(touched))
            raise

        logger.debug(
            "Ambient vault credentials bound",
            extra={
                "variables": sorted(self._var(name) for name in touched),
                "preserved": sorted(
                    self._var(name) for name in self._FIELDS if name not in touched
                ),
            },
        )
        return ScopedBinding(self, snapshot, frozenset(touched))
