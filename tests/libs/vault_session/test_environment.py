"""
Tests for libs/vault_session/environment.py - ambient credential binding.

Test Coverage:
    - bind writes server URL, client id and client secret
    - release restores prior values (including absent variables)
    - preserve_existing leaves and keeps pre-set values
    - partial writes rolled back when binding fails midway
"""

from unittest.mock import patch

import pytest

from libs.vault_session.environment import (
    CredentialEnvironmentBinder,
    OriginalEnvironmentSnapshot,
)
from libs.vault_session.models import AmbientVariableNames, Credential
from libs.vault_session.secret_material import SecretMaterialError, with_secret

SERVER = "https://vault.example.com"


@pytest.fixture()
def binder(environ) -> CredentialEnvironmentBinder:
    return CredentialEnvironmentBinder(environ=environ)


@pytest.fixture()
def credential() -> Credential:
    return Credential("user.1", "s3cr3t", SERVER)


class TestBind:
    """Binding and restoring ambient variables."""

    @pytest.mark.unit()
    def test_bind_sets_variables(self, binder, environ, credential) -> None:
        with binder.bind(credential):
            assert environ["BW_SERVER"] == SERVER
            assert environ["BW_CLIENTID"] == "user.1"
            assert environ["BW_CLIENTSECRET"] == "s3cr3t"

    @pytest.mark.unit()
    def test_release_removes_previously_absent_variables(self, binder, environ, credential) -> None:
        with binder.bind(credential):
            pass

        assert environ == {"PATH": "/usr/bin"}

    @pytest.mark.unit()
    def test_release_restores_previous_values(self, binder, environ, credential) -> None:
        environ.update({"BW_SERVER": "A", "BW_CLIENTID": "B", "BW_CLIENTSECRET": "C"})

        with binder.bind(credential):
            assert environ["BW_CLIENTID"] == "user.1"

        assert environ["BW_SERVER"] == "A"
        assert environ["BW_CLIENTID"] == "B"
        assert environ["BW_CLIENTSECRET"] == "C"

    @pytest.mark.unit()
    def test_release_on_exception(self, binder, environ, credential) -> None:
        environ.update({"BW_SERVER": "A", "BW_CLIENTID": "B", "BW_CLIENTSECRET": "C"})

        with pytest.raises(RuntimeError), binder.bind(credential):
            raise RuntimeError("login exploded")

        assert {k: environ[k] for k in ("BW_SERVER", "BW_CLIENTID", "BW_CLIENTSECRET")} == {
            "BW_SERVER": "A",
            "BW_CLIENTID": "B",
            "BW_CLIENTSECRET": "C",
        }

    @pytest.mark.unit()
    def test_release_is_idempotent(self, binder, environ, credential) -> None:
        binding = binder.bind(credential)
        binding.release()
        environ["BW_SERVER"] = "set-after-release"
        binding.release()

        assert binding.released
        assert environ["BW_SERVER"] == "set-after-release"

    @pytest.mark.unit()
    def test_preserve_existing_keeps_pre_set_values(self, binder, environ, credential) -> None:
        environ["BW_SERVER"] = "https://already.example.com"

        with binder.bind(credential, preserve_existing=True) as binding:
            assert environ["BW_SERVER"] == "https://already.example.com"
            assert environ["BW_CLIENTID"] == "user.1"
            assert binding.touched == frozenset({"client_id", "client_secret"})

        assert environ["BW_SERVER"] == "https://already.example.com"
        assert "BW_CLIENTID" not in environ

    @pytest.mark.unit()
    def test_custom_variable_names(self, environ, credential) -> None:
        names = AmbientVariableNames(server_url="X_SERVER", client_id="X_ID", client_secret="X_SECRET")
        binder = CredentialEnvironmentBinder(environ=environ, names=names)

        with binder.bind(credential):
            assert environ["X_ID"] == "user.1"
            assert "BW_CLIENTID" not in environ

    @pytest.mark.unit()
    def test_failure_midway_rolls_back_partial_writes(self, binder, environ) -> None:
        environ.update({"BW_SERVER": "A", "BW_CLIENTID": "B"})
        credential = Credential("user.1", "s3cr3t", SERVER)
        credential.wipe()

        with pytest.raises(SecretMaterialError):
            binder.bind(credential)

        assert environ["BW_SERVER"] == "A"
        assert environ["BW_CLIENTID"] == "B"
        assert "BW_CLIENTSECRET" not in environ

    @pytest.mark.unit()
    def test_secret_copy_zeroed_after_bind(self, binder, credential) -> None:
        captured: list[bytearray] = []

        def _capturing_with_secret(secret, fn):
            def _capture(plaintext: bytearray):
                captured.append(plaintext)
                return fn(plaintext)

            return with_secret(secret, _capture)

        with patch(
            "libs.vault_session.environment.with_secret", side_effect=_capturing_with_secret
        ), binder.bind(credential):
            pass

        assert captured[0] == bytearray(len("s3cr3t"))


class TestSnapshot:
    @pytest.mark.unit()
    def test_snapshot_and_restore(self, binder, environ) -> None:
        environ["BW_CLIENTID"] = "B"
        snapshot = binder.snapshot()
        environ["BW_CLIENTID"] = "changed"
        environ["BW_SERVER"] = "added"

        binder.restore(snapshot)

        assert environ["BW_CLIENTID"] == "B"
        assert "BW_SERVER" not in environ

    @pytest.mark.unit()
    def test_snapshot_repr_masks_secret(self) -> None:
        snapshot = OriginalEnvironmentSnapshot("A", "B", "super-secret")
        assert "super-secret" not in repr(snapshot)
