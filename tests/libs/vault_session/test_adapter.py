"""
Tests for libs/vault_session/adapter.py - vault CLI adapter.

Test Coverage:
    - status parsing (JSON shape, banner lines, timestamps, failures)
    - argv/environment construction (session and password never in argv)
    - exit-code driven error mapping per operation
    - unlock via password, certificate provider and existing session token
    - timeouts mapped to the operation's own error type

All tests use a scripted CommandRunner; no process is spawned.
"""

import json
from datetime import UTC, datetime

import pytest

from libs.vault_session.adapter import VaultCliAdapter
from libs.vault_session.exceptions import (
    AdapterUnavailableError,
    AuthenticationError,
    ParseError,
    SyncError,
    UnlockError,
    VaultConfigurationError,
)
from libs.vault_session.models import Certificate, Password, SessionToken, VaultState
from libs.vault_session.runner import CommandTimeoutError
from libs.vault_session.secret_material import SecretBuffer

SERVER = "https://vault.example.com"
TOKEN = "Zm9vYmFyYmF6cXV4Zm9vYmFyYmF6cXV4Zm9vYmFyYmF6cXV4Zm9vYmFyYmF6cXV4=="


@pytest.fixture()
def adapter(runner, environ) -> VaultCliAdapter:
    return VaultCliAdapter(runner, cli_path="bw", environ=environ, timeout_seconds=30)


class TestStatus:
    """bw status parsing."""

    @pytest.mark.unit()
    def test_parses_unlocked_status(self, adapter, runner) -> None:
        runner.on_status(
            "unlocked",
            server_url=SERVER,
            userEmail="ops@example.com",
            lastSync="2025-01-15T11:58:00.000Z",
        )

        status = adapter.status()

        assert status.state is VaultState.UNLOCKED
        assert status.server_url == SERVER
        assert status.user_email == "ops@example.com"
        assert status.last_sync == datetime(2025, 1, 15, 11, 58, tzinfo=UTC)
        assert status.is_logged_in

    @pytest.mark.unit()
    def test_unauthenticated_is_not_logged_in(self, adapter, runner) -> None:
        runner.on_status("unauthenticated")

        status = adapter.status()

        assert status.state is VaultState.NOT_LOGGED_IN
        assert not status.is_logged_in
        assert status.server_url is None

    @pytest.mark.unit()
    def test_ignores_banner_lines_around_json(self, adapter, runner) -> None:
        payload = json.dumps({"serverUrl": SERVER, "status": "locked"})
        runner.on("status", stdout=f"? A new version is available\n{payload}\n")

        assert adapter.status().state is VaultState.LOCKED

    @pytest.mark.unit()
    def test_unparseable_last_sync_is_none(self, adapter, runner) -> None:
        runner.on_status("locked", server_url=SERVER, lastSync="yesterday")

        assert adapter.status().last_sync is None

    @pytest.mark.unit()
    def test_non_json_output_raises_parse_error(self, adapter, runner) -> None:
        runner.on("status", stdout="You are not logged in.")

        with pytest.raises(ParseError):
            adapter.status()

    @pytest.mark.unit()
    def test_unknown_state_raises_parse_error(self, adapter, runner) -> None:
        runner.on_status("sleeping")

        with pytest.raises(ParseError):
            adapter.status()

    @pytest.mark.unit()
    def test_non_zero_exit_raises_adapter_unavailable(self, adapter, runner) -> None:
        runner.on("status", returncode=127, stderr="bw: command not found")

        with pytest.raises(AdapterUnavailableError, match="exit code 127"):
            adapter.status()

    @pytest.mark.unit()
    def test_timeout_raises_adapter_unavailable(self, adapter, runner) -> None:
        runner.then("status", CommandTimeoutError(30))

        with pytest.raises(AdapterUnavailableError):
            adapter.status()

    @pytest.mark.unit()
    def test_session_passed_through_environment_not_argv(self, adapter, runner) -> None:
        runner.on_status("unlocked", server_url=SERVER)

        adapter.status(session=TOKEN)

        call = runner.calls[0]
        assert call.args == ("bw", "status", "--nointeraction")
        assert TOKEN not in call.args
        assert call.env["BW_SESSION"] == TOKEN
        assert call.env["BW_NOINTERACTION"] == "true"
        assert call.timeout == 30

    @pytest.mark.unit()
    def test_stray_ambient_session_and_password_not_inherited(self, runner, environ) -> None:
        environ["BW_SESSION"] = "stale-session"
        environ["BW_PASSWORD"] = "leaked"
        adapter = VaultCliAdapter(runner, environ=environ)
        runner.on_status("locked", server_url=SERVER)

        adapter.status()

        env = runner.calls[0].env
        assert "BW_SESSION" not in env
        assert "BW_PASSWORD" not in env
        assert env["PATH"] == "/usr/bin"


class TestConfigureAndLogin:
    """bw config server / bw login --apikey."""

    @pytest.mark.unit()
    def test_configure_server(self, adapter, runner) -> None:
        runner.on("config", stdout="Saved setting `config`.")

        adapter.configure_server(SERVER)

        assert runner.calls[0].args == ("bw", "config", "server", SERVER, "--nointeraction")

    @pytest.mark.unit()
    def test_configure_server_failure(self, adapter, runner) -> None:
        runner.on("config", returncode=1, stderr="Logout required before server config update.")

        with pytest.raises(VaultConfigurationError) as exc_info:
            adapter.configure_server(SERVER)

        assert exc_info.value.operation == "configure"
        assert "Logout required" in str(exc_info.value)

    @pytest.mark.unit()
    def test_exit_zero_with_error_output_is_failure(self, adapter, runner) -> None:
        runner.on("config", stderr="Error: invalid url")

        with pytest.raises(VaultConfigurationError):
            adapter.configure_server("https://bad")

    @pytest.mark.unit()
    def test_login_requires_ambient_api_key(self, adapter, runner) -> None:
        with pytest.raises(AuthenticationError, match="BW_CLIENTID, BW_CLIENTSECRET"):
            adapter.login_api_key()

        assert runner.calls == []

    @pytest.mark.unit()
    def test_login_reads_ambient_api_key(self, adapter, runner, environ) -> None:
        environ.update({"BW_CLIENTID": "user.1", "BW_CLIENTSECRET": "s3cr3t"})
        runner.on("login", stdout="You are logged in!")

        adapter.login_api_key()

        call = runner.calls[0]
        assert call.args == ("bw", "login", "--apikey", "--nointeraction")
        assert call.env["BW_CLIENTID"] == "user.1"
        assert call.env["BW_CLIENTSECRET"] == "s3cr3t"

    @pytest.mark.unit()
    def test_login_failure(self, adapter, runner, environ) -> None:
        environ.update({"BW_CLIENTID": "user.1", "BW_CLIENTSECRET": "wrong"})
        runner.on("login", returncode=1, stderr="client_id or client_secret is incorrect. Try again.")

        with pytest.raises(AuthenticationError) as exc_info:
            adapter.login_api_key()

        assert "incorrect" in exc_info.value.diagnostic


class TestUnlock:
    """bw unlock variants."""

    @pytest.mark.unit()
    def test_password_unlock_returns_token(self, adapter, runner) -> None:
        runner.on("unlock", stdout=f"{TOKEN}\n")

        token = adapter.unlock(Password(SecretBuffer("hunter2")))

        assert token == TOKEN
        call = runner.calls[0]
        assert call.args == (
            "bw",
            "unlock",
            "--passwordenv",
            "BW_PASSWORD",
            "--raw",
            "--nointeraction",
        )
        assert "hunter2" not in call.args
        assert call.env["BW_PASSWORD"] == "hunter2"

    @pytest.mark.unit()
    def test_password_never_reaches_ambient_environment(self, adapter, runner, environ) -> None:
        runner.on("unlock", stdout=TOKEN)

        adapter.unlock(Password(SecretBuffer("hunter2")))

        assert "BW_PASSWORD" not in environ

    @pytest.mark.unit()
    def test_token_containing_error_word_is_accepted(self, adapter, runner) -> None:
        runner.on("unlock", stdout="abcErrorFailedInvalid123==")

        assert adapter.unlock(Password(SecretBuffer("pw"))) == "abcErrorFailedInvalid123=="

    @pytest.mark.unit()
    def test_wrong_password_raises_unlock_error(self, adapter, runner) -> None:
        runner.on("unlock", returncode=1, stderr="Invalid master password.")

        with pytest.raises(UnlockError) as exc_info:
            adapter.unlock(Password(SecretBuffer("wrong")))

        assert exc_info.value.diagnostic == "Invalid master password."
        assert "wrong" not in str(exc_info.value)

    @pytest.mark.unit()
    def test_empty_output_raises_unlock_error(self, adapter, runner) -> None:
        runner.on("unlock", stdout="\n")

        with pytest.raises(UnlockError, match="no session token"):
            adapter.unlock(Password(SecretBuffer("pw")))

    @pytest.mark.unit()
    def test_non_raw_output_raises_unlock_error(self, adapter, runner) -> None:
        runner.on("unlock", stdout=f"Your vault is now unlocked!\nexport BW_SESSION=\"{TOKEN}\"")

        with pytest.raises(UnlockError) as exc_info:
            adapter.unlock(Password(SecretBuffer("pw")))

        assert TOKEN not in str(exc_info.value)

    @pytest.mark.unit()
    def test_timeout_raises_unlock_error(self, adapter, runner) -> None:
        runner.then("unlock", CommandTimeoutError(30))

        with pytest.raises(UnlockError, match="30s"):
            adapter.unlock(Password(SecretBuffer("pw")))

    @pytest.mark.unit()
    def test_missing_binary_propagates(self, adapter, runner) -> None:
        runner.then("unlock", AdapterUnavailableError("Vault CLI executable not found: bw"))

        with pytest.raises(AdapterUnavailableError):
            adapter.unlock(Password(SecretBuffer("pw")))

    @pytest.mark.unit()
    def test_certificate_unlock_uses_provider_and_wipes(self, runner, environ) -> None:
        provided: list[SecretBuffer] = []

        def _provider(thumbprint: str) -> SecretBuffer:
            assert thumbprint == "AB12CD"
            secret = SecretBuffer("from-cert-store")
            provided.append(secret)
            return secret

        adapter = VaultCliAdapter(runner, environ=environ, certificate_password_provider=_provider)
        runner.on("unlock", stdout=TOKEN)

        assert adapter.unlock(Certificate("AB12CD")) == TOKEN
        assert runner.calls[0].env["BW_PASSWORD"] == "from-cert-store"
        assert provided[0].is_wiped

    @pytest.mark.unit()
    def test_certificate_unlock_without_provider(self, adapter, runner) -> None:
        with pytest.raises(UnlockError, match="certificate password provider"):
            adapter.unlock(Certificate("AB12CD"))

        assert runner.calls == []

    @pytest.mark.unit()
    def test_session_token_adopted_when_unlocked(self, adapter, runner) -> None:
        runner.on_status("unlocked", server_url=SERVER)

        assert adapter.unlock(SessionToken(TOKEN)) == TOKEN
        assert runner.calls[0].env["BW_SESSION"] == TOKEN

    @pytest.mark.unit()
    def test_session_token_rejected_when_locked(self, adapter, runner) -> None:
        runner.on_status("locked", server_url=SERVER)

        with pytest.raises(UnlockError, match="does not unlock"):
            adapter.unlock(SessionToken(TOKEN))


class TestSyncLockLogout:
    """bw sync / lock / logout."""

    @pytest.mark.unit()
    def test_sync_with_force_and_session(self, adapter, runner) -> None:
        runner.on("sync", stdout="Syncing complete.")

        assert adapter.sync(force=True, session=TOKEN) is True

        call = runner.calls[0]
        assert call.args == ("bw", "sync", "--force", "--nointeraction")
        assert call.env["BW_SESSION"] == TOKEN

    @pytest.mark.unit()
    def test_sync_failure(self, adapter, runner) -> None:
        runner.on("sync", returncode=1, stderr="Sync failed: network unreachable")

        with pytest.raises(SyncError):
            adapter.sync()

    @pytest.mark.unit()
    def test_sync_timeout_raises_sync_error(self, adapter, runner) -> None:
        runner.then("sync", CommandTimeoutError(30))

        with pytest.raises(SyncError):
            adapter.sync()

    @pytest.mark.unit()
    def test_lock_failure_raises_unlock_error(self, adapter, runner) -> None:
        runner.on("lock", returncode=2)

        with pytest.raises(UnlockError) as exc_info:
            adapter.lock()

        assert exc_info.value.operation == "lock"

    @pytest.mark.unit()
    def test_logout(self, adapter, runner) -> None:
        runner.on("logout", stdout="You have logged out.")

        adapter.logout()

        assert runner.commands() == ["logout"]


@pytest.mark.unit()
def test_timeout_must_be_positive(runner) -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        VaultCliAdapter(runner, timeout_seconds=0)
