"""
Shared fixtures for vault session tests.

Provides:
1. A controllable clock for session expiry and sync throttling
2. A scripted CommandRunner that records every vault CLI invocation
3. A RetryController that never sleeps
"""

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from libs.vault_session.retry import RetryController
from libs.vault_session.runner import CommandResult


class FakeClock:
    """Callable clock returning a settable aware UTC datetime."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@dataclass(frozen=True)
class RecordedCall:
    args: tuple[str, ...]
    env: dict[str, str]
    timeout: float

    @property
    def command(self) -> str:
        return self.args[1]


Outcome = CommandResult | BaseException | Callable[[Sequence[str], Mapping[str, str]], CommandResult]


class ScriptedRunner:
    """
    CommandRunner fake keyed by CLI subcommand (``status``, ``unlock``...).

    Outcomes queued for a subcommand are consumed in order; the last one is
    repeated for any further calls.
    """

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._scripts: dict[str, list[Outcome]] = {}

    def on(self, command: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> "ScriptedRunner":
        return self.then(
            command, CommandResult(args=(), returncode=returncode, stdout=stdout, stderr=stderr)
        )

    def on_status(self, state: str, server_url: str | None = None, **extra: Any) -> "ScriptedRunner":
        payload = {"serverUrl": server_url, "status": state, **extra}
        return self.on("status", stdout=json.dumps(payload))

    def then(self, command: str, outcome: Outcome) -> "ScriptedRunner":
        self._scripts.setdefault(command, []).append(outcome)
        return self

    def run(self, args: Sequence[str], env: Mapping[str, str], timeout: float) -> CommandResult:
        call = RecordedCall(tuple(args), dict(env), timeout)
        self.calls.append(call)
        queue = self._scripts.get(call.command)
        if not queue:
            raise AssertionError(f"No scripted outcome for vault command {call.command!r}")
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(args, env)
        return CommandResult(
            args=tuple(args),
            returncode=outcome.returncode,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
        )

    def commands(self) -> list[str]:
        return [call.command for call in self.calls]

    def calls_for(self, command: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.command == command]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture()
def environ() -> dict[str, str]:
    """Isolated ambient environment (never os.environ)."""
    return {"PATH": "/usr/bin"}


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def retry_controller(sleeps: list[float]) -> RetryController:
    """RetryController recording requested delays instead of sleeping."""
    return RetryController(max_retries=3, delay_seconds=2.0, sleep=sleeps.append)
