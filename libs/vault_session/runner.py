"""
Process runner for the vault CLI.

The adapter never calls ``subprocess`` directly: it goes through a
CommandRunner so tests can substitute a fake without spawning processes.
SubprocessRunner is the production implementation: argv list (no shell),
captured text output, explicit environment, and a hard per-call timeout so an
unresponsive CLI cannot hang the session indefinitely.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from libs.common.logging.redaction import redact_argv
from libs.vault_session.exceptions import AdapterUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Completed CLI invocation."""

    args: tuple[str, ...] = field(repr=False)
    returncode: int
    stdout: str = field(default="", repr=False)
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


class CommandTimeoutError(Exception):
    """Raised by a runner when the CLI does not finish within the timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Vault CLI did not finish within {timeout:g}s")
        self.timeout = timeout


class CommandRunner(Protocol):
    """Capability to run one CLI command to completion."""

    def run(
        self,
        args: Sequence[str],
        env: Mapping[str, str],
        timeout: float,
    ) -> CommandResult:
        """
        Run ``args`` with environment ``env``.

        Raises:
            AdapterUnavailableError: The executable cannot be started
            CommandTimeoutError: The process exceeded ``timeout`` seconds
        """
        ...


class SubprocessRunner:
    """CommandRunner backed by ``subprocess.run``."""

    def run(
        self,
        args: Sequence[str],
        env: Mapping[str, str],
        timeout: float,
    ) -> CommandResult:
        argv = list(args)
        started = time.monotonic()
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                env=dict(env),
                timeout=timeout,
                stdin=subprocess.DEVNULL,
                check=False,
            )
        except FileNotFoundError as e:
            raise AdapterUnavailableError(
                f"Vault CLI executable not found: {argv[0]}",
                operation=argv[1] if len(argv) > 1 else None,
            ) from e
        except PermissionError as e:
            raise AdapterUnavailableError(
                f"Vault CLI executable is not runnable: {argv[0]}",
                operation=argv[1] if len(argv) > 1 else None,
            ) from e
        except subprocess.TimeoutExpired as e:
            logger.warning(
                "Vault CLI timed out",
                extra={"argv": redact_argv(argv), "timeout_seconds": timeout},
            )
            raise CommandTimeoutError(timeout) from e

        logger.debug(
            "Vault CLI finished",
            extra={
                "argv": redact_argv(argv),
                "returncode": completed.returncode,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return CommandResult(
            args=tuple(argv),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
