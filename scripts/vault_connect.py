#!/usr/bin/env python3
"""
Command-line entry point for the vault session manager.

Subcommands:
    connect  Configure the server, log in with the API key and unlock
    status   Print the vault CLI's current lock state
    sync     Connect, then synchronize the local vault copy

Settings come from VAULT_SESSION_* environment variables or a .env file
(see config/settings.py). Output is a single JSON document on stdout with the
session token masked; structured logs go to stderr.

Exit codes:
    0  Success
    1  Vault operation failed
    2  Configuration incomplete or invalid

Usage:
    VAULT_SESSION_SERVER_URL=https://vault.example.com \\
    VAULT_SESSION_CLIENT_ID=user.1 VAULT_SESSION_CLIENT_SECRET=... \\
    VAULT_SESSION_MASTER_PASSWORD=... python scripts/vault_connect.py connect
"""

from __future__ import annotations

import argparse
import json
import sys
from contextlib import ExitStack
from typing import Any

from config.settings import VaultSessionSettings, get_settings
from libs.common.logging import configure_logging
from libs.vault_session import (
    ConnectResult,
    Password,
    VaultConnection,
    VaultSessionError,
    create_vault_connection,
    credential_from_settings,
    password_from_settings,
)
from libs.vault_session.exceptions import VaultConfigurationError

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _connect(
    connection: VaultConnection,
    settings: VaultSessionSettings,
    args: argparse.Namespace,
) -> ConnectResult:
    auto_unlock = settings.auto_unlock and not args.no_unlock
    with ExitStack() as stack:
        credential = stack.enter_context(credential_from_settings(settings))
        unlock_with = None
        if auto_unlock:
            unlock_with = Password(stack.enter_context(password_from_settings(settings)))
        return connection.connect(
            credential,
            unlock_with=unlock_with,
            force=args.force,
            auto_unlock=auto_unlock,
        )


def cmd_connect(
    connection: VaultConnection, settings: VaultSessionSettings, args: argparse.Namespace
) -> int:
    result = _connect(connection, settings, args)
    _emit(result.as_dict())
    return EXIT_OK if result else EXIT_FAILURE


def cmd_status(
    connection: VaultConnection, settings: VaultSessionSettings, args: argparse.Namespace
) -> int:
    status = connection.status()
    _emit(
        {
            "ok": True,
            "state": status.state.value,
            "server_url": status.server_url,
            "user_email": status.user_email,
            "last_sync": status.last_sync,
        }
    )
    return EXIT_OK


def cmd_sync(
    connection: VaultConnection, settings: VaultSessionSettings, args: argparse.Namespace
) -> int:
    result = _connect(connection, settings, args)
    if not result:
        _emit(result.as_dict())
        return EXIT_FAILURE
    connection.sync(force=args.force_sync)
    _emit({"ok": True, "message": "Vault synchronized", "last_sync_time": connection.last_sync_time})
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the vault CLI session")
    parser.add_argument("--env-file", help="Read settings from this .env file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override VAULT_SESSION_LOG_LEVEL",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_connect = sub.add_parser("connect", help="Configure, log in and unlock")
    p_connect.add_argument("--force", action="store_true", help="Redo every step")
    p_connect.add_argument("--no-unlock", action="store_true", help="Stop after login")
    p_connect.set_defaults(func=cmd_connect)

    p_status = sub.add_parser("status", help="Show the vault lock state")
    p_status.set_defaults(func=cmd_status)

    p_sync = sub.add_parser("sync", help="Connect and synchronize the vault")
    p_sync.add_argument("--force", action="store_true", help="Redo every connect step")
    p_sync.add_argument("--force-sync", action="store_true", help="Ignore the sync cool-down")
    p_sync.set_defaults(func=cmd_sync, no_unlock=False)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = VaultSessionSettings(_env_file=args.env_file) if args.env_file else get_settings()
    configure_logging(
        service_name=settings.service_name,
        log_level=args.log_level or settings.log_level,
        stream=sys.stderr,
    )

    with create_vault_connection(settings) as connection:
        try:
            return args.func(connection, settings, args)
        except VaultConfigurationError as e:
            _emit({"ok": False, "message": str(e), "error_type": type(e).__name__})
            return EXIT_CONFIG_ERROR
        except VaultSessionError as e:
            _emit({"ok": False, "message": str(e), "error_type": type(e).__name__})
            return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
