"""
Session State Machine for the vault session lifecycle.

Tracks whether the vault is logged out, logged in but locked, or unlocked with
a session token that is valid until ``expires_at``.

States:
    LoggedOut ──record_login──▶ LoggedInLocked ──record_unlock──▶ Unlocked{token, expires_at}
        ▲                            ▲                                  │
        └────────── logout ──────────┴──── expiry / force_relock ───────┘

Expiry is lazy: there is no background timer. Every read of ``state`` first
checks the clock, and an expired Unlocked session is transitioned to
LoggedInLocked at that moment (with the cache invalidated).

Thread Safety:
    Instances are NOT internally synchronized. VaultConnection owns one state
    machine, one SyncThrottle and the ambient binding, and guards all of them
    with a single lock.

Example:
    >>> machine = SessionStateMachine()
    >>> machine.record_login(True)
    >>> machine.record_unlock("token-abc", ttl_minutes=30)
    >>> machine.is_unlocked
    True
    >>> machine.force_relock()
    >>> machine.state
    LoggedInLocked()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from libs.common.logging.redaction import mask_token
from libs.vault_session.exceptions import ExpiredSessionError, VaultLockedError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_SYNC_COOLDOWN = timedelta(minutes=5)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class LoggedOut:
    """No API-key login has happened (initial and reset state)."""

    name = "logged_out"


@dataclass(frozen=True)
class LoggedInLocked:
    """Authenticated, but an unlock is required before secrets are readable."""

    name = "locked"


@dataclass(frozen=True)
class Unlocked:
    """Unlocked with a session token valid until ``expires_at``."""

    token: str
    expires_at: datetime
    unlocked_at: datetime

    name = "unlocked"

    def __repr__(self) -> str:
        return (
            f"Unlocked(token={mask_token(self.token)!r}, "
            f"expires_at={self.expires_at.isoformat()})"
        )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


SessionState = LoggedOut | LoggedInLocked | Unlocked


@dataclass
class CacheState:
    """
    Freshness of the local vault copy.

    Only meaningful while Unlocked; forced invalid whenever the session
    leaves Unlocked.
    """

    is_valid: bool = False
    last_refresh: datetime | None = None

    def invalidate(self) -> None:
        self.is_valid = False

    def mark_refreshed(self, now: datetime) -> None:
        self.is_valid = True
        self.last_refresh = now


@dataclass
class SyncThrottle:
    """
    Cool-down for non-forced syncs.

    A non-forced sync requested within ``cooldown`` of the last sync is a
    no-op success.
    """

    cooldown: timedelta = DEFAULT_SYNC_COOLDOWN
    last_sync_time: datetime | None = field(default=None)

    def should_skip(self, now: datetime, force: bool = False) -> bool:
        if force or self.last_sync_time is None:
            return False
        return now - self.last_sync_time < self.cooldown

    def record(self, now: datetime) -> None:
        self.last_sync_time = now


class SessionStateMachine:
    """
    Owner of the session state; transitions are the only mutators.

    Args:
        clock: Returns the current aware UTC datetime (injectable for tests)
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._state: SessionState = LoggedOut()
        self.cache = CacheState()

    def now(self) -> datetime:
        return self._clock()

    @property
    def state(self) -> SessionState:
        """Current state with lazy expiry applied."""
        self.check_expiry()
        return self._state

    @property
    def is_unlocked(self) -> bool:
        return isinstance(self.state, Unlocked)

    @property
    def is_logged_in(self) -> bool:
        return not isinstance(self.state, LoggedOut)

    def _transition(self, new_state: SessionState, reason: str) -> None:
        old_state = self._state
        self._state = new_state
        if isinstance(old_state, Unlocked) and not isinstance(new_state, Unlocked):
            self.cache.invalidate()
        if type(old_state) is not type(new_state):
            logger.info(
                "Vault session state changed",
                extra={
                    "from_state": old_state.name,
                    "to_state": new_state.name,
                    "reason": reason,
                },
            )

    def record_login(self, success: bool) -> None:
        """LoggedOut → LoggedInLocked on success; otherwise unchanged."""
        if not success:
            logger.info("Vault login failed, state unchanged", extra={"state": self._state.name})
            return
        if isinstance(self._state, LoggedOut):
            self._transition(LoggedInLocked(), "login")

    def record_unlock(self, token: str, ttl_minutes: float) -> Unlocked:
        """
        Any state → Unlocked{token, now + ttl}.

        Raises:
            ValueError: If token is empty or ttl_minutes is not positive
        """
        if not token:
            raise ValueError("Unlocked state requires a non-empty session token")
        if ttl_minutes <= 0:
            raise ValueError("Session TTL must be positive")
        now = self.now()
        unlocked = Unlocked(
            token=token,
            expires_at=now + timedelta(minutes=ttl_minutes),
            unlocked_at=now,
        )
        # A new session starts with nothing refreshed
        self.cache.invalidate()
        self._transition(unlocked, "unlock")
        return unlocked

    def check_expiry(self, now: datetime | None = None) -> bool:
        """Relock an expired Unlocked session. Returns True if it expired now."""
        state = self._state
        if not isinstance(state, Unlocked):
            return False
        if not state.is_expired(now or self.now()):
            return False
        self._transition(LoggedInLocked(), "expired")
        return True

    def force_relock(self) -> None:
        """Explicit lock: Unlocked/LoggedInLocked → LoggedInLocked (LoggedOut stays)."""
        if isinstance(self._state, LoggedOut):
            self.cache.invalidate()
            return
        self._transition(LoggedInLocked(), "lock")
        self.cache.invalidate()

    def logout(self) -> None:
        """Explicit logout/reset: any state → LoggedOut."""
        self._transition(LoggedOut(), "logout")
        self.cache.invalidate()

    def require_token(self) -> str:
        """
        Return the active session token.

        Raises:
            ExpiredSessionError: The session expired (state is now LoggedInLocked)
            VaultLockedError: The vault is not unlocked
        """
        if self.check_expiry():
            raise ExpiredSessionError()
        state = self._state
        if not isinstance(state, Unlocked):
            raise VaultLockedError(f"Vault is not unlocked (state: {state.name})")
        return state.token

    def current_token(self) -> str | None:
        """Return the active token, or None when not unlocked (expiry applied)."""
        state = self.state
        return state.token if isinstance(state, Unlocked) else None

    def mark_cache_refreshed(self) -> bool:
        """Mark the cache valid after a sync. Ignored unless Unlocked."""
        if not self.is_unlocked:
            return False
        self.cache.mark_refreshed(self.now())
        return True
