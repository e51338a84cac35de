"""
Retry/Backoff Controller for fallible vault CLI operations.

Wraps unlock and sync calls with bounded, fixed-delay retries using tenacity.
``max_retries`` counts additional attempts, so at most ``max_retries + 1``
calls are made; the last error is re-raised once attempts are exhausted.

Only transient error types are retried (UnlockError and SyncError by
default). AdapterUnavailableError, VaultConfigurationError and everything
else propagates on the first attempt.

The delay between attempts is slept on a threading.Event, so ``shutdown()``
aborts a pending sleep immediately with RetryCancelledError.

Example:
    >>> controller = RetryController(max_retries=3, delay_seconds=2.0)
    >>> token = controller.with_retry(lambda: adapter.unlock(method), operation="unlock")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from libs.vault_session.exceptions import RetryCancelledError, SyncError, UnlockError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_DELAY_SECONDS = 2.0
DEFAULT_RETRY_ON: tuple[type[BaseException], ...] = (UnlockError, SyncError)


class RetryController:
    """
    Bounded fixed-delay retry executor.

    Args:
        max_retries: Default number of additional attempts after the first
        delay_seconds: Default fixed delay between consecutive attempts
        shutdown_event: Event that cancels pending sleeps when set
            (a private event is created when omitted)
        sleep: Sleep function override (tests); it bypasses the shutdown
            event, but cancellation is still checked before each retry
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        shutdown_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        _validate(max_retries, delay_seconds)
        self.max_retries = max_retries
        self.delay_seconds = delay_seconds
        self._shutdown = shutdown_event or threading.Event()
        self._sleep_override = sleep

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown.is_set()

    def shutdown(self) -> None:
        """Abort pending and future retry sleeps."""
        self._shutdown.set()

    def reset(self) -> None:
        """Re-arm the controller after a shutdown."""
        self._shutdown.clear()

    def _sleep(self, seconds: float) -> None:
        if self._shutdown.is_set():
            raise RetryCancelledError()
        if self._sleep_override is not None:
            self._sleep_override(seconds)
            return
        if self._shutdown.wait(seconds):
            raise RetryCancelledError()

    def with_retry(
        self,
        op: Callable[[], T],
        *,
        max_retries: int | None = None,
        delay_seconds: float | None = None,
        retry_on: tuple[type[BaseException], ...] = DEFAULT_RETRY_ON,
        operation: str = "vault_operation",
    ) -> T:
        """
        Run ``op`` with up to ``max_retries`` additional attempts.

        Args:
            op: Zero-argument callable performing one attempt
            max_retries: Additional attempts (default: controller setting)
            delay_seconds: Fixed delay between attempts (default: controller setting)
            retry_on: Exception types that trigger a retry
            operation: Name used in logs and cancellation errors

        Returns:
            Result of the first successful attempt

        Raises:
            RetryCancelledError: Shutdown was signalled before or between attempts
            Exception: The last error once attempts are exhausted, or the
                first non-retryable error
        """
        retries = self.max_retries if max_retries is None else max_retries
        delay = self.delay_seconds if delay_seconds is None else delay_seconds
        _validate(retries, delay)

        if self._shutdown.is_set():
            raise RetryCancelledError(operation=operation)

        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Vault operation failed, retrying",
                extra={
                    "operation": operation,
                    "attempt": retry_state.attempt_number,
                    "max_attempts": retries + 1,
                    "delay_seconds": delay,
                    "error_type": type(error).__name__ if error else None,
                    "error": str(error) if error else None,
                },
            )

        def _sleep(seconds: float) -> None:
            try:
                self._sleep(seconds)
            except RetryCancelledError:
                logger.warning("Vault retry cancelled by shutdown", extra={"operation": operation})
                raise RetryCancelledError(operation=operation) from None

        retrying = Retrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_fixed(delay),
            retry=retry_if_exception_type(retry_on),
            before_sleep=_log_retry,
            sleep=_sleep,
            reraise=True,
        )
        try:
            return retrying(op)
        except RetryCancelledError:
            raise
        except retry_on as e:
            logger.error(
                "Vault operation failed after retries",
                extra={
                    "operation": operation,
                    "attempts": retries + 1,
                    "error_type": type(e).__name__,
                },
            )
            raise


def _validate(max_retries: int, delay_seconds: float) -> None:
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    if delay_seconds < 0:
        raise ValueError("delay_seconds must be >= 0")
