"""Correlation ID propagation for vault session operations.

Every connect/unlock/sync sequence runs under a correlation ID so that all log
lines emitted by the binder, adapter, retry controller and state machine for
one attempt can be grouped together.

Example:
    >>> from libs.common.logging.context import correlation_scope, get_correlation_id
    >>> with correlation_scope() as correlation_id:
    ...     get_correlation_id() == correlation_id
    True
"""

import contextvars
import uuid
from types import TracebackType

_correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    """Generate a new unique correlation ID (UUID v4 string)."""
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    """Return the correlation ID of the current context, or None."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context.

    Raises:
        ValueError: If correlation_id is empty
    """
    if not correlation_id:
        raise ValueError("Correlation ID cannot be empty")
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Remove the correlation ID from the current context."""
    _correlation_id_var.set(None)


class correlation_scope:  # noqa: N801 - used like a function in with-statements
    """Context manager that sets a correlation ID and restores the previous one.

    Nested scopes reuse the outer ID unless one is passed explicitly, so a
    connect() that internally unlocks keeps a single ID for the whole attempt.

    Args:
        correlation_id: ID to use. If None, the current ID is kept or a new one
            is generated.
    """

    def __init__(self, correlation_id: str | None = None) -> None:
        self._requested = correlation_id
        self._token: contextvars.Token[str | None] | None = None
        self.correlation_id: str | None = None

    def __enter__(self) -> str:
        self.correlation_id = (
            self._requested or get_correlation_id() or generate_correlation_id()
        )
        self._token = _correlation_id_var.set(self.correlation_id)
        return self.correlation_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _correlation_id_var.reset(self._token)
            self._token = None
