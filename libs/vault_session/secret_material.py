"""
Scoped handling of secret material (client secrets, master passwords).

Secret bytes live in a private ``bytearray`` owned by a SecretBuffer. Plaintext
is only ever handed to code running inside a scope (``with_secret`` /
``exposed``), and the copy made for that scope is overwritten with zeros on
every exit path: normal return, early return, exception, or BaseException
such as KeyboardInterrupt.

Security Considerations:
    - Python ``str``/``bytes`` objects are immutable and cannot be wiped. Code
      that must produce text (e.g., an environment variable value) decodes
      inside the scope and removes the text from every mapping it placed it in
      before the scope exits. Those interpreter-level copies are outside this
      module's control.
    - Every buffer this module creates is explicitly zeroed.

Usage Example:
    >>> secret = SecretBuffer("s3cr3t")
    >>> with_secret(secret, lambda plaintext: len(plaintext))
    6
    >>> secret.wipe()
    >>> secret.is_wiped
    True
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from types import TracebackType
from typing import TypeVar

T = TypeVar("T")


class SecretMaterialError(ValueError):
    """Raised when a wiped SecretBuffer is used again."""


def zeroize(buffer: bytearray | memoryview) -> None:
    """Overwrite a writable buffer with zeros in place."""
    for i in range(len(buffer)):
        buffer[i] = 0


class SecretBuffer:
    """
    Owner of one piece of secret material.

    The buffer is mutable so it can be wiped deterministically. It never
    reveals its content through ``repr``/``str`` and offers no accessor that
    returns plaintext outside a scope.

    Example:
        >>> with SecretBuffer("master-password") as password:
        ...     with_secret(password, lambda p: bytes(p) == b"master-password")
        True
        >>> password.is_wiped
        True
    """

    __slots__ = ("_buffer", "_wiped")

    def __init__(self, value: str | bytes | bytearray) -> None:
        if isinstance(value, str):
            self._buffer = bytearray(value.encode("utf-8"))
        elif isinstance(value, (bytes, bytearray)):
            self._buffer = bytearray(value)
        else:
            raise TypeError("SecretBuffer value must be str, bytes or bytearray")
        self._wiped = False

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    def __len__(self) -> int:
        return len(self._buffer)

    def __bool__(self) -> bool:
        return not self._wiped and len(self._buffer) > 0

    def __repr__(self) -> str:
        return "SecretBuffer(<wiped>)" if self._wiped else "SecretBuffer(***)"

    __str__ = __repr__

    def wipe(self) -> None:
        """Zero the owned buffer. Idempotent."""
        zeroize(self._buffer)
        self._wiped = True

    def _copy_plaintext(self) -> bytearray:
        if self._wiped:
            raise SecretMaterialError("Secret material has already been wiped")
        return bytearray(self._buffer)

    def __enter__(self) -> SecretBuffer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.wipe()


@contextmanager
def exposed(secret: SecretBuffer) -> Iterator[bytearray]:
    """
    Expose the plaintext of ``secret`` for the duration of a ``with`` block.

    Yields a fresh bytearray copy that is zeroed when the block exits, however
    it exits. The SecretBuffer itself is left intact.

    Raises:
        SecretMaterialError: If the secret has been wiped
    """
    plaintext = secret._copy_plaintext()
    try:
        yield plaintext
    finally:
        zeroize(plaintext)


def with_secret(secret: SecretBuffer, fn: Callable[[bytearray], T]) -> T:
    """
    Call ``fn`` with the plaintext of ``secret`` and wipe it afterwards.

    ``fn`` receives a bytearray copy valid only during the call; it must not
    keep references to it. Whatever ``fn`` returns is returned unchanged, so
    callers must not return the plaintext itself.

    Args:
        secret: Secret material to expose
        fn: Callable run with the plaintext copy

    Returns:
        The result of ``fn``

    Raises:
        SecretMaterialError: If the secret has been wiped
        Exception: Anything ``fn`` raises (after the copy is zeroed)
    """
    with exposed(secret) as plaintext:
        return fn(plaintext)
