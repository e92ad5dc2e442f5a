"""Cancellation and deadline handling for blocking tunnel operations."""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from types import TracebackType
from typing import Literal

from .exceptions import CancellationError

# Upper bound for a single blocking wait so cancellation is noticed promptly
POLL_INTERVAL = 0.05


class OperationContext:
    """Cancellation token with an optional deadline.

    A context is done once it is cancelled, its deadline passes, or its
    parent is done. Cancelling a context never affects its parent, so a
    waiter giving up cannot disturb the operation it was waiting on.
    """

    def __init__(
        self, timeout: float | None = None, parent: "OperationContext | None" = None
    ):
        self._cancelled = threading.Event()
        self._parent = parent
        self._deadline: float | None = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout

    @classmethod
    def background(cls) -> "OperationContext":
        """Context that is never done unless cancelled explicitly."""
        return cls()

    def child(self, timeout: float | None = None) -> "OperationContext":
        """Create a context that is done whenever this one is."""
        return OperationContext(timeout=timeout, parent=self)

    def cancel(self) -> None:
        """Cancel this context and every context derived from it."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def expired(self) -> bool:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent is not None and self._parent.expired

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds until the nearest deadline, or None without one."""
        candidates = []
        if self._deadline is not None:
            candidates.append(max(0.0, self._deadline - time.monotonic()))
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                candidates.append(parent_remaining)
        return min(candidates) if candidates else None

    def wait_slice(self, limit: float | None = None) -> float:
        """Length of the next blocking wait, bounded by deadline and poll interval."""
        slice_ = POLL_INTERVAL
        remaining = self.remaining()
        if remaining is not None:
            slice_ = min(slice_, remaining)
        if limit is not None:
            slice_ = min(slice_, max(0.0, limit))
        return slice_

    def raise_if_done(self, message: str = "operation cancelled") -> None:
        """Raise CancellationError if this context is done.

        Raises:
            CancellationError: If cancelled or past its deadline
        """
        if self.cancelled:
            raise CancellationError(f"{message}: context cancelled")
        if self.expired:
            raise CancellationError(f"{message}: deadline exceeded")

    def __enter__(self) -> "OperationContext":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.cancel()
        return False


@contextmanager
def timeout_context(
    timeout: float | None, parent: OperationContext | None = None
) -> Iterator[OperationContext]:
    """Yield a context with the given timeout, cancelled when the block exits."""
    with OperationContext(timeout=timeout, parent=parent) as ctx:
        yield ctx
