"""Settle-once readiness signal shared by every caller of one tunnel."""

import threading

from ..common.context import OperationContext
from ..models import TunnelSnapshot


def _copy_error(error: BaseException) -> BaseException:
    """Same-typed copy of a settled error with a traceback of its own."""
    fresh = error.__class__.__new__(error.__class__, *error.args)
    fresh.__dict__.update(error.__dict__)
    return fresh


class ReadySignal:
    """One-shot broadcast of a tunnel's start outcome.

    Exactly one producer settles the signal with a snapshot or an error.
    Any number of waiters, including ones arriving after settlement,
    observe the same outcome.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._settled = False
        self._outcome: TunnelSnapshot | BaseException | None = None

    def is_set(self) -> bool:
        with self._cond:
            return self._settled

    def set_result(self, snapshot: TunnelSnapshot) -> None:
        self._settle(snapshot)

    def set_error(self, error: BaseException) -> None:
        self._settle(error)

    def _settle(self, outcome: TunnelSnapshot | BaseException) -> None:
        with self._cond:
            if self._settled:
                raise RuntimeError("Readiness signal already settled")
            self._outcome = outcome
            self._settled = True
            self._cond.notify_all()

    def wait(
        self, ctx: OperationContext, message: str = "Gave up waiting for tunnel"
    ) -> TunnelSnapshot:
        """Block until settled or until ctx is done.

        Each waiter gets its own copy of a settled error, chained to the
        producer's original.

        Args:
            ctx: Waiter's own context; giving up does not affect the producer
            message: Prefix of the cancellation error

        Returns:
            The snapshot the producer settled with

        Raises:
            CancellationError: If ctx is done first
            Exception: Copy of the error the producer settled with
        """
        with self._cond:
            while not self._settled:
                ctx.raise_if_done(message)
                self._cond.wait(timeout=ctx.wait_slice())
            outcome = self._outcome

        if isinstance(outcome, BaseException):
            raise _copy_error(outcome) from outcome
        if outcome is None:
            raise RuntimeError("Readiness signal settled without an outcome")
        return outcome
