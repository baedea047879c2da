"""
Cooperative cancellation for sync runs.

A token is created per run and polled at every suspension point. It is never
preemptive: code that holds a token checks it before each remote dispatch and
each pause, and stops on its own.
"""

from __future__ import annotations

from dvirsync.core.exceptions import OperationCancelled
from dvirsync.core.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """One-shot cancellation flag owned by a single pipeline run."""

    __slots__ = ("_cancelled", "_reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation. Calling it again is a no-op."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.debug(f"Cancellation requested: {reason}")

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if the token has been cancelled."""
        if self._cancelled:
            raise OperationCancelled(self._reason)

    def __repr__(self) -> str:
        state = f"cancelled ({self._reason})" if self._cancelled else "active"
        return f"<CancellationToken {state}>"
