"""Cooperative cancellation for blocking pipeline calls.

A CancellationToken is created by the caller (the worker) and passed
through every call that may block: model calls and persistence. Code
checks it between steps; nothing is interrupted mid-call.
"""

import threading
import time
from typing import Optional


class ProcessingCancelled(Exception):
    """Raised when processing stops because its cancellation token fired."""


class CancellationToken:
    """Cancellation signal with an optional deadline.

    Usage:
        token = CancellationToken.with_deadline(300)
        token.raise_if_cancelled()
        provider.complete_json(..., timeout=token.remaining(30.0))
    """

    def __init__(self, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = deadline
        self.reason: Optional[str] = None

    @classmethod
    def with_deadline(cls, seconds: float) -> "CancellationToken":
        """Token that cancels itself `seconds` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.reason = self.reason or "deadline exceeded"
            return True
        return False

    def raise_if_cancelled(self) -> None:
        """Raise ProcessingCancelled if the token fired."""
        if self.is_cancelled:
            raise ProcessingCancelled(self.reason or "cancelled")

    def remaining(self, default: Optional[float] = None) -> Optional[float]:
        """Seconds left before the deadline, capped by `default`.

        Args:
            default: Upper bound, typically the provider's own timeout

        Returns:
            Remaining seconds, default when no deadline is set
        """
        if self._deadline is None:
            return default
        left = max(self._deadline - time.monotonic(), 0.0)
        if default is None:
            return left
        return min(left, default)


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """raise_if_cancelled() for an optional token."""
    if token is not None:
        token.raise_if_cancelled()
