#!/usr/bin/env python3
import threading
from typing import Optional

from .errors import Canceled


class CancellationToken:
    """
    Caller-owned cancellation signal.

    Checked before each HTTP attempt, before and during each backoff sleep,
    and on every pulled stream line. Safe to cancel from another thread.

    Example:
        >>> token = CancellationToken()
        >>> token.is_canceled
        False
        >>> token.cancel()
        >>> token.wait(5.0)   # returns immediately
        True
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None):
        self.reason = reason
        self._event.set()

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if canceled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def raise_if_canceled(self):
        if self._event.is_set():
            raise Canceled(self.reason or "Operation was canceled by the caller.")

    def __repr__(self):
        return f"CancellationToken(canceled={self.is_canceled})"


def check_canceled(token: Optional[CancellationToken]):
    if token is not None:
        token.raise_if_canceled()
