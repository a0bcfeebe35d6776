"""Cooperative cancellation token.

A caller holds the token and may trigger it at any time, from any thread,
including before the run starts. Consumers register a callback instead of
polling; callbacks run at most once, on the thread that calls ``cancel()``.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

__all__ = ["CancelToken"]

logger = logging.getLogger(__name__)


class CancelToken:
    """Caller-held cancellation signal.

    Example:
        token = CancelToken()
        unregister = token.register(lambda: print("cancelled"))
        token.cancel()   # prints once
        token.cancel()   # no-op
        unregister()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        """Whether ``cancel()`` has been called."""
        return self._cancelled

    def cancel(self) -> bool:
        """Trigger the token.

        Returns:
            True on the first call, False if it was already cancelled
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            self._invoke(callback)
        return True

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run when the token is cancelled.

        If the token is already cancelled the callback runs immediately.

        Returns:
            A function that removes the registration (safe to call twice)
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return lambda: self._unregister(callback)

        self._invoke(callback)
        return lambda: None

    def _unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @staticmethod
    def _invoke(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning(f"Error in cancel callback: {e}")

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self._cancelled})"
