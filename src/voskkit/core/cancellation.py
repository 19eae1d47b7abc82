"""Cooperative cancellation token shared by the long-running loops"""

import threading
from typing import Optional, Type

from ..utils.exceptions import CancellationError


class CancellationToken:
    """Polled cancellation flag

    Loops call :meth:`raise_if_cancelled` (or check :attr:`is_cancelled`)
    once per chunk; nothing is interrupted preemptively.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation"""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(
        self,
        message: str = "Operation cancelled by user",
        error_type: Type[CancellationError] = CancellationError,
    ) -> None:
        if self._event.is_set():
            raise error_type(message)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout; returns the flag"""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"
