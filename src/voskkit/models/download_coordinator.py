"""Single-flight bookkeeping for model downloads"""

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from ..core.cancellation import CancellationToken
from ..utils.exceptions import DownloadBusyError


@dataclass
class DownloadSession:
    """One tracked download: model name, cancel flag and worker thread"""

    name: str
    token: CancellationToken = field(default_factory=CancellationToken)
    task: Optional[threading.Thread] = None
    started_at: float = field(default_factory=time.time)

    @property
    def is_alive(self) -> bool:
        # No thread: a synchronous install. Attached but not started yet: still claimed.
        if self.task is None or self.task.ident is None:
            return True
        return self.task.is_alive()


class DownloadCoordinator:
    """Tracks the one download that may be in flight at a time

    ``begin`` is the test-and-set used by :class:`ModelStore`; a second
    caller gets :class:`DownloadBusyError` instead of silently replacing the
    first session. ``start`` keeps the plain overwrite semantics for callers
    that manage their own exclusion.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._session: Optional[DownloadSession] = None

    def begin(self, name: str) -> DownloadSession:
        """Atomically claim the download slot for ``name``

        Raises:
            DownloadBusyError: If another session is still active
        """
        with self._lock:
            if self._session is not None and self._session.is_alive:
                raise DownloadBusyError(
                    f"Download of {self._session.name} is already in progress",
                    context={"active": self._session.name, "requested": name},
                )
            self._session = DownloadSession(name)
            logger.debug(f"Download session started: {name}")
            return self._session

    def start(self, name: str, task: Optional[threading.Thread] = None) -> DownloadSession:
        """Register a download, replacing any previous bookkeeping"""
        with self._lock:
            if self._session is not None and self._session.is_alive:
                logger.warning(f"Replacing active download session {self._session.name} with {name}")
            self._session = DownloadSession(name, task=task)
            return self._session

    def attach(self, session: DownloadSession, task: threading.Thread) -> None:
        with self._lock:
            session.task = task

    def has_active(self) -> bool:
        with self._lock:
            return self._session is not None and self._session.is_alive

    def active_name(self) -> Optional[str]:
        with self._lock:
            return self._session.name if self._session is not None else None

    def cancel(self) -> bool:
        """Request cancellation of the current download

        Returns:
            True if there was a session to cancel
        """
        with self._lock:
            if self._session is None:
                return False
            logger.info(f"Cancellation requested for download {self._session.name}")
            self._session.token.cancel()
            return True

    def is_cancel_requested(self) -> bool:
        with self._lock:
            return self._session is not None and self._session.token.is_cancelled

    def await_active(self, timeout: Optional[float] = None) -> bool:
        """Block until the tracked worker thread finishes

        Returns:
            False if the wait timed out, True otherwise
        """
        with self._lock:
            task = self._session.task if self._session is not None else None
        if task is None or task is threading.current_thread():
            return True
        if task.ident is None:
            # Attached but not started; nothing to join yet
            return False
        task.join(timeout)
        return not task.is_alive()

    def clear(self, session: Optional[DownloadSession] = None) -> None:
        """Drop the bookkeeping

        Args:
            session: Only clear if this is still the tracked session
        """
        with self._lock:
            if session is not None and self._session is not session:
                return
            if self._session is not None:
                logger.debug(f"Download session cleared: {self._session.name}")
            self._session = None
