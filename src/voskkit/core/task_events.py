"""Typed event stream for background work

Long-running operations (catalog fetch, model install, transcription) run
on a worker thread and report through an :class:`EventStream` instead of
ad-hoc callbacks. The consumer iterates the stream on its own thread:

    stream = store.install_async(descriptor)
    for event in stream:
        if isinstance(event, ProgressEvent):
            print(event.percent)
        elif isinstance(event, FailedEvent) and event.cancelled:
            print("cancelled")

Every stream ends with exactly one terminal event (completed or failed).
"""

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Union

from loguru import logger

from ..utils.exceptions import CancellationError
from .cancellation import CancellationToken


@dataclass(frozen=True)
class ProgressEvent:
    """Whole-percent progress update (0-100)"""

    percent: int


@dataclass(frozen=True)
class TextEvent:
    """A decoded text fragment"""

    text: str


@dataclass(frozen=True)
class CompletedEvent:
    """Work finished; ``result`` is whatever the work function returned"""

    result: Any = None


@dataclass(frozen=True)
class FailedEvent:
    """Work raised; ``error`` is the exception"""

    error: BaseException

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationError)


TaskEvent = Union[ProgressEvent, TextEvent, CompletedEvent, FailedEvent]
TERMINAL_EVENTS = (CompletedEvent, FailedEvent)


class EventStream:
    """Single-consumer, thread-safe channel of task events"""

    def __init__(self, name: str, token: Optional[CancellationToken] = None):
        self.name = name
        self.token = token or CancellationToken()
        self.thread: Optional[threading.Thread] = None
        self._queue: "queue.Queue[TaskEvent]" = queue.Queue()
        self._done = threading.Event()
        self._terminal: Optional[TaskEvent] = None
        self._emit_lock = threading.Lock()

    # ---- producer side ----

    def emit(self, event: TaskEvent) -> None:
        with self._emit_lock:
            if self._terminal is not None:
                logger.debug(f"[{self.name}] dropping event after completion: {event}")
                return
            if isinstance(event, TERMINAL_EVENTS):
                self._terminal = event
            self._queue.put(event)
            if self._terminal is not None:
                self._done.set()

    def progress(self, percent: int) -> None:
        self.emit(ProgressEvent(percent))

    def text(self, text: str) -> None:
        self.emit(TextEvent(text))

    # ---- consumer side ----

    def cancel(self) -> None:
        """Request cooperative cancellation of the underlying work"""
        self.token.cancel()

    def start(self) -> None:
        """Start the worker thread if it was created without autostart"""
        if self.thread is not None and not self.thread.is_alive() and not self._done.is_set():
            self.thread.start()

    def __iter__(self) -> Iterator[TaskEvent]:
        while True:
            event = self._queue.get()
            yield event
            if isinstance(event, TERMINAL_EVENTS):
                return

    def get(self, timeout: Optional[float] = None) -> TaskEvent:
        """Pop the next event (raises ``queue.Empty`` on timeout)"""
        return self._queue.get(timeout=timeout)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def terminal_event(self) -> Optional[TaskEvent]:
        return self._terminal

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the terminal event; returns False on timeout"""
        return self._done.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> Any:
        """Wait for completion and return the result or raise the failure"""
        if not self.join(timeout):
            raise TimeoutError(f"{self.name} did not finish within {timeout}s")
        if isinstance(self._terminal, FailedEvent):
            raise self._terminal.error
        return self._terminal.result


def run_in_background(
    name: str,
    work: Callable[[EventStream], Any],
    token: Optional[CancellationToken] = None,
    autostart: bool = True,
) -> EventStream:
    """Run ``work(stream)`` on a daemon thread

    Args:
        name: Task name used for the thread name and log records
        work: Callable receiving the stream; may emit progress/text events
        token: Cancellation token to share with the work (new one by default)
        autostart: Start the thread immediately; otherwise call ``stream.start()``

    Returns:
        The event stream; it always receives exactly one terminal event
    """
    stream = EventStream(name, token)

    def runner() -> None:
        try:
            result = work(stream)
        except CancellationError as e:
            logger.info(f"[{name}] cancelled: {e}")
            stream.emit(FailedEvent(e))
        except Exception as e:
            logger.error(f"[{name}] failed: {e}")
            stream.emit(FailedEvent(e))
        else:
            stream.emit(CompletedEvent(result))

    stream.thread = threading.Thread(target=runner, name=f"voskkit-{name}", daemon=True)
    if autostart:
        stream.thread.start()
    return stream


__all__ = [
    "ProgressEvent",
    "TextEvent",
    "CompletedEvent",
    "FailedEvent",
    "TaskEvent",
    "EventStream",
    "run_in_background",
]
