"""Core building blocks: cancellation, task events, lifecycle, config"""

from .cancellation import CancellationToken
from .task_events import (
    CompletedEvent,
    EventStream,
    FailedEvent,
    ProgressEvent,
    TextEvent,
    run_in_background,
)

__all__ = [
    "CancellationToken",
    "CompletedEvent",
    "EventStream",
    "FailedEvent",
    "ProgressEvent",
    "TextEvent",
    "run_in_background",
]
