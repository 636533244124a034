"""
Module with utilities for passing the output of the ssh process between threads.

The ssh process is served by a handful of threads: one per output stream that reads raw
chunks as soon as they are available, and one that waits for the process to exit. These
threads post everything they observe to a single event queue in the order in which it
happened. Exactly one consumer reads from the queue at any time, which is either the
session waiting for the first signs of life after spawning ssh, or the command currently
being executed.

Because the process exit is posted to the same queue as the output, a consumer that is
waiting for the end of a command's output is woken up if the process dies halfway
through, rather than waiting forever:

    events = EventQueue()

    # Reader threads post STDOUT/STDERR chunks, the watcher posts PROCESS_EXIT last.
    start_readers(process, events)

    while True:
        event, value = events.get(timeout=remaining)

        if event == Event.PROCESS_EXIT:
            raise ProcessError(...)
"""

from __future__ import annotations

from enum import auto, Enum
import queue
from typing import Any, List, Optional, Tuple, Union


class Event(Enum):
    """Types of events."""

    # Chunk of raw bytes read from one of the output streams
    STDOUT = auto()
    STDERR = auto()

    # Exit code of the process, posted after both output streams have been closed
    PROCESS_EXIT = auto()

    EXCEPTION = auto()


class EventTimeout(Exception):
    """Exception raised when no event arrived before the deadline."""


class EventQueue:
    """Thread-safe queue of events that can be notified of and waited upon."""

    def __init__(self) -> None:
        """Instantiate a new EventQueue."""
        self._queue: queue.Queue[Tuple[Event, Any]] = queue.Queue()

    def notify(self, event: Event, value: Any = None) -> None:
        """Post an event and any associated value to the queue."""
        self._queue.put((event, value))

    def exception(self, exception: Union[Exception, str]) -> None:
        """Post an exception event to the queue."""
        if isinstance(exception, Exception):
            self.notify(Event.EXCEPTION, exception)
        else:
            self.notify(Event.EXCEPTION, RuntimeError(exception))

    def get(self, timeout: Optional[float] = None) -> Tuple[Event, Any]:
        """
        Wait for the next event on the queue.

        Exception events are raised rather than returned. EventTimeout is raised if no
        event arrives within the timeout (in seconds).
        """
        try:
            event, value = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise EventTimeout(f"no event within {timeout} seconds")

        if event == Event.EXCEPTION:
            raise value

        return event, value

    def drain(self) -> List[Tuple[Event, Any]]:
        """Remove and return all events that are currently queued, without waiting."""
        events = []

        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
