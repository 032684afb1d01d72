"""
Typed notification channels.

Each channel carries exactly one payload type and is handed to the
components that publish or consume it. There is no global event-name
namespace; a subscriber holds a reference to the channel it listens on.

Usage:
    events = SyncEvents()
    unsubscribe = events.sync_completed.subscribe(lambda report: ...)
    events.sync_completed.emit(report)
    unsubscribe()
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

from .models import FolderChange, SyncReport

logger = logging.getLogger("relaylists.channels")

T = TypeVar("T")


class Channel(Generic[T]):
    """A synchronous observer list for one payload type.

    Args:
        name: Label used in log messages.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, value: T) -> int:
        """Deliver a value to every subscriber.

        A failing subscriber is logged and skipped.

        Returns:
            int: Number of subscribers that handled the value.
        """
        with self._lock:
            callbacks = list(self._callbacks)

        delivered = 0
        for callback in callbacks:
            try:
                callback(value)
                delivered += 1
            except Exception as exc:
                logger.warning("Subscriber on %s failed: %s", self.name, exc)
        return delivered

    def __len__(self) -> int:
        return len(self._callbacks)


class SyncEvents:
    """The channels shared by one account's orchestrators."""

    def __init__(self) -> None:
        self.sync_completed: Channel[SyncReport] = Channel("sync_completed")
        self.folders_changed: Channel[FolderChange] = Channel("folders_changed")
