"""Host application lifecycle events."""

import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Protocol

import structlog


logger = structlog.get_logger()


class LifecycleEvent(str, Enum):
    """Host application visibility changes."""

    FOREGROUND = "foreground"
    BACKGROUND = "background"


LifecycleListener = Callable[[LifecycleEvent, datetime | None], None]


class LifecycleEventSource(Protocol):
    """Something that reports when the host moves to foreground or background."""

    def add_listener(self, listener: LifecycleListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        ...


class ManualLifecycleSource:
    """Lifecycle source driven explicitly by the host (and by tests)."""

    def __init__(self) -> None:
        """Initialize with no listeners."""
        self._listeners: list[LifecycleListener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: LifecycleListener) -> Callable[[], None]:
        """Register a listener.

        Args:
            listener: Called with the event and its time.

        Returns:
            Function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def emit(self, event: LifecycleEvent, now: datetime | None = None) -> None:
        """Deliver an event to every listener.

        A failing listener is logged and does not stop delivery to the rest.
        """
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, now)
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "lifecycle_listener_failed",
                    component="lifecycle",
                    lifecycle_event=event.value,
                    error=str(e),
                )

    def foreground(self, now: datetime | None = None) -> None:
        """Report that the host came to the foreground."""
        self.emit(LifecycleEvent.FOREGROUND, now)

    def background(self, now: datetime | None = None) -> None:
        """Report that the host went to the background."""
        self.emit(LifecycleEvent.BACKGROUND, now)
