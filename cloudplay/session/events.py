"""Session event bus for broadcasting lifecycle changes.

The controller publishes here; the presentation layer, the CLI and tests
subscribe. Callbacks run synchronously on the emitting (event loop) thread
and a failing callback never reaches the controller.

Usage:
    emitter = SessionEventEmitter()
    emitter.subscribe(SessionEventType.PHASE_CHANGED, lambda evt: print(evt.data["new"]))
    emitter.emit(SessionEvent(SessionEventType.PHASE_CHANGED, data={"old": "idle", "new": "requesting"}))
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Optional


class SessionEventType(Enum):
    """Events published by the session controller."""

    PHASE_CHANGED = auto()      # data: old, new (Phase values)
    QUEUE_PROGRESS = auto()     # data: progress (QueueProgress)
    SESSION_READY = auto()      # data: ready (ReadyInfo)
    STATS_SAMPLE = auto()       # data: sample (StatsSample)
    ESCAPE_HELD = auto()        # Escape held long enough while streaming
    ERROR = auto()              # data: kind, message
    TEARDOWN_COMPLETE = auto()  # data: released (int)


@dataclass
class SessionEvent:
    """An emitted event with optional payload."""

    event_type: SessionEventType
    data: Optional[dict[str, Any]] = None
    timestamp: Optional[float] = None

    def __str__(self) -> str:
        if self.data:
            data_str = ", ".join(f"{k}={v}" for k, v in self.data.items())
            return f"SessionEvent({self.event_type.name}, {data_str})"
        return f"SessionEvent({self.event_type.name})"


EventCallback = Callable[[SessionEvent], None]


class SessionEventEmitter:
    """Subscriber registry keyed by event type, plus catch-all listeners."""

    def __init__(self) -> None:
        self._subscribers: dict[SessionEventType, list[EventCallback]] = {}
        self._wildcard: list[EventCallback] = []
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: SessionEventType, callback: EventCallback) -> Callable[[], None]:
        """Register ``callback`` for ``event_type``; returns an unsubscribe callable."""
        callbacks = self._subscribers.setdefault(event_type, [])
        if callback not in callbacks:
            callbacks.append(callback)
            self.logger.debug(f"[events] Subscribed to {event_type.name} (total={len(callbacks)})")
        return lambda: self.unsubscribe(event_type, callback)

    def subscribe_all(self, callback: EventCallback) -> Callable[[], None]:
        if callback not in self._wildcard:
            self._wildcard.append(callback)
        return lambda: self._wildcard.remove(callback) if callback in self._wildcard else None

    def unsubscribe(self, event_type: SessionEventType, callback: EventCallback) -> None:
        callbacks = self._subscribers.get(event_type)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)
            self.logger.debug(f"[events] Unsubscribed from {event_type.name} (total={len(callbacks)})")

    def emit(self, event: SessionEvent) -> None:
        if event.timestamp is None:
            event.timestamp = time.time()

        if event.event_type is not SessionEventType.STATS_SAMPLE:
            self.logger.debug(f"[events] Emitting: {event}")

        # Copy so a callback may unsubscribe itself mid-dispatch.
        targets = list(self._subscribers.get(event.event_type, ())) + list(self._wildcard)
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"[events] Callback error for {event.event_type.name}: {e}", exc_info=True)

    def clear_all(self) -> None:
        self._subscribers.clear()
        self._wildcard.clear()
        self.logger.debug("[events] Cleared all subscribers")
