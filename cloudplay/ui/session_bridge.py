"""Qt signal bridge over the session controller.

Widgets never call the controller directly: they call the bridge, which
schedules the coroutine on the running (qasync) loop, and they listen to its
signals, which mirror the controller's event bus. Scheduling without a
running loop raises RuntimeError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from PyQt6.QtCore import QObject, pyqtSignal

from ..session import (
    SessionEvent,
    SessionEventType,
    SessionLifecycleController,
    StreamingError,
)


class SessionBridge(QObject):
    phaseChanged = pyqtSignal(str)
    statsUpdated = pyqtSignal(object)    # StatsSample
    queueProgress = pyqtSignal(object)   # QueueProgress
    sessionReady = pyqtSignal(object)    # ReadyInfo
    errorRaised = pyqtSignal(str, str)   # kind, message
    escapeHeld = pyqtSignal()

    def __init__(
        self,
        controller: SessionLifecycleController,
        parent: Optional[QObject] = None,
        *,
        closer: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        super().__init__(parent)
        self.logger = logging.getLogger(__name__)
        self.controller = controller
        self._closer = closer or controller.shutdown
        self._task: Optional[asyncio.Future] = None
        self._last_reported: Optional[tuple[str, str]] = None
        self._unsubscribe = controller.emitter.subscribe_all(self._on_event)

    # ---------------- actions ----------------
    def launch(self, title: Any, quality: Any = None) -> asyncio.Future:
        return self._schedule("launch", lambda: self.controller.launch(title, quality))

    def cancel(self) -> asyncio.Future:
        return self._schedule("cancel", self.controller.cancel)

    def exit_session(self) -> asyncio.Future:
        return self._schedule("exit", self.controller.exit)

    def retry_stream(self) -> asyncio.Future:
        return self._schedule("retry", self.controller.retry_transport)

    def shutdown(self) -> asyncio.Future:
        return self._schedule("shutdown", self._closer)

    @property
    def phase(self) -> str:
        return self.controller.phase.value

    def detach(self) -> None:
        self._unsubscribe()

    # ---------------- internals ----------------
    def _schedule(self, label: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._guard(label, factory))
        if label == "launch":
            self._task = task
        return task

    async def _guard(self, label: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await factory()
        except StreamingError as e:
            # Most failures were already published on the event bus.
            if (e.kind, str(e)) != self._last_reported:
                self.errorRaised.emit(e.kind, str(e))
            self.logger.info("%s failed: %s", label, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("%s raised unexpectedly: %s", label, e, exc_info=True)
            self.errorRaised.emit("internal_error", str(e))
        return None

    def _on_event(self, event: SessionEvent) -> None:
        data = event.data or {}
        kind = event.event_type
        if kind is SessionEventType.PHASE_CHANGED:
            self.phaseChanged.emit(data["new"].value)
        elif kind is SessionEventType.STATS_SAMPLE:
            self.statsUpdated.emit(data["sample"])
        elif kind is SessionEventType.QUEUE_PROGRESS:
            self.queueProgress.emit(data["progress"])
        elif kind is SessionEventType.SESSION_READY:
            self.sessionReady.emit(data["ready"])
        elif kind is SessionEventType.ESCAPE_HELD:
            self.escapeHeld.emit()
        elif kind is SessionEventType.ERROR:
            self._last_reported = (data.get("kind", ""), data.get("message", ""))
            self.errorRaised.emit(*self._last_reported)
