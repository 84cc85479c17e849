"""Hold-to-trigger key watcher used while streaming.

Holding Escape for a second hands control back to the local desktop (leave
fullscreen, release pointer capture). A short tap still goes to the game.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .interfaces import InputEvent, InputSurface

logger = logging.getLogger(__name__)

DEFAULT_HOLD_MS = 1000


class KeyHoldWatcher:
    def __init__(self, on_hold: Callable[[], None], *, key: str = "Escape", hold_ms: int = DEFAULT_HOLD_MS) -> None:
        self.key = key
        self.hold_ms = int(hold_ms)
        self._on_hold = on_hold
        self._timer: Optional[asyncio.TimerHandle] = None
        self._detach: Optional[Callable[[], None]] = None

    def attach(self, surface: InputSurface) -> "KeyHoldWatcher":
        self._detach = surface.add_input_listener(self.handle_event)
        return self

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def handle_event(self, event: InputEvent) -> None:
        if event.get("key") != self.key:
            return
        kind = event.get("kind")
        if kind == "key_down":
            # Auto-repeat key_down events must not restart the hold.
            if self._timer is None:
                loop = asyncio.get_running_loop()
                self._timer = loop.call_later(self.hold_ms / 1000.0, self._fire)
        elif kind == "key_up":
            self._cancel_timer()

    def stop(self) -> None:
        self._cancel_timer()
        detach, self._detach = self._detach, None
        if detach is not None:
            detach()

    def _fire(self) -> None:
        self._timer = None
        logger.info("%s held for %dms", self.key, self.hold_ms)
        self._on_hold()

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
