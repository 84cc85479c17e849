"""Qt widget input as session input events."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from PyQt6.QtCore import QEvent, QObject, Qt
from PyQt6.QtWidgets import QWidget

from ..session.interfaces import InputEvent, InputListener

_KEY_NAMES = {
    Qt.Key.Key_Escape.value: "Escape",
    Qt.Key.Key_Return.value: "Enter",
    Qt.Key.Key_Space.value: "Space",
    Qt.Key.Key_Tab.value: "Tab",
}


class QtInputSurface(QObject):
    """Event filter on a widget that forwards key and mouse input."""

    def __init__(self, widget: QWidget) -> None:
        super().__init__(widget)
        self.widget = widget
        self._listeners: list[InputListener] = []
        self.logger = logging.getLogger(__name__)
        widget.installEventFilter(self)

    def add_input_listener(self, listener: InputListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, event: InputEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.error("input listener failed: %s", e)

    def eventFilter(self, obj, event):  # type: ignore[override]
        translated = self._translate(event)
        if translated is not None and self._listeners:
            self.dispatch(translated)
        return False

    def _translate(self, event: QEvent) -> Optional[InputEvent]:
        et = event.type()
        if et in (QEvent.Type.KeyPress, QEvent.Type.KeyRelease):
            key = event.key()  # type: ignore[attr-defined]
            name = _KEY_NAMES.get(int(key)) or (event.text() or str(int(key)))  # type: ignore[attr-defined]
            return {
                "kind": "key_down" if et == QEvent.Type.KeyPress else "key_up",
                "key": name,
                "repeat": bool(event.isAutoRepeat()),  # type: ignore[attr-defined]
            }
        if et == QEvent.Type.MouseMove:
            pos = event.position()  # type: ignore[attr-defined]
            return {"kind": "mouse_move", "x": int(pos.x()), "y": int(pos.y())}
        if et in (QEvent.Type.MouseButtonPress, QEvent.Type.MouseButtonRelease):
            return {
                "kind": "mouse_down" if et == QEvent.Type.MouseButtonPress else "mouse_up",
                "button": int(event.button().value),  # type: ignore[attr-defined]
            }
        return None
