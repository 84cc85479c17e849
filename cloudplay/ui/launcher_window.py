"""Launcher window: pick a title and quality, then play, cancel, retry or exit."""

from __future__ import annotations

import logging
from typing import Optional

from PyQt6.QtCore import Qt
from PyQt6.QtWidgets import (
    QComboBox, QHBoxLayout, QLabel, QLineEdit, QPushButton, QVBoxLayout, QWidget
)

from ..session import QUALITY_PRESETS, Phase, QueueProgress
from .session_bridge import SessionBridge
from .stats_overlay import StatsOverlay

PHASE_TEXT = {
    Phase.IDLE.value: "Ready",
    Phase.REQUESTING.value: "Requesting a session...",
    Phase.AWAITING_SERVER.value: "Waiting for a server...",
    Phase.CONNECTED.value: "Connected, starting stream...",
    Phase.STREAMING_ACTIVE.value: "Streaming",
    Phase.EXITING.value: "Ending session...",
    Phase.FAILED.value: "Session failed",
}


class LauncherWindow(QWidget):
    def __init__(self, bridge: SessionBridge, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.logger = logging.getLogger(__name__)
        self.bridge = bridge
        self.setWindowTitle("CloudPlay")
        self.setMinimumWidth(420)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self._closing = False
        self._closed = False
        self._phase = Phase.IDLE.value
        self._stream_failed = False

        self.title_edit = QLineEdit(); self.title_edit.setPlaceholderText("Title or app id")
        self.quality_combo = QComboBox()
        for name, profile in QUALITY_PRESETS.items():
            self.quality_combo.addItem(f"{name}  ({profile.resolution} @ {profile.fps})", name)

        self.btn_play = QPushButton("Play")
        self.btn_cancel = QPushButton("Cancel")
        self.btn_exit = QPushButton("Exit session")
        self.btn_retry = QPushButton("Retry stream")
        self.btn_play.clicked.connect(self._on_play)
        self.btn_cancel.clicked.connect(lambda: self.bridge.cancel())
        self.btn_exit.clicked.connect(lambda: self.bridge.exit_session())
        self.btn_retry.clicked.connect(self._on_retry)
        self.title_edit.returnPressed.connect(self._on_play)

        self.phase_label = QLabel()
        self.progress_label = QLabel(); self.progress_label.setStyleSheet("color: #8D97A8;")
        self.error_label = QLabel(); self.error_label.setStyleSheet("color: #FF5252;")
        self.error_label.setWordWrap(True)
        self.stats = StatsOverlay()

        row = QHBoxLayout()
        row.addWidget(self.title_edit, 1); row.addWidget(self.quality_combo, 0)
        buttons = QHBoxLayout()
        for b in (self.btn_play, self.btn_cancel, self.btn_retry, self.btn_exit):
            buttons.addWidget(b)
        layout = QVBoxLayout(self); layout.setContentsMargins(12, 12, 12, 12); layout.setSpacing(8)
        layout.addLayout(row)
        layout.addLayout(buttons)
        layout.addWidget(self.phase_label)
        layout.addWidget(self.progress_label)
        layout.addWidget(self.error_label)
        layout.addWidget(self.stats)

        bridge.phaseChanged.connect(self.on_phase_changed)
        bridge.statsUpdated.connect(self.stats.update_sample)
        bridge.queueProgress.connect(self.on_queue_progress)
        bridge.errorRaised.connect(self.on_error)
        bridge.escapeHeld.connect(self.on_escape_held)
        self.on_phase_changed(bridge.phase)

    def selected_quality(self) -> str:
        return self.quality_combo.currentData() or "auto"

    def _on_play(self) -> None:
        title = self.title_edit.text().strip()
        if not title:
            self.on_error("invalid_title", "enter a title to play")
            return
        self.error_label.clear()
        self.bridge.launch(title, self.selected_quality())

    def _on_retry(self) -> None:
        self._stream_failed = False
        self.btn_retry.setEnabled(False)
        self.error_label.clear()
        self.bridge.retry_stream()

    # ---------------- bridge slots ----------------
    def on_phase_changed(self, phase: str) -> None:
        self._phase = phase
        if phase != Phase.CONNECTED.value:
            self._stream_failed = False
        self.phase_label.setText(PHASE_TEXT.get(phase, phase))
        idle = phase == Phase.IDLE.value
        self.btn_play.setEnabled(idle)
        self.title_edit.setEnabled(idle)
        self.quality_combo.setEnabled(idle)
        self.btn_cancel.setEnabled(phase in (Phase.REQUESTING.value, Phase.AWAITING_SERVER.value))
        self.btn_exit.setEnabled(phase in (Phase.CONNECTED.value, Phase.STREAMING_ACTIVE.value))
        self.btn_retry.setEnabled(self._stream_failed)
        if phase != Phase.AWAITING_SERVER.value:
            self.progress_label.clear()
        if idle:
            self.stats.clear()

    def on_queue_progress(self, progress: QueueProgress) -> None:
        if progress.queue_position > 0:
            text = f"Queue position {progress.queue_position}"
        else:
            text = f"Setting up (step {progress.step})"
        if progress.eta_ms > 0:
            text += f", about {max(1, round(progress.eta_ms / 1000))} s"
        self.progress_label.setText(text)

    def on_error(self, kind: str, message: str) -> None:
        self.logger.info("session error %s: %s", kind, message)
        self.error_label.setText(message)
        if kind == "transport_init_failed" and self._phase == Phase.CONNECTED.value:
            self._stream_failed = True
            self.btn_retry.setEnabled(True)

    def on_escape_held(self) -> None:
        if self.isFullScreen():
            self.showNormal()
        self.releaseKeyboard(); self.releaseMouse()

    # ---------------- close ----------------
    def closeEvent(self, event):  # type: ignore[override]
        if self._closed:
            event.accept()
            return
        # End the session (and release clients) before the window goes away.
        event.ignore()
        if not self._closing:
            self._closing = True
            self.phase_label.setText("Closing...")
            try:
                pending = self.bridge.shutdown()
            except RuntimeError:
                # no event loop left to run the shutdown on
                self.logger.warning("closing without session shutdown: no running event loop")
                self._closed = True
                event.accept()
                return
            pending.add_done_callback(self._after_shutdown)

    def _after_shutdown(self, _future) -> None:
        self._closed = True
        self.close()
