"""Compact live-stats panel shown while streaming."""

from __future__ import annotations

from typing import Optional

from PyQt6.QtWidgets import QFrame, QGridLayout, QLabel, QWidget

from ..session import StatsSample, format_bitrate, latency_grade

LATENCY_COLORS = {
    "excellent": "#4CD97B",
    "good": "#A8D94C",
    "fair": "#FF9A3C",
    "poor": "#FF5252",
}


class StatsOverlay(QFrame):
    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setObjectName("StatsOverlay")
        self.setStyleSheet("""
        #StatsOverlay {
            background: rgba(16,21,28,0.86);
            border: 1px solid rgba(255,255,255,0.12);
            border-radius: 10px;
        }
        QLabel { color: #E8ECF5; }
        """)

        grid = QGridLayout(self); grid.setContentsMargins(10, 8, 10, 8); grid.setSpacing(4)
        self.fps_label = QLabel()
        self.latency_label = QLabel()
        self.bitrate_label = QLabel()
        self.mode_label = QLabel()
        self.loss_label = QLabel()
        rows = [
            ("FPS", self.fps_label),
            ("Latency", self.latency_label),
            ("Bitrate", self.bitrate_label),
            ("Mode", self.mode_label),
            ("Loss", self.loss_label),
        ]
        for row, (caption, value) in enumerate(rows):
            cap = QLabel(caption); cap.setStyleSheet("color: #8D97A8;")
            grid.addWidget(cap, row, 0)
            grid.addWidget(value, row, 1)
        self.latest: Optional[StatsSample] = None
        self.clear()

    def update_sample(self, sample: StatsSample) -> None:
        self.latest = sample
        self.fps_label.setText(f"{sample.fps:.0f}")
        grade = latency_grade(sample.latency_ms)
        self.latency_label.setText(f"{sample.latency_ms:.0f} ms")
        self.latency_label.setStyleSheet(f"color: {LATENCY_COLORS[grade]};")
        self.latency_label.setToolTip(grade)
        self.bitrate_label.setText(format_bitrate(sample.bitrate_kbps))
        self.mode_label.setText(f"{sample.resolution} {sample.codec.upper()}")
        self.loss_label.setText(f"{sample.packet_loss:.1%}")

    def clear(self) -> None:
        self.latest = None
        for label in (self.fps_label, self.latency_label, self.bitrate_label, self.mode_label, self.loss_label):
            label.setText("-")
        self.latency_label.setStyleSheet("")
        self.latency_label.setToolTip("")
