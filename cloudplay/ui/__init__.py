"""PyQt6 presentation layer for the session controller."""

from .session_bridge import SessionBridge
from .stats_overlay import StatsOverlay
from .input_surface import QtInputSurface
from .launcher_window import LauncherWindow

__all__ = ["SessionBridge", "StatsOverlay", "QtInputSurface", "LauncherWindow"]
