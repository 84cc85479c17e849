"""Platform-specific per-user paths.

Keeps logs and user data out of temp / install folders. Relies on the
standard environment variables rather than an extra dependency.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from . import __app_name__

logger = logging.getLogger(__name__)


def is_windows() -> bool:
    return os.name == "nt"


def is_macos() -> bool:
    return sys.platform == "darwin"


def get_user_data_dir(app_name: str = __app_name__) -> Path:
    """Return a persistent per-user data directory.

    Windows: %APPDATA%\\CloudPlay
    macOS:   ~/Library/Application Support/CloudPlay
    Other:   $XDG_DATA_HOME/cloudplay (default ~/.local/share/cloudplay)
    """
    if is_windows():
        base = os.getenv("APPDATA")
        if base:
            return Path(base) / app_name
        return Path.home() / "AppData" / "Roaming" / app_name
    if is_macos():
        return Path.home() / "Library" / "Application Support" / app_name
    xdg = os.getenv("XDG_DATA_HOME")
    base_dir = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base_dir / app_name.lower()


def get_log_dir(app_name: str = __app_name__) -> Path:
    return get_user_data_dir(app_name) / "logs"


def ensure_dir(path: Path) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def writable_dir(*candidates: Path) -> Path:
    """First candidate that can be created; falls back to the cwd."""
    for candidate in candidates:
        try:
            return ensure_dir(candidate)
        except OSError as e:
            logger.debug("directory %s not usable: %s", candidate, e)
    return Path.cwd()
