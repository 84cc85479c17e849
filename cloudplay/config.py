"""Runtime configuration read from ``CLOUDPLAY_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "CLOUDPLAY_"
DEFAULT_SERVICE_URL = "https://prod.cloudmatchbeta.nvidiagrid.net"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class StreamerConfig:
    service_url: str = DEFAULT_SERVICE_URL
    presence_url: Optional[str] = None
    presence_enabled: bool = True
    presence_show_stats: bool = False
    poll_interval_ms: int = 1500
    max_polls: int = 120
    stats_interval_ms: int = 1000
    escape_hold_ms: int = 1000
    request_timeout_s: float = 15.0
    preferred_server: Optional[str] = None
    transport_scheme: str = "wss"

    # field name -> env var suffix, where they differ
    _ENV_NAMES = {
        "presence_enabled": "PRESENCE",
        "presence_show_stats": "PRESENCE_STATS",
        "escape_hold_ms": "ESC_HOLD_MS",
        "preferred_server": "SERVER",
    }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StreamerConfig":
        env = os.environ if environ is None else environ
        config = cls()
        for f in fields(cls):
            suffix = cls._ENV_NAMES.get(f.name, f.name.upper())
            raw = env.get(ENV_PREFIX + suffix)
            if raw is None or raw.strip() == "":
                continue
            default = getattr(config, f.name)
            setattr(config, f.name, _coerce(f.name, raw.strip(), default))
        return config

    @property
    def presence_active(self) -> bool:
        return self.presence_enabled and bool(self.presence_url)


def _coerce(name: str, raw: str, default):
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        logger.warning("config %s: expected a boolean, got %r; keeping %s", name, raw, default)
        return default
    if isinstance(default, int):
        try:
            value = int(raw)
        except ValueError:
            logger.warning("config %s: expected an integer, got %r; keeping %s", name, raw, default)
            return default
        if value < 0:
            logger.warning("config %s: negative value %d ignored", name, value)
            return default
        return value
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            logger.warning("config %s: expected a number, got %r; keeping %s", name, raw, default)
            return default
    return raw
