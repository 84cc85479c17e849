"""Best-effort presence notifications.

Every report is a detached task: the controller never awaits it, and a slow
or failing presence service can not delay the session lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .errors import PresenceReportFailed
from .interfaces import PresenceService
from .models import StatsSample

logger = logging.getLogger(__name__)

DEFAULT_STATS_INTERVAL_S = 15.0


class PresenceReporter:
    def __init__(
        self,
        service: Optional[PresenceService],
        *,
        enabled: bool = True,
        show_stats: bool = False,
        stats_interval_s: float = DEFAULT_STATS_INTERVAL_S,
    ) -> None:
        self._service = service
        self.enabled = bool(enabled) and service is not None
        self.show_stats = bool(show_stats)
        self.stats_interval_s = float(stats_interval_s)
        self._tasks: set[asyncio.Task] = set()
        self._last_stats_at: Optional[float] = None
        self._playing_since: Optional[float] = None

    # ---------------- public API ----------------
    def report_queued(self, title: str) -> None:
        self._dispatch("queued", lambda svc: svc.set_queued(title))

    def report_playing(self, title: str, title_id: str, sample: Optional[StatsSample] = None) -> None:
        self._playing_since = time.time()
        self._last_stats_at = time.monotonic()
        details = self._details(sample)
        self._dispatch("playing", lambda svc: svc.set_playing(title, title_id, details))

    def report_idle(self) -> None:
        self._playing_since = None
        self._last_stats_at = None
        self._dispatch("idle", lambda svc: svc.set_idle())

    def report_stats(self, title: str, sample: StatsSample) -> bool:
        """Refresh the playing status with live stats, at most every interval."""
        if not self.enabled or self._playing_since is None:
            return False
        now = time.monotonic()
        if self._last_stats_at is not None and now - self._last_stats_at < self.stats_interval_s:
            return False
        self._last_stats_at = now
        details = self._details(sample)
        self._dispatch("stats", lambda svc: svc.update_stats(title, details))
        return True

    @property
    def outstanding(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for notifications already scheduled (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---------------- internals ----------------
    def _details(self, sample: Optional[StatsSample]) -> dict[str, Any]:
        details: dict[str, Any] = {"start_time": int(self._playing_since or time.time())}
        if self.show_stats and sample is not None:
            details.update(
                resolution=sample.resolution,
                fps=round(sample.fps),
                latency_ms=round(sample.latency_ms),
            )
        return details

    def _dispatch(self, label: str, call: Callable[[PresenceService], Awaitable[None]]) -> None:
        if not self.enabled or self._service is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("presence %s dropped: no running loop", label)
            return
        task = loop.create_task(self._send(label, call), name=f"presence-{label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, label: str, call: Callable[[PresenceService], Awaitable[None]]) -> None:
        try:
            await call(self._service)
            logger.debug("presence %s sent", label)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = PresenceReportFailed(f"{label}: {e}")
            logger.warning("presence update failed: %s", failure)
