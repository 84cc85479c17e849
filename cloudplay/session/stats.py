"""Fixed-cadence stats polling while a stream is live."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from ..logging_utils import BurstSampler
from .interfaces import TransportEngine
from .models import Phase, StatsSample
from .teardown import TeardownCoordinator

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 1000

StatsSink = Callable[[StatsSample], None]


class StatsMonitor:
    """Pulls one :class:`StatsSample` per tick and hands it to a sink.

    Ticks are skipped while the phase is anything but STREAMING_ACTIVE, so a
    timer that fires during teardown never touches the transport.
    """

    def __init__(self, transport: TransportEngine, phase_source: Callable[[], Phase]) -> None:
        self._transport = transport
        self._phase_source = phase_source
        self._sink: Optional[StatsSink] = None
        self._task: Optional[asyncio.Task] = None
        self._interval_s = DEFAULT_POLL_INTERVAL_MS / 1000.0
        self._failures = BurstSampler(interval_s=10.0)
        self.last_sample: Optional[StatsSample] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(
        self,
        poll_interval_ms: int,
        sink: StatsSink,
        teardown: Optional[TeardownCoordinator] = None,
    ) -> None:
        if self.running:
            return
        self._interval_s = max(0.01, poll_interval_ms / 1000.0)
        self._sink = sink
        self._task = asyncio.get_running_loop().create_task(self._run(), name="StatsMonitor")
        if teardown is not None:
            teardown.register(self.stop, name="stats_monitor")
        logger.debug("stats polling started interval=%.0fms", self._interval_s * 1000)

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._sink = None
        if task is None:
            return
        task.cancel()
        if task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.debug("stats polling stopped")

    async def tick(self) -> bool:
        """Take one sample. Returns True when the sink received it."""
        if self._phase_source() is not Phase.STREAMING_ACTIVE:
            return False
        sink = self._sink
        if sink is None:
            return False
        try:
            sample = await self._transport.sample()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._note_failure("sample", e)
            return False
        if sample is None:
            return False
        self.last_sample = sample
        try:
            sink(sample)
        except Exception as e:
            self._note_failure("sink", e)
            return False
        logger.debug(
            "[stats.trace] fps=%.1f latency=%.0fms bitrate=%dkbps loss=%.2f%%",
            sample.fps, sample.latency_ms, sample.bitrate_kbps, sample.packet_loss * 100,
        )
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            await self.tick()

    def _note_failure(self, where: str, exc: Exception) -> None:
        count = self._failures.record()
        if count is None:
            logger.debug("stats %s failed: %s", where, exc)
        else:
            logger.warning("stats %s failed %d times in the last window (last: %s)", where, count, exc)


def format_bitrate(kbps: int) -> str:
    if kbps >= 1000:
        return f"{kbps / 1000:.1f} Mbps"
    return f"{kbps} kbps"


def latency_grade(latency_ms: float) -> str:
    if latency_ms < 30:
        return "excellent"
    if latency_ms < 60:
        return "good"
    if latency_ms < 100:
        return "fair"
    return "poor"
