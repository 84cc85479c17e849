"""Thread-safe streaming telemetry snapshot for the UI.

The session controller pushes stats samples from the event loop; widgets and
the CLI poll a lightweight frozen snapshot without touching the controller.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
import time
from typing import Optional

from ..session.models import StatsSample


@dataclass(frozen=True)
class StreamingSnapshot:
    session_id: str | None
    title: str | None
    server_address: str | None
    accelerator: str | None

    sample: StatsSample | None
    samples_seen: int
    peak_latency_ms: float | None
    avg_fps: float | None

    session_age_s: float | None
    last_sample_age_s: float | None

    @property
    def active(self) -> bool:
        return self.session_id is not None


class StreamingTelemetry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._session_id: Optional[str] = None
        self._title: Optional[str] = None
        self._server_address: Optional[str] = None
        self._accelerator: Optional[str] = None
        self._sample: Optional[StatsSample] = None
        self._count = 0
        self._fps_total = 0.0
        self._peak_latency: Optional[float] = None
        self._session_t: Optional[float] = None
        self._sample_t: Optional[float] = None

    def set_session(
        self,
        session_id: str,
        *,
        title: str | None = None,
        server_address: str | None = None,
        accelerator: str | None = None,
    ) -> None:
        now = time.time()
        with self._lock:
            self._reset_locked()
            self._session_id = str(session_id)
            self._title = title
            self._server_address = server_address
            self._accelerator = accelerator
            self._session_t = now

    def record(self, sample: StatsSample) -> None:
        """Stats sink: keep the newest sample and running aggregates."""
        now = time.time()
        with self._lock:
            self._sample = sample
            self._count += 1
            self._fps_total += float(sample.fps)
            if self._peak_latency is None or sample.latency_ms > self._peak_latency:
                self._peak_latency = float(sample.latency_ms)
            self._sample_t = now

    __call__ = record

    def clear(self) -> None:
        with self._lock:
            self._reset_locked()

    def snapshot(self) -> StreamingSnapshot:
        now = time.time()
        with self._lock:
            session_age_s = None
            if self._session_t is not None:
                session_age_s = max(0.0, now - self._session_t)
            last_sample_age_s = None
            if self._sample_t is not None:
                last_sample_age_s = max(0.0, now - self._sample_t)
            return StreamingSnapshot(
                session_id=self._session_id,
                title=self._title,
                server_address=self._server_address,
                accelerator=self._accelerator,
                sample=self._sample,
                samples_seen=self._count,
                peak_latency_ms=self._peak_latency,
                avg_fps=(self._fps_total / self._count) if self._count else None,
                session_age_s=session_age_s,
                last_sample_age_s=last_sample_age_s,
            )


streaming_telemetry = StreamingTelemetry()

__all__ = [
    "StreamingSnapshot",
    "StreamingTelemetry",
    "streaming_telemetry",
]
