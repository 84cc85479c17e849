"""Centralized logging configuration for CloudPlay.

Provides helpers to set up console and rotating file handlers with a
consistent format. Called from the CLI and early in GUI startup.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .platform_paths import get_log_dir, writable_dir


DEFAULT_LOG_FILENAME = "cloudplay.log"


class LogMode(str, Enum):
    """Logging presets that affect verbosity targets."""

    QUIET = "quiet"
    NORMAL = "normal"
    PERF = "perf"


_LOG_MODE: LogMode = LogMode.NORMAL
_STATS_TRACE_FLAG = "CLOUDPLAY_STATS_TRACE"


def get_default_log_dir() -> Path:
    """Per-user log directory, falling back to ~/.cloudplay then the cwd."""
    return writable_dir(get_log_dir(), Path.home() / ".cloudplay")


def get_default_log_path() -> Path:
    return get_default_log_dir() / DEFAULT_LOG_FILENAME


def _parse_log_mode(mode: LogMode | str | None) -> LogMode:
    if mode is None:
        return LogMode.NORMAL
    if isinstance(mode, LogMode):
        return mode
    try:
        return LogMode(mode.lower())
    except ValueError:
        return LogMode.NORMAL


def set_log_mode(mode: LogMode | str | None) -> LogMode:
    """Persist the active log mode for other modules to query later."""

    global _LOG_MODE
    _LOG_MODE = _parse_log_mode(mode)
    return _LOG_MODE


def get_log_mode() -> LogMode:
    return _LOG_MODE


def is_perf_logging_enabled() -> bool:
    return _LOG_MODE is LogMode.PERF


def is_quiet_logging_enabled() -> bool:
    return _LOG_MODE is LogMode.QUIET


def _stats_trace_allowed() -> bool:
    raw = os.environ.get(_STATS_TRACE_FLAG, "")
    if raw.strip().lower() in {"1", "true", "yes", "on"}:
        return True
    return is_perf_logging_enabled()


class _StatsTraceFilter(logging.Filter):
    """Drops once-per-second stats chatter unless explicitly enabled."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            message = record.getMessage()
        except Exception:
            return True
        if "[stats.trace]" in message and not _stats_trace_allowed():
            return False
        return True


_STATS_TRACE_FILTER = _StatsTraceFilter()


def _resolve_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def setup_logging(
    *,
    level: str | int = "INFO",
    log_file: Optional[str | Path] = None,
    json_format: bool = False,
    logger_name: Optional[str] = None,
    log_mode: LogMode | str | None = None,
    add_console: bool = True,
) -> logging.Logger:
    """Configure logging for the application.

    - level: str or int (DEBUG/INFO/WARNING/ERROR)
    - log_file: path for rotating file handler (default: per-user dir)
    - json_format: if True, emit one JSON object per line
    - logger_name: root logger by default; can scope to a sub-logger
    - log_mode: optional preset (quiet/normal/perf) that adjusts verbosity targets
    - add_console: add a console StreamHandler in addition to file handler
    """
    resolved_level = _resolve_level(level)
    mode = set_log_mode(log_mode) if log_mode is not None else get_log_mode()
    if mode is LogMode.PERF and resolved_level > logging.DEBUG:
        resolved_level = logging.DEBUG
    console_level = resolved_level
    if mode is LogMode.QUIET:
        console_level = max(logging.WARNING, resolved_level)

    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()

    if not logger.handlers:
        logger.setLevel(resolved_level)
        formatter: logging.Formatter
        if json_format:
            formatter = _JsonFormatter()
        else:
            formatter = logging.Formatter(
                fmt="[%(asctime)s] %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
            )

        log_path = Path(log_file) if log_file else get_default_log_path()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
            )
            file_handler.setLevel(resolved_level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(_STATS_TRACE_FILTER)
            logger.addHandler(file_handler)
        except OSError:
            # Read-only home or similar: console only.
            pass

        if add_console:
            console = logging.StreamHandler()
            console.setLevel(console_level)
            console.setFormatter(formatter)
            console.addFilter(_STATS_TRACE_FILTER)
            logger.addHandler(console)
    else:
        logger.setLevel(resolved_level)
        for handler in logger.handlers:
            if isinstance(handler, (logging.handlers.RotatingFileHandler, logging.FileHandler)):
                handler.setLevel(resolved_level)
            elif isinstance(handler, logging.StreamHandler):
                handler.setLevel(console_level)
            else:
                handler.setLevel(resolved_level)

    return logger


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": round(record.created, 3),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class BurstSampler:
    """Coalesces bursts of identical log events.

    Call :meth:`record` for every event. When the configured interval elapses,
    the sampler returns the number of events seen in that window so callers
    can emit one summary line instead of one per event.
    """

    def __init__(self, interval_s: float = 2.0) -> None:
        self.interval_s = max(0.1, float(interval_s))
        self._next_flush = time.monotonic() + self.interval_s
        self._count = 0

    def record(self, amount: int = 1) -> Optional[int]:
        """Register *amount* events; return the total if window elapsed."""

        self._count += max(0, amount)
        now = time.monotonic()
        if now >= self._next_flush:
            total = self._count
            self._count = 0
            self._next_flush = now + self.interval_s
            return total
        return None

    def flush(self) -> int:
        total = self._count
        self._count = 0
        self._next_flush = time.monotonic() + self.interval_s
        return total


@dataclass
class PerfRecord:
    """Single timing span captured by :class:`PerfTracer`."""

    name: str
    category: str
    duration_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "duration_ms": round(self.duration_ms, 3),
            "metadata": self.metadata or {},
        }


class _PerfSpan:
    __slots__ = ("_tracer", "_name", "_category", "_metadata", "_start_ns")

    def __init__(self, tracer: "PerfTracer", name: str, category: str, metadata: dict[str, Any]) -> None:
        self._tracer = tracer
        self._name = name
        self._category = category
        self._metadata = metadata
        self._start_ns: Optional[int] = None

    def __enter__(self) -> "_PerfSpan":
        self._start_ns = time.perf_counter_ns()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        if self._start_ns is None:
            return
        duration_ms = (time.perf_counter_ns() - self._start_ns) / 1_000_000.0
        if exc_type is not None:
            self._metadata["error"] = exc_type.__name__
        self._tracer._records.append(  # pylint: disable=protected-access
            PerfRecord(self._name, self._category, duration_ms, dict(self._metadata))
        )


class _NoopSpan:
    __slots__: tuple[str, ...] = ()

    def __enter__(self) -> "_NoopSpan":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        return None


_NOOP_SPAN = _NoopSpan()


class PerfTracer:
    """Timeline collector for launch-stage diagnostics (perf log mode)."""

    def __init__(self, label: str, *, enabled: Optional[bool] = None) -> None:
        self.label = label
        self.enabled = is_perf_logging_enabled() if enabled is None else bool(enabled)
        self._records: list[PerfRecord] = []
        self._context: dict[str, Any] = {}

    def set_context(self, **metadata: Any) -> None:
        if metadata:
            self._context.update(metadata)

    def span(
        self,
        name: str,
        *,
        category: str = "misc",
        metadata: Optional[dict[str, Any]] = None,
    ) -> _PerfSpan | _NoopSpan:
        if not self.enabled:
            return _NOOP_SPAN
        return _PerfSpan(self, name, category, metadata or {})

    def snapshot(self) -> dict[str, Any]:
        spans = [record.to_dict() for record in self._records]
        by_category: dict[str, float] = {}
        for record in self._records:
            by_category[record.category] = by_category.get(record.category, 0.0) + record.duration_ms
        return {
            "label": self.label,
            "context": dict(self._context),
            "spans": spans,
            "categories": {k: round(v, 3) for k, v in by_category.items()},
            "span_count": len(spans),
        }

    def dump_table(self, *, limit: int = 10) -> list[str]:
        """Human-readable lines for the longest spans."""

        rows = sorted(self._records, key=lambda rec: rec.duration_ms, reverse=True)[:limit]
        width = max((len(r.name) for r in rows), default=4)
        lines = [f"{self.label}: Span{' ' * (width - 4)} | Category  | Duration (ms)"]
        for row in rows:
            meta = json.dumps(row.metadata, ensure_ascii=False) if row.metadata else ""
            lines.append(f"{self.label}: {row.name:<{width}} | {row.category:<9} | {row.duration_ms:>11.2f} {meta}")
        return lines
