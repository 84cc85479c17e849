"""Session lifecycle controller.

Turns "play this title" into a live, monitored remote session and back into
Idle. The controller is the only writer of :class:`Phase`; every other
component reads it or reports through the event emitter.

Launch stages and what a failure at each one costs:

1. gate             nothing acquired; back to Idle, error re-raised
2. start_session    nothing acquired; back to Idle, error re-raised
3. await_ready      a remote session exists; Failed -> teardown -> Idle
4. transport init   the remote session is kept; stays Connected, user may
                    exit or call ``retry_transport``

A stream channel that closes on its own while streaming is reported as a
``stream_interrupted`` error event; the phase is left for the user to end.

``cancel`` and ``exit`` never interrupt an in-flight call. They mark the
attempt as stopping and wait for the launch to reach its next settle point,
where it tears down instead of advancing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Union

from ..logging_utils import PerfTracer
from .errors import (
    InvalidPhaseTransition,
    SessionAlreadyActive,
    SessionConflict,
    SessionNotReady,
    SessionRequestFailed,
    StreamingError,
    StreamInterrupted,
    TransportInitFailed,
)
from .events import SessionEvent, SessionEventEmitter, SessionEventType
from .gate import SessionRequestGate
from .interfaces import InputSurface, RemoteSessionService, TransportEngine
from .key_hold import DEFAULT_HOLD_MS, KeyHoldWatcher
from .models import (
    Phase,
    QualityProfile,
    QueueProgress,
    ReadyInfo,
    SessionContext,
    SessionHandle,
    StatsSample,
    TitleSelection,
)
from .presence import PresenceReporter
from .stats import DEFAULT_POLL_INTERVAL_MS, StatsMonitor, StatsSink

logger = logging.getLogger(__name__)

_CANCELLABLE = (Phase.REQUESTING, Phase.AWAITING_SERVER)
_EXITABLE = (Phase.CONNECTED, Phase.STREAMING_ACTIVE)


class SessionLifecycleController:
    def __init__(
        self,
        gate: SessionRequestGate,
        service: RemoteSessionService,
        transport: TransportEngine,
        presence: PresenceReporter,
        *,
        stats_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        stats_sink: Optional[StatsSink] = None,
        input_surface: Optional[InputSurface] = None,
        mount_point: Any = None,
        emitter: Optional[SessionEventEmitter] = None,
        check_conflicts: bool = True,
        escape_hold_ms: int = DEFAULT_HOLD_MS,
    ) -> None:
        self._gate = gate
        self._service = service
        self._transport = transport
        self._presence = presence
        self._stats_interval_ms = int(stats_interval_ms)
        self._stats_sink = stats_sink
        self._input_surface = input_surface
        self._mount_point = mount_point
        self._check_conflicts = check_conflicts
        self._escape_hold_ms = int(escape_hold_ms)

        self.emitter = emitter or SessionEventEmitter()
        self.stats = StatsMonitor(transport, lambda: self._phase)

        self._phase = Phase.IDLE
        self._context: Optional[SessionContext] = None

    # ---------------- state ----------------
    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    @property
    def handle(self) -> Optional[SessionHandle]:
        return self._context.handle if self._context else None

    def set_input_surface(self, surface: Optional[InputSurface]) -> None:
        """Takes effect on the next launch."""
        self._input_surface = surface

    def notify_progress(self, progress: QueueProgress) -> None:
        """Forward seat-setup progress from the service while waiting."""
        if self._phase is Phase.AWAITING_SERVER:
            self.emitter.emit(SessionEvent(SessionEventType.QUEUE_PROGRESS, data={"progress": progress}))

    # ---------------- public operations ----------------
    async def launch(
        self,
        title: Union[str, TitleSelection],
        quality: Union[str, QualityProfile, None] = None,
    ) -> Phase:
        """Start a session for ``title``; returns the phase reached.

        Returns STREAMING_ACTIVE on full success, IDLE when the attempt was
        cancelled or exited while in flight. Raises the taxonomy errors from
        :mod:`cloudplay.session.errors` otherwise.
        """
        if self._phase is not Phase.IDLE:
            raise SessionAlreadyActive(f"a session is already {self._phase.value}")

        ctx = SessionContext(title=TitleSelection.coerce(title))
        self._context = ctx
        self._set_phase(Phase.REQUESTING)
        tracer = PerfTracer("launch")
        tracer.set_context(title=ctx.title.name)
        try:
            return await self._drive(ctx, quality, tracer)
        except asyncio.CancelledError:
            logger.warning("launch task cancelled; releasing session resources")
            await self._finish(ctx)
            raise
        finally:
            ctx.settled.set()
            if tracer.enabled:
                for line in tracer.dump_table():
                    logger.debug("[perf] %s", line)

    async def cancel(self) -> None:
        """Abort a launch that is still negotiating with the service."""
        ctx = self._context
        if ctx is None or self._phase not in _CANCELLABLE:
            raise InvalidPhaseTransition(f"nothing to cancel while {self._phase.value}")
        logger.info("cancelling launch of %s", ctx.title.name)
        ctx.stop_requested = True
        self._set_phase(Phase.EXITING)
        try:
            await self._service.cancel_await()
        except Exception as e:
            logger.warning("cancel request to session service failed: %s", e)
        await ctx.settled.wait()
        await self._finish(ctx)

    async def exit(self) -> None:
        """Leave a connected or streaming session."""
        ctx = self._context
        if ctx is None or self._phase not in _EXITABLE:
            raise InvalidPhaseTransition(f"nothing to exit while {self._phase.value}")
        logger.info("exiting session %s", ctx.handle.session_id if ctx.handle else "?")
        ctx.stop_requested = True
        self._set_phase(Phase.EXITING)
        await ctx.settled.wait()
        await self._finish(ctx)

    async def retry_transport(self) -> Phase:
        """Bring the stream up again for a Connected session whose transport failed.

        The remote session is reused as is. Raises :class:`TransportInitFailed`
        again (staying Connected) when the second attempt fails too.
        """
        ctx = self._context
        if (
            ctx is None
            or self._phase is not Phase.CONNECTED
            or ctx.ready_info is None
            or not ctx.settled.is_set()
            or "transport" in ctx.teardown.pending
        ):
            raise InvalidPhaseTransition(f"no failed stream to retry while {self._phase.value}")
        logger.info("retrying stream for session %s", ctx.handle.session_id if ctx.handle else "?")
        ctx.settled.clear()
        tracer = PerfTracer("retry_transport")
        tracer.set_context(title=ctx.title.name)
        try:
            return await self._start_stream(ctx, tracer)
        except asyncio.CancelledError:
            logger.warning("stream retry cancelled; releasing session resources")
            await self._finish(ctx)
            raise
        finally:
            ctx.settled.set()

    async def shutdown(self) -> None:
        """Bring whatever is active back to Idle (application quit)."""
        if self._phase in _CANCELLABLE:
            await self.cancel()
        elif self._phase in _EXITABLE:
            await self.exit()
        elif self._context is not None:
            ctx = self._context
            ctx.stop_requested = True
            await ctx.settled.wait()
            await self._finish(ctx)
        await self._presence.drain()

    # ---------------- launch stages ----------------
    async def _drive(self, ctx: SessionContext, quality: Any, tracer: PerfTracer) -> Phase:
        try:
            with tracer.span("gate", category="local"):
                prepared = self._gate.build(ctx.title, quality)
        except Exception as e:
            self._report_error(e)
            self._reset(ctx)
            raise
        ctx.request = prepared.request
        ctx.credential = prepared.credential
        ctx.title = prepared.request.title

        if self._check_conflicts:
            active = await self._active_sessions(ctx)
            if ctx.stop_requested:
                return await self._finish(ctx)
            if active:
                err = SessionConflict(
                    f"session {active[0].session_id} is already running", sessions=active
                )
                self._report_error(err)
                self._reset(ctx)
                raise err

        self._presence.report_queued(ctx.title.name)

        try:
            with tracer.span("start_session", category="remote"):
                handle = await self._service.start_session(ctx.request, ctx.credential)
        except SessionRequestFailed as e:
            if ctx.stop_requested:
                return await self._finish(ctx)
            self._report_error(e)
            self._reset(ctx)
            self._presence.report_idle()
            raise
        except Exception as e:
            if ctx.stop_requested:
                return await self._finish(ctx)
            err = SessionRequestFailed(f"session request failed: {e}")
            await self._fail(ctx, err)
            raise err from e

        ctx.handle = handle
        ctx.teardown.register(lambda: self._stop_remote(ctx), name="remote_session")
        logger.info("session %s created for %s", handle.session_id, ctx.title.name)
        if ctx.stop_requested:
            return await self._finish(ctx)
        self._set_phase(Phase.AWAITING_SERVER)

        try:
            with tracer.span("await_ready", category="remote"):
                ready = await self._service.await_ready(handle.session_id, ctx.credential)
        except Exception as e:
            if ctx.stop_requested:
                return await self._finish(ctx)
            err = e if isinstance(e, SessionNotReady) else SessionNotReady(f"session never became ready: {e}")
            await self._fail(ctx, err)
            if err is e:
                raise
            raise err from e

        ctx.ready_info = ready
        self._apply_ready(handle, ready)
        if ctx.stop_requested:
            return await self._finish(ctx)
        self._set_phase(Phase.CONNECTED)
        self.emitter.emit(SessionEvent(SessionEventType.SESSION_READY, data={"ready": ready}))
        return await self._start_stream(ctx, tracer)

    async def _start_stream(self, ctx: SessionContext, tracer: PerfTracer) -> Phase:
        handle = ctx.handle
        try:
            # transports that negotiate a stream mode take it from the request
            request_mode = getattr(self._transport, "request_mode", None)
            if request_mode is not None:
                request_mode(ctx.request.quality)
            with tracer.span("transport_init", category="transport"):
                await self._transport.initialize(ctx.ready_info, ctx.credential, self._mount_point)
                ctx.teardown.register(self._transport.stop, name="transport")
                self._attach_input(ctx)
        except Exception as e:
            if ctx.stop_requested:
                return await self._finish(ctx)
            err = e if isinstance(e, TransportInitFailed) else TransportInitFailed(f"video stream failed: {e}")
            # The remote session is valid; keep it and let the user decide.
            logger.error("transport init failed for session %s: %s", handle.session_id, err)
            self._report_error(err)
            if err is e:
                raise
            raise err from e

        on_disconnect = getattr(self._transport, "on_disconnect", None)
        if on_disconnect is not None:
            on_disconnect(lambda reason: self._on_stream_lost(ctx, reason))
        if ctx.stop_requested:
            return await self._finish(ctx)
        self.stats.start(self._stats_interval_ms, self._on_stats, teardown=ctx.teardown)
        self._set_phase(Phase.STREAMING_ACTIVE)
        self._presence.report_playing(ctx.title.name, ctx.title.title_id)
        logger.info(
            "streaming %s on %s (%s) after %.1fs",
            ctx.title.name, handle.server_address or "?", handle.accelerator or "?", ctx.elapsed_s,
        )
        return Phase.STREAMING_ACTIVE

    async def _active_sessions(self, ctx: SessionContext) -> list[SessionHandle]:
        try:
            return list(await self._service.list_active_sessions(ctx.credential))
        except Exception as e:
            logger.warning("active session check failed, continuing: %s", e)
            return []

    def _apply_ready(self, handle: SessionHandle, ready: ReadyInfo) -> None:
        if ready.server_address:
            handle.server_address = ready.server_address
        if ready.accelerator:
            handle.accelerator = ready.accelerator

    def _attach_input(self, ctx: SessionContext) -> None:
        surface = self._input_surface
        if surface is None:
            return
        release = self._transport.attach_input_capture(surface)
        ctx.teardown.register(release, name="input_capture")
        if self._escape_hold_ms > 0:
            watcher = KeyHoldWatcher(self._on_escape_held, hold_ms=self._escape_hold_ms).attach(surface)
            ctx.teardown.register(watcher.stop, name="key_hold_watcher")

    # ---------------- side channels ----------------
    def _on_stats(self, sample: StatsSample) -> None:
        self.emitter.emit(SessionEvent(SessionEventType.STATS_SAMPLE, data={"sample": sample}))
        ctx = self._context
        if ctx is not None:
            self._presence.report_stats(ctx.title.name, sample)
        if self._stats_sink is not None:
            self._stats_sink(sample)

    def _on_escape_held(self) -> None:
        self.emitter.emit(SessionEvent(SessionEventType.ESCAPE_HELD))

    def _on_stream_lost(self, ctx: SessionContext, reason: str) -> None:
        if self._context is not ctx or ctx.stop_requested or self._phase not in _EXITABLE:
            return
        logger.warning("stream channel for %s lost: %s", ctx.title.name, reason)
        self._report_error(StreamInterrupted(f"stream channel closed: {reason}"))

    # ---------------- teardown ----------------
    async def _stop_remote(self, ctx: SessionContext) -> None:
        handle = ctx.handle
        if handle is None:
            return
        logger.info("stopping remote session %s", handle.session_id)
        await self._service.stop_session(handle.session_id, ctx.credential or "")

    async def _fail(self, ctx: SessionContext, error: StreamingError) -> None:
        logger.error("launch of %s failed: %s", ctx.title.name, error)
        self._set_phase(Phase.FAILED)
        self._report_error(error)
        await self._finish(ctx)

    async def _finish(self, ctx: SessionContext) -> Phase:
        """Release everything the attempt acquired and return to Idle once."""
        released = await ctx.teardown.run_all()
        if ctx.finished:
            return Phase.IDLE
        ctx.finished = True
        ctx.handle = None
        self.emitter.emit(SessionEvent(SessionEventType.TEARDOWN_COMPLETE, data={"released": released}))
        if self._context is ctx:
            self._context = None
            self._set_phase(Phase.IDLE)
        self._presence.report_idle()
        return Phase.IDLE

    def _reset(self, ctx: SessionContext) -> None:
        """Back to Idle for attempts that never acquired anything."""
        ctx.finished = True
        if self._context is ctx:
            self._context = None
            self._set_phase(Phase.IDLE)

    # ---------------- helpers ----------------
    def _set_phase(self, phase: Phase) -> None:
        old = self._phase
        if old is phase:
            return
        self._phase = phase
        logger.info("phase %s -> %s", old.value, phase.value)
        self.emitter.emit(SessionEvent(SessionEventType.PHASE_CHANGED, data={"old": old, "new": phase}))

    def _report_error(self, error: BaseException) -> None:
        kind = getattr(error, "kind", type(error).__name__)
        self.emitter.emit(SessionEvent(SessionEventType.ERROR, data={"kind": kind, "message": str(error)}))
