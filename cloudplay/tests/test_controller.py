"""Tests for the session lifecycle controller."""

import asyncio

import pytest

from ..session import (
    InvalidPhaseTransition,
    InvalidQualityProfile,
    NotAuthenticated,
    Phase,
    SessionAlreadyActive,
    SessionConflict,
    SessionEventType,
    SessionHandle,
    SessionNotReady,
    SessionRequestFailed,
    TransportInitFailed,
)
from .fakes import FakeService, FakeSurface, FakeTransport, make_rig, make_sample

pytestmark = pytest.mark.asyncio  # Mark all tests as async


async def wait_until(predicate, timeout: float = 1.0):
    """Spin the loop until ``predicate()`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def phases(rig):
    return [e.data["new"] for e in rig.events if e.event_type is SessionEventType.PHASE_CHANGED]


# ---------- happy path ----------

async def test_launch_reaches_streaming_active():
    rig = make_rig()
    phase = await rig.controller.launch("Title-X", "high")

    assert phase is Phase.STREAMING_ACTIVE
    assert rig.controller.phase is Phase.STREAMING_ACTIVE
    handle = rig.controller.handle
    assert handle.session_id == "s1"
    assert handle.server_address == "10.0.0.5"
    assert handle.accelerator == "A100"
    assert phases(rig) == [
        Phase.REQUESTING,
        Phase.AWAITING_SERVER,
        Phase.CONNECTED,
        Phase.STREAMING_ACTIVE,
    ]
    await rig.presence.drain()
    assert rig.presence_service.names() == ["queued", "playing"]
    assert rig.presence_service.calls[1][1][:2] == ("Title-X", "Title-X")
    await rig.controller.exit()


async def test_launch_passes_quality_to_service_and_transport():
    rig = make_rig()
    await rig.controller.launch("Title-X", "high")
    request = rig.service.calls[1][1]
    assert rig.service.names()[:2] == ["list_active_sessions", "start_session"]
    assert request.quality.resolution == "2560x1440"
    assert rig.transport.requested is request.quality
    await rig.controller.exit()


async def test_stats_flow_to_sink_and_events_while_streaming():
    rig = make_rig()
    await rig.controller.launch("Title-X")
    await wait_until(lambda: len(rig.samples) >= 2)
    assert any(e.event_type is SessionEventType.STATS_SAMPLE for e in rig.events)
    assert rig.controller.stats.last_sample is not None
    await rig.controller.exit()


# ---------- failure paths ----------

async def test_await_ready_failure_stops_session_once_and_returns_idle():
    service = FakeService(ready_error=SessionNotReady("no seats"))
    rig = make_rig(service=service)

    with pytest.raises(SessionNotReady):
        await rig.controller.launch("Title-X")

    assert rig.controller.phase is Phase.IDLE
    assert rig.controller.handle is None
    assert service.count("stop_session") == 1
    assert ("stop_session", "s1") in service.calls
    assert rig.transport.calls == []
    assert Phase.FAILED in phases(rig)
    await rig.presence.drain()
    assert rig.presence_service.names()[-1] == "idle"
    errors = [e for e in rig.events if e.event_type is SessionEventType.ERROR]
    assert errors and errors[0].data["kind"] == "session_not_ready"


async def test_unexpected_await_ready_error_is_wrapped():
    service = FakeService(ready_error=RuntimeError("socket reset"))
    rig = make_rig(service=service)
    with pytest.raises(SessionNotReady) as exc_info:
        await rig.controller.launch("Title-X")
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert rig.controller.phase is Phase.IDLE
    assert service.count("stop_session") == 1


async def test_missing_credential_touches_nothing():
    rig = make_rig(token=None)
    with pytest.raises(NotAuthenticated):
        await rig.controller.launch("Title-X")
    assert rig.controller.phase is Phase.IDLE
    assert rig.controller.context is None
    assert rig.service.calls == []
    assert rig.transport.calls == []
    await rig.presence.drain()
    assert rig.presence_service.calls == []


async def test_unknown_quality_is_rejected_before_remote_calls():
    rig = make_rig()
    with pytest.raises(InvalidQualityProfile):
        await rig.controller.launch("Title-X", "potato")
    assert rig.controller.phase is Phase.IDLE
    assert rig.service.calls == []


async def test_rejected_request_rolls_back_without_stop():
    service = FakeService(start_error=SessionRequestFailed("region full", error_code=3237093643))
    rig = make_rig(service=service)
    with pytest.raises(SessionRequestFailed):
        await rig.controller.launch("Title-X")
    assert rig.controller.phase is Phase.IDLE
    assert service.count("stop_session") == 0
    await rig.presence.drain()
    assert rig.presence_service.names() == ["queued", "idle"]


async def test_transport_failure_keeps_session_connected():
    transport = FakeTransport(init_error=TransportInitFailed("decoder unavailable"))
    rig = make_rig(transport=transport)

    with pytest.raises(TransportInitFailed):
        await rig.controller.launch("Title-X")

    assert rig.controller.phase is Phase.CONNECTED
    assert rig.controller.handle.session_id == "s1"
    assert rig.service.count("stop_session") == 0
    assert not rig.controller.stats.running

    await rig.controller.exit()
    assert rig.controller.phase is Phase.IDLE
    assert rig.service.count("stop_session") == 1
    assert transport.count("stop") == 0


async def test_unexpected_transport_error_is_wrapped():
    rig = make_rig(transport=FakeTransport(init_error=OSError("no route")))
    with pytest.raises(TransportInitFailed):
        await rig.controller.launch("Title-X")
    assert rig.controller.phase is Phase.CONNECTED
    await rig.controller.exit()


async def test_retry_after_transport_failure_reaches_streaming():
    transport = FakeTransport(init_error=TransportInitFailed("decoder unavailable"), samples=[make_sample()])
    surface = FakeSurface()
    rig = make_rig(transport=transport, surface=surface)
    with pytest.raises(TransportInitFailed):
        await rig.controller.launch("Title-X")
    assert rig.controller.phase is Phase.CONNECTED

    transport.init_error = None
    assert await rig.controller.retry_transport() is Phase.STREAMING_ACTIVE
    assert rig.controller.phase is Phase.STREAMING_ACTIVE
    assert transport.count("initialize") == 2
    assert rig.service.count("start_session") == 1
    assert rig.service.count("stop_session") == 0
    assert rig.controller.stats.running
    await rig.presence.drain()
    assert "playing" in rig.presence_service.names()

    await rig.controller.exit()
    assert rig.service.count("stop_session") == 1
    assert transport.count("stop") == 1
    assert surface.listeners == []


async def test_failed_retry_stays_connected():
    rig = make_rig(transport=FakeTransport(init_error=OSError("no route")))
    with pytest.raises(TransportInitFailed):
        await rig.controller.launch("Title-X")
    with pytest.raises(TransportInitFailed):
        await rig.controller.retry_transport()

    assert rig.controller.phase is Phase.CONNECTED
    assert rig.service.count("stop_session") == 0
    errors = [e.data["kind"] for e in rig.events if e.event_type is SessionEventType.ERROR]
    assert errors == ["transport_init_failed", "transport_init_failed"]
    await rig.controller.exit()
    assert rig.controller.phase is Phase.IDLE


async def test_retry_needs_a_failed_stream():
    rig = make_rig()
    with pytest.raises(InvalidPhaseTransition):
        await rig.controller.retry_transport()
    await rig.controller.launch("Title-X")
    with pytest.raises(InvalidPhaseTransition):
        await rig.controller.retry_transport()
    await rig.controller.exit()


async def test_exit_during_retry_releases_everything():
    transport = FakeTransport(init_error=TransportInitFailed("decoder unavailable"))
    rig = make_rig(transport=transport)
    with pytest.raises(TransportInitFailed):
        await rig.controller.launch("Title-X")

    transport.init_error = None
    transport.init_gate = asyncio.Event()
    retry = asyncio.create_task(rig.controller.retry_transport())
    await wait_until(lambda: transport.count("initialize") == 2)
    with pytest.raises(InvalidPhaseTransition):
        await rig.controller.retry_transport()

    exiting = asyncio.create_task(rig.controller.exit())
    await asyncio.sleep(0)
    transport.init_gate.set()

    assert await retry is Phase.IDLE
    await exiting
    assert rig.controller.phase is Phase.IDLE
    assert transport.count("stop") == 1
    assert rig.service.count("stop_session") == 1
    assert not rig.controller.stats.running


async def test_conflicting_session_aborts_launch():
    service = FakeService(active=[SessionHandle(session_id="old", server_address="10.0.0.9")])
    rig = make_rig(service=service)
    with pytest.raises(SessionConflict) as exc_info:
        await rig.controller.launch("Title-X")
    assert [h.session_id for h in exc_info.value.sessions] == ["old"]
    assert rig.controller.phase is Phase.IDLE
    assert service.count("start_session") == 0


async def test_conflict_check_failure_is_not_fatal():
    service = FakeService()
    service.list_error = ConnectionError("offline")
    rig = make_rig(service=service)
    assert await rig.controller.launch("Title-X") is Phase.STREAMING_ACTIVE
    await rig.controller.exit()


async def test_conflict_check_can_be_disabled():
    service = FakeService(active=[SessionHandle(session_id="old")])
    rig = make_rig(service=service, check_conflicts=False)
    assert await rig.controller.launch("Title-X") is Phase.STREAMING_ACTIVE
    assert service.count("list_active_sessions") == 0
    await rig.controller.exit()


# ---------- single session ----------

async def test_second_launch_is_rejected_while_active():
    rig = make_rig()
    await rig.controller.launch("Title-X")
    with pytest.raises(SessionAlreadyActive):
        await rig.controller.launch("Title-Y")
    assert rig.controller.phase is Phase.STREAMING_ACTIVE
    assert rig.service.count("start_session") == 1
    await rig.controller.exit()


async def test_second_launch_is_rejected_while_requesting():
    service = FakeService()
    service.start_gate = asyncio.Event()
    rig = make_rig(service=service)
    task = asyncio.create_task(rig.controller.launch("Title-X"))
    await wait_until(lambda: service.count("start_session") == 1)

    with pytest.raises(SessionAlreadyActive):
        await rig.controller.launch("Title-Y")

    service.start_gate.set()
    assert await task is Phase.STREAMING_ACTIVE
    await rig.controller.exit()


# ---------- cancel / exit ----------

async def test_cancel_while_requesting_stops_landed_session():
    service = FakeService()
    service.start_gate = asyncio.Event()
    rig = make_rig(service=service)
    launch = asyncio.create_task(rig.controller.launch("Title-X"))
    await wait_until(lambda: service.count("start_session") == 1)
    assert rig.controller.phase is Phase.REQUESTING

    cancel = asyncio.create_task(rig.controller.cancel())
    await wait_until(lambda: service.count("cancel_await") == 1)
    service.start_gate.set()

    assert await launch is Phase.IDLE
    await cancel
    assert rig.controller.phase is Phase.IDLE
    assert service.calls.count(("stop_session", "s1")) == 1
    assert service.count("await_ready") == 0
    assert rig.transport.calls == []


async def test_cancel_while_awaiting_server_aborts_polling():
    service = FakeService()
    service.ready_gate = asyncio.Event()
    rig = make_rig(service=service)
    launch = asyncio.create_task(rig.controller.launch("Title-X"))
    await wait_until(lambda: rig.controller.phase is Phase.AWAITING_SERVER)

    await rig.controller.cancel()

    assert await launch is Phase.IDLE
    assert rig.controller.phase is Phase.IDLE
    assert service.count("cancel_await") == 1
    assert service.count("stop_session") == 1
    assert rig.transport.calls == []
    assert not any(e.event_type is SessionEventType.ERROR for e in rig.events)


async def test_cancel_is_rejected_outside_negotiation():
    rig = make_rig()
    with pytest.raises(InvalidPhaseTransition):
        await rig.controller.cancel()
    await rig.controller.launch("Title-X")
    with pytest.raises(InvalidPhaseTransition):
        await rig.controller.cancel()
    await rig.controller.exit()


async def test_exit_releases_in_reverse_order_exactly_once():
    surface = FakeSurface()
    rig = make_rig(surface=surface)
    await rig.controller.launch("Title-X")
    ctx = rig.controller.context
    assert ctx.teardown.pending == [
        "remote_session",
        "transport",
        "input_capture",
        "key_hold_watcher",
        "stats_monitor",
    ]

    await rig.controller.exit()

    assert rig.controller.phase is Phase.IDLE
    assert rig.controller.handle is None
    names = rig.transport.names()
    assert names.index("release_input_capture") < names.index("stop")
    assert rig.transport.count("stop") == 1
    assert rig.service.count("stop_session") == 1
    assert surface.listeners == []
    assert await ctx.teardown.run_all() == 0
    with pytest.raises(InvalidPhaseTransition):
        await rig.controller.exit()
    assert rig.service.count("stop_session") == 1
    teardown_events = [e for e in rig.events if e.event_type is SessionEventType.TEARDOWN_COMPLETE]
    assert len(teardown_events) == 1
    assert teardown_events[0].data["released"] == 5


async def test_exit_during_transport_init_releases_everything():
    transport = FakeTransport()
    transport.init_gate = asyncio.Event()
    rig = make_rig(transport=transport)
    launch = asyncio.create_task(rig.controller.launch("Title-X"))
    await wait_until(lambda: transport.count("initialize") == 1)
    assert rig.controller.phase is Phase.CONNECTED

    exiting = asyncio.create_task(rig.controller.exit())
    await asyncio.sleep(0)
    transport.init_gate.set()

    assert await launch is Phase.IDLE
    await exiting
    assert rig.controller.phase is Phase.IDLE
    assert transport.count("stop") == 1
    assert rig.service.count("stop_session") == 1
    assert not rig.controller.stats.running


async def test_no_stats_after_exit():
    rig = make_rig()
    await rig.controller.launch("Title-X")
    await wait_until(lambda: len(rig.samples) >= 1)
    await rig.controller.exit()
    seen = len(rig.samples)
    polls = rig.transport.count("sample")
    await asyncio.sleep(0.08)
    assert len(rig.samples) == seen
    assert rig.transport.count("sample") == polls
    assert await rig.controller.stats.tick() is False


async def test_teardown_tolerates_failing_stop():
    service = FakeService()
    service.stop_error = ConnectionError("service gone")
    rig = make_rig(service=service)
    await rig.controller.launch("Title-X")
    await rig.controller.exit()
    assert rig.controller.phase is Phase.IDLE
    assert rig.transport.count("stop") == 1


async def test_cancelled_launch_task_releases_resources():
    service = FakeService()
    service.ready_gate = asyncio.Event()
    rig = make_rig(service=service)
    launch = asyncio.create_task(rig.controller.launch("Title-X"))
    await wait_until(lambda: rig.controller.phase is Phase.AWAITING_SERVER)

    launch.cancel()
    with pytest.raises(asyncio.CancelledError):
        await launch
    assert rig.controller.phase is Phase.IDLE
    assert service.count("stop_session") == 1


async def test_shutdown_from_streaming_returns_to_idle():
    rig = make_rig()
    await rig.controller.launch("Title-X")
    await rig.controller.shutdown()
    assert rig.controller.phase is Phase.IDLE
    assert rig.presence.outstanding == 0
    assert rig.presence_service.names()[-1] == "idle"


async def test_relaunch_after_exit_uses_fresh_context():
    rig = make_rig()
    await rig.controller.launch("Title-X")
    first = rig.controller.context
    await rig.controller.exit()
    await rig.controller.launch("Title-Y")
    assert rig.controller.context is not first
    assert rig.controller.context.title.name == "Title-Y"
    await rig.controller.exit()
    assert rig.service.count("stop_session") == 2


# ---------- side channels ----------

async def test_escape_hold_emits_event_while_streaming():
    surface = FakeSurface()
    rig = make_rig(surface=surface, escape_hold_ms=30)
    await rig.controller.launch("Title-X")

    surface.key_down("Escape")
    await wait_until(lambda: any(e.event_type is SessionEventType.ESCAPE_HELD for e in rig.events))
    await rig.controller.exit()
    assert surface.listeners == []


async def test_queue_progress_only_while_awaiting_server():
    from ..session import QueueProgress

    service = FakeService()
    service.ready_gate = asyncio.Event()
    rig = make_rig(service=service)
    rig.controller.notify_progress(QueueProgress(status=1, queue_position=4))
    launch = asyncio.create_task(rig.controller.launch("Title-X"))
    await wait_until(lambda: rig.controller.phase is Phase.AWAITING_SERVER)
    rig.controller.notify_progress(QueueProgress(status=1, queue_position=3))
    service.ready_gate.set()
    await launch

    progress = [e.data["progress"] for e in rig.events if e.event_type is SessionEventType.QUEUE_PROGRESS]
    assert [p.queue_position for p in progress] == [3]
    await rig.controller.exit()


async def test_presence_failures_never_reach_the_controller():
    rig = make_rig()
    rig.presence_service.fail = True
    assert await rig.controller.launch("Title-X") is Phase.STREAMING_ACTIVE
    await rig.controller.exit()
    await rig.presence.drain()
    assert rig.controller.phase is Phase.IDLE
    assert rig.presence_service.names() == ["queued", "playing", "idle"]


async def test_stream_loss_is_reported_while_streaming():
    rig = make_rig()
    await rig.controller.launch("Title-X")
    rig.transport.drop("server went away")

    errors = [e.data for e in rig.events if e.event_type is SessionEventType.ERROR]
    assert len(errors) == 1
    assert errors[0]["kind"] == "stream_interrupted"
    assert "server went away" in errors[0]["message"]
    assert rig.controller.phase is Phase.STREAMING_ACTIVE

    await rig.controller.exit()
    rig.transport.drop("late close")
    assert len([e for e in rig.events if e.event_type is SessionEventType.ERROR]) == 1
