"""CloudPlay command-line interface.

Argparse-based CLI that initializes structured logging early and can run a
streaming session headless. Exposed via ``python -m cloudplay`` and the
``cloudplay`` console script.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from . import __version__
from .config import StreamerConfig
from .engine import HttpPresenceService, HttpSessionService, StreamingTelemetry, WebSocketTransport
from .logging_utils import LogMode, get_default_log_path, setup_logging
from .session import (
    QUALITY_PRESETS,
    EnvCredentialProvider,
    InvalidQualityProfile,
    NotAuthenticated,
    Phase,
    PresenceReporter,
    SessionConflict,
    SessionEventType,
    SessionLifecycleController,
    SessionRequestGate,
    StaticCredentialProvider,
    StatsSample,
    StreamingError,
    TitleSelection,
    TransportInitFailed,
    format_bitrate,
    resolve_quality,
)
from .session.interfaces import CredentialProvider, InputSurface

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NOT_AUTHENTICATED = 2
EXIT_CONFLICT = 3


def _add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set log level (default: INFO)",
    )
    parser.add_argument(
        "--log-mode",
        choices=[mode.value for mode in LogMode],
        default=LogMode.NORMAL.value,
        help="Logging preset: quiet suppresses console info, perf forces DEBUG and launch timings",
    )
    parser.add_argument(
        "--log-file",
        default=str(get_default_log_path()),
        help="Path to log file (default: per-user CloudPlay directory)",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        default="plain",
        help="Log format (plain or json)",
    )


def _build_logging_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    _add_logging_args(parent)
    return parent


# ---------------------------------------------------------------------------
# Wiring shared by the CLI and the GUI
# ---------------------------------------------------------------------------


@dataclass
class SessionStack:
    """A controller plus the concrete collaborators it was built from."""

    controller: SessionLifecycleController
    service: HttpSessionService
    transport: WebSocketTransport
    presence_service: Optional[HttpPresenceService]

    async def aclose(self) -> None:
        await self.controller.shutdown()
        await self.service.close()
        if self.presence_service is not None:
            await self.presence_service.close()


def build_session_stack(
    config: StreamerConfig,
    credentials: CredentialProvider,
    *,
    stats_sink: Optional[Callable[[StatsSample], None]] = None,
    input_surface: Optional[InputSurface] = None,
    mount_point: Any = None,
    transport_url: Optional[str] = None,
) -> SessionStack:
    service = HttpSessionService(
        config.service_url,
        poll_interval_ms=config.poll_interval_ms,
        max_polls=config.max_polls,
        timeout_s=config.request_timeout_s,
    )
    transport = WebSocketTransport(scheme=config.transport_scheme, url_override=transport_url)
    presence_service = HttpPresenceService(config.presence_url) if config.presence_active else None
    presence = PresenceReporter(
        presence_service,
        enabled=config.presence_active,
        show_stats=config.presence_show_stats,
    )
    controller = SessionLifecycleController(
        SessionRequestGate(credentials, preferred_server=config.preferred_server),
        service,
        transport,
        presence,
        stats_interval_ms=config.stats_interval_ms,
        stats_sink=stats_sink,
        input_surface=input_surface,
        mount_point=mount_point,
        escape_hold_ms=config.escape_hold_ms,
    )
    service.on_progress = controller.notify_progress
    return SessionStack(controller, service, transport, presence_service)


def _credentials(args: argparse.Namespace) -> CredentialProvider:
    token = getattr(args, "token", None)
    if token:
        return StaticCredentialProvider(token)
    return EnvCredentialProvider()


def _config_from_args(args: argparse.Namespace) -> StreamerConfig:
    config = StreamerConfig.from_env()
    if getattr(args, "service_url", None):
        config.service_url = args.service_url
    return config


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, default=str))


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_presets(args: argparse.Namespace) -> int:
    if args.json:
        _print_json([asdict(p) for p in QUALITY_PRESETS.values()])
        return EXIT_OK
    for profile in QUALITY_PRESETS.values():
        print(f"{profile.name:<12} {profile.resolution:>9} @ {profile.fps:>3} fps  {profile.codec}")
    return EXIT_OK


def _format_sample(sample: StatsSample) -> str:
    return (
        f"{sample.fps:5.0f} fps  {sample.latency_ms:5.0f} ms  "
        f"{format_bitrate(sample.bitrate_kbps):>10}  loss {sample.packet_loss:.2%}  "
        f"{sample.resolution} {sample.codec}"
    )


async def _cli_launch(args: argparse.Namespace) -> int:
    log = logging.getLogger(__name__)
    try:
        quality = resolve_quality(args.quality)
    except InvalidQualityProfile as e:
        log.error("%s", e)
        return EXIT_FAILURE

    telemetry = StreamingTelemetry()

    def _sink(sample: StatsSample) -> None:
        telemetry.record(sample)
        if args.json:
            print(json.dumps({"type": "stats", **asdict(sample)}), flush=True)
        else:
            print(_format_sample(sample), flush=True)

    stack = build_session_stack(
        _config_from_args(args),
        _credentials(args),
        stats_sink=_sink,
        transport_url=args.transport_url,
    )
    controller = stack.controller

    def _on_progress(event) -> None:
        progress = event.data["progress"]
        log.info("queue position %d, step %d, eta %.0fs",
                 progress.queue_position, progress.step, progress.eta_ms / 1000.0)

    controller.emitter.subscribe(SessionEventType.QUEUE_PROGRESS, _on_progress)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, stop.set)

    title = TitleSelection(
        title_id=args.title_id or args.title,
        name=args.title,
        store_type=args.store_type or "",
        store_id=args.store_id or "",
    )
    try:
        launching = asyncio.ensure_future(controller.launch(title, quality))
        interrupted = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({launching, interrupted}, return_when=asyncio.FIRST_COMPLETED)
            if not launching.done():
                # Ctrl+C while negotiating: cancel or exit, then let the launch settle
                log.info("interrupted during %s; abandoning launch", controller.phase.value)
                await controller.shutdown()
        finally:
            interrupted.cancel()
        try:
            phase = await launching
        except NotAuthenticated as e:
            log.error("%s (set CLOUDPLAY_TOKEN or pass --token)", e)
            return EXIT_NOT_AUTHENTICATED
        except SessionConflict as e:
            log.error("%s", e)
            for handle in e.sessions:
                print(f"active session {handle.session_id} on {handle.server_address or '?'}")
            return EXIT_CONFLICT
        except TransportInitFailed as e:
            log.error("stream could not start: %s", e)
            return EXIT_FAILURE
        except StreamingError as e:
            log.error("launch failed: %s", e)
            return EXIT_FAILURE

        if phase is not Phase.STREAMING_ACTIVE:
            return EXIT_OK
        handle = controller.handle
        if handle is not None:
            telemetry.set_session(
                handle.session_id,
                title=title.name,
                server_address=handle.server_address,
                accelerator=handle.accelerator,
            )
        log.info("streaming; press Ctrl+C to end the session")
        try:
            await asyncio.wait_for(stop.wait(), timeout=args.duration)
        except asyncio.TimeoutError:
            pass
        snap = telemetry.snapshot()
        if snap.samples_seen:
            log.info(
                "session summary: %d samples, avg %.0f fps, peak latency %.0f ms",
                snap.samples_seen, snap.avg_fps or 0.0, snap.peak_latency_ms or 0.0,
            )
        return EXIT_OK
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await stack.aclose()


async def _cli_sessions(args: argparse.Namespace) -> int:
    log = logging.getLogger(__name__)
    token = _credentials(args).get_credential()
    if not token:
        log.error("not signed in (set CLOUDPLAY_TOKEN or pass --token)")
        return EXIT_NOT_AUTHENTICATED
    config = _config_from_args(args)
    async with HttpSessionService(config.service_url, timeout_s=config.request_timeout_s) as service:
        try:
            handles = await service.list_active_sessions(token)
        except Exception as e:
            log.error("could not list sessions: %s", e)
            return EXIT_FAILURE
    if args.json:
        _print_json([asdict(h) for h in handles])
    elif not handles:
        print("no active sessions")
    else:
        for h in handles:
            print(f"{h.session_id}  status={h.status}  server={h.server_address or '?'}  gpu={h.accelerator or '?'}")
    return EXIT_OK


async def _cli_stop(args: argparse.Namespace) -> int:
    log = logging.getLogger(__name__)
    token = _credentials(args).get_credential()
    if not token:
        log.error("not signed in (set CLOUDPLAY_TOKEN or pass --token)")
        return EXIT_NOT_AUTHENTICATED
    config = _config_from_args(args)
    async with HttpSessionService(config.service_url, timeout_s=config.request_timeout_s) as service:
        try:
            await service.stop_session(args.session_id, token)
        except Exception as e:
            log.error("could not stop session %s: %s", args.session_id, e)
            return EXIT_FAILURE
    return EXIT_OK


def selftest() -> int:
    """Fast import-and-init smoke test. Returns exit code."""
    try:
        import PyQt6  # noqa: F401  # Ensure UI deps import
        import qasync  # noqa: F401
        from .ui.session_bridge import SessionBridge  # noqa: F401

        stack = build_session_stack(StreamerConfig(), StaticCredentialProvider("selftest"))
        if stack.controller.phase is not Phase.IDLE:
            raise RuntimeError("controller did not start idle")

        msg = f"Selftest OK: cloudplay {__version__}, {len(QUALITY_PRESETS)} quality presets"
        logging.getLogger(__name__).info(msg)
        print(msg)
        return EXIT_OK
    except Exception as e:
        logging.getLogger(__name__).error("Selftest failed: %s", e)
        return EXIT_FAILURE


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    logging_parent = _build_logging_parent()
    parser = argparse.ArgumentParser(
        description="CloudPlay CLI",
        parents=[logging_parent],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=False)

    def add_subparser(name: str, **kwargs: object) -> argparse.ArgumentParser:
        parents = list(kwargs.pop("parents", []))
        parents.insert(0, logging_parent)
        return sub.add_parser(name, parents=parents, **kwargs)

    remote_parent = argparse.ArgumentParser(add_help=False)
    remote_parent.add_argument("--token", default=None, help="Access token (default: $CLOUDPLAY_TOKEN)")
    remote_parent.add_argument("--service-url", default=None, help="Session service base URL")

    add_subparser("run", help="Start the GUI (default)")

    p_presets = add_subparser("presets", help="List quality presets")
    p_presets.add_argument("--json", action="store_true", help="Print presets as JSON")

    p_launch = add_subparser("launch", parents=[remote_parent], help="Run one streaming session headless")
    p_launch.add_argument("title", help="Title name (also used as id unless --title-id is given)")
    p_launch.add_argument("--title-id", default=None, help="Catalog app id")
    p_launch.add_argument("--store-type", default=None, help="Store the title is owned on (e.g. STEAM)")
    p_launch.add_argument("--store-id", default=None, help="Store-specific title id")
    p_launch.add_argument("--quality", default="auto", help="Quality preset name (see 'presets')")
    p_launch.add_argument("--duration", type=float, default=None, help="End the session after N seconds")
    p_launch.add_argument("--transport-url", default=None, help="Override the stream control channel URL")
    p_launch.add_argument("--json", action="store_true", help="Print stats samples as JSON lines")

    p_sessions = add_subparser("sessions", parents=[remote_parent], help="List active remote sessions")
    p_sessions.add_argument("--json", action="store_true", help="Print sessions as JSON")

    p_stop = add_subparser("stop", parents=[remote_parent], help="Stop a remote session")
    p_stop.add_argument("session_id", help="Session id (see 'sessions')")

    add_subparser("selftest", help="Quick import/init smoke test")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging before doing any work
    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
        json_format=(args.log_format == "json"),
        log_mode=args.log_mode,
        add_console=True,
    )

    cmd = args.command or "run"
    if cmd == "run":
        # Import app lazily so headless commands never touch Qt
        from .app import run as run_gui  # local import
        return run_gui()
    if cmd == "presets":
        return cmd_presets(args)
    if cmd == "launch":
        return asyncio.run(_cli_launch(args))
    if cmd == "sessions":
        return asyncio.run(_cli_sessions(args))
    if cmd == "stop":
        return asyncio.run(_cli_stop(args))
    if cmd == "selftest":
        return selftest()

    parser.print_help()
    return 2


if __name__ == "__main__":  # Allow direct module execution
    sys.exit(main())
