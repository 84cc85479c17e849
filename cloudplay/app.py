import sys, threading, traceback, os
import asyncio
import qasync
from PyQt6.QtWidgets import QApplication
from PyQt6.QtCore import qInstallMessageHandler
from .ui.launcher_window import LauncherWindow
from .ui.session_bridge import SessionBridge
from .ui.input_surface import QtInputSurface
from .qss import QSS
from . import __app_name__, __version__
from .config import StreamerConfig
from .engine.streaming_telemetry import streaming_telemetry
from .session import EnvCredentialProvider
from .logging_utils import setup_logging
import logging, faulthandler

_DIAG_INSTALLED = False

_TRUE = ("1", "true", "True", "yes")


def _install_diagnostics():
    global _DIAG_INSTALLED
    if _DIAG_INSTALLED:
        return
    if os.environ.get("CLOUDPLAY_NO_DIAG", "0") in _TRUE:
        return
    _DIAG_INSTALLED = True
    log = logging.getLogger("diag")
    # Faulthandler for native crash backtraces (Qt, decoder plugins)
    try:
        faulthandler.enable(all_threads=True)
        log.info("DIAG faulthandler enabled")
    except Exception:
        pass
    def _excepthook(t, v, tb):
        log.error("UNCAUGHT %s: %s", t.__name__, v)
        for line in traceback.format_tb(tb):
            log.error(line.rstrip())
    sys.excepthook = _excepthook
    if hasattr(threading, 'excepthook'):
        def _thread_excepthook(args):
            log.error("THREAD EXC in %s: %s", getattr(args, 'thread', None), args.exc_value)
            for line in traceback.format_tb(args.exc_traceback):
                log.error(line.rstrip())
        threading.excepthook = _thread_excepthook  # type: ignore[attr-defined]
    try:
        def _qt_msg_handler(mode, ctx, msg):  # type: ignore[unused-argument]
            log.warning("QT: %s", msg)
        qInstallMessageHandler(_qt_msg_handler)
        log.info("DIAG Qt message handler installed")
    except Exception:
        pass


def build_window(config: StreamerConfig) -> LauncherWindow:
    """Wire controller, bridge and window; the window owns the session stack."""
    from .cli import build_session_stack  # local import, cli pulls in argparse wiring

    stack = build_session_stack(config, EnvCredentialProvider(), stats_sink=streaming_telemetry.record)
    bridge = SessionBridge(stack.controller, closer=stack.aclose)
    win = LauncherWindow(bridge)
    bridge.setParent(win)
    stack.controller.set_input_surface(QtInputSurface(win))

    def _track_session(_ready) -> None:
        ctx = stack.controller.context
        if ctx is not None and ctx.handle is not None:
            handle = ctx.handle
            streaming_telemetry.set_session(
                handle.session_id,
                title=ctx.title.name,
                server_address=handle.server_address,
                accelerator=handle.accelerator,
            )

    def _on_phase(phase: str) -> None:
        if phase == "idle":
            streaming_telemetry.clear()

    bridge.sessionReady.connect(_track_session)
    bridge.phaseChanged.connect(_on_phase)
    win.stack = stack  # type: ignore[attr-defined]
    return win


def run() -> int:
    # Ensure logging is configured when launching GUI directly
    log_mode_env = os.environ.get("CLOUDPLAY_LOG_MODE")
    debug_mode = os.environ.get("CLOUDPLAY_DEBUG", "0") in _TRUE
    log_level = "DEBUG" if debug_mode else "WARNING"
    if not logging.getLogger().handlers:
        setup_logging(level=log_level, add_console=True, log_mode=log_mode_env)
    _install_diagnostics()

    config = StreamerConfig.from_env()

    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName(__app_name__)
    app.setApplicationVersion(__version__)
    app.setStyleSheet(QSS)

    # Setup qasync event loop for async/await support with PyQt6
    loop = qasync.QEventLoop(app)
    asyncio.set_event_loop(loop)

    closed = asyncio.Event()
    app.aboutToQuit.connect(closed.set)

    win = build_window(config)
    win.show()
    logging.getLogger("diag").info("DIAG %s %s started (service=%s)", __app_name__, __version__, config.service_url)

    with loop:
        loop.run_until_complete(closed.wait())
    return 0


if __name__ == "__main__":
    run()
