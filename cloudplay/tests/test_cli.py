import asyncio
import json
import logging
import logging.handlers
import signal
import subprocess
import sys

import pytest

from .. import __version__, cli
from ..session import Phase
from .fakes import FakeService, FakeTransport, make_rig


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers and type(handler) in (logging.StreamHandler, logging.handlers.RotatingFileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def run_cmd(args, env=None):
    python = sys.executable
    result = subprocess.run([python, "-m", "cloudplay", *args], capture_output=True, text=True, env=env)
    return result.returncode, result.stdout, result.stderr


def test_help_exits_zero():
    code, out, err = run_cmd(["--help"])
    assert code == 0
    assert "CloudPlay CLI" in out


def test_version_flag():
    code, out, err = run_cmd(["--version"])
    assert code == 0
    assert __version__ in out


def test_presets_json():
    code, out, err = run_cmd(["presets", "--json", "--log-mode", "quiet"])
    assert code == 0, err
    presets = json.loads(out)
    names = [p["name"] for p in presets]
    assert names[0] == "auto"
    assert "competitive" in names


@pytest.mark.slow
def test_selftest_exits_zero():
    code, out, err = run_cmd(["selftest"])
    assert code == 0, out + err
    assert "Selftest OK" in out


def test_logging_flags_after_subcommand():
    parser = cli.build_parser()
    args = parser.parse_args(["launch", "Hades", "--log-level", "DEBUG", "--log-format", "json", "--quality", "high"])
    assert args.command == "launch"
    assert args.title == "Hades"
    assert args.log_level == "DEBUG"
    assert args.log_format == "json"
    assert args.quality == "high"
    assert args.duration is None


def test_stop_requires_session_id():
    parser = cli.build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["stop"])
    args = parser.parse_args(["stop", "abc", "--token", "t"])
    assert (args.session_id, args.token) == ("abc", "t")


def test_launch_without_token_exits_not_authenticated(tmp_path, monkeypatch):
    monkeypatch.delenv("CLOUDPLAY_TOKEN", raising=False)
    monkeypatch.setenv("CLOUDPLAY_SERVICE_URL", "http://127.0.0.1:9")
    code = cli.main(["launch", "Hades", "--log-file", str(tmp_path / "cli.log"), "--log-mode", "quiet"])
    assert code == cli.EXIT_NOT_AUTHENTICATED


def test_launch_with_unknown_quality_fails(tmp_path):
    code = cli.main(["launch", "Hades", "--quality", "8k", "--token", "t", "--log-file", str(tmp_path / "cli.log")])
    assert code == cli.EXIT_FAILURE


def test_sessions_without_token(tmp_path, monkeypatch):
    monkeypatch.delenv("CLOUDPLAY_TOKEN", raising=False)
    code = cli.main(["sessions", "--log-file", str(tmp_path / "cli.log")])
    assert code == cli.EXIT_NOT_AUTHENTICATED


def test_build_session_stack_wires_progress():
    from ..config import StreamerConfig
    from ..session import Phase, StaticCredentialProvider

    stack = cli.build_session_stack(StreamerConfig(), StaticCredentialProvider("t"), transport_url="ws://127.0.0.1:1/")
    assert stack.controller.phase is Phase.IDLE
    assert stack.service.on_progress == stack.controller.notify_progress
    assert stack.transport.url_override == "ws://127.0.0.1:1/"
    assert stack.presence_service is None


def _use_stack(monkeypatch, rig):
    stack = cli.SessionStack(rig.controller, rig.service, rig.transport, None)
    monkeypatch.setattr(cli, "build_session_stack", lambda *args, **kwargs: stack)
    return stack


def _capture_signal_handlers(monkeypatch):
    handlers = {}
    loop = asyncio.get_running_loop()
    monkeypatch.setattr(loop, "add_signal_handler", lambda sig, callback, *args: handlers.__setitem__(sig, callback))
    return handlers


async def _wait_until(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_ctrl_c_while_awaiting_server_cancels_launch(monkeypatch):
    service = FakeService()
    service.ready_gate = asyncio.Event()
    rig = make_rig(service=service)
    _use_stack(monkeypatch, rig)
    handlers = _capture_signal_handlers(monkeypatch)

    args = cli.build_parser().parse_args(["launch", "Hades", "--token", "t"])
    running = asyncio.ensure_future(cli._cli_launch(args))
    await _wait_until(lambda: rig.controller.phase is Phase.AWAITING_SERVER)
    handlers[signal.SIGINT]()

    assert await asyncio.wait_for(running, timeout=2.0) == cli.EXIT_OK
    assert rig.controller.phase is Phase.IDLE
    assert service.count("cancel_await") == 1
    assert service.count("stop_session") == 1
    assert service.count("close") == 1


@pytest.mark.asyncio
async def test_ctrl_c_during_stream_setup_exits_session(monkeypatch):
    transport = FakeTransport()
    transport.init_gate = asyncio.Event()
    rig = make_rig(transport=transport)
    _use_stack(monkeypatch, rig)
    handlers = _capture_signal_handlers(monkeypatch)

    args = cli.build_parser().parse_args(["launch", "Hades", "--token", "t"])
    running = asyncio.ensure_future(cli._cli_launch(args))
    await _wait_until(lambda: transport.count("initialize") == 1)
    handlers[signal.SIGINT]()
    await _wait_until(lambda: rig.controller.phase is Phase.EXITING)
    transport.init_gate.set()

    assert await asyncio.wait_for(running, timeout=2.0) == cli.EXIT_OK
    assert rig.controller.phase is Phase.IDLE
    assert transport.count("stop") == 1
    assert rig.service.count("stop_session") == 1
    assert rig.service.count("cancel_await") == 0
