from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Callable, Optional

import websockets  # websockets>=10
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..session.errors import TransportInitFailed
from ..session.interfaces import InputEvent, InputSurface
from ..session.models import QualityProfile, ReadyInfo, StatsSample

logger = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT_S = 10.0


class WebSocketTransport:
    """
    Control channel of the streaming transport over websockets.

    - Handshake: ``hello`` (session, token, mount point, requested mode)
      answered by ``ready`` or ``error``.
    - Server pushes ``stats`` frames; the newest one is what ``sample``
      returns.
    - Captured input is forwarded as ``input`` frames.
    - A channel the server closes is reported to the ``on_disconnect``
      callback; channels closed by ``stop`` are not.

    Frames are single JSON objects in text messages.
    """

    def __init__(
        self,
        *,
        scheme: str = "wss",
        url_override: Optional[str] = None,
        handshake_timeout_s: float = HANDSHAKE_TIMEOUT_S,
        quiet: bool = False,
    ) -> None:
        self.scheme = scheme
        self.url_override = url_override
        self.handshake_timeout_s = handshake_timeout_s
        self.quiet = quiet

        self._ws: Optional[Any] = None
        self._reader: Optional[asyncio.Task] = None
        self._send_tasks: set[asyncio.Task] = set()
        self._latest: Optional[StatsSample] = None
        self._session_id: Optional[str] = None
        self.negotiated: dict[str, Any] = {}
        self.requested: Optional[QualityProfile] = None
        self.input_events_sent = 0
        self._disconnect_cb: Optional[Callable[[str], None]] = None

    def request_mode(self, quality: Optional[QualityProfile]) -> None:
        """Stream mode announced in the next handshake."""
        self.requested = quality

    def on_disconnect(self, callback: Optional[Callable[[str], None]]) -> None:
        """Called with a reason when the server side closes a live channel."""
        self._disconnect_cb = callback

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def signaling_url(self, ready: ReadyInfo) -> str:
        if self.url_override:
            return self.url_override
        conn = ready.connection
        if conn is None or not conn.host:
            raise TransportInitFailed("session has no stream connection info")
        return f"{self.scheme}://{conn.host}:{conn.stream_port}{conn.resource_path}"

    # ---------------- transport contract ----------------
    async def initialize(self, ready_info: ReadyInfo, credential: str, mount_point: Any) -> None:
        if self._ws is not None:
            await self.stop()
        url = self.signaling_url(ready_info)
        self._session_id = ready_info.session_id
        self._latest = None
        if not self.quiet:
            logger.info("connecting stream channel %s ...", url)
        try:
            ws = await websockets.connect(
                url,
                ping_interval=20,
                ping_timeout=10,
                max_size=1_000_000,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportInitFailed(f"could not reach stream server: {e}") from e

        self._ws = ws
        try:
            await self._send({
                "type": "hello",
                "session_id": ready_info.session_id,
                "token": credential,
                "mount": None if mount_point is None else str(mount_point),
                **self._mode_fields(),
            })
            await asyncio.wait_for(self._expect_ready(), timeout=self.handshake_timeout_s)
        except TransportInitFailed:
            await self._close_ws()
            raise
        except (ConnectionClosed, OSError, asyncio.TimeoutError) as e:
            await self._close_ws()
            raise TransportInitFailed(f"stream handshake failed: {e!r}") from e

        self._reader = asyncio.get_running_loop().create_task(self._read_loop(), name="transport-reader")
        if not self.quiet:
            logger.info(
                "stream channel up session=%s mode=%s codec=%s",
                self._session_id, self.negotiated.get("resolution"), self.negotiated.get("codec"),
            )

    async def sample(self) -> Optional[StatsSample]:
        if self._ws is None:
            return None
        return self._latest

    async def stop(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await reader
        for task in list(self._send_tasks):
            task.cancel()
        await self._close_ws()
        self._latest = None
        if not self.quiet:
            logger.info("stream channel stopped session=%s", self._session_id)

    def attach_input_capture(self, surface: InputSurface) -> Callable[[], None]:
        detach = surface.add_input_listener(self._forward_input)

        def release() -> None:
            detach()
            logger.debug("input capture released (%d events sent)", self.input_events_sent)

        return release

    # ---------------- internals ----------------
    def _mode_fields(self) -> dict[str, Any]:
        q = self.requested
        if q is None:
            return {}
        return {"resolution": q.resolution, "fps": q.fps, "codec": q.codec}

    async def _send(self, obj: dict) -> None:
        ws = self._ws
        if ws is None:
            return
        await ws.send(json.dumps(obj, separators=(",", ":")))

    async def _expect_ready(self) -> None:
        ws = self._ws
        while ws is not None:
            data = _decode(await ws.recv())
            if data is None:
                continue
            kind = data.get("type")
            if kind == "ready":
                self.negotiated = {k: v for k, v in data.items() if k != "type"}
                return
            if kind == "error":
                raise TransportInitFailed(f"stream server refused: {data.get('message', 'unknown error')}")
            if kind == "stats":
                self._on_stats(data)

    async def _read_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        reason = None
        try:
            async for raw in ws:
                data = _decode(raw)
                if data is None:
                    continue
                kind = data.get("type")
                if kind == "stats":
                    self._on_stats(data)
                elif kind == "error":
                    logger.error("stream server error: %s", data.get("message"))
        except ConnectionClosed as e:
            reason = str(e)
        finally:
            self._latest = None
        if reason is None:
            # clean closes end the iteration without raising
            reason = f"closed by server: {getattr(ws, 'close_code', None)} {getattr(ws, 'close_reason', '') or ''}".rstrip()
        logger.warning("stream channel closed: %s", reason)
        self._notify_disconnect(reason)

    def _notify_disconnect(self, reason: str) -> None:
        callback = self._disconnect_cb
        if callback is None:
            return
        try:
            callback(reason)
        except Exception as e:
            logger.error("disconnect callback failed: %s", e)

    def _on_stats(self, data: dict) -> None:
        try:
            self._latest = StatsSample.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.debug("bad stats frame %r: %s", data, e)

    def _forward_input(self, event: InputEvent) -> None:
        if self._ws is None:
            return
        task = asyncio.get_running_loop().create_task(self._send({"type": "input", "event": event}))
        self._send_tasks.add(task)
        task.add_done_callback(self._input_sent)
        self.input_events_sent += 1

    def _input_sent(self, task: asyncio.Task) -> None:
        self._send_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("input frame dropped: %s", task.exception())

    async def _close_ws(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()


def _decode(raw: Any) -> Optional[dict]:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="ignore")
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
