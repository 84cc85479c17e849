"""HTTP client for the remote session service.

Implements the remote session contract against the v2 session API:

    POST   {base}/v2/session          create a session for a title
    GET    {base}/v2/session/{id}     poll setup progress
    DELETE {base}/v2/session/{id}     stop a session
    GET    {base}/v2/session          list the account's active sessions

Every response carries ``requestStatus.statusCode``; 1 means success.
A session's ``status`` is 1 while a seat is being set up, 2 once it accepts
a stream, and 0 or below (with ``errorCode != 1``) when setup failed.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Optional

import httpx

from ..session.errors import SessionNotReady, SessionRequestFailed
from ..session.models import ConnectionInfo, QueueProgress, ReadyInfo, SessionHandle, SessionRequest

logger = logging.getLogger(__name__)

STATUS_SETTING_UP = 1
STATUS_READY = 2
STATUS_STREAMING = 3

DEFAULT_POLL_INTERVAL_MS = 1500
DEFAULT_MAX_POLLS = 120  # ~3 minutes at the default interval

CLIENT_VERSION = "2.0.80.173"

ProgressCallback = Callable[[QueueProgress], None]


class HttpSessionService:
    """``httpx.AsyncClient`` implementation of the remote session service."""

    def __init__(
        self,
        base_url: str,
        *,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_polls: int = DEFAULT_MAX_POLLS,
        timeout_s: float = 15.0,
        on_progress: Optional[ProgressCallback] = None,
        client: Optional[httpx.AsyncClient] = None,
        device_id: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.poll_interval_s = max(0.0, poll_interval_ms / 1000.0)
        self.max_polls = max(1, int(max_polls))
        self.on_progress = on_progress
        self._timeout = httpx.Timeout(timeout_s)
        self._client = client
        self._owns_client = client is None
        self._device_id = device_id or str(uuid.uuid4())
        self._client_id = str(uuid.uuid4())
        self._cancelled = asyncio.Event()
        # session id -> control server base URL learned from the create call
        self._control_bases: dict[str, str] = {}

    # ---------------- lifecycle ----------------
    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HttpSessionService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ---------------- session API ----------------
    async def start_session(self, request: SessionRequest, credential: str) -> SessionHandle:
        body = build_session_request_body(request, device_id=self._device_id, client_id=self._client_id)
        url = f"{self.base_url}/v2/session"
        logger.info(
            "requesting session title=%s %s@%dfps codec=%s",
            request.title.name, request.quality.resolution, request.quality.fps, request.quality.codec,
        )
        try:
            response = await self._request(
                "POST", url, credential,
                json=body,
                params={"keyboardLayout": "en-US", "languageCode": "en_US"},
            )
        except httpx.HTTPError as e:
            raise SessionRequestFailed(f"session request failed: {e}") from e

        if response.status_code in (401, 403):
            raise SessionRequestFailed(
                f"session service refused the credential ({response.status_code})",
                error_code=response.status_code,
            )
        if response.is_error:
            raise SessionRequestFailed(
                f"session request failed: {response.status_code} {response.text[:200]}",
                error_code=response.status_code,
            )
        data = _json(response, SessionRequestFailed)
        _check_request_status(data, SessionRequestFailed)

        session = data.get("session") or {}
        session_id = session.get("sessionId")
        if not session_id:
            raise SessionRequestFailed("session response did not include a session id")
        control_ip = (session.get("sessionControlInfo") or {}).get("ip")
        if control_ip:
            self._control_bases[session_id] = f"https://{control_ip}"
        handle = SessionHandle(
            session_id=session_id,
            server_address=control_ip,
            accelerator=session.get("gpuType"),
            zone=(data.get("requestStatus") or {}).get("serverId"),
            status=session.get("status"),
        )
        logger.info("session %s created (server=%s)", handle.session_id, handle.zone or "?")
        return handle

    async def await_ready(self, session_id: str, credential: str) -> ReadyInfo:
        """Poll until the session is ready, failed, cancelled or out of polls."""
        self._cancelled.clear()
        url = f"{self._control_bases.get(session_id, self.base_url)}/v2/session/{session_id}"
        last: Optional[tuple[int, int, int]] = None
        started = time.monotonic()

        for attempt in range(1, self.max_polls + 1):
            if self._cancelled.is_set():
                raise SessionNotReady("polling cancelled")
            try:
                response = await self._request("GET", url, credential)
            except httpx.HTTPError as e:
                raise SessionNotReady(f"poll request failed: {e}") from e
            if response.is_error:
                raise SessionNotReady(
                    f"poll failed: {response.status_code} {response.text[:200]}",
                    error_code=response.status_code,
                )
            data = _json(response, SessionNotReady)
            _check_request_status(data, SessionNotReady)

            session = data.get("session") or {}
            status = int(session.get("status") or 0)
            seat = session.get("seatSetupInfo") or {}
            progress = QueueProgress(
                status=status,
                step=int(seat.get("seatSetupStep") or 0),
                queue_position=int(seat.get("queuePosition") or 0),
                eta_ms=int(seat.get("seatSetupEta") or 0),
            )
            if (progress.status, progress.step, progress.queue_position) != last:
                last = (progress.status, progress.step, progress.queue_position)
                logger.info(
                    "session %s status=%d step=%d queue=%d eta=%dms gpu=%s",
                    session_id, status, progress.step, progress.queue_position,
                    progress.eta_ms, session.get("gpuType"),
                )
                if self.on_progress is not None:
                    try:
                        self.on_progress(progress)
                    except Exception as e:
                        logger.warning("progress callback failed: %s", e)

            if status in (STATUS_READY, STATUS_STREAMING):
                ready = parse_ready_info(session_id, session)
                logger.info(
                    "session %s ready after %d polls (%.1fs) gpu=%s",
                    session_id, attempt, time.monotonic() - started, ready.accelerator,
                )
                return ready
            error_code = session.get("errorCode") or 0
            if status <= 0 and error_code != 1:
                raise SessionNotReady(f"session failed with error code {error_code}", error_code=error_code)

            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=self.poll_interval_s)
            except asyncio.TimeoutError:
                pass

        raise SessionNotReady(f"session not ready after {self.max_polls} polls")

    async def cancel_await(self) -> None:
        logger.info("cancelling session polling")
        self._cancelled.set()

    async def stop_session(self, session_id: str, credential: str) -> None:
        base = self._control_bases.pop(session_id, self.base_url)
        try:
            response = await self._request("DELETE", f"{base}/v2/session/{session_id}", credential)
        except httpx.HTTPError as e:
            logger.warning("stopping session %s failed: %s", session_id, e)
            raise
        if response.is_error:
            logger.warning("session stop returned %s - %s", response.status_code, response.text[:200])
        else:
            logger.info("session %s stopped", session_id)

    async def list_active_sessions(self, credential: str) -> list[SessionHandle]:
        response = await self._request("GET", f"{self.base_url}/v2/session", credential)
        response.raise_for_status()
        data = response.json()
        handles = []
        for session in data.get("sessions") or []:
            status = int(session.get("status") or 0)
            if status not in (STATUS_SETTING_UP, STATUS_READY, STATUS_STREAMING):
                continue
            handles.append(
                SessionHandle(
                    session_id=str(session.get("sessionId", "")),
                    server_address=(session.get("sessionControlInfo") or {}).get("ip"),
                    accelerator=session.get("gpuType"),
                    status=status,
                )
            )
        return handles

    # ---------------- helpers ----------------
    async def _request(self, method: str, url: str, credential: str, **kwargs: Any) -> httpx.Response:
        client = await self.get_client()
        headers = {
            "Authorization": f"GFNJWT {credential}",
            "nv-client-id": self._client_id,
            "nv-client-type": "NATIVE",
            "nv-client-version": CLIENT_VERSION,
            "nv-client-streamer": "NVIDIA-CLASSIC",
            "nv-device-type": "DESKTOP",
            "x-device-id": self._device_id,
        }
        return await client.request(method, url, headers=headers, **kwargs)


def build_session_request_body(request: SessionRequest, *, device_id: str, client_id: str) -> dict[str, Any]:
    quality = request.quality
    return {
        "sessionRequestData": {
            "appId": request.title.title_id,
            "internalTitle": request.title.name or None,
            "clientIdentification": "GFN-PC",
            "deviceHashId": device_id,
            "clientVersion": "30.0",
            "clientPlatformName": "windows",
            "clientRequestMonitorSettings": [
                {
                    "widthInPixels": quality.width,
                    "heightInPixels": quality.height,
                    "framesPerSecond": quality.fps,
                    "sdrHdrMode": 0,
                }
            ],
            "requestedStreamingFeatures": {
                "reflex": quality.low_latency,
                "codec": quality.codec.upper(),
                "maxBitrateKbps": quality.max_bitrate_kbps,
            },
            "metaData": [
                {"key": "clientId", "value": client_id},
                {"key": "storeType", "value": request.title.store_type},
                {"key": "storeId", "value": request.title.store_id},
                {"key": "preferredServer", "value": request.preferred_server or ""},
            ],
            "audioMode": 2,
            "appLaunchMode": 1,
            "secureRTSPSupported": False,
            "accountLinked": True,
        }
    }


def parse_ready_info(session_id: str, session: dict[str, Any]) -> ReadyInfo:
    control = session.get("sessionControlInfo") or {}
    control_ip = control.get("ip") or ""
    connections = session.get("connectionInfo") or []
    connection = None
    if connections:
        first = connections[0]
        connection = ConnectionInfo.normalized(
            control_ip=control_ip,
            control_port=int(control.get("port") or 443),
            stream_ip=first.get("ip"),
            stream_port=int(first.get("port") or 0),
            resource_path=first.get("resourcePath"),
        )
    return ReadyInfo(
        session_id=session.get("sessionId") or session_id,
        phase="ready",
        server_address=control_ip or None,
        accelerator=session.get("gpuType"),
        connection=connection,
    )


def _json(response: httpx.Response, error_cls: type) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise error_cls(f"unreadable response from session service: {e}") from e
    if not isinstance(data, dict):
        raise error_cls("unexpected response shape from session service")
    return data


def _check_request_status(data: dict[str, Any], error_cls: type) -> None:
    status = data.get("requestStatus") or {}
    code = status.get("statusCode", 1)
    if code != 1:
        description = status.get("statusDescription") or "unknown error"
        raise error_cls(
            f"session service error {code}: {description}",
            error_code=status.get("unifiedErrorCode", code),
        )
