"""Contracts of the collaborators the session controller drives.

Only the shape matters to the controller; concrete implementations live in
``cloudplay.engine`` and test doubles in ``cloudplay.tests.fakes``.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

from .models import ReadyInfo, SessionHandle, SessionRequest, StatsSample

InputEvent = dict[str, Any]
InputListener = Callable[[InputEvent], None]


class CredentialProvider(Protocol):
    def get_credential(self) -> Optional[str]:
        """Return the current access token, or None when signed out."""


class RemoteSessionService(Protocol):
    async def start_session(self, request: SessionRequest, credential: str) -> SessionHandle: ...

    async def await_ready(self, session_id: str, credential: str) -> ReadyInfo: ...

    async def stop_session(self, session_id: str, credential: str) -> None: ...

    async def cancel_await(self) -> None: ...

    async def list_active_sessions(self, credential: str) -> list[SessionHandle]: ...


class InputSurface(Protocol):
    def add_input_listener(self, listener: InputListener) -> Callable[[], None]:
        """Start delivering input events; the returned callable detaches."""


class TransportEngine(Protocol):
    async def initialize(self, ready_info: ReadyInfo, credential: str, mount_point: Any) -> None: ...

    async def sample(self) -> Optional[StatsSample]: ...

    async def stop(self) -> None: ...

    def attach_input_capture(self, surface: InputSurface) -> Callable[[], None]: ...


class PresenceService(Protocol):
    async def set_queued(self, title: str) -> None: ...

    async def set_playing(self, title: str, title_id: str, details: dict[str, Any]) -> None: ...

    async def set_idle(self) -> None: ...

    async def update_stats(self, title: str, details: dict[str, Any]) -> None: ...
