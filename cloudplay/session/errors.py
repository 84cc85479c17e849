"""Error taxonomy for the streaming-session lifecycle.

Errors raised before any resource exists (no credential, rejected request)
leave the controller in Idle with nothing to release. Errors raised after a
remote session may exist are routed through teardown first, so by the time a
caller sees them the controller is back in Idle. ``TransportInitFailed`` is
the exception: the remote session stays alive in Connected.
"""

from __future__ import annotations

from typing import Optional, Sequence


class StreamingError(Exception):
    """Base class for every error raised by the session core."""

    kind = "streaming_error"

    def __init__(self, message: str = "", *, error_code: Optional[int] = None) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.error_code = error_code


class NotAuthenticated(StreamingError):
    """No usable credential; aborts before any remote call."""

    kind = "not_authenticated"


class SessionAlreadyActive(StreamingError):
    """``launch`` called while a session attempt is already underway."""

    kind = "session_already_active"


class InvalidPhaseTransition(StreamingError):
    """``cancel``/``exit`` called in a phase that does not allow it."""

    kind = "invalid_phase"


class InvalidQualityProfile(StreamingError, ValueError):
    """Unknown quality preset name or malformed profile values."""

    kind = "invalid_quality"


class SessionRequestFailed(StreamingError):
    """The remote service rejected (or never acknowledged) the request."""

    kind = "session_request_failed"


class SessionConflict(SessionRequestFailed):
    """The account already owns an active remote session."""

    kind = "session_conflict"

    def __init__(self, message: str = "", *, sessions: Sequence = ()) -> None:
        super().__init__(message or "an active session already exists")
        self.sessions = list(sessions)


class SessionNotReady(StreamingError):
    """Waiting for the remote session failed, errored or timed out."""

    kind = "session_not_ready"


class TransportInitFailed(StreamingError):
    """The video/input path could not be brought up for a live session."""

    kind = "transport_init_failed"


class StreamInterrupted(StreamingError):
    """The stream channel of a live session closed without being asked to."""

    kind = "stream_interrupted"


class PresenceReportFailed(StreamingError):
    """A presence notification failed. Never propagated past the reporter."""

    kind = "presence_report_failed"


__all__ = [
    "StreamingError",
    "NotAuthenticated",
    "SessionAlreadyActive",
    "InvalidPhaseTransition",
    "InvalidQualityProfile",
    "SessionRequestFailed",
    "SessionConflict",
    "SessionNotReady",
    "TransportInitFailed",
    "StreamInterrupted",
    "PresenceReportFailed",
]
