"""Concrete collaborators for the session controller (HTTP, websocket, telemetry)."""

from .cloudmatch import HttpSessionService
from .presence_client import HttpPresenceService
from .streaming_telemetry import StreamingSnapshot, StreamingTelemetry, streaming_telemetry
from .transport import WebSocketTransport

__all__ = [
    "HttpSessionService",
    "HttpPresenceService",
    "StreamingSnapshot",
    "StreamingTelemetry",
    "streaming_telemetry",
    "WebSocketTransport",
]
