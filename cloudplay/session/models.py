"""Data model for the streaming-session core.

Quality presets mirror what the service accepts; the rest are the values
that flow between the controller and its collaborators.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Union

from .errors import InvalidQualityProfile
from .teardown import TeardownCoordinator


class Phase(Enum):
    """Position of the controller in the session lifecycle."""

    IDLE = "idle"
    REQUESTING = "requesting"
    AWAITING_SERVER = "awaiting_server"
    CONNECTED = "connected"
    STREAMING_ACTIVE = "streaming_active"
    EXITING = "exiting"
    FAILED = "failed"


CODECS = ("h264", "h265", "av1")
DEFAULT_CODEC = "h264"
UNLIMITED_BITRATE_MBPS = 200  # the service treats 200 as "no ceiling"

# Stream ports the service reports for RTSPS; the control channel uses 443.
_RTSPS_PORTS = (0, 322, 48322)


@dataclass(frozen=True)
class QualityProfile:
    """Named streaming preset: resolution, frame rate, codec, bitrate ceiling."""

    name: str
    resolution: str = "1920x1080"
    fps: int = 60
    codec: str = DEFAULT_CODEC
    max_bitrate_mbps: int = UNLIMITED_BITRATE_MBPS

    def __post_init__(self) -> None:
        if self.codec not in CODECS:
            raise InvalidQualityProfile(f"unsupported codec {self.codec!r}")
        if self.fps <= 0:
            raise InvalidQualityProfile(f"fps must be positive, got {self.fps}")
        if self.max_bitrate_mbps <= 0:
            raise InvalidQualityProfile("bitrate ceiling must be positive")
        _split_resolution(self.resolution)

    @property
    def width(self) -> int:
        return _split_resolution(self.resolution)[0]

    @property
    def height(self) -> int:
        return _split_resolution(self.resolution)[1]

    @property
    def max_bitrate_kbps(self) -> int:
        return self.max_bitrate_mbps * 1000

    @property
    def low_latency(self) -> bool:
        # High refresh presets get the low-latency mode by default.
        return self.fps >= 120

    def with_codec(self, codec: str) -> "QualityProfile":
        return replace(self, codec=codec)


def _split_resolution(resolution: str) -> tuple[int, int]:
    try:
        w, h = resolution.lower().split("x", 1)
        width, height = int(w), int(h)
    except (AttributeError, ValueError):
        raise InvalidQualityProfile(f"malformed resolution {resolution!r}") from None
    if width <= 0 or height <= 0:
        raise InvalidQualityProfile(f"malformed resolution {resolution!r}")
    return width, height


QUALITY_PRESETS: dict[str, QualityProfile] = {
    "auto": QualityProfile("auto", "1920x1080", 60),
    "low": QualityProfile("low", "1280x720", 30),
    "medium": QualityProfile("medium", "1920x1080", 60),
    "high": QualityProfile("high", "2560x1440", 60),
    "ultra": QualityProfile("ultra", "3840x2160", 60),
    "high120": QualityProfile("high120", "1920x1080", 120),
    "ultra120": QualityProfile("ultra120", "2560x1440", 120),
    "competitive": QualityProfile("competitive", "1920x1080", 240),
    "extreme": QualityProfile("extreme", "1920x1080", 360),
}


def resolve_quality(quality: Union[str, QualityProfile, None]) -> QualityProfile:
    """Return the profile for a preset name, or the profile itself."""
    if isinstance(quality, QualityProfile):
        return quality
    if quality is None:
        return QUALITY_PRESETS["auto"]
    key = str(quality).strip().lower()
    try:
        return QUALITY_PRESETS[key]
    except KeyError:
        known = ", ".join(QUALITY_PRESETS)
        raise InvalidQualityProfile(f"unknown quality preset {quality!r} (known: {known})") from None


@dataclass(frozen=True)
class TitleSelection:
    """A catalog entry picked by the user."""

    title_id: str
    name: str
    store_type: str = ""
    store_id: str = ""

    @classmethod
    def coerce(cls, value: Union[str, "TitleSelection"]) -> "TitleSelection":
        if isinstance(value, TitleSelection):
            return value
        text = str(value).strip()
        return cls(title_id=text, name=text)


@dataclass(frozen=True)
class SessionRequest:
    title: TitleSelection
    quality: QualityProfile
    preferred_server: Optional[str] = None


@dataclass
class SessionHandle:
    """Identity of a remote session once the service acknowledged it."""

    session_id: str
    server_address: Optional[str] = None
    accelerator: Optional[str] = None
    zone: Optional[str] = None
    status: Optional[int] = None


@dataclass(frozen=True)
class ConnectionInfo:
    control_ip: str
    control_port: int = 443
    stream_ip: Optional[str] = None
    stream_port: int = 443
    resource_path: str = "/nvst/"

    @classmethod
    def normalized(
        cls,
        *,
        control_ip: str = "",
        control_port: int = 443,
        stream_ip: Optional[str] = None,
        stream_port: int = 0,
        resource_path: Optional[str] = None,
    ) -> "ConnectionInfo":
        port = 443 if stream_port in _RTSPS_PORTS else int(stream_port)
        return cls(
            control_ip=control_ip,
            control_port=int(control_port or 443),
            stream_ip=stream_ip or control_ip or None,
            stream_port=port,
            resource_path=resource_path or "/nvst/",
        )

    @property
    def host(self) -> str:
        return self.stream_ip or self.control_ip


@dataclass(frozen=True)
class ReadyInfo:
    """What the service reports once a session can accept a stream."""

    session_id: str
    phase: str = "ready"
    server_address: Optional[str] = None
    accelerator: Optional[str] = None
    connection: Optional[ConnectionInfo] = None


@dataclass(frozen=True)
class QueueProgress:
    status: int
    step: int = 0
    queue_position: int = 0
    eta_ms: int = 0


@dataclass(frozen=True)
class StatsSample:
    fps: float
    latency_ms: float
    bitrate_kbps: int
    packet_loss: float
    resolution: str
    codec: str
    jitter_ms: Optional[float] = None
    round_trip_ms: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatsSample":
        return cls(
            fps=float(data.get("fps", 0.0)),
            latency_ms=float(data.get("latency_ms", 0.0)),
            bitrate_kbps=int(data.get("bitrate_kbps", 0)),
            packet_loss=float(data.get("packet_loss", 0.0)),
            resolution=str(data.get("resolution", "")),
            codec=str(data.get("codec", "")),
            jitter_ms=_opt_float(data.get("jitter_ms")),
            round_trip_ms=_opt_float(data.get("round_trip_ms")),
        )


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class PreparedLaunch:
    """Output of the request gate: the request and the credential used."""

    request: SessionRequest
    credential: str


@dataclass
class SessionContext:
    """All per-attempt state. Owned by the controller, one per launch."""

    title: TitleSelection
    request: Optional[SessionRequest] = None
    credential: Optional[str] = None
    handle: Optional[SessionHandle] = None
    ready_info: Optional[ReadyInfo] = None
    teardown: TeardownCoordinator = field(default_factory=TeardownCoordinator)
    stop_requested: bool = False
    finished: bool = False
    settled: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started_at
