"""
Streaming-session core for CloudPlay.

Core Components:
- SessionRequestGate: credential check + request assembly
- SessionLifecycleController: phase state machine and orchestration
- TeardownCoordinator: exactly-once, newest-first release of resources
- StatsMonitor: fixed-cadence stats polling while streaming
- PresenceReporter: fire-and-forget presence notifications
"""

from .errors import (
    StreamingError,
    NotAuthenticated,
    SessionAlreadyActive,
    InvalidPhaseTransition,
    InvalidQualityProfile,
    SessionRequestFailed,
    SessionConflict,
    SessionNotReady,
    TransportInitFailed,
    StreamInterrupted,
    PresenceReportFailed,
)

from .models import (
    Phase,
    QualityProfile,
    QUALITY_PRESETS,
    resolve_quality,
    TitleSelection,
    SessionRequest,
    SessionHandle,
    ConnectionInfo,
    ReadyInfo,
    QueueProgress,
    StatsSample,
    PreparedLaunch,
    SessionContext,
)

from .events import (
    SessionEventType,
    SessionEvent,
    SessionEventEmitter,
)

from .teardown import TeardownCoordinator
from .gate import SessionRequestGate, StaticCredentialProvider, EnvCredentialProvider
from .stats import StatsMonitor, format_bitrate, latency_grade
from .presence import PresenceReporter
from .key_hold import KeyHoldWatcher
from .controller import SessionLifecycleController

__all__ = [
    # Errors
    'StreamingError',
    'NotAuthenticated',
    'SessionAlreadyActive',
    'InvalidPhaseTransition',
    'InvalidQualityProfile',
    'SessionRequestFailed',
    'SessionConflict',
    'SessionNotReady',
    'TransportInitFailed',
    'StreamInterrupted',
    'PresenceReportFailed',

    # Data model
    'Phase',
    'QualityProfile',
    'QUALITY_PRESETS',
    'resolve_quality',
    'TitleSelection',
    'SessionRequest',
    'SessionHandle',
    'ConnectionInfo',
    'ReadyInfo',
    'QueueProgress',
    'StatsSample',
    'PreparedLaunch',
    'SessionContext',

    # Event system
    'SessionEventType',
    'SessionEvent',
    'SessionEventEmitter',

    # Components
    'TeardownCoordinator',
    'SessionRequestGate',
    'StaticCredentialProvider',
    'EnvCredentialProvider',
    'StatsMonitor',
    'format_bitrate',
    'latency_grade',
    'PresenceReporter',
    'KeyHoldWatcher',
    'SessionLifecycleController',
]
