"""Core domain entities, exceptions and data structures."""

from .entities import (
    NO_MATCH, ScoreSnapshot, Recognition, StreamInfo, OrchestraEvent, ChannelListing,
    WatchOutcome, SessionState, WatchState, TerminationReason, EventKind, Rect,
)
from .exceptions import (
    ApplicationError, ConfigError, ServiceError, SessionError, RecognitionError, WatchError,
)
from .temporal_buffer import TemporalBuffer

__all__ = [
    "NO_MATCH", "ScoreSnapshot", "Recognition", "StreamInfo", "OrchestraEvent",
    "ChannelListing", "WatchOutcome", "SessionState", "WatchState",
    "TerminationReason", "EventKind", "Rect",
    "ApplicationError", "ConfigError", "ServiceError", "SessionError",
    "RecognitionError", "WatchError", "TemporalBuffer",
]
