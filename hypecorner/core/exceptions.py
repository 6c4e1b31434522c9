"""Custom exceptions for the application."""

from __future__ import annotations

from typing import Optional

from .entities import TerminationReason


class ApplicationError(Exception):
    """Base application error."""
    pass

class ConfigError(ApplicationError):
    """Configuration-related errors."""
    pass

class ServiceError(ApplicationError):
    """Service operation errors."""
    pass

class AlreadyRunningError(ServiceError):
    """Raised when a capture session is started twice."""
    pass

class SessionError(ServiceError):
    """Fatal to the current capture session, never retried internally."""
    pass

class StreamNotFoundError(SessionError):
    """No playable stream could be resolved for the channel."""
    pass

class TranscoderError(SessionError):
    """The ffmpeg transcoder could not be started."""
    pass

class CaptureOpenError(SessionError):
    """The OpenCV capture handle could not be opened."""
    pass

class RecognitionError(ApplicationError):
    """A single frame could not be recognised."""
    pass

class StreamResolutionError(ServiceError):
    """Stream discovery request failed."""
    pass

class OrchestraError(ServiceError):
    """Orchestra API request failed."""
    pass

class HostingError(ServiceError):
    """A hosting provider failed to host a channel."""
    pass


class WatchError(ApplicationError):
    """The watched channel no longer qualifies for being watched."""

    def __init__(self, reason: TerminationReason, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail or reason.value
        super().__init__(self.detail)

class WatchTimeout(WatchError):
    """A watch deadline expired (frames, scoreboard or staleness)."""
    pass

class WatchRejection(WatchError):
    """The channel was rejected (not match point, hosting denied, cancelled)."""
    pass
