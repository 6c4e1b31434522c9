"""Domain entities (data-only structures) used across services."""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

NO_MATCH = -1  # recognition sentinel, kept negative so it reads as "not visible"

class SessionState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"

class WatchState(Enum):
    AWAITING_FRAMES = "awaiting_frames"
    AWAITING_SCOREBOARD = "awaiting_scoreboard"
    CHECKING_MATCH_POINT = "checking_match_point"
    HOSTING = "hosting"
    MONITORING = "monitoring"
    TERMINATED = "terminated"

class TerminationReason(Enum):
    TIMEOUT = "timeout"
    SCOREBOARD_NOT_FOUND = "scoreboard_not_found"
    NOT_MATCH_POINT = "not_match_point"
    HOSTING_DENIED = "hosting_denied"
    CANCELLED = "cancelled"
    LOST_TRACKING = "lost_tracking"
    CAPTURE_ENDED = "capture_ended"

class EventKind(Enum):
    SKIP = "ORCHESTRA_SKIP"
    HEARTBEAT = "HEARTBEAT"
    OTHER = "OTHER"


@dataclass(frozen=True, slots=True)
class ScoreSnapshot:
    """Filtered (left, right) score pair. Negative means not visible."""
    left: int = NO_MATCH
    right: int = NO_MATCH

    def is_visible(self) -> bool:
        return self.left >= 0 and self.right >= 0

    def is_match_point(self, threshold: int = 2) -> bool:
        return self.left >= threshold or self.right >= threshold

    def as_list(self) -> List[int]:
        return [self.left, self.right]

    def __str__(self) -> str:
        return f"[ {self.left} ] <> [ {self.right} ]"


@dataclass(slots=True)
class Recognition:
    """Outcome of recognising one region of one frame."""
    digit: int
    tallies: List[int]
    votes: int = 0

    @property
    def is_match(self) -> bool:
        return self.digit != NO_MATCH


@dataclass(frozen=True, slots=True)
class StreamInfo:
    """A playable variant of a live stream."""
    quality: str            # "480p", "720p60", "1080p60 (source)"
    quality_no: int         # 480, 720, 1080 or 0 when unknown
    resolution: Optional[str]
    url: str


@dataclass(frozen=True, slots=True)
class OrchestraEvent:
    """Typed message forwarded from the orchestra gateway."""
    kind: EventKind
    name: str
    payload: Any = None
    raw: str = ""


@dataclass(frozen=True, slots=True)
class ChannelListing:
    name: str
    viewers: int = 0
    language: str = ""


@dataclass(slots=True)
class WatchOutcome:
    """Terminal result of watching one capture session."""
    channel: str
    reason: TerminationReason
    detail: str
    last_snapshot: ScoreSnapshot = field(default_factory=ScoreSnapshot)
    states: List[WatchState] = field(default_factory=list)
    hosted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel': self.channel,
            'reason': self.reason.value,
            'detail': self.detail,
            'scores': self.last_snapshot.as_list(),
            'states': [s.value for s in self.states],
            'hosted': self.hosted,
        }


Rect = Tuple[int, int, int, int]  # (x, y, w, h) in pixels
