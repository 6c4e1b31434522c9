"""Decision loop deciding whether a watched channel is worth hosting.

The controller walks a fixed sequence of states::

    AWAITING_FRAMES -> AWAITING_SCOREBOARD -> CHECKING_MATCH_POINT
        -> HOSTING -> MONITORING -> TERMINATED

Every waiting state polls with a sleep and has a deadline measured from
the moment the state was entered. Any failure ends the watch with a
:class:`TerminationReason`; :meth:`WatchController.run` reports it as a
:class:`WatchOutcome` instead of raising.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, List, Optional, Protocol

from ..config.types import WatchSettings
from ..core.entities import (
    EventKind, OrchestraEvent, ScoreSnapshot, TerminationReason, WatchOutcome, WatchState,
)
from ..core.exceptions import WatchError, WatchRejection, WatchTimeout
from .hosting import HostingProvider

logger = logging.getLogger(__name__)


class WatchedSession(Protocol):
    @property
    def frame_count(self) -> int: ...

    @property
    def is_stopped(self) -> bool: ...

    def jpeg_thumbnail(self) -> Optional[bytes]: ...


class ScoreSource(Protocol):
    def snapshot(self) -> ScoreSnapshot: ...

    def is_scoreboard_visible(self) -> bool: ...

    def is_match_point(self) -> bool: ...

    def status(self) -> dict: ...


class WatchController:
    """Runs the watch state machine over one capture session."""

    def __init__(self, channel: str, session: WatchedSession, engine: ScoreSource,
                 host: HostingProvider, settings: Optional[WatchSettings] = None,
                 events: Optional["queue.Queue[OrchestraEvent]"] = None,
                 cancel_event: Optional[threading.Event] = None,
                 on_score_update: Optional[Callable[[ScoreSnapshot], None]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the controller.

        Args:
            channel: Name of the watched channel
            session: Capture session feeding the engine
            engine: Source of the smoothed score snapshot
            host: Hosting provider used once the channel qualifies
            settings: Poll intervals, deadlines and frame threshold
            events: Orchestra events; a skip event cancels the watch
            cancel_event: Set by an operator to cancel the watch
            on_score_update: Called with every new snapshot while monitoring
            clock: Monotonic clock in seconds
            sleep: Sleep function used between polls
        """
        self.channel = channel
        self.session = session
        self.engine = engine
        self.host = host
        self.settings = settings or WatchSettings()
        self.events = events
        self.cancel_event = cancel_event
        self.on_score_update = on_score_update
        self._clock = clock
        self._sleep = sleep

        self.states: List[WatchState] = []
        self._state: Optional[WatchState] = None
        self._entered_at = 0.0

    @property
    def state(self) -> Optional[WatchState]:
        return self._state

    def run(self) -> WatchOutcome:
        """Watch until the channel stops qualifying."""
        self.states = []
        self._drain_stale_events()
        hosted = False

        try:
            self._await_frames()
            self._await_scoreboard()
            self._check_match_point()
            self._host()
            hosted = True
            self._monitor()
            reason, detail = TerminationReason.CAPTURE_ENDED, "monitoring ended"
        except WatchError as e:
            reason, detail = e.reason, e.detail

        self._enter(WatchState.TERMINATED)
        outcome = WatchOutcome(
            channel=self.channel, reason=reason, detail=detail,
            last_snapshot=self.engine.snapshot(), states=list(self.states), hosted=hosted,
        )
        logger.info(f"Stopped watching {self.channel}: {reason.value} ({detail})")
        return outcome

    def _enter(self, state: WatchState) -> None:
        self._state = state
        self.states.append(state)
        self._entered_at = self._clock()
        logger.debug(f"{self.channel}: {state.value}")

    def _elapsed(self) -> float:
        return self._clock() - self._entered_at

    def _drain_stale_events(self) -> None:
        if self.events is None:
            return
        drained = 0
        while True:
            try:
                self.events.get_nowait()
                drained += 1
            except queue.Empty:
                break
        if drained:
            logger.debug(f"Discarded {drained} stale orchestra event(s)")

    def _skip_requested(self) -> bool:
        if self.events is None:
            return False
        skip = False
        while True:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                return skip
            if event.kind is EventKind.SKIP:
                skip = True
            else:
                logger.debug(f"Ignoring orchestra event {event.name}")

    def _check_interrupts(self) -> None:
        if (self.cancel_event is not None and self.cancel_event.is_set()) or self._skip_requested():
            raise WatchRejection(TerminationReason.CANCELLED, "watch terminated by external source")
        if self.session.is_stopped:
            raise WatchRejection(TerminationReason.CAPTURE_ENDED, "capture session stopped")

    def _await_frames(self) -> None:
        self._enter(WatchState.AWAITING_FRAMES)
        s = self.settings
        while True:
            self._check_interrupts()
            if self.session.frame_count >= s.min_frames:
                return
            if self._elapsed() >= s.frame_timeout:
                raise WatchTimeout(TerminationReason.TIMEOUT,
                                   f"fewer than {s.min_frames} frames after {s.frame_timeout}s")
            self._sleep(s.frame_poll_interval)

    def _await_scoreboard(self) -> None:
        self._enter(WatchState.AWAITING_SCOREBOARD)
        s = self.settings
        while True:
            self._check_interrupts()
            if self.engine.is_scoreboard_visible():
                return
            if self._elapsed() >= s.scoreboard_timeout:
                raise WatchTimeout(TerminationReason.SCOREBOARD_NOT_FOUND,
                                   f"scoreboard not visible after {s.scoreboard_timeout}s")
            self._sleep(s.scoreboard_poll_interval)

    def _check_match_point(self) -> None:
        self._enter(WatchState.CHECKING_MATCH_POINT)
        self._check_interrupts()
        if not self.engine.is_match_point():
            raise WatchRejection(TerminationReason.NOT_MATCH_POINT,
                                 f"not on match point {self.engine.snapshot()}")

    def _host(self) -> None:
        self._enter(WatchState.HOSTING)
        self._check_interrupts()

        thumbnail = None
        try:
            thumbnail = self.session.jpeg_thumbnail()
        except Exception as e:
            logger.warning(f"Could not encode a thumbnail of {self.channel}: {e}")

        logger.info(f"Attempting to host {self.channel}")
        try:
            hosted = self.host.host(self.channel, thumbnail)
        except Exception as e:
            raise WatchRejection(TerminationReason.HOSTING_DENIED, f"hosting failed: {e}") from e
        if not hosted:
            raise WatchRejection(TerminationReason.HOSTING_DENIED, "cannot host the channel")

    def _notify(self, snapshot: ScoreSnapshot) -> None:
        if self.on_score_update is None:
            return
        try:
            self.on_score_update(snapshot)
        except Exception as e:
            logger.warning(f"Score update {snapshot} failed: {e}")

    def _monitor(self) -> None:
        self._enter(WatchState.MONITORING)
        s = self.settings
        logger.info(f"Watching {self.channel} for the end of the game")

        last_tracked = self._clock()
        previous_frames = self.session.frame_count
        previous_snapshot = ScoreSnapshot()
        while True:
            self._check_interrupts()

            status = self.engine.status()
            frames = self.session.frame_count
            if status['visible'] and status['match_point'] and frames > previous_frames:
                last_tracked = self._clock()
            previous_frames = frames

            snapshot = status['snapshot']
            if snapshot != previous_snapshot:
                previous_snapshot = snapshot
                self._notify(snapshot)

            if self._clock() - last_tracked >= s.stale_timeout:
                raise WatchTimeout(TerminationReason.LOST_TRACKING,
                                   "failed to maintain the scoreboard visibility")
            self._sleep(s.monitor_interval)
