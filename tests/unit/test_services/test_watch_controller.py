"""Unit tests for the watch state machine.

Time is driven by a fake clock whose sleep advances it, so every deadline
is exercised without real waiting.
"""
import queue
import threading

import pytest

from conftest import FakeClock, FakeScores, FakeSession
from hypecorner.config.types import WatchSettings
from hypecorner.core.entities import (
    EventKind, OrchestraEvent, ScoreSnapshot, TerminationReason, WatchState,
)
from hypecorner.core.exceptions import HostingError
from hypecorner.services.hosting import DebugHost
from hypecorner.services.watch_controller import WatchController

SKIP = OrchestraEvent(EventKind.SKIP, "ORCHESTRA_SKIP")


class RefusingHost(DebugHost):

    def __init__(self, error=None):
        super().__init__()
        self.error = error

    def host(self, channel, thumbnail=None):
        if self.error is not None:
            raise self.error
        return False


def make_controller(session, scores, clock, host=None, **kwargs):
    return WatchController(
        "somechannel", session, scores, host or DebugHost(), WatchSettings(),
        clock=clock, sleep=clock.sleep, **kwargs
    )


@pytest.fixture
def ready_session():
    return FakeSession(frame_count=10)


class TestWatchController:
    """Test suite for WatchController."""

    def test_timeout_without_frames(self, fake_clock, fake_scores):
        controller = make_controller(FakeSession(frame_count=0), fake_scores, fake_clock)
        start = fake_clock.now

        outcome = controller.run()

        assert outcome.reason is TerminationReason.TIMEOUT
        assert outcome.states == [WatchState.AWAITING_FRAMES, WatchState.TERMINATED]
        assert fake_clock.now - start == pytest.approx(120.0, abs=0.2)
        assert not outcome.hosted

    def test_scoreboard_not_found(self, fake_clock, fake_scores, ready_session):
        controller = make_controller(ready_session, fake_scores, fake_clock)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.SCOREBOARD_NOT_FOUND
        assert outcome.states == [
            WatchState.AWAITING_FRAMES, WatchState.AWAITING_SCOREBOARD, WatchState.TERMINATED,
        ]

    def test_not_match_point(self, fake_clock, ready_session):
        host = DebugHost()
        controller = make_controller(ready_session, FakeScores(1, 0), fake_clock, host)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.NOT_MATCH_POINT
        assert outcome.last_snapshot == ScoreSnapshot(1, 0)
        assert outcome.states[-2] is WatchState.CHECKING_MATCH_POINT
        assert host.hosted == []

    def test_hosting_refused(self, fake_clock, ready_session):
        controller = make_controller(ready_session, FakeScores(2, 0), fake_clock, RefusingHost())

        outcome = controller.run()

        assert outcome.reason is TerminationReason.HOSTING_DENIED
        assert outcome.states[-2] is WatchState.HOSTING
        assert not outcome.hosted

    def test_hosting_error(self, fake_clock, ready_session):
        host = RefusingHost(error=HostingError("orchestra down"))
        controller = make_controller(ready_session, FakeScores(0, 2), fake_clock, host)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.HOSTING_DENIED
        assert "orchestra down" in outcome.detail

    def test_deadlines_measured_from_state_entry(self, fake_clock, fake_scores):
        """Frames arriving late do not eat into the scoreboard deadline."""
        session = FakeSession(frame_count=0)
        start = fake_clock.now

        def on_sleep(now):
            if now - start >= 100:
                session.frame_count = 10
            if now - start >= 109:
                fake_scores.set(2, 1)
            if now - start >= 140:
                fake_scores.set(-1, -1)

        fake_clock.on_sleep(on_sleep)
        host = DebugHost()
        controller = make_controller(session, fake_scores, fake_clock, host)

        outcome = controller.run()

        assert host.hosted == ["somechannel"]
        assert outcome.reason is TerminationReason.LOST_TRACKING

    def test_lost_tracking_after_game_ends(self, fake_clock, ready_session):
        scores = FakeScores(2, 1)
        start = fake_clock.now
        updates = []

        def on_sleep(now):
            ready_session.frame_count += 5
            if now - start >= 30:
                scores.set(-1, -1)

        fake_clock.on_sleep(on_sleep)
        host = DebugHost()
        controller = make_controller(ready_session, scores, fake_clock, host,
                                     on_score_update=updates.append)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.LOST_TRACKING
        assert outcome.hosted
        assert host.hosted == ["somechannel"]
        assert outcome.states == [
            WatchState.AWAITING_FRAMES, WatchState.AWAITING_SCOREBOARD,
            WatchState.CHECKING_MATCH_POINT, WatchState.HOSTING,
            WatchState.MONITORING, WatchState.TERMINATED,
        ]
        assert updates == [ScoreSnapshot(2, 1), ScoreSnapshot(-1, -1)]
        assert fake_clock.now - start == pytest.approx(50.0, abs=1.5)

    def test_stalled_frames_lose_tracking(self, fake_clock, ready_session):
        """A frozen stream is lost even when the last reading is on match point."""
        controller = make_controller(ready_session, FakeScores(2, 2), fake_clock)
        start = fake_clock.now

        outcome = controller.run()

        assert outcome.reason is TerminationReason.LOST_TRACKING
        assert fake_clock.now - start == pytest.approx(20.0, abs=1.5)

    def test_score_updates_only_on_change(self, fake_clock, ready_session):
        scores = FakeScores(2, 0)
        start = fake_clock.now
        updates = []

        def on_sleep(now):
            ready_session.frame_count += 1
            if now - start >= 5:
                scores.set(2, 1)
            if now - start >= 10:
                ready_session.is_stopped = True

        fake_clock.on_sleep(on_sleep)
        controller = make_controller(ready_session, scores, fake_clock, on_score_update=updates.append)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.CAPTURE_ENDED
        assert updates == [ScoreSnapshot(2, 0), ScoreSnapshot(2, 1)]

    def test_failing_score_update_is_tolerated(self, fake_clock, ready_session):
        def explode(snapshot):
            raise RuntimeError("orchestra down")

        controller = make_controller(ready_session, FakeScores(2, 2), fake_clock, on_score_update=explode)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.LOST_TRACKING

    def test_cancel_event(self, fake_clock, fake_scores):
        cancel = threading.Event()
        fake_clock.on_sleep(lambda now: cancel.set())
        controller = make_controller(FakeSession(frame_count=0), fake_scores, fake_clock,
                                     cancel_event=cancel)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.CANCELLED
        assert outcome.states == [WatchState.AWAITING_FRAMES, WatchState.TERMINATED]

    def test_skip_event_cancels_monitoring(self, fake_clock, ready_session):
        events = queue.Queue()
        start = fake_clock.now

        def on_sleep(now):
            ready_session.frame_count += 1
            if now - start >= 5 and events.empty():
                events.put(OrchestraEvent(EventKind.OTHER, "PING"))
                events.put(SKIP)

        fake_clock.on_sleep(on_sleep)
        controller = make_controller(ready_session, FakeScores(2, 0), fake_clock, events=events)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.CANCELLED
        assert outcome.hosted
        assert outcome.states[-2] is WatchState.MONITORING

    def test_stale_skip_events_are_discarded(self, fake_clock, ready_session):
        events = queue.Queue()
        events.put(SKIP)
        controller = make_controller(ready_session, FakeScores(1, 1), fake_clock, events=events)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.NOT_MATCH_POINT

    def test_capture_ended(self, fake_clock, fake_scores):
        session = FakeSession(frame_count=3)
        session.is_stopped = True
        controller = make_controller(session, fake_scores, fake_clock)

        outcome = controller.run()

        assert outcome.reason is TerminationReason.CAPTURE_ENDED

    def test_thumbnail_failure_still_hosts(self, fake_clock, ready_session):
        def broken_thumbnail():
            raise ValueError("no frame")

        ready_session.jpeg_thumbnail = broken_thumbnail
        host = DebugHost()
        controller = make_controller(ready_session, FakeScores(2, 0), fake_clock, host)

        controller.run()

        assert host.hosted == ["somechannel"]

    def test_states_are_never_revisited(self, fake_clock, ready_session):
        controller = make_controller(ready_session, FakeScores(2, 2), fake_clock)

        outcome = controller.run()

        assert len(outcome.states) == len(set(outcome.states))
        assert controller.state is WatchState.TERMINATED
