"""Pytest configuration and shared fixtures for HypeCorner.

Provides fake collaborators (clock, transcoder process, capture handle,
session, score source) so the threaded and time-driven parts can be tested
without ffmpeg, a network or real waiting.
"""
import logging
import subprocess
import sys
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np
import pytest

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from hypecorner.config.settings import Config
from hypecorner.config.types import CaptureSettings, WatchSettings
from hypecorner.core.entities import ScoreSnapshot, StreamInfo
from hypecorner.services.stream_resolver import StaticStreamResolver


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logging.getLogger('PIL').setLevel(logging.WARNING)


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.005) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeClock:
    """Manual clock; ``sleep`` advances time and runs registered hooks."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []
        self._hooks: List[Callable[[float], None]] = []

    def __call__(self) -> float:
        return self.now

    def on_sleep(self, hook: Callable[[float], None]) -> None:
        self._hooks.append(hook)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        for hook in list(self._hooks):
            hook(self.now)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProcess:
    """Stand-in for a ``subprocess.Popen`` transcoder."""

    _next_pid = 4000

    def __init__(self, args=None, exit_on_start: Optional[int] = None, ignore_kill: bool = False, **kwargs):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.args = args
        self.kwargs = kwargs
        self.returncode: Optional[int] = None
        self.kill_calls = 0
        self.ignore_kill = ignore_kill
        self._exited = threading.Event()
        if exit_on_start is not None:
            self.exit(exit_on_start)

    def exit(self, code: int = 0) -> None:
        self.returncode = code
        self._exited.set()

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def kill(self) -> None:
        self.kill_calls += 1
        if not self.ignore_kill and not self._exited.is_set():
            self.exit(-9)

    @property
    def alive(self) -> bool:
        return not self._exited.is_set()


class FakePopen:
    """Factory recording every spawned FakeProcess."""

    def __init__(self, raise_error: Optional[BaseException] = None, **process_kwargs):
        self.raise_error = raise_error
        self.process_kwargs = process_kwargs
        self.processes: List[FakeProcess] = []

    def __call__(self, args, **kwargs) -> FakeProcess:
        if self.raise_error is not None:
            raise self.raise_error
        process = FakeProcess(args, **self.process_kwargs, **kwargs)
        self.processes.append(process)
        return process


class FakeCapture:
    """Stand-in for ``cv2.VideoCapture`` yielding synthetic frames."""

    def __init__(self, opened: bool = True, frames: Optional[int] = None,
                 grab_failures: int = 0, frame_shape=(480, 852, 3), frame_delay: float = 0.001):
        self.opened = opened
        self.remaining = frames
        self.grab_failures = grab_failures
        self.frame_shape = frame_shape
        self.frame_delay = frame_delay
        self.grab_calls = 0
        self.release_calls = 0

    def isOpened(self) -> bool:
        return self.opened

    def grab(self) -> bool:
        self.grab_calls += 1
        time.sleep(self.frame_delay)
        if self.grab_failures > 0:
            self.grab_failures -= 1
            return False
        if self.remaining is not None:
            if self.remaining <= 0:
                self.opened = False
                return False
            self.remaining -= 1
        return True

    def retrieve(self):
        return True, np.zeros(self.frame_shape, dtype=np.uint8)

    def release(self) -> None:
        self.release_calls += 1
        self.opened = False


class RecordingProcessor:
    """Frame processor counting resets and frames."""

    def __init__(self, fail_on_frame: Optional[int] = None):
        self.resets = 0
        self.frames = 0
        self.fail_on_frame = fail_on_frame

    def reset(self) -> None:
        self.resets += 1

    def process_frame(self, frame) -> None:
        self.frames += 1
        if self.fail_on_frame is not None and self.frames >= self.fail_on_frame:
            raise RuntimeError("processing failed")


class FakeSession:
    """Capture session stand-in driven directly by tests."""

    def __init__(self, frame_count: int = 0, thumbnail: Optional[bytes] = b"jpeg"):
        self.frame_count = frame_count
        self.is_stopped = False
        self.thumbnail = thumbnail

    def jpeg_thumbnail(self) -> Optional[bytes]:
        return self.thumbnail


class FakeScores:
    """Score source whose snapshot tests can set at will."""

    def __init__(self, left: int = -1, right: int = -1, threshold: int = 2):
        self.current = ScoreSnapshot(left, right)
        self.threshold = threshold

    def set(self, left: int, right: int) -> None:
        self.current = ScoreSnapshot(left, right)

    def snapshot(self) -> ScoreSnapshot:
        return self.current

    def is_scoreboard_visible(self) -> bool:
        return self.current.is_visible()

    def is_match_point(self) -> bool:
        return self.current.is_match_point(self.threshold)

    def status(self) -> dict:
        snapshot = self.current
        return {
            'snapshot': snapshot,
            'visible': snapshot.is_visible(),
            'match_point': snapshot.is_match_point(self.threshold),
        }


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config():
    """Default configuration."""
    return Config()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_popen():
    return FakePopen()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_scores():
    return FakeScores()


@pytest.fixture
def resolver():
    """Resolver knowing a single 480p channel."""
    return StaticStreamResolver({"somechannel": "https://video.example/480p.m3u8"})


@pytest.fixture
def capture_settings(temp_dir):
    """Capture settings with no settle delay and short joins."""
    return CaptureSettings(sdp_path=str(temp_dir / "stream.sdp"), settle_seconds=0.0,
                           join_timeout=1.0, grab_retry_delay=0.001)


@pytest.fixture
def watch_settings():
    return WatchSettings()


@pytest.fixture
def sample_frame():
    """An 852x480 BGR frame."""
    return np.zeros((480, 852, 3), dtype=np.uint8)


@pytest.fixture
def sample_stream():
    return StreamInfo("480p", 480, "852x480", "https://video.example/480p.m3u8")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "external: mark test as requiring network or ffmpeg")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location and skip external tests unless enabled."""
    import os
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if item.get_closest_marker("external") and not os.getenv("RUN_EXTERNAL_TESTS"):
            item.add_marker(pytest.mark.skip(reason="External tests disabled"))
