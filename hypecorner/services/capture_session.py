"""Capture session: ffmpeg transcoder plus OpenCV frame grabbing.

One session watches one channel. ``begin`` starts a capture thread that
resolves the channel's stream, launches ffmpeg to repackage it as local
RTP, opens the RTP feed with OpenCV and hands every frame to the frame
processor. A second thread waits on the transcoder so an early exit stops
the capture loop.

Teardown is a single lock-guarded routine reached from every exit path
(explicit ``end``, transcoder exit, errors). The first call releases the
transcoder and the capture handle; later calls do nothing.
"""
from __future__ import annotations

import logging
import os
import subprocess
import threading
from typing import Any, Callable, List, Optional, Protocol, Tuple

import cv2
import numpy as np

from ..config.types import CaptureSettings
from ..core.entities import SessionState, StreamInfo
from ..core.exceptions import (
    AlreadyRunningError, CaptureOpenError, SessionError, StreamNotFoundError, TranscoderError,
)
from ..core.logging_config import CorrelationContext
from ..utils.image_utils import encode_jpeg
from .stream_resolver import StreamResolver, select_stream

logger = logging.getLogger(__name__)

CAPTURE_OPTIONS_ENV = "OPENCV_FFMPEG_CAPTURE_OPTIONS"
CAPTURE_OPTIONS = "protocol_whitelist;file,rtp,udp"
PROTOCOL_WHITELIST = "file,udp,rtp,http,https,tls,tcp"

class FrameProcessor(Protocol):
    def reset(self) -> None: ...

    def process_frame(self, frame: np.ndarray) -> Any: ...

def open_rtp_capture(sdp_path: str) -> cv2.VideoCapture:
    """Open the transcoder's RTP output described by an SDP file."""
    os.environ[CAPTURE_OPTIONS_ENV] = CAPTURE_OPTIONS
    return cv2.VideoCapture(sdp_path, cv2.CAP_FFMPEG)

class CaptureSession:
    """Owns the transcoder subprocess and capture handle of one channel."""

    def __init__(self, channel: str, resolver: StreamResolver, processor: FrameProcessor,
                 settings: Optional[CaptureSettings] = None,
                 popen: Callable[..., subprocess.Popen] = subprocess.Popen,
                 capture_factory: Callable[[str], Any] = open_rtp_capture):
        """Initialize a capture session.

        Args:
            channel: Channel name to watch
            resolver: Stream resolver used to find the playable stream
            processor: Receives every captured frame (usually a ScoreEngine)
            settings: Capture settings
            popen: Factory used to spawn the transcoder
            capture_factory: Factory opening the capture handle from the SDP path
        """
        self.channel = channel
        self.resolver = resolver
        self.processor = processor
        self.settings = settings or CaptureSettings()
        self._popen = popen
        self._capture_factory = capture_factory

        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._teardown_lock = threading.Lock()
        self._frame_lock = threading.Lock()
        self._stop_event = threading.Event()

        self._capture_thread: Optional[threading.Thread] = None
        self._watcher_thread: Optional[threading.Thread] = None
        self._transcoder: Optional[subprocess.Popen] = None
        self._capture: Optional[Any] = None
        self._torn_down = True

        self._stream: Optional[StreamInfo] = None
        self._buffer_kb = self.settings.buffer_kb
        self._frame_count = 0
        self._latest_frame: Optional[np.ndarray] = None
        self._last_error: Optional[BaseException] = None

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state in (SessionState.STARTING, SessionState.RUNNING)

    @property
    def is_stopped(self) -> bool:
        return self.state in (SessionState.STOPPED, SessionState.FAILED)

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def stream(self) -> Optional[StreamInfo]:
        return self._stream

    def _set_state(self, state: SessionState) -> None:
        with self._state_lock:
            self._state = state

    def begin(self, buffer_kb: Optional[int] = None) -> None:
        """Start capturing in the background.

        Raises:
            AlreadyRunningError: If the session is already active
        """
        with self._state_lock:
            active = self._state in (SessionState.STARTING, SessionState.RUNNING, SessionState.STOPPING)
            if active or (self._capture_thread is not None and self._capture_thread.is_alive()):
                raise AlreadyRunningError(f"Capture of {self.channel} is already running")
            self._state = SessionState.STARTING

        if buffer_kb is not None:
            self._buffer_kb = buffer_kb

        self.processor.reset()
        with self._frame_lock:
            self._frame_count = 0
            self._latest_frame = None
        self._last_error = None
        self._stream = None
        self._stop_event = threading.Event()
        with self._teardown_lock:
            self._torn_down = False

        self._capture_thread = threading.Thread(
            target=self._run, name=f"capture-{self.channel}", daemon=True
        )
        self._capture_thread.start()
        logger.debug(f"Capture of {self.channel} started")

    def end(self) -> None:
        """Stop capturing and release every resource. Safe to call repeatedly."""
        with self._state_lock:
            if self._state in (SessionState.STARTING, SessionState.RUNNING):
                self._state = SessionState.STOPPING
        self._stop_event.set()

        thread = self._capture_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.settings.join_timeout)
            if thread.is_alive():
                logger.warning(f"Capture thread of {self.channel} did not stop, killing transcoder")
                self._kill_transcoder()
                thread.join(timeout=self.settings.join_timeout)
                if thread.is_alive():
                    logger.error(f"Capture thread of {self.channel} is still blocked")
                    # the thread releases the capture handle once grab() returns
                    self._teardown(release_capture=False)
                    return

        self._teardown()

    def close(self) -> None:
        self.end()
        self._teardown()

    def __enter__(self) -> 'CaptureSession':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _run(self) -> None:
        """Capture thread body."""
        with CorrelationContext(self.channel):
            try:
                self._stream = self._resolve_stream()
                if self._stop_event.is_set():
                    return

                self._start_transcoder(self._stream.url)
                logger.debug("Waiting for the transcoder to settle...")
                if self._stop_event.wait(self.settings.settle_seconds):
                    return

                self._open_capture()
                with self._state_lock:
                    if self._state == SessionState.STARTING:
                        self._state = SessionState.RUNNING
                logger.info(f"Capture of {self.channel} has started ({self._stream.quality})")

                self._capture_loop()
            except SessionError as e:
                self._last_error = e
                logger.error(f"Capture of {self.channel} failed: {e}")
            except Exception as e:
                self._last_error = SessionError(f"Unexpected capture failure: {e}")
                logger.exception(f"Unexpected error while capturing {self.channel}")
            finally:
                self._teardown()
                self._release_abandoned_capture()

    def _resolve_stream(self) -> StreamInfo:
        try:
            streams = self.resolver.resolve(self.channel)
        except Exception as e:
            raise StreamNotFoundError(f"Failed to resolve streams of {self.channel}: {e}") from e

        stream = select_stream(streams, self.settings.target_quality)
        if stream is None:
            raise StreamNotFoundError(
                f"No {self.settings.target_quality}p stream available for {self.channel}"
            )
        return stream

    def transcoder_command(self, url: str) -> List[str]:
        s = self.settings
        return [
            s.ffmpeg_path,
            "-hide_banner", "-loglevel", "error",
            "-protocol_whitelist", PROTOCOL_WHITELIST,
            "-i", url,
            "-vcodec", "copy",
            "-an",
            "-f", "rtp", f"rtp://127.0.0.1:{s.rtp_port}",
            "-sdp_file", s.sdp_path,
            "-bufsize", f"{self._buffer_kb}k",
        ]

    def _start_transcoder(self, url: str) -> None:
        command = self.transcoder_command(url)
        try:
            process = self._popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, ValueError) as e:
            raise TranscoderError(f"Failed to start {self.settings.ffmpeg_path}: {e}") from e

        with self._teardown_lock:
            if self._torn_down:
                # end() raced us; do not leak the new process
                self._terminate(process)
                return
            self._transcoder = process
        logger.info(f"Started transcoder (pid {getattr(process, 'pid', '?')})")

        self._watcher_thread = threading.Thread(
            target=self._watch_transcoder, args=(process, self._stop_event),
            name=f"transcoder-{self.channel}", daemon=True,
        )
        self._watcher_thread.start()

    def _watch_transcoder(self, process: subprocess.Popen, stop_event: threading.Event) -> None:
        """Wait for one run's transcoder; only that run is stopped by its exit."""
        return_code = process.wait()
        with self._teardown_lock:
            if stop_event.is_set():
                return
            self._last_error = TranscoderError(f"Transcoder exited with code {return_code}")
            stop_event.set()
        logger.warning(f"Transcoder of {self.channel} exited early with code {return_code}")

    def _open_capture(self) -> None:
        capture = self._capture_factory(self.settings.sdp_path)
        if capture is None or not capture.isOpened():
            if capture is not None:
                self._release(capture)
            raise CaptureOpenError(f"Could not open capture from {self.settings.sdp_path}")
        with self._teardown_lock:
            if self._torn_down:
                self._release(capture)
                return
            self._capture = capture

    def _capture_loop(self) -> None:
        while not self._stop_event.is_set():
            capture = self._capture
            if capture is None or not capture.isOpened():
                logger.info(f"Capture of {self.channel} closed")
                break
            try:
                if not capture.grab():
                    self._stop_event.wait(self.settings.grab_retry_delay)
                    continue

                ok, frame = capture.retrieve()
                if self._stop_event.is_set():
                    break
                if not ok or frame is None:
                    continue

                with self._frame_lock:
                    self._frame_count += 1
                    self._latest_frame = frame
                self.processor.process_frame(frame)
            except Exception as e:
                logger.error(f"Error while processing a frame of {self.channel}: {e}")
                break

    def _kill_transcoder(self) -> None:
        process = self._transcoder
        if process is not None:
            try:
                process.kill()
            except OSError as e:
                logger.debug(f"Failed to kill transcoder: {e}")

    def _terminate(self, process: subprocess.Popen) -> None:
        try:
            if process.poll() is None:
                process.kill()
            process.wait(timeout=self.settings.join_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Failed to stop transcoder cleanly: {e}")

    def _release(self, capture: Any) -> None:
        try:
            capture.release()
        except Exception as e:
            logger.debug(f"Failed to release capture handle: {e}")

    def _teardown(self, release_capture: bool = True) -> None:
        with self._teardown_lock:
            if self._torn_down:
                return
            self._torn_down = True
            self._stop_event.set()

            process, self._transcoder = self._transcoder, None
            capture = None
            if release_capture:
                capture, self._capture = self._capture, None

            if process is not None:
                self._terminate(process)
            if capture is not None:
                self._release(capture)

            final = SessionState.FAILED if isinstance(self._last_error, SessionError) else SessionState.STOPPED
            self._set_state(final)
        logger.info(f"Capture of {self.channel} ended ({final.value}, {self._frame_count} frames)")

    def _release_abandoned_capture(self) -> None:
        with self._teardown_lock:
            capture, self._capture = self._capture, None
        if capture is not None:
            self._release(capture)

    def latest_frame(self) -> Optional[np.ndarray]:
        with self._frame_lock:
            return self._latest_frame.copy() if self._latest_frame is not None else None

    def jpeg_thumbnail(self, max_size: Optional[Tuple[int, int]] = (640, 360)) -> Optional[bytes]:
        frame = self.latest_frame()
        if frame is None:
            return None
        return encode_jpeg(frame, max_size=max_size)

    def __repr__(self) -> str:
        return f"CaptureSession(channel={self.channel!r}, state={self.state.value}, frames={self._frame_count})"
