"""Per-frame score recognition and temporal smoothing.

The capture thread feeds frames through :meth:`ScoreEngine.process_frame`;
the watch loop reads the published :class:`ScoreSnapshot` from another
thread. Both buffers and the snapshot are only touched under one lock so a
reader never sees a left value from one frame paired with a right value
from another.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from ..config.types import SmoothingSettings
from ..core.entities import NO_MATCH, ScoreSnapshot
from ..core.temporal_buffer import TemporalBuffer
from ..utils.image_utils import draw_score_overlay, to_grayscale
from .digit_recognizer import DigitRecognizer

logger = logging.getLogger(__name__)


def rounded_mean(values: List[int]) -> int:
    """Mean rounded half to even; NO_MATCH for an empty list."""
    if not values:
        return NO_MATCH
    return int(round(sum(values) / len(values)))


class ScoreEngine:
    """Turns frames into a smoothed (left, right) score snapshot."""

    def __init__(self, recognizer: DigitRecognizer, settings: Optional[SmoothingSettings] = None,
                 window_name: str = "HypeCorner"):
        self.recognizer = recognizer
        self.settings = settings or SmoothingSettings()
        self.window_name = window_name

        self._lock = threading.Lock()
        self._left = TemporalBuffer[int](self.settings.buffer_capacity)
        self._right = TemporalBuffer[int](self.settings.buffer_capacity)
        self._snapshot = ScoreSnapshot()

    def reset(self) -> None:
        """Forget all readings; the snapshot goes back to not visible."""
        with self._lock:
            self._left.clear()
            self._right.clear()
            self._snapshot = ScoreSnapshot()

    def _read_digits(self, frame: np.ndarray) -> Tuple[int, int]:
        try:
            return self.recognizer.recognize_pair(to_grayscale(frame))
        except Exception as e:
            logger.warning(f"Frame could not be recognised: {e}")
            return NO_MATCH, NO_MATCH

    def process_frame(self, frame: np.ndarray) -> ScoreSnapshot:
        """Recognise one frame and publish the new smoothed snapshot."""
        left, right = self._read_digits(frame)

        radius = self.settings.filter_radius
        with self._lock:
            self._left.add(left)
            self._right.add(right)
            left_filtered = self._left.filter(radius)
            right_filtered = self._right.filter(radius)
            snapshot = ScoreSnapshot(rounded_mean(left_filtered), rounded_mean(right_filtered))
            self._snapshot = snapshot
            history = (self._left.values(), self._right.values()) if self.settings.show_windows else None

        if history is not None:
            self._show_overlay(frame, (left, right), snapshot, history)
        return snapshot

    def snapshot(self) -> ScoreSnapshot:
        with self._lock:
            return self._snapshot

    def is_scoreboard_visible(self) -> bool:
        return self.snapshot().is_visible()

    def is_match_point(self) -> bool:
        return self.snapshot().is_match_point(self.settings.match_point_threshold)

    def status(self) -> Dict[str, object]:
        """Snapshot and both predicates evaluated on the same reading."""
        snapshot = self.snapshot()
        return {
            'snapshot': snapshot,
            'visible': snapshot.is_visible(),
            'match_point': snapshot.is_match_point(self.settings.match_point_threshold),
        }

    def history(self) -> Tuple[List[int], List[int]]:
        """Copies of the raw left and right readings, oldest first."""
        with self._lock:
            return self._left.values(), self._right.values()

    def _show_overlay(self, frame: np.ndarray, raw: Tuple[int, int], snapshot: ScoreSnapshot,
                      history: Tuple[List[int], List[int]]) -> None:
        height, width = frame.shape[:2]
        canvas = draw_score_overlay(
            frame, self.recognizer.regions(width, height), raw,
            (snapshot.left, snapshot.right), history,
        )
        cv2.imshow(self.window_name, canvas)
        cv2.waitKey(1)

    def close_windows(self) -> None:
        if self.settings.show_windows:
            try:
                cv2.destroyWindow(self.window_name)
            except cv2.error as e:
                logger.debug(f"Could not close debug window: {e}")
