"""Scoreboard digit recognition by feature voting.

Each scoreboard region is cropped, enlarged and thresholded, then its
features are matched against a reference grid holding the ten digits side
by side (one fixed-width cell per digit). Matches are filtered twice:

1. uniqueness: the best match must be clearly better than the runner-up;
2. geometry: the match must agree with the dominant scale/rotation change.

Every surviving match votes for the digit cell its model keypoint falls
in, and the most voted digit wins. This is a mode estimate over noisy
votes, so blank or transition frames simply end up with no votes.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..config.types import RecognizerSettings
from ..core.entities import NO_MATCH, Recognition, Rect
from ..core.exceptions import ConfigError, RecognitionError
from ..utils.image_utils import crop_region, upscale
from .feature_matcher import FeatureMatcher, FeatureSet, KazeFeatureMatcher

logger = logging.getLogger(__name__)

DIGIT_COUNT = 10


@dataclass(frozen=True, slots=True)
class RegionOfInterest:
    """Rectangle expressed as ratios of the frame size."""
    x: float
    y: float
    width: float
    height: float

    def to_rect(self, frame_width: int, frame_height: int) -> Rect:
        return (
            int(self.x * frame_width),
            int(self.y * frame_height),
            int(self.width * frame_width),
            int(self.height * frame_height),
        )

    @classmethod
    def from_ratios(cls, ratios: Sequence[float]) -> 'RegionOfInterest':
        x, y, w, h = ratios
        return cls(float(x), float(y), float(w), float(h))


def vote_for_uniqueness(matches: Sequence[Sequence[cv2.DMatch]], threshold: float) -> np.ndarray:
    """Build a mask keeping matches whose best distance is clearly the best.

    A correspondence survives when ``d1 / d2 <= threshold``. A match with a
    single neighbour has no runner-up and is kept; one with none is dropped.
    """
    mask = np.zeros(len(matches), dtype=np.uint8)
    for i, m in enumerate(matches):
        if len(m) == 0:
            continue
        if len(m) == 1:
            mask[i] = 255
            continue
        d1, d2 = m[0].distance, m[1].distance
        if d2 > 0 and d1 / d2 <= threshold:
            mask[i] = 255
    return mask


def vote_for_size_and_orientation(model_keypoints: Sequence[cv2.KeyPoint],
                                  observed_keypoints: Sequence[cv2.KeyPoint],
                                  matches: Sequence[Sequence[cv2.DMatch]],
                                  mask: np.ndarray,
                                  scale_increment: float = 1.5,
                                  rotation_bins: int = 20) -> int:
    """Drop matches that disagree with the dominant scale and rotation change.

    Every unmasked best match votes into a 2-D histogram of
    (log10 size ratio, rotation difference). Matches whose bin holds fewer
    than half the votes of the peak bin are masked out in place.

    Returns:
        int: number of matches still unmasked
    """
    indices = [i for i in range(len(matches)) if mask[i] and len(matches[i]) > 0]
    if not indices:
        return 0

    scales = np.empty(len(indices), dtype=np.float64)
    rotations = np.empty(len(indices), dtype=np.float64)
    for n, i in enumerate(indices):
        best = matches[i][0]
        model_kp = model_keypoints[best.trainIdx]
        observed_kp = observed_keypoints[best.queryIdx]
        if model_kp.size > 0 and observed_kp.size > 0:
            scales[n] = math.log10(observed_kp.size / model_kp.size)
        else:
            scales[n] = 0.0
        rotations[n] = (observed_kp.angle - model_kp.angle) % 360.0

    scale_bin_size = math.log10(scale_increment)
    min_scale = scales.min()
    scale_bin_count = int(math.floor((scales.max() - min_scale) / scale_bin_size)) + 1
    rotation_bin_size = 360.0 / rotation_bins

    scale_idx = np.minimum(((scales - min_scale) / scale_bin_size).astype(int), scale_bin_count - 1)
    rotation_idx = np.minimum((rotations / rotation_bin_size).astype(int), rotation_bins - 1)

    histogram = np.zeros((scale_bin_count, rotation_bins), dtype=np.int64)
    np.add.at(histogram, (scale_idx, rotation_idx), 1)
    minimum_votes = histogram.max() * 0.5

    survivors = 0
    for n, i in enumerate(indices):
        if histogram[scale_idx[n], rotation_idx[n]] < minimum_votes:
            mask[i] = 0
        else:
            survivors += 1
    return survivors


def tally_digits(model_keypoints: Sequence[cv2.KeyPoint],
                 matches: Sequence[Sequence[cv2.DMatch]],
                 mask: np.ndarray,
                 cell_width: int = 128) -> List[int]:
    """Count the neighbours of every surviving row per digit cell of the reference grid.

    Both of a row's k nearest model keypoints vote, so a row whose second
    neighbour sits in another cell adds one vote to each cell.
    """
    tallies = [0] * DIGIT_COUNT
    for i, m in enumerate(matches):
        if not mask[i]:
            continue
        for neighbour in m:
            x = model_keypoints[neighbour.trainIdx].pt[0]
            digit = int(math.floor(x / cell_width))
            if 0 <= digit < DIGIT_COUNT:
                tallies[digit] += 1
    return tallies


def pick_digit(tallies: Sequence[int]) -> int:
    """Digit with the most votes, lowest digit on ties, NO_MATCH without votes."""
    best_digit, best_tally = NO_MATCH, 0
    for digit, tally in enumerate(tallies):
        if tally > best_tally:
            best_digit, best_tally = digit, tally
    return best_digit


class DigitRecognizer:
    """Recognises the left and right scoreboard digits of a grayscale frame."""

    def __init__(self, template: np.ndarray, matcher: Optional[FeatureMatcher] = None,
                 settings: Optional[RecognizerSettings] = None):
        self.settings = settings or RecognizerSettings()
        self.matcher = matcher or KazeFeatureMatcher()
        self.left_region = RegionOfInterest.from_ratios(self.settings.left_region)
        self.right_region = RegionOfInterest.from_ratios(self.settings.right_region)

        if template is None or template.size == 0:
            raise ConfigError("Digit template image is empty")
        if template.ndim == 3:
            template = cv2.cvtColor(template, cv2.COLOR_BGR2GRAY)
        self.template = template
        self.model: FeatureSet = self.matcher.extract(template)
        if self.model.is_empty:
            raise ConfigError("No features could be detected in the digit template")
        logger.debug(f"Digit template loaded with {len(self.model.keypoints)} keypoints")

    @classmethod
    def from_template(cls, path: str, matcher: Optional[FeatureMatcher] = None,
                      settings: Optional[RecognizerSettings] = None) -> 'DigitRecognizer':
        """Load the reference grid image from disk.

        Raises:
            ConfigError: If the file is missing or unreadable
        """
        template = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if template is None:
            raise ConfigError(f"Digit template '{path}' is missing or unreadable")
        return cls(template, matcher=matcher, settings=settings)

    def preprocess(self, gray: np.ndarray, region: RegionOfInterest) -> np.ndarray:
        """Crop the region, enlarge it and isolate the bright digit."""
        height, width = gray.shape[:2]
        crop = crop_region(gray, region.to_rect(width, height))
        if crop.size == 0:
            return crop
        enlarged = upscale(crop, self.settings.upscale_factor)
        _, binary = cv2.threshold(enlarged, self.settings.threshold_min,
                                  self.settings.threshold_max, cv2.THRESH_BINARY_INV)
        return binary

    def recognize_region(self, gray: np.ndarray, region: RegionOfInterest) -> Recognition:
        """Recognise a single region with the full vote breakdown.

        Raises:
            RecognitionError: If OpenCV fails on this frame
        """
        try:
            observed_image = self.preprocess(gray, region)
            if observed_image.size == 0:
                return Recognition(NO_MATCH, [0] * DIGIT_COUNT)

            observed = self.matcher.extract(observed_image)
            if observed.is_empty:
                return Recognition(NO_MATCH, [0] * DIGIT_COUNT)

            matches = self.matcher.knn_match(self.model, observed, k=2)
            mask = vote_for_uniqueness(matches, self.settings.uniqueness_threshold)
            votes = int(np.count_nonzero(mask))
            if votes >= self.settings.min_matches_for_geometry:
                votes = vote_for_size_and_orientation(
                    self.model.keypoints, observed.keypoints, matches, mask,
                    self.settings.scale_increment, self.settings.rotation_bins,
                )

            tallies = tally_digits(self.model.keypoints, matches, mask, self.settings.digit_cell_width)
        except cv2.error as e:
            raise RecognitionError(f"OpenCV failed while recognising a digit: {e}") from e

        return Recognition(pick_digit(tallies), tallies, votes)

    def recognize(self, gray: np.ndarray, region: RegionOfInterest) -> int:
        return self.recognize_region(gray, region).digit

    def regions(self, frame_width: int, frame_height: int) -> Tuple[Rect, Rect]:
        return (self.left_region.to_rect(frame_width, frame_height),
                self.right_region.to_rect(frame_width, frame_height))

    def recognize_pair(self, gray: np.ndarray) -> Tuple[int, int]:
        """Recognise both scoreboard digits, NO_MATCH for a side that fails."""
        results = []
        for region in (self.left_region, self.right_region):
            try:
                results.append(self.recognize(gray, region))
            except RecognitionError as e:
                logger.debug(f"Recognition failed: {e}")
                results.append(NO_MATCH)
            except Exception as e:
                logger.warning(f"Feature matching failed: {e}")
                results.append(NO_MATCH)
        return results[0], results[1]


def render_digit_template(cell_width: int = 128, height: int = 128,
                          font_scale: float = 4.0, thickness: int = 8) -> np.ndarray:
    """Render a placeholder grid with the digits 0-9 in consecutive cells.

    The digits are drawn dark on white, matching the inverse-thresholded
    scoreboard crops. Hershey glyphs share few KAZE features with the
    broadcast font, so most digits misread against a real scoreboard; the
    grid only lets a fresh install start. Production use needs a template
    cut from real scoreboard frames.
    """
    grid = np.full((height, cell_width * DIGIT_COUNT), 255, dtype=np.uint8)
    font = cv2.FONT_HERSHEY_SIMPLEX
    for digit in range(DIGIT_COUNT):
        text = str(digit)
        (text_w, text_h), _ = cv2.getTextSize(text, font, font_scale, thickness)
        origin = (digit * cell_width + (cell_width - text_w) // 2, (height + text_h) // 2)
        cv2.putText(grid, text, origin, font, font_scale, 0, thickness, cv2.LINE_AA)
    return grid
