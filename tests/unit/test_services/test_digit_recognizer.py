"""Unit tests for the feature-voting digit recognizer."""
import cv2
import numpy as np
import pytest

from hypecorner.config.types import RecognizerSettings
from hypecorner.core.entities import NO_MATCH
from hypecorner.core.exceptions import ConfigError, RecognitionError
from hypecorner.services.digit_recognizer import (
    DigitRecognizer, RegionOfInterest, pick_digit, render_digit_template, tally_digits,
    vote_for_size_and_orientation, vote_for_uniqueness,
)
from hypecorner.services.feature_matcher import FeatureMatcher, FeatureSet, KazeFeatureMatcher


def keypoint(x, y=10.0, size=10.0, angle=0.0):
    return cv2.KeyPoint(float(x), float(y), float(size), float(angle))


def pair(query, train, d1, d2, second_train=None):
    return [cv2.DMatch(query, train, float(d1)),
            cv2.DMatch(query, train if second_train is None else second_train, float(d2))]


class FakeMatcher(FeatureMatcher):
    """First extraction returns the model, later ones the observed set."""

    def __init__(self, model, observed=None, matches=None, error=None):
        self.model = model
        self.observed = observed
        self.matches = matches or []
        self.error = error
        self.extractions = 0

    def extract(self, image):
        self.extractions += 1
        if self.extractions == 1:
            return self.model
        if self.error is not None:
            raise self.error
        return self.observed

    def knn_match(self, model, observed, k=2):
        return self.matches


def feature_set(keypoints):
    descriptors = np.zeros((len(keypoints), 64), dtype=np.float32) if keypoints else None
    return FeatureSet(keypoints=tuple(keypoints), descriptors=descriptors, shape=(128, 1280))


class TestRegionOfInterest:

    def test_to_rect_truncates(self):
        roi = RegionOfInterest(0.5, 0.25, 0.1, 0.1)
        assert roi.to_rect(101, 41) == (50, 10, 10, 4)

    def test_from_ratios(self):
        assert RegionOfInterest.from_ratios([0, 0.5, 1, 0.25]) == RegionOfInterest(0.0, 0.5, 1.0, 0.25)


class TestUniquenessVote:
    """Test suite for the ratio test."""

    def test_mask(self):
        matches = [
            pair(0, 0, 1.0, 5.0),    # clearly unique
            pair(1, 1, 4.5, 5.0),    # ambiguous
            [cv2.DMatch(2, 2, 3.0)],  # no runner-up
            [],                       # no neighbour
            pair(4, 4, 0.0, 0.0),    # degenerate
        ]
        mask = vote_for_uniqueness(matches, 0.8)
        assert mask.tolist() == [255, 0, 255, 0, 0]

    def test_threshold_is_inclusive(self):
        mask = vote_for_uniqueness([pair(0, 0, 4.0, 5.0)], 0.8)
        assert mask[0] == 255


class TestGeometryVote:
    """Test suite for the size and orientation vote."""

    def test_outlier_is_masked(self):
        model = [keypoint(x) for x in (10, 20, 30, 40, 50)]
        observed = [keypoint(x, size=20.0, angle=10.0) for x in (10, 20, 30, 40)]
        observed.append(keypoint(50, size=100.0, angle=190.0))
        matches = [pair(i, i, 1.0, 9.0) for i in range(5)]
        mask = np.full(5, 255, dtype=np.uint8)

        survivors = vote_for_size_and_orientation(model, observed, matches, mask)

        assert survivors == 4
        assert mask.tolist() == [255, 255, 255, 255, 0]

    def test_masked_matches_do_not_vote(self):
        model = [keypoint(x) for x in (10, 20)]
        observed = [keypoint(10), keypoint(20, size=100.0, angle=180.0)]
        matches = [pair(0, 0, 1.0, 9.0), pair(1, 1, 1.0, 9.0)]
        mask = np.array([255, 0], dtype=np.uint8)

        assert vote_for_size_and_orientation(model, observed, matches, mask) == 1
        assert mask.tolist() == [255, 0]

    def test_nothing_to_vote(self):
        mask = np.zeros(2, dtype=np.uint8)
        assert vote_for_size_and_orientation([], [], [[], []], mask) == 0


class TestTally:

    def test_counts_per_cell(self):
        model = [keypoint(10), keypoint(300), keypoint(310), keypoint(1290)]
        matches = [pair(i, i, 1.0, 9.0, second_train=0) for i in range(4)]
        mask = np.array([255, 255, 255, 255], dtype=np.uint8)

        tallies = tally_digits(model, matches, mask, cell_width=128)

        # every second neighbour lands in cell 0
        assert tallies == [5, 0, 2, 0, 0, 0, 0, 0, 0, 0]

    def test_every_neighbour_votes(self):
        model = [keypoint(10), keypoint(400)]
        matches = [pair(0, 1, 1.0, 9.0, second_train=0)]
        tallies = tally_digits(model, matches, np.array([255], dtype=np.uint8))
        assert tallies == [1, 0, 0, 1, 0, 0, 0, 0, 0, 0]

    def test_single_neighbour_row_votes_once(self):
        model = [keypoint(10), keypoint(400)]
        matches = [[cv2.DMatch(0, 1, 1.0)], []]
        tallies = tally_digits(model, matches, np.array([255, 255], dtype=np.uint8))
        assert tallies == [0, 0, 0, 1, 0, 0, 0, 0, 0, 0]

    def test_pick_digit(self):
        assert pick_digit([0] * 10) == NO_MATCH
        assert pick_digit([0, 0, 0, 4, 0, 0, 0, 1, 0, 0]) == 3
        assert pick_digit([0, 2, 0, 0, 0, 0, 2, 0, 0, 0]) == 1


class TestDigitRecognizer:
    """Test suite for DigitRecognizer."""

    def test_empty_template(self):
        with pytest.raises(ConfigError):
            DigitRecognizer(np.zeros((0, 0), dtype=np.uint8), matcher=FakeMatcher(feature_set([keypoint(1)])))

    def test_template_without_features(self):
        with pytest.raises(ConfigError):
            DigitRecognizer(np.zeros((10, 10), dtype=np.uint8), matcher=FakeMatcher(feature_set([])))

    def test_missing_template_file(self, temp_dir):
        with pytest.raises(ConfigError):
            DigitRecognizer.from_template(str(temp_dir / "missing.png"))

    def test_recognizes_majority_cell(self, sample_frame):
        """Matches landing in cell 3 make the region read 3."""
        model = feature_set([keypoint(x) for x in (400, 410, 420, 430, 900)])
        observed = feature_set([keypoint(x) for x in (1, 2, 3, 4, 5)])
        matches = [pair(i, i, 1.0, 9.0) for i in range(5)]
        matcher = FakeMatcher(model, observed, matches)
        recognizer = DigitRecognizer(np.full((128, 1280), 255, dtype=np.uint8), matcher=matcher)

        gray = cv2.cvtColor(sample_frame, cv2.COLOR_BGR2GRAY)
        result = recognizer.recognize_region(gray, recognizer.left_region)

        assert result.digit == 3
        assert result.tallies[3] == 8
        assert result.tallies[7] == 2
        assert result.votes == 5

    def test_no_observed_features(self, sample_frame):
        model = feature_set([keypoint(10)])
        matcher = FakeMatcher(model, feature_set([]))
        recognizer = DigitRecognizer(np.full((128, 1280), 255, dtype=np.uint8), matcher=matcher)

        gray = cv2.cvtColor(sample_frame, cv2.COLOR_BGR2GRAY)
        assert recognizer.recognize(gray, recognizer.right_region) == NO_MATCH

    def test_opencv_failure_is_recognition_error(self, sample_frame):
        model = feature_set([keypoint(10)])
        matcher = FakeMatcher(model, error=cv2.error("boom"))
        recognizer = DigitRecognizer(np.full((128, 1280), 255, dtype=np.uint8), matcher=matcher)
        gray = cv2.cvtColor(sample_frame, cv2.COLOR_BGR2GRAY)

        with pytest.raises(RecognitionError):
            recognizer.recognize_region(gray, recognizer.left_region)
        assert recognizer.recognize_pair(gray) == (NO_MATCH, NO_MATCH)

    def test_matcher_failure_reads_no_match(self, sample_frame):
        """A failing feature backend costs the frame, not the caller."""
        model = feature_set([keypoint(10)])
        matcher = FakeMatcher(model, error=RuntimeError("backend glitch"))
        recognizer = DigitRecognizer(np.full((128, 1280), 255, dtype=np.uint8), matcher=matcher)
        gray = cv2.cvtColor(sample_frame, cv2.COLOR_BGR2GRAY)

        assert recognizer.recognize_pair(gray) == (NO_MATCH, NO_MATCH)

    def test_preprocess_output_size(self, sample_frame):
        settings = RecognizerSettings(left_region=(0.5, 0.5, 0.1, 0.1), upscale_factor=3)
        recognizer = DigitRecognizer(
            np.full((128, 1280), 255, dtype=np.uint8),
            matcher=FakeMatcher(feature_set([keypoint(10)])), settings=settings,
        )
        gray = cv2.cvtColor(sample_frame, cv2.COLOR_BGR2GRAY)

        binary = recognizer.preprocess(gray, recognizer.left_region)

        assert binary.shape == (48 * 3, 85 * 3)

    def test_regions_follow_frame_size(self):
        recognizer = DigitRecognizer(
            np.full((128, 1280), 255, dtype=np.uint8), matcher=FakeMatcher(feature_set([keypoint(10)]))
        )
        (lx, ly, lw, lh), (rx, _, _, _) = recognizer.regions(852, 480)

        assert abs(lx - 363) <= 1 and abs(ly - 29) <= 1
        assert abs(lw - 47) <= 1 and abs(lh - 24) <= 1
        assert abs(rx - 443) <= 1


class TestRenderedTemplate:
    """Checks against real KAZE features."""

    def test_template_layout(self):
        template = render_digit_template()
        assert template.shape == (128, 1280)
        assert template.dtype == np.uint8

    def test_blank_scoreboard_reads_no_match(self, sample_frame):
        recognizer = DigitRecognizer(render_digit_template(), matcher=KazeFeatureMatcher())
        gray = cv2.cvtColor(sample_frame, cv2.COLOR_BGR2GRAY)

        assert recognizer.recognize_pair(gray) == (NO_MATCH, NO_MATCH)

    def test_installed_opencv_provides_kaze(self):
        assert int(cv2.__version__.split(".")[0]) == 4
        assert KazeFeatureMatcher().extract(render_digit_template()).keypoints

    def test_template_from_file(self, temp_dir):
        path = temp_dir / "template.png"
        cv2.imwrite(str(path), render_digit_template())

        recognizer = DigitRecognizer.from_template(str(path))
        assert len(recognizer.model.keypoints) > 0
