"""Keypoint extraction and nearest-neighbour matching."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FeatureSet:
    """Keypoints and descriptors detected in one image."""
    keypoints: Sequence[cv2.KeyPoint]
    descriptors: Optional[np.ndarray]
    shape: Tuple[int, ...]

    @property
    def is_empty(self) -> bool:
        return self.descriptors is None or len(self.keypoints) == 0


class FeatureMatcher(ABC):
    """Capability used by the digit recognizer to compare images."""

    @abstractmethod
    def extract(self, image: np.ndarray) -> FeatureSet:
        """Detect keypoints and compute descriptors for a grayscale image."""

    @abstractmethod
    def knn_match(self, model: FeatureSet, observed: FeatureSet, k: int = 2) -> List[List[cv2.DMatch]]:
        """Return, for every observed descriptor, its k nearest model descriptors.

        ``queryIdx`` indexes the observed keypoints and ``trainIdx`` the model
        keypoints. Empty descriptors on either side give an empty list.
        """


class KazeFeatureMatcher(FeatureMatcher):
    """KAZE features matched by brute force on L2 distance."""

    def __init__(self):
        self._detector = cv2.KAZE_create()
        self._matcher = cv2.BFMatcher(cv2.NORM_L2)

    def extract(self, image: np.ndarray) -> FeatureSet:
        keypoints, descriptors = self._detector.detectAndCompute(image, None)
        return FeatureSet(keypoints=tuple(keypoints or ()), descriptors=descriptors, shape=image.shape)

    def knn_match(self, model: FeatureSet, observed: FeatureSet, k: int = 2) -> List[List[cv2.DMatch]]:
        if model.is_empty or observed.is_empty:
            return []
        matches = self._matcher.knnMatch(observed.descriptors, model.descriptors, k=k)
        return [list(m) for m in matches]
