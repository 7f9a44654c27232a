"""
==============================================================================
ROI Binarizer Module
==============================================================================

Turns an ROI candidate into a 1-D binary profile (bar/space sequence).

Pipeline:
---------
1. Extraction: bounding rect grown by a 15% margin, clamped to the frame;
   regions smaller than 80x25 are rejected
2. Preprocessing: height normalized to 60 px (bilinear) when the resulting
   width stays within 800 px, then a 3x3 Gaussian blur
3. Binarization: Otsu, adaptive Gaussian, adaptive mean and triangle
   thresholding, each scored; the strictly best score wins
4. Profile: middle scan line sampled at 128 (dark = bar)
5. Validation: the profile is returned only if it passes is_valid_msi()

Quality Score (per method):
--------------------------
0.3 contrast + 0.4 transitions + 0.2 regularity + 0.1 black/white balance

Failure Policy:
--------------
No exception escapes binarize(); failures are logged and yield None.

==============================================================================
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from msi_scanner.config import Settings, get_settings
from msi_scanner.scanner.frame import FrameMatrix
from msi_scanner.scanner.models import BinaryProfile, ROICandidate


# Module logger
logger = logging.getLogger(__name__)


# Minimum bar/space transitions for a usable scan line
MIN_TRANSITION_COUNT = 8

# Narrowest scan line a profile is extracted from
MIN_PROFILE_WIDTH = 20

# Heights at or below this are never rescaled
MIN_RESCALE_HEIGHT = 10


# =============================================================================
# THRESHOLDING METHODS
# =============================================================================

def otsu_threshold(image: np.ndarray) -> np.ndarray:
    _, binary = cv2.threshold(image, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return binary


def adaptive_gaussian_threshold(image: np.ndarray) -> np.ndarray:
    return cv2.adaptiveThreshold(
        image, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 15, 5
    )


def adaptive_mean_threshold(image: np.ndarray) -> np.ndarray:
    return cv2.adaptiveThreshold(
        image, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY, 11, 3
    )


def triangle_threshold(image: np.ndarray) -> np.ndarray:
    _, binary = cv2.threshold(image, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_TRIANGLE)
    return binary


# Evaluation order matters: on equal scores the earlier method is kept
THRESHOLD_METHODS: List[Tuple[str, Callable[[np.ndarray], np.ndarray]]] = [
    ("Otsu", otsu_threshold),
    ("AdaptiveGaussian", adaptive_gaussian_threshold),
    ("AdaptiveMean", adaptive_mean_threshold),
    ("Triangle", triangle_threshold),
]


# =============================================================================
# SCAN LINE HELPERS
# =============================================================================

def count_transitions(line: np.ndarray) -> int:
    """Number of value changes along a boolean or 0/255 scan line."""
    if line.size < 2:
        return 0
    states = line > 127 if line.dtype != np.bool_ else line
    return int(np.count_nonzero(states[1:] != states[:-1]))


def average_bar_width(pattern: np.ndarray) -> float:
    """Mean length of runs of True values; 0.0 when there are none."""
    if pattern.size == 0:
        return 0.0

    padded = np.concatenate(([False], pattern.astype(bool), [False]))
    edges = np.flatnonzero(padded[1:] != padded[:-1])
    starts, ends = edges[0::2], edges[1::2]

    if starts.size == 0:
        return 0.0
    return float((ends - starts).mean())


def profile_quality(length: int, transitions: int, avg_bar_width: float) -> float:
    """
    Overall profile quality in [0, 1].

    0.5 * transition score + 0.3 * bar-width consistency + 0.2 * length score;
    zero when the scan line has fewer than MIN_TRANSITION_COUNT transitions.
    """
    if length == 0 or transitions < MIN_TRANSITION_COUNT:
        return 0.0

    transition_score = min(transitions / 20.0, 1.0)
    consistency_score = min(10.0 / avg_bar_width, 1.0) if avg_bar_width > 1.0 else 0.0
    length_score = min(length / 100.0, 1.0)

    quality = transition_score * 0.5 + consistency_score * 0.3 + length_score * 0.2
    return min(max(quality, 0.0), 1.0)


class ROIBinarizer:
    """
    Multi-method binarizer producing BinaryProfile objects.

    Stateless between calls; safe to share as long as the matrix passed in
    is not released concurrently.

    Example:
        >>> binarizer = ROIBinarizer()
        >>> profile = binarizer.binarize(matrix, candidate)
        >>> profile.transition_count if profile else None
        14
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def binarize(self, matrix: FrameMatrix, candidate: ROICandidate) -> Optional[BinaryProfile]:
        """
        Binarize an ROI candidate into a validated profile.

        Args:
            matrix: Frame the candidate was detected in
            candidate: Region to binarize

        Returns:
            BinaryProfile passing is_valid_msi(), or None
        """
        start = time.perf_counter()

        try:
            logger.debug(f"Binarizing {candidate}")

            region = self.extract_region(matrix.pixels, candidate)
            if region is None:
                return None

            prepared = self.preprocess(region)
            del region

            result = self.binarize_region(prepared)
            del prepared
            if result is None:
                logger.warning("Binarization failed for every method")
                return None

            binary, method, score = result
            logger.debug(f"Selected method: {method} (score: {score:.3f})")

            profile = self.extract_profile(binary, candidate.aspect_ratio)

        except Exception as e:
            logger.error(f"ROI binarization failed: {e}", exc_info=True)
            return None

        if profile is None or not profile.is_valid_msi():
            quality = f"{profile.quality:.2f}" if profile is not None else "none"
            logger.debug(f"Binary profile quality insufficient: {quality}")
            return None

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(f"ROI binarized in {elapsed_ms:.1f}ms")
        logger.debug(profile.to_debug_string())

        return profile

    def binarize_region(self, region: np.ndarray) -> Optional[Tuple[np.ndarray, str, float]]:
        """
        Run every thresholding method and keep the best one.

        A later method replaces the current best only with a strictly
        greater score, so the earliest method wins ties.

        Args:
            region: Preprocessed grayscale region

        Returns:
            Tuple of (binary image, method name, score), or None if every
            method failed
        """
        best: Optional[Tuple[np.ndarray, str, float]] = None
        best_score = 0.0

        for name, method in THRESHOLD_METHODS:
            try:
                binary = method(region)
                score = self.evaluate_quality(binary)
            except cv2.error as e:
                logger.warning(f"Binarization method {name} failed: {e}")
                continue

            logger.debug(f"Method {name}: score={score:.3f}")

            if score > best_score:
                best = (binary, name, score)
                best_score = score

        return best

    def evaluate_quality(self, binary: np.ndarray) -> float:
        """
        Score a binary image in [0, 1].

        Args:
            binary: 0/255 image

        Returns:
            Weighted contrast, transition, regularity and balance score
        """
        mean = float(binary.mean())
        if mean < 50 or mean > 205:
            contrast_score = 1.0
        elif mean < 80 or mean > 175:
            contrast_score = 0.7
        else:
            contrast_score = 0.3

        transitions = count_transitions(self._middle_row(binary))
        if transitions >= MIN_TRANSITION_COUNT:
            transition_score = 1.0
        elif transitions >= MIN_TRANSITION_COUNT // 2:
            transition_score = 0.6
        else:
            transition_score = 0.2

        regularity_score = 0.8 if 8 <= transitions <= 50 else 0.4

        black_ratio = (binary.size - cv2.countNonZero(binary)) / float(binary.size)
        if 0.3 <= black_ratio <= 0.7:
            balance_score = 1.0
        elif 0.2 <= black_ratio <= 0.8:
            balance_score = 0.7
        else:
            balance_score = 0.3

        quality = (
            contrast_score * 0.3
            + transition_score * 0.4
            + regularity_score * 0.2
            + balance_score * 0.1
        )
        return min(max(quality, 0.0), 1.0)

    # =========================================================================
    # PIPELINE STEPS
    # =========================================================================

    def extract_region(self, gray: np.ndarray, candidate: ROICandidate) -> Optional[np.ndarray]:
        """
        Cut the candidate plus margin out of the frame.

        Returns:
            View into ``gray``, or None when the clamped region is too small
        """
        s = self._settings
        rect = candidate.bounding_rect
        image_h, image_w = gray.shape

        margin_x = int(rect.width * s.binarizer_margin_percent)
        margin_y = int(rect.height * s.binarizer_margin_percent)

        left = max(0, rect.left - margin_x)
        top = max(0, rect.top - margin_y)
        right = min(image_w, rect.right + margin_x)
        bottom = min(image_h, rect.bottom + margin_y)

        width, height = right - left, bottom - top
        if width < s.binarizer_min_extract_width or height < s.binarizer_min_extract_height:
            logger.warning(f"Expanded ROI too small: {width}x{height}")
            return None

        return gray[top:bottom, left:right]

    def preprocess(self, region: np.ndarray) -> np.ndarray:
        """Normalize height, then apply a light 3x3 Gaussian blur."""
        s = self._settings
        height, width = region.shape
        target = s.binarizer_target_height

        if height != target and height > MIN_RESCALE_HEIGHT:
            new_width = int(width * (target / float(height)))
            if 0 < new_width <= s.binarizer_max_width:
                region = cv2.resize(region, (new_width, target), interpolation=cv2.INTER_LINEAR)

        return cv2.GaussianBlur(region, (3, 3), 0)

    def extract_profile(self, binary: np.ndarray, aspect_ratio: float) -> Optional[BinaryProfile]:
        """
        Sample the middle row of a binary image.

        Args:
            binary: 0/255 image
            aspect_ratio: Aspect ratio of the source ROI

        Returns:
            BinaryProfile (not yet validated), or None if too narrow
        """
        width = binary.shape[1]
        if width < MIN_PROFILE_WIDTH:
            logger.warning(f"Binary image too narrow for a scan line: {width}")
            return None

        pattern = self._middle_row(binary) < 128

        transitions = count_transitions(pattern)
        avg_width = average_bar_width(pattern)
        quality = profile_quality(pattern.size, transitions, avg_width)

        return BinaryProfile(
            pattern=tuple(bool(v) for v in pattern),
            quality=quality,
            aspect_ratio=aspect_ratio,
            transition_count=transitions,
            average_bar_width=avg_width,
        )

    @staticmethod
    def _middle_row(binary: np.ndarray) -> np.ndarray:
        return binary[binary.shape[0] // 2]
