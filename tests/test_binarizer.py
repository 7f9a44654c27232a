"""
==============================================================================
ROI Binarizer Tests
==============================================================================

Tests for region extraction, method selection and profile extraction.

==============================================================================
"""

import numpy as np
import pytest

from msi_scanner.config import Settings
from msi_scanner.scanner import BoundingRect, FrameMatrix, ROIBinarizer, ROICandidate, ROIDetector
from msi_scanner.scanner import binarizer as binarizer_module
from msi_scanner.scanner.binarizer import (
    THRESHOLD_METHODS,
    average_bar_width,
    count_transitions,
    profile_quality,
)

from conftest import INTERNAL_TRANSITIONS, make_stripes_image, make_uniform_image


@pytest.fixture
def binarizer(settings: Settings) -> ROIBinarizer:
    return ROIBinarizer(settings)


@pytest.fixture
def stripes_candidate(settings: Settings) -> ROICandidate:
    with ROIDetector(settings) as detector:
        candidates = detector.detect(FrameMatrix(make_stripes_image()))
    assert candidates, "synthetic barcode should be detected"
    return candidates[0]


class TestBinarize:
    """Tests for end-to-end ROI binarization."""

    def test_stripes_produce_valid_profile(self, binarizer: ROIBinarizer, stripes_candidate: ROICandidate):
        """Test the synthetic barcode yields a valid profile."""
        profile = binarizer.binarize(FrameMatrix(make_stripes_image()), stripes_candidate)

        assert profile is not None
        assert profile.is_valid_msi()
        assert abs(profile.transition_count - INTERNAL_TRANSITIONS) <= 2
        assert profile.aspect_ratio == stripes_candidate.aspect_ratio

    def test_small_expanded_region_rejected(self, binarizer: ROIBinarizer):
        """Test a region growing to only 60x20 is refused without raising."""
        candidate = ROICandidate(
            bounding_rect=BoundingRect(left=0, top=0, right=53, bottom=18),
            confidence=0.6,
            aspect_ratio=53 / 18,
            gradient_magnitude=40.0,
        )
        matrix = FrameMatrix(make_uniform_image())

        assert binarizer.extract_region(matrix.pixels, candidate) is None
        assert binarizer.binarize(matrix, candidate) is None

    def test_featureless_region_has_no_profile(self, binarizer: ROIBinarizer):
        """Test a blank region fails validation."""
        candidate = ROICandidate(
            bounding_rect=BoundingRect.from_xywh(200, 200, 200, 40),
            confidence=0.6,
            aspect_ratio=5.0,
            gradient_magnitude=40.0,
        )
        assert binarizer.binarize(FrameMatrix(make_uniform_image()), candidate) is None

    def test_released_matrix_returns_none(self, binarizer: ROIBinarizer, stripes_candidate: ROICandidate):
        """Test failures never escape binarize()."""
        matrix = FrameMatrix(make_stripes_image())
        matrix.release()

        assert binarizer.binarize(matrix, stripes_candidate) is None


class TestMethodSelection:
    """Tests for multi-method thresholding."""

    def test_selected_method_is_never_beaten(self, binarizer: ROIBinarizer, stripes_candidate: ROICandidate):
        """Test the kept score is at least every method's score."""
        region = binarizer.extract_region(make_stripes_image(), stripes_candidate)
        prepared = binarizer.preprocess(region)

        _, method, score = binarizer.binarize_region(prepared)

        assert method in [name for name, _ in THRESHOLD_METHODS]
        for _, threshold in THRESHOLD_METHODS:
            assert score >= binarizer.evaluate_quality(threshold(prepared))

    def test_first_method_wins_ties(self, binarizer: ROIBinarizer, monkeypatch):
        """Test equal scores keep the earlier method."""
        same = lambda image: np.where(image < 128, 0, 255).astype(np.uint8)
        monkeypatch.setattr(
            binarizer_module,
            "THRESHOLD_METHODS",
            [("First", same), ("Second", same)],
        )
        region = binarizer.preprocess(
            make_stripes_image()[210:270, 200:440].copy()
        )

        _, method, _ = binarizer.binarize_region(region)

        assert method == "First"

    def test_preprocess_normalizes_height(self, binarizer: ROIBinarizer):
        """Test regions are rescaled to the target height."""
        prepared = binarizer.preprocess(np.full((48, 246), 255, dtype=np.uint8))
        assert prepared.shape == (60, 307)

    def test_preprocess_keeps_oversized_width(self, binarizer: ROIBinarizer):
        """Test rescaling is skipped when width would exceed the limit."""
        prepared = binarizer.preprocess(np.full((30, 500), 255, dtype=np.uint8))
        assert prepared.shape == (30, 500)

    def test_blank_image_quality(self, binarizer: ROIBinarizer):
        """Test the score of an all-white image."""
        blank = np.full((60, 100), 255, dtype=np.uint8)
        # contrast 1.0, transitions 0.2, regularity 0.4, balance 0.3
        assert binarizer.evaluate_quality(blank) == pytest.approx(0.49)


class TestScanLineHelpers:
    """Tests for profile metrics."""

    def test_count_transitions(self):
        line = np.array([255, 255, 0, 0, 255, 0], dtype=np.uint8)
        assert count_transitions(line) == 3
        assert count_transitions(np.array([True])) == 0

    def test_average_bar_width(self):
        pattern = np.array([True, True, False, True, True, True, False])
        assert average_bar_width(pattern) == pytest.approx(2.5)
        assert average_bar_width(np.zeros(5, dtype=bool)) == 0.0

    def test_average_bar_width_trailing_bar(self):
        pattern = np.array([False, True, True, True, True])
        assert average_bar_width(pattern) == pytest.approx(4.0)

    def test_profile_quality_needs_transitions(self):
        assert profile_quality(100, 7, 5.0) == 0.0

    def test_profile_quality_weights(self):
        # 0.5 * 14/20 + 0.3 * 1.0 + 0.2 * 1.0
        assert profile_quality(307, 14, 10.0) == pytest.approx(0.85)
