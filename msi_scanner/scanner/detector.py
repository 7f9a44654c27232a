"""
==============================================================================
ROI Detector Module
==============================================================================

Locates rectangular regions likely to contain a horizontal 1-D barcode.

Pipeline:
---------
1. Gradient analysis: Sobel X/Y (ksize 3), polar magnitude/direction,
   ratio |gx| / (|gy| + 1); mask = magnitude >= T AND ratio >= R
2. Morphology: closing then opening with a wide, short rectangle
   (connects bars into one blob, then removes speckle)
3. Contours: external contours of the processed mask
4. Geometric filtering: size, aspect ratio, area, density, convexity,
   mean gradient
5. Confidence: 0.4 aspect + 0.3 gradient density + 0.2 compactness
   + 0.1 position
6. Selection: high confidence first, medium confidence as fallback,
   capped candidate count

Failure Policy:
--------------
Any exception inside the pipeline yields an empty list. Processing time
over the advisory budget is logged, never enforced.

Thread Safety:
-------------
The detector reuses scratch buffers between calls and is NOT thread-safe.
Confine each instance to a single worker.

==============================================================================
"""

from __future__ import annotations

import logging
import math
import time
from typing import List, Optional

import cv2
import numpy as np

from msi_scanner.config import Settings, get_settings
from msi_scanner.scanner.frame import FrameMatrix
from msi_scanner.scanner.models import BoundingRect, ROICandidate


# Module logger
logger = logging.getLogger(__name__)


# Confidence weights (sum to 1.0)
WEIGHT_ASPECT_RATIO = 0.4
WEIGHT_GRADIENT_DENSITY = 0.3
WEIGHT_COMPACTNESS = 0.2
WEIGHT_POSITION = 0.1


class ROIDetector:
    """
    Gradient-based ROI detector for horizontal 1-D barcodes.

    Attributes:
        settings: Thresholds and budgets

    Example:
        >>> with ROIDetector() as detector:
        ...     candidates = detector.detect(matrix)
        >>> candidates[0].confidence
        0.55
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """
        Initialize detector and allocate the morphology kernel.

        Args:
            settings: Detector thresholds (global settings if None)
        """
        self._settings = settings or get_settings()

        # Scratch buffers, re-allocated only when the frame shape changes
        self._grad_x: Optional[np.ndarray] = None
        self._grad_y: Optional[np.ndarray] = None
        self._magnitude: Optional[np.ndarray] = None
        self._direction: Optional[np.ndarray] = None
        self._kernel: Optional[np.ndarray] = cv2.getStructuringElement(
            cv2.MORPH_RECT,
            (self._settings.detector_kernel_width, self._settings.detector_kernel_height),
        )
        self._released = False

        logger.debug(
            f"ROIDetector created (kernel {self._settings.detector_kernel_width}"
            f"x{self._settings.detector_kernel_height})"
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def detect(self, matrix: FrameMatrix) -> List[ROICandidate]:
        """
        Detect ROI candidates in a grayscale matrix.

        Args:
            matrix: Frame to analyse (native orientation)

        Returns:
            Candidates sorted by descending confidence, at most
            ``detector_max_candidates`` long; empty on any failure
        """
        if self._released:
            logger.warning("detect() called on a released ROIDetector")
            return []

        start = time.perf_counter()

        try:
            gray = matrix.pixels
            logger.debug(f"Detecting ROI candidates in {gray.shape[1]}x{gray.shape[0]} image")

            gradient_mask = self._analyze_gradients(gray)
            if not gradient_mask.any():
                logger.debug("No gradient regions found")
                return []

            processed = self._apply_morphology(gradient_mask)
            contours = self._find_contours(processed)
            logger.debug(f"Found {len(contours)} contours")

            candidates = self._extract_candidates(contours, gradient_mask, gray.shape)
            selected = self._select(candidates)

        except Exception as e:
            logger.error(f"ROI detection failed: {e}", exc_info=True)
            return []

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(f"Detected {len(selected)} ROI candidates in {elapsed_ms:.1f}ms")

        if elapsed_ms > self._settings.detector_budget_ms:
            logger.warning(
                f"ROI detection exceeded budget: {elapsed_ms:.1f}ms > "
                f"{self._settings.detector_budget_ms:.0f}ms"
            )

        return selected

    def release(self) -> None:
        """Drop scratch buffers and the morphology kernel."""
        self._grad_x = None
        self._grad_y = None
        self._magnitude = None
        self._direction = None
        self._kernel = None
        self._released = True
        logger.debug("ROIDetector resources released")

    close = release

    def __enter__(self) -> "ROIDetector":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    # =========================================================================
    # STEP 1: GRADIENT ANALYSIS
    # =========================================================================

    def _ensure_scratch(self, shape) -> None:
        """Allocate scratch buffers unless the previous frame had the same shape."""
        if self._grad_x is not None and self._grad_x.shape == shape:
            return

        self._grad_x = np.empty(shape, dtype=np.float32)
        self._grad_y = np.empty(shape, dtype=np.float32)
        self._magnitude = np.empty(shape, dtype=np.float32)
        self._direction = np.empty(shape, dtype=np.float32)

    def _analyze_gradients(self, gray: np.ndarray) -> np.ndarray:
        """
        Build the binary mask of strong, mostly horizontal gradients.

        Returns:
            uint8 mask (0 or 255) with the frame's shape
        """
        self._ensure_scratch(gray.shape)

        cv2.Sobel(gray, cv2.CV_32F, 1, 0, dst=self._grad_x, ksize=3)
        cv2.Sobel(gray, cv2.CV_32F, 0, 1, dst=self._grad_y, ksize=3)
        cv2.cartToPolar(self._grad_x, self._grad_y, self._magnitude, self._direction)

        ratio = np.abs(self._grad_x) / (np.abs(self._grad_y) + 1.0)

        strong = self._magnitude >= self._settings.detector_gradient_threshold
        horizontal = ratio >= self._settings.detector_min_gradient_ratio

        return np.where(strong & horizontal, 255, 0).astype(np.uint8)

    # =========================================================================
    # STEP 2-3: MORPHOLOGY AND CONTOURS
    # =========================================================================

    def _apply_morphology(self, mask: np.ndarray) -> np.ndarray:
        """Close to connect bars, then open to remove speckle."""
        closed = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, self._kernel)
        return cv2.morphologyEx(closed, cv2.MORPH_OPEN, self._kernel)

    @staticmethod
    def _find_contours(processed: np.ndarray) -> list:
        """External contours only."""
        contours, _ = cv2.findContours(
            processed,
            cv2.RETR_EXTERNAL,
            cv2.CHAIN_APPROX_SIMPLE,
        )
        return list(contours)

    # =========================================================================
    # STEP 4-5: FILTERING AND SCORING
    # =========================================================================

    def _extract_candidates(self, contours: list, gradient_mask: np.ndarray, shape) -> List[ROICandidate]:
        """Filter contours by geometry and score the survivors."""
        candidates = []

        for contour in contours:
            try:
                x, y, w, h = cv2.boundingRect(contour)
                aspect_ratio = w / float(h)

                mean_gradient = self._filter_geometry(x, y, w, h, aspect_ratio, contour)
                if mean_gradient is None:
                    continue

                confidence = self._confidence(
                    x, y, w, h, aspect_ratio, contour, gradient_mask, shape
                )

                candidates.append(ROICandidate(
                    bounding_rect=BoundingRect.from_xywh(x, y, w, h),
                    confidence=confidence,
                    aspect_ratio=aspect_ratio,
                    gradient_magnitude=mean_gradient,
                    rotation_angle=0,
                ))

            except Exception as e:
                logger.warning(f"Failed to process contour: {e}")
                continue

        candidates.sort(key=lambda c: c.confidence, reverse=True)
        return candidates

    def _filter_geometry(
        self,
        x: int,
        y: int,
        w: int,
        h: int,
        aspect_ratio: float,
        contour
    ) -> Optional[float]:
        """
        Apply every geometric and gradient filter; all must pass.

        Returns:
            Mean gradient magnitude of the box, or None if rejected
        """
        s = self._settings

        if w < s.detector_min_roi_width or h < s.detector_min_roi_height:
            logger.debug(f"REJECT size: {w}x{h}")
            return None

        if aspect_ratio < s.detector_min_aspect_ratio or aspect_ratio > s.detector_max_aspect_ratio:
            logger.debug(f"REJECT aspect ratio: {aspect_ratio:.2f}")
            return None

        rect_area = w * h
        if rect_area < s.detector_min_area:
            logger.debug(f"REJECT area: {rect_area}")
            return None

        contour_area = cv2.contourArea(contour)
        density = contour_area / rect_area
        if density < s.detector_min_density:
            logger.debug(f"REJECT density: {density:.2f}")
            return None

        hull_area = cv2.contourArea(cv2.convexHull(contour))
        if hull_area <= 0:
            logger.debug("REJECT convexity: empty hull")
            return None

        convexity = contour_area / hull_area
        if convexity < s.detector_min_convexity:
            logger.debug(f"REJECT convexity: {convexity:.2f}")
            return None

        mean_gradient = float(self._magnitude[y:y + h, x:x + w].mean())
        if mean_gradient < s.detector_gradient_threshold:
            logger.debug(f"REJECT gradient: {mean_gradient:.1f}")
            return None

        logger.debug(
            f"ACCEPT ROI: {w}x{h}, ratio={aspect_ratio:.1f}, area={rect_area}, "
            f"density={density:.2f}, convexity={convexity:.2f}, grad={mean_gradient:.1f}"
        )
        return mean_gradient

    @staticmethod
    def _aspect_score(aspect_ratio: float) -> float:
        if aspect_ratio >= 8.0:
            return 1.0
        if aspect_ratio >= 5.0:
            return 0.8
        if aspect_ratio >= 3.0:
            return 0.6
        return 0.3

    def _confidence(
        self,
        x: int,
        y: int,
        w: int,
        h: int,
        aspect_ratio: float,
        contour,
        gradient_mask: np.ndarray,
        shape
    ) -> float:
        """Weighted four-factor confidence, clamped to [0, 1]."""
        aspect_score = self._aspect_score(aspect_ratio)

        box_mask = gradient_mask[y:y + h, x:x + w]
        density_score = min(max(cv2.countNonZero(box_mask) / float(w * h), 0.0), 1.0)

        perimeter = cv2.arcLength(contour, True)
        area = cv2.contourArea(contour)
        if perimeter > 0:
            compactness = (4.0 * math.pi * area) / (perimeter * perimeter)
        else:
            compactness = 0.0
        compactness_score = min(max(compactness, 0.0), 1.0)

        image_h, image_w = shape
        dx = (x + w / 2.0) - image_w / 2.0
        dy = (y + h / 2.0) - image_h / 2.0
        half_diagonal = math.hypot(image_w / 2.0, image_h / 2.0)
        position_score = 1.0 - (math.hypot(dx, dy) / half_diagonal)

        confidence = (
            aspect_score * WEIGHT_ASPECT_RATIO
            + density_score * WEIGHT_GRADIENT_DENSITY
            + compactness_score * WEIGHT_COMPACTNESS
            + position_score * WEIGHT_POSITION
        )

        logger.debug(
            f"CONFIDENCE {confidence:.2f} = aspect({aspect_score:.2f}) "
            f"+ density({density_score:.2f}) + compact({compactness_score:.2f}) "
            f"+ pos({position_score:.2f})"
        )
        return min(max(confidence, 0.0), 1.0)

    # =========================================================================
    # STEP 6: SELECTION
    # =========================================================================

    def _select(self, candidates: List[ROICandidate]) -> List[ROICandidate]:
        """Prefer high confidence, fall back to medium, cap the count."""
        s = self._settings

        high = [c for c in candidates if c.confidence >= s.detector_high_confidence]
        if high:
            selected = high
        else:
            selected = [c for c in candidates if c.confidence >= s.detector_medium_confidence]
            if selected:
                logger.debug(
                    f"No high confidence ROIs, using medium confidence "
                    f"(>={s.detector_medium_confidence})"
                )

        return selected[:s.detector_max_candidates]
