"""
==============================================================================
Local Pipeline Module
==============================================================================

Frame-level MSI fallback: conversion, ROI detection and binarization.

Flow:
-----
Frame -> FrameMatrix -> ROIDetector -> best candidate -> ROIBinarizer

A valid profile is reported as a LOCAL_PIPELINE success with an empty
``data`` string; bars-to-characters decoding is not performed.

Thread Safety:
-------------
Owns an ROIDetector, so an instance must stay on one worker thread
(ScanArbitrator runs it on its single fallback worker).

==============================================================================
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Tuple

from msi_scanner.config import Settings, get_settings
from msi_scanner.scanner.binarizer import ROIBinarizer
from msi_scanner.scanner.detector import ROIDetector
from msi_scanner.scanner.frame import Frame, FrameConversionError, FrameMatrix
from msi_scanner.scanner.models import (
    NO_RESULT,
    BarcodeFormat,
    BinaryProfile,
    ROICandidate,
    ScanError,
    ScanResult,
    ScanSource,
    ScanSuccess,
)


# Module logger
logger = logging.getLogger(__name__)


class LocalPipeline:
    """
    Detector + binarizer pair run against one frame at a time.

    Example:
        >>> pipeline = LocalPipeline()
        >>> result = pipeline.scan(frame)
        >>> result.source if result.kind == "success" else None
        <ScanSource.LOCAL_PIPELINE: 'LOCAL_PIPELINE'>
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        detector: Optional[ROIDetector] = None,
        binarizer: Optional[ROIBinarizer] = None
    ) -> None:
        """
        Initialize pipeline components.

        Args:
            settings: Thresholds (global settings if None)
            detector: Detector instance (created if None)
            binarizer: Binarizer instance (created if None)
        """
        self._settings = settings or get_settings()
        self._detector = detector or ROIDetector(self._settings)
        self._binarizer = binarizer or ROIBinarizer(self._settings)

        logger.debug("LocalPipeline initialized with ROI detector + binarizer")

    # =========================================================================
    # SCANNING
    # =========================================================================

    def scan(self, frame: Frame) -> ScanResult:
        """
        Run the fallback pipeline on one frame.

        Args:
            frame: Raw grayscale frame

        Returns:
            ScanSuccess with the profile, NO_RESULT, or ScanError when the
            frame could not be converted
        """
        start = time.perf_counter()

        try:
            matrix = FrameMatrix.from_frame(frame)
        except FrameConversionError as e:
            logger.error(f"Frame conversion failed for {frame}: {e}")
            return ScanError(cause=e, source=ScanSource.LOCAL_PIPELINE)

        with matrix:
            candidates = self._detector.detect(matrix)
            if not candidates:
                logger.debug(f"No ROI detected in frame {frame.frame_id}")
                return NO_RESULT

            best = candidates[0]
            logger.debug(f"ROI detected: {best}")

            profile = self._binarizer.binarize(matrix, best)

        elapsed_ms = (time.perf_counter() - start) * 1000.0

        if profile is None:
            logger.debug(f"Binarization rejected ROI in {elapsed_ms:.1f}ms")
            return NO_RESULT

        logger.debug(f"MSI profile extracted in {elapsed_ms:.1f}ms: {profile.to_compact_ascii()}")

        return ScanSuccess(
            data="",
            format=BarcodeFormat.MSI,
            source=ScanSource.LOCAL_PIPELINE,
            processing_time_ms=elapsed_ms,
            bounding_box=best.bounding_rect,
            profile=profile,
        )

    def detect(self, frame: Frame) -> Tuple[List[ROICandidate], Optional[BinaryProfile]]:
        """
        Detect candidates and binarize the best one.

        Args:
            frame: Raw grayscale frame

        Returns:
            Tuple of (candidates, profile of the best candidate or None)

        Raises:
            FrameConversionError: If the frame is malformed
        """
        with FrameMatrix.from_frame(frame) as matrix:
            candidates = self._detector.detect(matrix)
            if not candidates:
                return [], None
            return candidates, self._binarizer.binarize(matrix, candidates[0])

    def has_roi(self, frame: Frame) -> bool:
        """
        Quick check for a plausible barcode region.

        Returns:
            True if any candidate passes is_valid_barcode()
        """
        try:
            with FrameMatrix.from_frame(frame) as matrix:
                candidates = self._detector.detect(matrix)
        except FrameConversionError as e:
            logger.warning(f"ROI check failed: {e}")
            return False

        has_valid = any(c.is_valid_barcode() for c in candidates)
        logger.debug(f"ROI check: {len(candidates)} candidates, valid: {has_valid}")
        return has_valid

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        """Release detector resources."""
        self._detector.release()
        logger.debug("LocalPipeline closed")
