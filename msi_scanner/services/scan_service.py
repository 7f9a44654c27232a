"""
==============================================================================
Scan Service Module
==============================================================================

Process-wide owner of the ScanArbitrator used by the REST and WebSocket
surfaces.

This module implements:
- ScanService: Frame payload decoding and async access to the arbitrator
- init_scan_service / get_scan_service / shutdown_scan_service: singleton

Frame Payloads:
--------------
- Encoded image: base64 JPEG/PNG, decoded to grayscale with cv2.imdecode
- Raw luma: base64 8-bit buffer plus width, height and row stride

==============================================================================
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Hashable, List, Optional, Tuple

import cv2
import numpy as np

from msi_scanner.config import Settings, get_settings
from msi_scanner.core.exceptions import (
    image_decode_failed,
    internal_error,
    invalid_frame,
    scan_timeout,
    scanner_not_ready,
)
from msi_scanner.scanner import (
    BinaryProfile,
    ExternalRecognizer,
    Frame,
    FrameConversionError,
    LocalPipeline,
    PyzbarRecognizer,
    ROICandidate,
    ScanArbitrator,
    ScanMetrics,
    ScanRequest,
    ScanResult,
)
from msi_scanner.utils.validators import FrameValidator


# Module logger
logger = logging.getLogger(__name__)


class ScanService:
    """
    Async facade over the ScanArbitrator.

    Attributes:
        arbitrator: Underlying arbitrator

    Example:
        >>> service = ScanService()
        >>> frame = service.build_frame(image="iVBORw0KGgo...")
        >>> result = await service.scan(frame)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        recognizer: Optional[ExternalRecognizer] = None,
        pipeline: Optional[LocalPipeline] = None
    ) -> None:
        """
        Initialize service and start the arbitrator.

        Args:
            settings: Service settings (global settings if None)
            recognizer: External recognizer (pyzbar if None)
            pipeline: Local fallback (default pipeline if None)
        """
        self._settings = settings or get_settings()
        self._validator = FrameValidator()
        self._frame_ids = 0
        self._arbitrator = ScanArbitrator(
            recognizer or PyzbarRecognizer(self._settings),
            pipeline or LocalPipeline(self._settings),
            self._settings,
        )

    @property
    def arbitrator(self) -> ScanArbitrator:
        return self._arbitrator

    @property
    def is_running(self) -> bool:
        return not self._arbitrator.is_closed

    # =========================================================================
    # FRAME DECODING
    # =========================================================================

    def build_frame(
        self,
        image: Optional[str] = None,
        pixels: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        row_stride: Optional[int] = None,
        rotation_degrees: int = 0,
        frame_id: Optional[int] = None
    ) -> Frame:
        """
        Build a Frame from an API payload.

        Args:
            image: Base64 encoded JPEG/PNG
            pixels: Base64 raw 8-bit luma buffer
            width: Raw buffer width
            height: Raw buffer height
            row_stride: Raw buffer stride (defaults to width)
            rotation_degrees: Rotation metadata
            frame_id: Caller sequence number (auto-assigned if None)

        Returns:
            Frame ready for scanning

        Raises:
            AppException: INVALID_FRAME or IMAGE_DECODE_FAILED
        """
        if frame_id is None:
            self._frame_ids += 1
            frame_id = self._frame_ids

        if image is not None:
            gray = self._decode_image(image)
            if rotation_degrees not in FrameValidator.VALID_ROTATIONS:
                raise invalid_frame(f"Rotation must be one of {FrameValidator.VALID_ROTATIONS}")
            return Frame.from_array(gray, rotation_degrees, frame_id)

        if pixels is None:
            raise invalid_frame("Either 'image' or 'pixels' is required")

        if width is None or height is None:
            raise invalid_frame("'width' and 'height' are required with 'pixels'")

        raw = self._decode_base64(pixels, "pixels")
        stride = row_stride if row_stride is not None else width

        is_valid, error = self._validator.validate(width, height, stride, rotation_degrees, len(raw))
        if not is_valid:
            raise invalid_frame(error)

        return Frame(
            data=raw,
            width=width,
            height=height,
            row_stride=stride,
            rotation_degrees=rotation_degrees,
            frame_id=frame_id,
        )

    def _decode_image(self, image: str) -> np.ndarray:
        raw = self._decode_base64(image, "image")
        decoded = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
        if decoded is None:
            raise image_decode_failed()
        return decoded

    @staticmethod
    def _decode_base64(value: str, field: str) -> bytes:
        if "," in value and value.startswith("data:"):
            value = value.split(",", 1)[1]
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise invalid_frame(f"'{field}' is not valid base64") from e

    # =========================================================================
    # SCANNING
    # =========================================================================

    def submit(self, frame: Frame, callback=None, stream_id: Optional[Hashable] = None) -> ScanRequest:
        """
        Submit a frame without waiting.

        Args:
            frame: Frame to scan
            callback: Called once with the result (optional)
            stream_id: Live stream the frame belongs to, None for one-off calls

        Raises:
            AppException: SCANNER_NOT_READY once the service is closed
        """
        try:
            return self._arbitrator.scan_frame(frame, callback, stream_id=stream_id)
        except RuntimeError as e:
            logger.warning(f"Frame rejected: {e}")
            raise scanner_not_ready() from e

    async def scan(
        self,
        frame: Frame,
        timeout_s: Optional[float] = None,
        stream_id: Optional[Hashable] = None
    ) -> ScanResult:
        """
        Scan one frame and wait for its result.

        Args:
            frame: Frame to scan
            timeout_s: Wait limit (arbitrator_request_timeout_s if None)
            stream_id: Live stream the frame belongs to, None for one-off calls

        Returns:
            The delivered ScanResult

        Raises:
            AppException: SCAN_TIMEOUT or SCANNER_NOT_READY
        """
        timeout_s = timeout_s or self._settings.arbitrator_request_timeout_s
        request = self.submit(frame, stream_id=stream_id)

        try:
            return await asyncio.wait_for(
                asyncio.shield(asyncio.wrap_future(request.future)),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Request {request.request_id} timed out after {timeout_s:.1f}s")
            raise scan_timeout(timeout_s) from e

    async def detect(
        self,
        frame: Frame,
        timeout_s: Optional[float] = None
    ) -> Tuple[List[ROICandidate], Optional[BinaryProfile]]:
        """
        Run the local pipeline only and return its intermediate output.

        Raises:
            AppException: INVALID_FRAME, SCAN_TIMEOUT, SCANNER_NOT_READY or
                INTERNAL_ERROR
        """
        timeout_s = timeout_s or self._settings.arbitrator_request_timeout_s

        try:
            future = self._arbitrator.detect(frame)
        except RuntimeError as e:
            raise scanner_not_ready() from e

        try:
            return await asyncio.wait_for(
                asyncio.shield(asyncio.wrap_future(future)),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise scan_timeout(timeout_s) from e
        except FrameConversionError as e:
            raise invalid_frame(str(e)) from e
        except Exception as e:
            logger.error(f"ROI detection failed: {e}", exc_info=True)
            raise internal_error("ROI detection failed") from e

    # =========================================================================
    # METRICS & LIFECYCLE
    # =========================================================================

    @property
    def metrics(self) -> ScanMetrics:
        return self._arbitrator.metrics

    def reset_metrics(self) -> None:
        self._arbitrator.reset_hit_counters()

    def end_stream(self, stream_id: Hashable) -> None:
        self._arbitrator.end_stream(stream_id)

    def close(self) -> None:
        self._arbitrator.close()


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

_scan_service: Optional[ScanService] = None


def get_scan_service() -> Optional[ScanService]:
    """Get the global scan service instance."""
    return _scan_service


def require_scan_service() -> ScanService:
    """
    Get the running scan service (FastAPI dependency).

    Raises:
        AppException: SCANNER_NOT_READY if not initialized or closed
    """
    if _scan_service is None or not _scan_service.is_running:
        raise scanner_not_ready()
    return _scan_service


def init_scan_service(
    settings: Optional[Settings] = None,
    recognizer: Optional[ExternalRecognizer] = None,
    pipeline: Optional[LocalPipeline] = None
) -> ScanService:
    """
    Initialize the global scan service instance.

    An already running instance is closed first.

    Returns:
        ScanService instance
    """
    global _scan_service

    if _scan_service is not None:
        _scan_service.close()

    _scan_service = ScanService(settings, recognizer, pipeline)
    return _scan_service


def shutdown_scan_service() -> None:
    """Close and drop the global scan service."""
    global _scan_service

    if _scan_service is not None:
        _scan_service.close()
        _scan_service = None
