"""
==============================================================================
External Recognizer Module
==============================================================================

General-purpose multi-symbol recognizer consulted before the MSI fallback.

Classes:
--------
- ExternalRecognizer: Asynchronous recognizer interface
- PyzbarRecognizer: ZBar adapter (EAN-13, EAN-8, Code 128, QR)

Result Mapping:
--------------
- Whitelisted symbol found -> ScanSuccess (EXTERNAL_RECOGNIZER)
- Nothing found, or only non-whitelisted symbols -> NO_RESULT
- Conversion or decode failure -> ScanError (EXTERNAL_RECOGNIZER)

ZBar has no MSI support, so MSI labels always fall through to the local
pipeline.

==============================================================================
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

import numpy as np

from msi_scanner.config import Settings, get_settings
from msi_scanner.scanner.frame import Frame, FrameMatrix
from msi_scanner.scanner.models import (
    NO_RESULT,
    BarcodeFormat,
    BoundingRect,
    ScanError,
    ScanResult,
    ScanSource,
    ScanSuccess,
)


# Module logger
logger = logging.getLogger(__name__)


ResultCallback = Callable[[ScanResult], None]


# ZBar symbol type -> reported format
ZBAR_FORMATS: Dict[str, str] = {
    "EAN13": BarcodeFormat.EAN_13,
    "EAN8": BarcodeFormat.EAN_8,
    "CODE128": BarcodeFormat.CODE_128,
    "QRCODE": BarcodeFormat.QR_CODE,
}


def zbar_decode(image: np.ndarray) -> list:
    """
    Decode every symbol in a grayscale image with ZBar.

    pyzbar loads the native zbar library on import, so the import happens
    here and a missing library surfaces as a recognizer error.
    """
    from pyzbar.pyzbar import decode

    return decode(image)


class ExternalRecognizer(ABC):
    """
    Black-box recognizer invoked asynchronously.

    Implementations must call ``callback`` exactly once per scan_frame().
    """

    @abstractmethod
    def scan_frame(self, frame: Frame, callback: ResultCallback) -> None:
        """Start recognition of ``frame``; report through ``callback``."""

    @abstractmethod
    def close(self) -> None:
        """Release recognizer resources."""


class PyzbarRecognizer(ExternalRecognizer):
    """
    pyzbar-backed recognizer running on its own single worker thread.

    Example:
        >>> recognizer = PyzbarRecognizer()
        >>> recognizer.scan_frame(frame, print)
        >>> recognizer.close()
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """
        Initialize recognizer and its worker.

        Args:
            settings: Provides the accepted format whitelist
        """
        self._settings = settings or get_settings()
        self._formats = set(self._settings.recognizer_formats_list)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recognizer")

        logger.debug(f"PyzbarRecognizer created (formats: {sorted(self._formats)})")

    def scan_frame(self, frame: Frame, callback: ResultCallback) -> None:
        self._executor.submit(self._run, frame, callback)

    def recognize(self, frame: Frame) -> ScanResult:
        """
        Synchronously recognize one frame.

        Args:
            frame: Raw grayscale frame

        Returns:
            ScanSuccess, NO_RESULT or ScanError
        """
        start = time.perf_counter()

        try:
            with FrameMatrix.from_frame(frame) as matrix:
                symbols = zbar_decode(matrix.pixels)
        except Exception as e:
            logger.warning(f"External recognizer failed on {frame}: {e}")
            return ScanError(cause=e, source=ScanSource.EXTERNAL_RECOGNIZER)

        elapsed_ms = (time.perf_counter() - start) * 1000.0

        for symbol in symbols:
            barcode_format = ZBAR_FORMATS.get(symbol.type)

            if barcode_format is None or barcode_format not in self._formats:
                logger.debug(f"Ignoring non-whitelisted symbol: {symbol.type}")
                continue

            try:
                data = symbol.data.decode("utf-8")
            except UnicodeDecodeError:
                data = symbol.data.decode("latin-1")

            logger.debug(f"External recognizer found {barcode_format}: {data}")

            return ScanSuccess(
                data=data,
                format=barcode_format,
                source=ScanSource.EXTERNAL_RECOGNIZER,
                processing_time_ms=elapsed_ms,
                bounding_box=BoundingRect.from_xywh(
                    symbol.rect.left,
                    symbol.rect.top,
                    symbol.rect.width,
                    symbol.rect.height,
                ),
                corner_points=self._corner_points(symbol),
            )

        return NO_RESULT

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        logger.debug("PyzbarRecognizer closed")

    # =========================================================================
    # INTERNAL
    # =========================================================================

    def _run(self, frame: Frame, callback: ResultCallback) -> None:
        result = self.recognize(frame)
        try:
            callback(result)
        except Exception as e:
            logger.error(f"Recognizer callback raised: {e}", exc_info=True)

    @staticmethod
    def _corner_points(symbol) -> Optional[List[tuple]]:
        polygon = getattr(symbol, "polygon", None)
        if not polygon:
            return None
        return [(int(p.x), int(p.y)) for p in polygon]
