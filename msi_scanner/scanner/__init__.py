"""
==============================================================================
Scanner Package - MSI Fallback Detection
==============================================================================

Barcode scanning with OpenCV, pyzbar and a local MSI fallback pipeline.

Classes:
--------
- FrameMatrix: Owned grayscale matrix built from a raw Frame
- ROIDetector: Gradient-based barcode region detection
- ROIBinarizer: Multi-method binarization into a BinaryProfile
- LocalPipeline: Detector + binarizer on one frame
- PyzbarRecognizer: External recognizer consulted first
- ScanArbitrator: Priority arbitration with exactly-once delivery
- ResultDebouncer: Duplicate suppression for live streams

==============================================================================
"""

from .arbitrator import RequestState, ScanArbitrator, ScanRequest
from .binarizer import ROIBinarizer
from .debounce import ResultDebouncer
from .detector import ROIDetector
from .frame import Frame, FrameConversionError, FrameMatrix
from .models import (
    NO_RESULT,
    BarcodeFormat,
    BinaryProfile,
    BoundingRect,
    ROICandidate,
    ScanError,
    ScanMetrics,
    ScanNoResult,
    ScanResult,
    ScanSource,
    ScanSuccess,
)
from .pipeline import LocalPipeline
from .recognizer import ExternalRecognizer, PyzbarRecognizer

__all__ = [
    "BarcodeFormat",
    "BinaryProfile",
    "BoundingRect",
    "ExternalRecognizer",
    "Frame",
    "FrameConversionError",
    "FrameMatrix",
    "LocalPipeline",
    "NO_RESULT",
    "PyzbarRecognizer",
    "ROIBinarizer",
    "ROICandidate",
    "ROIDetector",
    "RequestState",
    "ResultDebouncer",
    "ScanArbitrator",
    "ScanError",
    "ScanMetrics",
    "ScanNoResult",
    "ScanRequest",
    "ScanResult",
    "ScanSource",
    "ScanSuccess",
]
