"""
==============================================================================
Scanner Models Module
==============================================================================

Value types shared by the detection pipeline and the arbitrator.

Types:
------
- BoundingRect: Pixel rectangle (right/bottom exclusive)
- ROICandidate: Region likely to contain a 1-D barcode
- BinaryProfile: Bar/space sequence sampled along one scan line
- ScanSuccess / ScanNoResult / ScanError: ScanResult variants
- ScanMetrics: Per-source latency and hit counters snapshot

All models are frozen; equality is structural.

==============================================================================
"""

from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class BarcodeFormat:
    """
    Barcode format tags reported in ScanSuccess.format.

    ZBar cannot read Data Matrix, so DATA_MATRIX is only produced by
    ExternalRecognizer implementations backed by another decoder.
    """

    DATA_MATRIX = "DATA_MATRIX"
    EAN_13 = "EAN_13"
    EAN_8 = "EAN_8"
    CODE_128 = "CODE_128"
    QR_CODE = "QR_CODE"
    MSI = "MSI"


class ScanSource(str, Enum):
    """Which detection source produced a result."""

    EXTERNAL_RECOGNIZER = "EXTERNAL_RECOGNIZER"
    LOCAL_PIPELINE = "LOCAL_PIPELINE"


# =============================================================================
# GEOMETRY
# =============================================================================

class BoundingRect(BaseModel):
    """
    Axis-aligned rectangle in FrameMatrix pixel space.

    Attributes:
        left: First column inside the rectangle
        top: First row inside the rectangle
        right: First column past the rectangle
        bottom: First row past the rectangle
    """

    model_config = ConfigDict(frozen=True)

    left: int
    top: int
    right: int
    bottom: int

    @classmethod
    def from_xywh(cls, x: int, y: int, width: int, height: int) -> "BoundingRect":
        """Build from OpenCV's (x, y, w, h) convention."""
        return cls(left=int(x), top=int(y), right=int(x + width), bottom=int(y + height))

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.left + self.width / 2.0, self.top + self.height / 2.0)


# =============================================================================
# PIPELINE VALUE TYPES
# =============================================================================

class ROICandidate(BaseModel):
    """
    Region of interest that potentially contains a 1-D barcode.

    Produced by ROIDetector, consumed by ROIBinarizer. Never persisted.

    Attributes:
        bounding_rect: Region in FrameMatrix pixel space
        confidence: Weighted detection score in [0, 1]
        aspect_ratio: width / height of the region
        gradient_magnitude: Mean Sobel magnitude inside the region
        rotation_angle: 0, 90, 180 or 270 (reserved for multi-orientation)
    """

    model_config = ConfigDict(frozen=True)

    bounding_rect: BoundingRect
    confidence: float = Field(..., ge=0.0, le=1.0)
    aspect_ratio: float
    gradient_magnitude: float
    rotation_angle: Literal[0, 90, 180, 270] = 0

    @property
    def width(self) -> int:
        return self.bounding_rect.width

    @property
    def height(self) -> int:
        return self.bounding_rect.height

    def is_valid_barcode(self) -> bool:
        """Loose plausibility check used for the quick ROI presence test."""
        return (
            self.confidence > 0.3
            and self.aspect_ratio > 2.0
            and self.width > 50
            and self.height > 10
        )

    def __str__(self) -> str:
        r = self.bounding_rect
        return (
            f"ROI(rect=[{r.left},{r.top},{r.right},{r.bottom}], "
            f"conf={self.confidence:.2f}, ratio={self.aspect_ratio:.1f}, "
            f"grad={self.gradient_magnitude:.1f})"
        )


class BinaryProfile(BaseModel):
    """
    1-D bar/space sequence sampled along one scan line.

    Attributes:
        pattern: True = bar (black), False = space (white)
        quality: Overall profile quality in [0, 1]
        aspect_ratio: Aspect ratio of the source ROI
        transition_count: Number of bar/space edges
        average_bar_width: Mean run length of bars, in pixels
    """

    model_config = ConfigDict(frozen=True)

    pattern: Tuple[bool, ...]
    quality: float = Field(..., ge=0.0, le=1.0)
    aspect_ratio: float
    transition_count: int = Field(..., ge=0)
    average_bar_width: float = Field(..., ge=0.0)

    def is_valid_msi(self) -> bool:
        """Check whether the profile is good enough to hand to a decoder."""
        return (
            self.quality > 0.5
            and self.transition_count >= 8
            and len(self.pattern) >= 20
            and self.aspect_ratio > 2.0
        )

    def to_ascii(self) -> str:
        """One character per sample: bars as full blocks, spaces as dots."""
        return "".join("█" if bar else "·" for bar in self.pattern)

    def to_compact_ascii(self) -> str:
        """
        Run-length form of the pattern.

        Bars are written as their run length, spaces as a dot followed by
        their run length, e.g. "·3 2·5 4".
        """
        if not self.pattern:
            return ""

        runs = []
        current = self.pattern[0]
        count = 1

        for bar in self.pattern[1:]:
            if bar == current:
                count += 1
                continue
            runs.append(f"{count}" if current else f"·{count}")
            current = bar
            count = 1

        runs.append(f"{count}" if current else f"·{count}")
        return " ".join(runs)

    def to_debug_string(self) -> str:
        """Detailed multi-line summary for debug logs."""
        return (
            f"BinaryProfile(len={len(self.pattern)}, quality={self.quality:.2f}, "
            f"transitions={self.transition_count}, "
            f"avgBarWidth={self.average_bar_width:.1f}, "
            f"ratio={self.aspect_ratio:.2f})\n"
            f"ASCII: {self.to_ascii()}\n"
            f"Compact: {self.to_compact_ascii()}"
        )


# =============================================================================
# SCAN RESULT VARIANTS
# =============================================================================

class ScanSuccess(BaseModel):
    """
    A detection delivered to the caller.

    Local pipeline results carry an empty ``data`` string and the extracted
    ``profile``; symbol decoding of the profile is not performed.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    data: str
    format: str
    source: ScanSource
    processing_time_ms: float = Field(..., ge=0.0)
    bounding_box: Optional[BoundingRect] = None
    corner_points: Optional[List[Tuple[int, int]]] = None
    profile: Optional[BinaryProfile] = None


class ScanNoResult(BaseModel):
    """Nothing was detected in the frame."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["no_result"] = "no_result"


class ScanError(BaseModel):
    """A source failed while processing the frame."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["error"] = "error"
    cause: Exception
    source: ScanSource


ScanResult = Union[ScanSuccess, ScanNoResult, ScanError]

NO_RESULT = ScanNoResult()


# =============================================================================
# METRICS
# =============================================================================

class ScanMetrics(BaseModel):
    """
    Snapshot of per-source latencies and hit counters.

    Attributes:
        external_time_ms: Latency of the most recent recognizer attempt
        local_time_ms: Latency of the most recent local fallback
        external_hits: Results delivered from the external recognizer
        local_hits: Results delivered from the local pipeline
        frame_count: Requests that received their result
        average_processing_time_ms: Mean submit-to-delivery time per request
        pending_requests: Requests submitted but not yet delivered
        last_scan_source: Source of the latest success, "none" once it ages out
    """

    model_config = ConfigDict(frozen=True)

    external_time_ms: float = 0.0
    local_time_ms: float = 0.0
    external_hits: int = 0
    local_hits: int = 0
    frame_count: int = 0
    average_processing_time_ms: float = 0.0
    pending_requests: int = 0
    last_scan_source: str = "none"
