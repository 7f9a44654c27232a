"""
==============================================================================
Scan Schemas Module
==============================================================================

Request and response schemas for frame scanning.

Includes:
- Frame payloads: encoded image or raw luma buffer with stride
- Scan results: one shape for every ScanResult variant, keyed by ``kind``
- ROI candidates and binary profiles for the detect endpoint
- Arbitrator metrics

==============================================================================
"""

from typing import List, Optional, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator

from msi_scanner.scanner.models import (
    BinaryProfile,
    BoundingRect,
    ROICandidate,
    ScanError,
    ScanMetrics,
    ScanNoResult,
    ScanResult,
    ScanSuccess,
)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class FrameRequest(BaseModel):
    """Single frame to scan: either ``image`` or ``pixels``."""
    image: Optional[str] = Field(default=None, description="Base64 JPEG/PNG")
    pixels: Optional[str] = Field(default=None, description="Base64 raw 8-bit luma")
    width: Optional[int] = Field(default=None, gt=0, le=8192)
    height: Optional[int] = Field(default=None, gt=0, le=8192)
    row_stride: Optional[int] = Field(default=None, gt=0)
    rotation_degrees: int = Field(default=0)
    frame_id: Optional[int] = Field(default=None, ge=0)

    @field_validator("rotation_degrees")
    @classmethod
    def validate_rotation(cls, v: int) -> int:
        if v not in (0, 90, 180, 270):
            raise ValueError("Rotation must be 0, 90, 180 or 270")
        return v

    @model_validator(mode="after")
    def validate_source(self):
        if (self.image is None) == (self.pixels is None):
            raise ValueError("Provide exactly one of 'image' or 'pixels'")
        if self.pixels is not None and (self.width is None or self.height is None):
            raise ValueError("'width' and 'height' are required with 'pixels'")
        return self


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class BoundingBoxResponse(BaseModel):
    """Pixel rectangle, right/bottom exclusive."""
    left: int
    top: int
    right: int
    bottom: int
    width: int
    height: int

    @classmethod
    def from_rect(cls, rect: BoundingRect) -> "BoundingBoxResponse":
        return cls(
            left=rect.left,
            top=rect.top,
            right=rect.right,
            bottom=rect.bottom,
            width=rect.width,
            height=rect.height,
        )


class ProfileResponse(BaseModel):
    """Binary profile summary with its run-length rendering."""
    length: int
    quality: float
    transition_count: int
    average_bar_width: float
    aspect_ratio: float
    is_valid_msi: bool
    compact: str

    @classmethod
    def from_profile(cls, profile: BinaryProfile) -> "ProfileResponse":
        return cls(
            length=len(profile.pattern),
            quality=round(profile.quality, 4),
            transition_count=profile.transition_count,
            average_bar_width=round(profile.average_bar_width, 3),
            aspect_ratio=round(profile.aspect_ratio, 3),
            is_valid_msi=profile.is_valid_msi(),
            compact=profile.to_compact_ascii(),
        )


class ScanResultResponse(BaseModel):
    """Result of scanning one frame."""
    success: bool = True
    kind: str
    data: Optional[str] = None
    format: Optional[str] = None
    source: Optional[str] = None
    processing_time_ms: Optional[float] = None
    bounding_box: Optional[BoundingBoxResponse] = None
    corner_points: Optional[List[Tuple[int, int]]] = None
    profile: Optional[ProfileResponse] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ScanResult) -> "ScanResultResponse":
        """
        Flatten a ScanResult variant.

        Raises:
            TypeError: For an unknown variant
        """
        if isinstance(result, ScanSuccess):
            return cls(
                kind=result.kind,
                data=result.data,
                format=result.format,
                source=result.source.value,
                processing_time_ms=round(result.processing_time_ms, 3),
                bounding_box=(
                    BoundingBoxResponse.from_rect(result.bounding_box)
                    if result.bounding_box else None
                ),
                corner_points=result.corner_points,
                profile=(
                    ProfileResponse.from_profile(result.profile)
                    if result.profile else None
                ),
            )

        if isinstance(result, ScanNoResult):
            return cls(kind=result.kind)

        if isinstance(result, ScanError):
            return cls(
                kind=result.kind,
                source=result.source.value,
                error=str(result.cause),
            )

        raise TypeError(f"Unknown scan result variant: {type(result).__name__}")


class CandidateResponse(BaseModel):
    """Detected region of interest."""
    bounding_box: BoundingBoxResponse
    confidence: float
    aspect_ratio: float
    gradient_magnitude: float
    rotation_angle: int
    is_valid_barcode: bool

    @classmethod
    def from_candidate(cls, candidate: ROICandidate) -> "CandidateResponse":
        return cls(
            bounding_box=BoundingBoxResponse.from_rect(candidate.bounding_rect),
            confidence=round(candidate.confidence, 4),
            aspect_ratio=round(candidate.aspect_ratio, 3),
            gradient_magnitude=round(candidate.gradient_magnitude, 2),
            rotation_angle=candidate.rotation_angle,
            is_valid_barcode=candidate.is_valid_barcode(),
        )


class DetectResponse(BaseModel):
    """Local pipeline output for one frame."""
    success: bool = True
    candidates: List[CandidateResponse]
    profile: Optional[ProfileResponse] = None


class MetricsResponse(BaseModel):
    """Arbitrator metrics snapshot."""
    success: bool = True
    external_time_ms: float
    local_time_ms: float
    external_hits: int
    local_hits: int
    frame_count: int
    average_processing_time_ms: float
    pending_requests: int
    last_scan_source: str

    @classmethod
    def from_metrics(cls, metrics: ScanMetrics) -> "MetricsResponse":
        return cls(
            external_time_ms=round(metrics.external_time_ms, 3),
            local_time_ms=round(metrics.local_time_ms, 3),
            external_hits=metrics.external_hits,
            local_hits=metrics.local_hits,
            frame_count=metrics.frame_count,
            average_processing_time_ms=round(metrics.average_processing_time_ms, 3),
            pending_requests=metrics.pending_requests,
            last_scan_source=metrics.last_scan_source,
        )
