"""
==============================================================================
Schemas Package - Pydantic Models
==============================================================================

Request and response schemas using Pydantic for validation.

This package provides:
- Common: Shared response schemas
- Scan: Frame payloads, scan results, candidates and metrics

==============================================================================
"""

from .common import MessageResponse
from .scan import (
    FrameRequest,
    BoundingBoxResponse,
    ProfileResponse,
    ScanResultResponse,
    CandidateResponse,
    DetectResponse,
    MetricsResponse,
)

__all__ = [
    # Common
    "MessageResponse",
    # Scan
    "FrameRequest",
    "BoundingBoxResponse",
    "ProfileResponse",
    "ScanResultResponse",
    "CandidateResponse",
    "DetectResponse",
    "MetricsResponse",
]
