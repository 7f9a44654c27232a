"""
==============================================================================
Scan Endpoints
==============================================================================

Single-frame scanning, local ROI detection and arbitrator metrics.

==============================================================================
"""

from fastapi import APIRouter, Depends

from msi_scanner.schemas.common import MessageResponse
from msi_scanner.schemas.scan import (
    CandidateResponse,
    DetectResponse,
    FrameRequest,
    MetricsResponse,
    ProfileResponse,
    ScanResultResponse,
)
from msi_scanner.scanner import Frame
from msi_scanner.services.scan_service import ScanService, require_scan_service


router = APIRouter(tags=["Scan"])


class ScanController:
    """Controller for scan operations."""

    def __init__(self, service: ScanService):
        self._service = service

    def _frame(self, request: FrameRequest) -> Frame:
        return self._service.build_frame(
            image=request.image,
            pixels=request.pixels,
            width=request.width,
            height=request.height,
            row_stride=request.row_stride,
            rotation_degrees=request.rotation_degrees,
            frame_id=request.frame_id,
        )

    async def scan(self, request: FrameRequest) -> ScanResultResponse:
        """Arbitrate one frame: recognizer first, MSI fallback second."""
        result = await self._service.scan(self._frame(request))
        return ScanResultResponse.from_result(result)

    async def detect(self, request: FrameRequest) -> DetectResponse:
        """Run the local pipeline only."""
        candidates, profile = await self._service.detect(self._frame(request))
        return DetectResponse(
            candidates=[CandidateResponse.from_candidate(c) for c in candidates],
            profile=ProfileResponse.from_profile(profile) if profile else None,
        )

    def get_metrics(self) -> MetricsResponse:
        return MetricsResponse.from_metrics(self._service.metrics)

    def reset_metrics(self) -> MessageResponse:
        self._service.reset_metrics()
        return MessageResponse(message="Hit counters reset")


@router.post("/scan", response_model=ScanResultResponse)
async def scan_frame(
    request: FrameRequest,
    service: ScanService = Depends(require_scan_service)
):
    """
    Scan a single frame.

    The external recognizer runs first; the local MSI pipeline only runs
    when it finds nothing. Exactly one result is returned.
    """
    controller = ScanController(service)
    return await controller.scan(request)


@router.post("/scan/detect", response_model=DetectResponse)
async def detect_roi(
    request: FrameRequest,
    service: ScanService = Depends(require_scan_service)
):
    """Detect ROI candidates and binarize the best one, without the recognizer."""
    controller = ScanController(service)
    return await controller.detect(request)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(service: ScanService = Depends(require_scan_service)):
    """Get per-source latency and hit counters."""
    controller = ScanController(service)
    return controller.get_metrics()


@router.post("/metrics/reset", response_model=MessageResponse)
async def reset_metrics(service: ScanService = Depends(require_scan_service)):
    """Reset hit counters; latencies are kept."""
    controller = ScanController(service)
    return controller.reset_metrics()
