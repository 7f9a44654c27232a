"""
==============================================================================
Services Package - Scanning Service Layer
==============================================================================

Service classes between the API surfaces and the scanning core.

This package provides:
- ScanService: Frame payload decoding and async arbitration access

Architecture Pattern: Service Layer
----------------------------------

    ┌─────────────────┐
    │ REST / WebSocket│
    └────────┬────────┘
             │
    ┌────────▼────────┐
    │   ScanService   │  ← Payload decoding, timeouts
    └────────┬────────┘
             │
    ┌────────▼────────┐
    │ ScanArbitrator  │  ← Recognizer first, MSI fallback
    └─────────────────┘

Usage:
------
    from msi_scanner.services import init_scan_service

    service = init_scan_service()
    result = await service.scan(service.build_frame(image=payload))

==============================================================================
"""

from .scan_service import (
    ScanService,
    get_scan_service,
    init_scan_service,
    require_scan_service,
    shutdown_scan_service,
)

__all__ = [
    "ScanService",
    "get_scan_service",
    "init_scan_service",
    "require_scan_service",
    "shutdown_scan_service",
]
