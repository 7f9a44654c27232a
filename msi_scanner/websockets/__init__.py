"""
==============================================================================
WebSocket Package
==============================================================================

Real-time WebSocket handlers for frame scanning.

Handlers:
---------
- scanner: Live frame stream with debounced detections

==============================================================================
"""

from .scanner import router as scanner_router

__all__ = ["scanner_router"]
