"""
Application Exception Handling

Single AppException class for all service-layer errors with FastAPI integration.

The scanning core never raises past its own boundary; these exceptions are
only used by the REST and WebSocket surfaces.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AppException(Exception):
    """
    Unified application exception for all error scenarios.

    Provides consistent error response format across the entire API.

    Usage:
        raise AppException("Frame is empty", "INVALID_FRAME", 422)
        raise AppException("Scan timed out", "SCAN_TIMEOUT", 504, {"timeout_s": 2.0})

    Error Codes:
        Frames:
            - INVALID_FRAME (422)
            - IMAGE_DECODE_FAILED (400)

        Scanner:
            - SCANNER_NOT_READY (503)
            - SCAN_TIMEOUT (504)

        General:
            - INTERNAL_ERROR (500)
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize application exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "INVALID_FRAME")
            status_code: HTTP status code (default: 400)
            details: Additional error context (optional)
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        error_dict = {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    FastAPI exception handler for AppException.

    Converts AppException to consistent JSON error response.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppException, app_exception_handler)


# ============================================
# CONVENIENCE FACTORY FUNCTIONS
# ============================================

def invalid_frame(reason: str) -> AppException:
    """Create invalid frame descriptor exception."""
    return AppException(
        f"Invalid frame: {reason}",
        "INVALID_FRAME",
        422,
        {"reason": reason}
    )


def image_decode_failed() -> AppException:
    """Create image decode failure exception."""
    return AppException(
        "Could not decode image payload",
        "IMAGE_DECODE_FAILED",
        400
    )


def scanner_not_ready() -> AppException:
    """Create scanner not initialized exception."""
    return AppException(
        "Scan service is not running",
        "SCANNER_NOT_READY",
        503
    )


def scan_timeout(timeout_s: float) -> AppException:
    """Create scan timeout exception."""
    return AppException(
        f"No scan result within {timeout_s:.1f}s",
        "SCAN_TIMEOUT",
        504,
        {"timeout_s": timeout_s}
    )


def internal_error(message: str = "Internal server error") -> AppException:
    """Create internal server error exception."""
    return AppException(message, "INTERNAL_ERROR", 500)
