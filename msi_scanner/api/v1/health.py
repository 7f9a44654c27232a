"""
==============================================================================
Health Check Endpoints
==============================================================================

System health status endpoints for monitoring and orchestration.

==============================================================================
"""

from fastapi import APIRouter

from msi_scanner.services.scan_service import get_scan_service


router = APIRouter(prefix="/health", tags=["Health"])


class HealthController:
    """Controller for health check operations."""

    def check_scanner(self) -> str:
        """Check scan service status."""
        service = get_scan_service()
        if service is None:
            return "not_initialized"
        return "healthy" if service.is_running else "stopped"

    def get_health(self) -> dict:
        """Get full health status."""
        scanner_status = self.check_scanner()
        overall = "healthy" if scanner_status == "healthy" else "degraded"

        return {
            "status": overall,
            "components": {
                "api": "healthy",
                "scanner": scanner_status
            }
        }


@router.get("")
async def health_check():
    """
    Health check endpoint.

    Returns system status including API and scan service.
    """
    controller = HealthController()
    return controller.get_health()


@router.get("/ready")
async def readiness_check():
    """Readiness probe for container orchestration."""
    return {"ready": HealthController().check_scanner() == "healthy"}


@router.get("/live")
async def liveness_check():
    """Liveness probe for container orchestration."""
    return {"alive": True}
