"""
==============================================================================
Scanner WebSocket Module
==============================================================================

Real-time frame scanning via WebSocket connection.

Protocol:
---------
1. Client connects; server answers with a "ready" message
2. Client sends {"type": "frame", ...FrameRequest fields}
3. Server returns a "detection" message for accepted successes only;
   repeats are debounced (750 ms minimum interval, 800 ms
   anti-republication window)
4. {"type": "metrics"} returns the current arbitrator metrics
5. {"type": "stop"} ends the session

==============================================================================
"""

import itertools
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from msi_scanner.core.exceptions import AppException
from msi_scanner.scanner import ResultDebouncer
from msi_scanner.schemas.scan import FrameRequest, MetricsResponse, ScanResultResponse
from msi_scanner.services.scan_service import ScanService, get_scan_service


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter()

# Each session is its own frame stream for stale-frame dropping
_session_ids = itertools.count(1)


class ScannerWebSocketHandler:
    """
    Handler for live scanning WebSocket connections.

    Manages the lifecycle of a scanning session including:
    - Frame decoding and arbitration
    - Duplicate suppression
    - Detection reporting
    """

    def __init__(self, websocket: WebSocket, service: ScanService):
        self._websocket = websocket
        self._service = service
        self._stream_id = f"ws-{next(_session_ids)}"
        self._debouncer = ResultDebouncer()
        self._published = 0

    async def send_error(self, message: str, code: str = "ERROR") -> None:
        """Send error message to client."""
        await self._websocket.send_json({
            "type": "error",
            "code": code,
            "message": message
        })

    async def handle_frame(self, data: dict, frame_count: int) -> None:
        """Handle frame message from client."""
        payload = {k: v for k, v in data.items() if k != "type"}
        payload.setdefault("frame_id", frame_count)

        try:
            request = FrameRequest.model_validate(payload)
        except ValidationError as e:
            await self.send_error(f"Invalid frame: {e.errors()[0]['msg']}", "INVALID_FRAME")
            return

        try:
            frame = self._service.build_frame(
                image=request.image,
                pixels=request.pixels,
                width=request.width,
                height=request.height,
                row_stride=request.row_stride,
                rotation_degrees=request.rotation_degrees,
                frame_id=request.frame_id,
            )
            result = await self._service.scan(frame, stream_id=self._stream_id)
        except AppException as e:
            await self.send_error(e.message, e.code)
            return

        if not self._debouncer.accept(result):
            return

        self._published += 1
        response = ScanResultResponse.from_result(result)
        logger.info(f"📦 Detection on frame {request.frame_id}: {response.format} ({response.source})")

        await self._websocket.send_json({
            "type": "detection",
            "frame_id": request.frame_id,
            "result": response.model_dump()
        })

    async def handle_metrics(self) -> None:
        """Send arbitrator metrics to client."""
        await self._websocket.send_json({
            "type": "metrics",
            "metrics": MetricsResponse.from_metrics(self._service.metrics).model_dump()
        })

    async def run(self) -> None:
        """Main handler loop."""
        await self._websocket.accept()
        logger.info("📱 Scanner WebSocket connected")

        await self._websocket.send_json({"type": "ready"})

        frame_count = 0

        try:
            while True:
                data = await self._websocket.receive_json()
                message_type = data.get("type")

                if message_type == "frame":
                    frame_count += 1
                    await self.handle_frame(data, frame_count)

                elif message_type == "metrics":
                    await self.handle_metrics()

                elif message_type == "stop":
                    logger.info("🛑 Client requested stop")
                    break

                else:
                    await self.send_error(f"Unknown message type: {message_type}", "UNKNOWN_MESSAGE")

        except WebSocketDisconnect:
            logger.info("📱 Client disconnected")
        finally:
            self._service.end_stream(self._stream_id)
            logger.info(
                f"✅ Scanner WebSocket closed ({frame_count} frames, "
                f"{self._published} detections)"
            )


@router.websocket("/ws/scan")
async def websocket_scan(websocket: WebSocket):
    """Real-time frame scanning via WebSocket."""
    service = get_scan_service()

    if service is None or not service.is_running:
        await websocket.accept()
        await websocket.send_json({
            "type": "error",
            "code": "SCANNER_NOT_READY",
            "message": "Scan service is not running"
        })
        await websocket.close()
        return

    handler = ScannerWebSocketHandler(websocket, service)
    await handler.run()
