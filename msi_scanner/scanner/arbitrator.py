"""
==============================================================================
Scan Arbitrator Module
==============================================================================

Decides which source's result is delivered for each frame.

Priority (sequential, not a race):
---------------------------------
1. External recognizer runs first
2. Success -> delivered immediately, no fallback
3. NoResult / Error -> local pipeline on the single fallback worker
4. Local success -> delivered, tagged LOCAL_PIPELINE
5. Anything else -> NO_RESULT

Per-request State Machine:
-------------------------
    START --success--------------------------> DONE
    START --no result / error--> FALLBACK ---> DONE

Every request delivers exactly one result, through its callback and its
Future. Late or duplicate completions are ignored.

Backpressure:
------------
With drop_stale_frames enabled, a fallback still queued when a newer
frame arrives on the same stream is skipped and delivers NO_RESULT.
Requests submitted without a stream_id (one-off REST calls) are never
stale.

Metrics:
-------
Latest latency per source, hit counters, delivered frame count, average
end-to-end processing time, requests in flight and the last scan source,
guarded by a lock and read as ScanMetrics snapshots.

==============================================================================
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from msi_scanner.config import Settings, get_settings
from msi_scanner.scanner.frame import Frame
from msi_scanner.scanner.models import (
    NO_RESULT,
    BinaryProfile,
    ROICandidate,
    ScanError,
    ScanMetrics,
    ScanNoResult,
    ScanResult,
    ScanSource,
    ScanSuccess,
)
from msi_scanner.scanner.pipeline import LocalPipeline
from msi_scanner.scanner.recognizer import ExternalRecognizer


# Module logger
logger = logging.getLogger(__name__)


ResultCallback = Callable[[ScanResult], None]


class RequestState(str, Enum):
    """Arbitration state of a single frame request."""

    START = "START"
    FALLBACK = "FALLBACK"
    DONE = "DONE"


class ScanRequest:
    """
    One frame submitted to the arbitrator.

    Holds the single-assignment result: the first deliver() wins, later
    calls are no-ops.

    Attributes:
        request_id: Monotonic sequence number
        frame: Frame being scanned
        stream_id: Frame stream the request belongs to (None for one-off calls)
        future: Resolved with the delivered ScanResult
    """

    def __init__(
        self,
        request_id: int,
        frame: Frame,
        callback: Optional[ResultCallback] = None,
        stream_id: Optional[Hashable] = None,
        on_deliver: Optional[Callable[["ScanRequest", ScanResult], None]] = None
    ) -> None:
        self.request_id = request_id
        self.frame = frame
        self.stream_id = stream_id
        self.future: Future = Future()
        self.started_at = time.perf_counter()
        self._callback = callback
        self._on_deliver = on_deliver
        self._state = RequestState.START
        self._lock = threading.Lock()

    @property
    def state(self) -> RequestState:
        with self._lock:
            return self._state

    @property
    def is_done(self) -> bool:
        return self.state == RequestState.DONE

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000.0

    def enter_fallback(self) -> bool:
        """
        Move START -> FALLBACK.

        Returns:
            False if the request already left START
        """
        with self._lock:
            if self._state != RequestState.START:
                return False
            self._state = RequestState.FALLBACK
            return True

    def deliver(self, result: ScanResult) -> bool:
        """
        Deliver the final result if none was delivered yet.

        Callback exceptions are logged and swallowed.

        Returns:
            True if this call delivered the result
        """
        with self._lock:
            if self._state == RequestState.DONE:
                logger.debug(f"Request {self.request_id} already delivered, ignoring {result.kind}")
                return False
            self._state = RequestState.DONE

        # Bookkeeping runs before anyone waiting on the future wakes up
        if self._on_deliver is not None:
            self._on_deliver(self, result)

        try:
            self.future.set_result(result)
        except InvalidStateError:
            logger.debug(f"Request {self.request_id} future was cancelled by its waiter")

        if self._callback is not None:
            try:
                self._callback(result)
            except Exception as e:
                logger.error(f"Result callback for request {self.request_id} raised: {e}", exc_info=True)

        return True

    def __repr__(self) -> str:
        return f"ScanRequest(id={self.request_id}, state={self._state.value})"


class ScanArbitrator:
    """
    Coordinates the external recognizer and the local MSI pipeline.

    Attributes:
        metrics: Current ScanMetrics snapshot

    Example:
        >>> arbitrator = ScanArbitrator(PyzbarRecognizer(), LocalPipeline())
        >>> request = arbitrator.scan_frame(frame)
        >>> result = request.future.result(timeout=2.0)
        >>> arbitrator.close()
    """

    def __init__(
        self,
        recognizer: ExternalRecognizer,
        pipeline: LocalPipeline,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """
        Initialize arbitrator and its fallback worker.

        Args:
            recognizer: Source consulted first
            pipeline: Local fallback, confined to the fallback worker
            settings: Budgets and stale-frame policy
            clock: Monotonic clock in seconds, ages the last scan source
        """
        self._settings = settings or get_settings()
        self._recognizer = recognizer
        self._pipeline = pipeline
        self._clock = clock
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="local-pipeline")

        self._ids = itertools.count(1)
        self._latest_by_stream: Dict[Hashable, int] = {}
        self._closed = False

        self._metrics_lock = threading.Lock()
        self._external_time_ms = 0.0
        self._local_time_ms = 0.0
        self._external_hits = 0
        self._local_hits = 0
        self._frame_count = 0
        self._total_processing_ms = 0.0
        self._pending = 0
        self._last_scan_source: Optional[ScanSource] = None
        self._last_scan_at = 0.0

        logger.debug(
            f"ScanArbitrator created (fallback budget "
            f"{self._settings.arbitrator_fallback_budget_ms:.0f}ms, "
            f"drop stale: {self._settings.arbitrator_drop_stale_frames})"
        )

    # =========================================================================
    # SCANNING
    # =========================================================================

    def scan_frame(
        self,
        frame: Frame,
        callback: Optional[ResultCallback] = None,
        stream_id: Optional[Hashable] = None
    ) -> ScanRequest:
        """
        Submit a frame for arbitration without blocking.

        Args:
            frame: Raw grayscale frame
            callback: Called once with the final result (optional)
            stream_id: Frame stream for stale dropping; None never goes stale

        Returns:
            ScanRequest whose future resolves with the result

        Raises:
            RuntimeError: If the arbitrator is closed
        """
        if self._closed:
            raise RuntimeError("ScanArbitrator is closed")

        with self._metrics_lock:
            request = ScanRequest(
                next(self._ids),
                frame,
                callback,
                stream_id=stream_id,
                on_deliver=self._record_delivery,
            )
            if stream_id is not None:
                self._latest_by_stream[stream_id] = request.request_id
            self._pending += 1

        logger.debug(f"Arbitrating {frame} as request {request.request_id}")

        try:
            self._recognizer.scan_frame(
                frame,
                lambda result: self._on_external_result(request, result),
            )
        except Exception as e:
            logger.warning(f"External recognizer rejected frame: {e}")
            self._on_external_result(
                request,
                ScanError(cause=e, source=ScanSource.EXTERNAL_RECOGNIZER),
            )

        return request

    def detect(self, frame: Frame) -> "Future[Tuple[List[ROICandidate], Optional[BinaryProfile]]]":
        """
        Run ROI detection + binarization on the fallback worker.

        Args:
            frame: Raw grayscale frame

        Returns:
            Future of (candidates, best profile)
        """
        if self._closed:
            raise RuntimeError("ScanArbitrator is closed")
        return self._worker.submit(self._pipeline.detect, frame)

    def end_stream(self, stream_id: Hashable) -> None:
        """Forget a finished stream; its queued fallbacks become stale."""
        with self._metrics_lock:
            self._latest_by_stream.pop(stream_id, None)

    # =========================================================================
    # METRICS
    # =========================================================================

    @property
    def metrics(self) -> ScanMetrics:
        with self._metrics_lock:
            frames = self._frame_count
            return ScanMetrics(
                external_time_ms=self._external_time_ms,
                local_time_ms=self._local_time_ms,
                external_hits=self._external_hits,
                local_hits=self._local_hits,
                frame_count=frames,
                average_processing_time_ms=self._total_processing_ms / frames if frames else 0.0,
                pending_requests=self._pending,
                last_scan_source=self._current_scan_source(),
            )

    def _current_scan_source(self) -> str:
        # Caller holds _metrics_lock
        if self._last_scan_source is None:
            return "none"
        age_ms = (self._clock() - self._last_scan_at) * 1000.0
        if age_ms > self._settings.arbitrator_scan_source_timeout_ms:
            return "none"
        return self._last_scan_source.value

    def _record_delivery(self, request: ScanRequest, result: ScanResult) -> None:
        with self._metrics_lock:
            self._frame_count += 1
            self._total_processing_ms += request.elapsed_ms()
            self._pending -= 1

            if isinstance(result, ScanSuccess):
                if result.source == ScanSource.EXTERNAL_RECOGNIZER:
                    self._external_hits += 1
                else:
                    self._local_hits += 1
                self._last_scan_source = result.source
                self._last_scan_at = self._clock()

    def reset_hit_counters(self) -> None:
        """Zero both hit counters; latencies are kept."""
        with self._metrics_lock:
            self._external_hits = 0
            self._local_hits = 0
        logger.debug("Hit counters reset")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """
        Stop accepting frames and release both sources.

        Requests already in flight still receive a result.
        """
        if self._closed:
            return
        self._closed = True

        self._recognizer.close()
        self._worker.shutdown(wait=True)
        self._pipeline.close()

        logger.debug("ScanArbitrator closed")

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def _on_external_result(self, request: ScanRequest, result: ScanResult) -> None:
        elapsed_ms = request.elapsed_ms()

        with self._metrics_lock:
            self._external_time_ms = elapsed_ms

        if isinstance(result, ScanSuccess):
            if request.state != RequestState.START:
                logger.debug(f"Late recognizer success for request {request.request_id} ignored")
                return
            logger.debug(f"External SUCCESS: {result.format} -> immediate delivery")
            request.deliver(result)

        elif isinstance(result, ScanNoResult):
            logger.debug("External recognizer: no result -> trying local fallback")
            self._start_fallback(request)

        elif isinstance(result, ScanError):
            logger.warning(f"External recognizer error ({result.cause}) -> trying local fallback")
            self._start_fallback(request)

        else:
            logger.error(f"Unknown scan result variant {type(result).__name__} -> trying local fallback")
            self._start_fallback(request)

    def _start_fallback(self, request: ScanRequest) -> None:
        if not request.enter_fallback():
            return

        try:
            self._worker.submit(self._run_fallback, request)
        except RuntimeError as e:
            logger.warning(f"Fallback worker unavailable: {e}")
            request.deliver(NO_RESULT)

    def _run_fallback(self, request: ScanRequest) -> None:
        if self._settings.arbitrator_drop_stale_frames and self._is_stale(request):
            logger.debug(f"Request {request.request_id} superseded, skipping local fallback")
            request.deliver(NO_RESULT)
            return

        start = time.perf_counter()

        try:
            result = self._pipeline.scan(request.frame)
        except Exception as e:
            logger.error(f"Local fallback failed: {e}", exc_info=True)
            result = ScanError(cause=e, source=ScanSource.LOCAL_PIPELINE)

        elapsed_ms = (time.perf_counter() - start) * 1000.0

        with self._metrics_lock:
            self._local_time_ms = elapsed_ms

        if elapsed_ms > self._settings.arbitrator_fallback_budget_ms:
            logger.warning(
                f"Local fallback exceeded budget: {elapsed_ms:.1f}ms > "
                f"{self._settings.arbitrator_fallback_budget_ms:.0f}ms"
            )

        if isinstance(result, ScanSuccess):
            logger.debug(f"Local SUCCESS: {result.format}")
            request.deliver(result)
        else:
            logger.debug("Local fallback: no result -> overall no detection")
            request.deliver(NO_RESULT)

    def _is_stale(self, request: ScanRequest) -> bool:
        if request.stream_id is None:
            return False
        with self._metrics_lock:
            return self._latest_by_stream.get(request.stream_id) != request.request_id
