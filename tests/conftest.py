"""
==============================================================================
Pytest Configuration and Fixtures
==============================================================================

Provides synthetic frames, stub scan sources, settings and client fixtures.

Synthetic Barcode:
-----------------
White 640x480 frame with 7 black bars (8 px) separated by 6 white spaces
(22 px), 40 rows tall, centred horizontally. That gives 12 bar/space
transitions inside the pattern.

==============================================================================
"""

import base64
import threading
from typing import Generator, List, Optional

import numpy as np
import pytest
from fastapi.testclient import TestClient

from msi_scanner.config import Settings, get_settings
from msi_scanner.main import app
from msi_scanner.scanner import (
    NO_RESULT,
    BarcodeFormat,
    BinaryProfile,
    BoundingRect,
    ExternalRecognizer,
    Frame,
    ScanResult,
    ScanSource,
    ScanSuccess,
)
from msi_scanner.services.scan_service import init_scan_service, shutdown_scan_service


# ============================================================================
# SYNTHETIC FRAMES
# ============================================================================

FRAME_WIDTH = 640
FRAME_HEIGHT = 480

BAR_COUNT = 7
BAR_WIDTH = 8
SPACE_WIDTH = 22
STRIPE_HEIGHT = 40
PATTERN_WIDTH = BAR_COUNT * BAR_WIDTH + (BAR_COUNT - 1) * SPACE_WIDTH
PATTERN_LEFT = (FRAME_WIDTH - PATTERN_WIDTH) // 2
PATTERN_TOP = (FRAME_HEIGHT - STRIPE_HEIGHT) // 2

# Bar/space edges between the first and the last bar
INTERNAL_TRANSITIONS = 2 * (BAR_COUNT - 1)


def make_uniform_image(value: int = 128) -> np.ndarray:
    return np.full((FRAME_HEIGHT, FRAME_WIDTH), value, dtype=np.uint8)


def make_stripes_image() -> np.ndarray:
    """White frame with the centred synthetic barcode."""
    image = np.full((FRAME_HEIGHT, FRAME_WIDTH), 255, dtype=np.uint8)
    for i in range(BAR_COUNT):
        left = PATTERN_LEFT + i * (BAR_WIDTH + SPACE_WIDTH)
        image[PATTERN_TOP:PATTERN_TOP + STRIPE_HEIGHT, left:left + BAR_WIDTH] = 0
    return image


def encode_pixels(image: np.ndarray) -> str:
    return base64.b64encode(image.tobytes()).decode("ascii")


@pytest.fixture
def uniform_frame() -> Frame:
    """Uniform gray frame without any edges."""
    return Frame.from_array(make_uniform_image(), frame_id=1)


@pytest.fixture
def stripes_frame() -> Frame:
    """Frame with the centred synthetic barcode."""
    return Frame.from_array(make_stripes_image(), frame_id=2)


# ============================================================================
# SETTINGS FIXTURES
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the cached global instance."""
    return Settings()


# ============================================================================
# STUB SCAN SOURCES
# ============================================================================

def external_success(data: str = "4006381333931") -> ScanSuccess:
    return ScanSuccess(
        data=data,
        format=BarcodeFormat.EAN_13,
        source=ScanSource.EXTERNAL_RECOGNIZER,
        processing_time_ms=3.0,
        bounding_box=BoundingRect(left=10, top=10, right=110, bottom=40),
    )


def local_success() -> ScanSuccess:
    profile = BinaryProfile(
        pattern=tuple([True] * 4 + [False] * 6) * 5,
        quality=0.8,
        aspect_ratio=5.0,
        transition_count=9,
        average_bar_width=4.0,
    )
    return ScanSuccess(
        data="",
        format=BarcodeFormat.MSI,
        source=ScanSource.LOCAL_PIPELINE,
        processing_time_ms=12.0,
        bounding_box=BoundingRect(left=225, top=221, right=415, bottom=259),
        profile=profile,
    )


class StubRecognizer(ExternalRecognizer):
    """Recognizer reporting preset results synchronously, in order."""

    def __init__(self, *results: ScanResult):
        self.results: List[ScanResult] = list(results) or [NO_RESULT]
        self.calls = 0
        self.closed = False

    def scan_frame(self, frame, callback) -> None:
        self.calls += 1
        for result in self.results:
            callback(result)

    def close(self) -> None:
        self.closed = True


class StubPipeline:
    """Local pipeline returning a preset result, optionally held by a gate."""

    def __init__(self, result: ScanResult = NO_RESULT, gate: Optional[threading.Event] = None):
        self.result = result
        self.gate = gate
        self.started = threading.Event()
        self.scanned_frames: List[int] = []
        self.closed = False
        self.error: Optional[Exception] = None

    @property
    def calls(self) -> int:
        return len(self.scanned_frames)

    def scan(self, frame: Frame) -> ScanResult:
        self.scanned_frames.append(frame.frame_id)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if self.error is not None:
            raise self.error
        return self.result

    def detect(self, frame: Frame):
        return [], None

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


# ============================================================================
# CLIENT FIXTURES
# ============================================================================

@pytest.fixture
def stub_recognizer() -> StubRecognizer:
    """Recognizer that never finds anything, forcing the MSI fallback."""
    return StubRecognizer(NO_RESULT)


@pytest.fixture(scope="function")
def client(stub_recognizer: StubRecognizer) -> Generator[TestClient, None, None]:
    """Test client backed by a real local pipeline and a stub recognizer."""
    init_scan_service(get_settings(), recognizer=stub_recognizer)

    with TestClient(app) as test_client:
        yield test_client

    shutdown_scan_service()
