"""
==============================================================================
External Recognizer Tests
==============================================================================

Tests for the pyzbar adapter with ZBar decoding replaced.

==============================================================================
"""

import threading
from types import SimpleNamespace

import pytest

from msi_scanner.config import Settings
from msi_scanner.scanner import (
    BarcodeFormat,
    PyzbarRecognizer,
    ScanError,
    ScanNoResult,
    ScanSource,
    ScanSuccess,
)
from msi_scanner.scanner import recognizer as recognizer_module


def make_symbol(symbol_type: str, data: bytes = b"4006381333931"):
    return SimpleNamespace(
        type=symbol_type,
        data=data,
        rect=SimpleNamespace(left=10, top=20, width=120, height=40),
        polygon=[
            SimpleNamespace(x=10, y=20),
            SimpleNamespace(x=10, y=60),
            SimpleNamespace(x=130, y=60),
            SimpleNamespace(x=130, y=20),
        ],
    )


@pytest.fixture
def recognizer(settings: Settings):
    instance = PyzbarRecognizer(settings)
    yield instance
    instance.close()


class TestRecognize:
    """Tests for symbol mapping."""

    def test_whitelisted_symbol(self, recognizer, stripes_frame, monkeypatch):
        """Test an EAN-13 symbol becomes an external success."""
        monkeypatch.setattr(recognizer_module, "zbar_decode", lambda image: [make_symbol("EAN13")])

        result = recognizer.recognize(stripes_frame)

        assert isinstance(result, ScanSuccess)
        assert result.data == "4006381333931"
        assert result.format == "EAN_13"
        assert result.source == ScanSource.EXTERNAL_RECOGNIZER
        assert result.bounding_box.width == 120
        assert result.corner_points == [(10, 20), (10, 60), (130, 60), (130, 20)]

    def test_non_whitelisted_symbol(self, recognizer, stripes_frame, monkeypatch):
        """Test unsupported symbologies fall through."""
        monkeypatch.setattr(recognizer_module, "zbar_decode", lambda image: [make_symbol("I25")])

        assert isinstance(recognizer.recognize(stripes_frame), ScanNoResult)

    def test_first_whitelisted_symbol_reported(self, recognizer, stripes_frame, monkeypatch):
        """Test skipped symbols do not hide later matches."""
        symbols = [make_symbol("I25"), make_symbol("QRCODE", b"hello")]
        monkeypatch.setattr(recognizer_module, "zbar_decode", lambda image: symbols)

        result = recognizer.recognize(stripes_frame)

        assert result.format == "QR_CODE"
        assert result.data == "hello"

    def test_format_whitelist_from_settings(self, stripes_frame, monkeypatch):
        """Test the configured whitelist is honoured."""
        monkeypatch.setattr(recognizer_module, "zbar_decode", lambda image: [make_symbol("EAN13")])
        recognizer = PyzbarRecognizer(Settings(recognizer_formats='["QR_CODE"]'))

        try:
            assert isinstance(recognizer.recognize(stripes_frame), ScanNoResult)
        finally:
            recognizer.close()

    def test_nothing_found(self, recognizer, stripes_frame, monkeypatch):
        monkeypatch.setattr(recognizer_module, "zbar_decode", lambda image: [])
        assert isinstance(recognizer.recognize(stripes_frame), ScanNoResult)

    def test_decode_failure_is_error(self, recognizer, stripes_frame, monkeypatch):
        """Test decoder exceptions become ScanError."""

        def failing(image):
            raise OSError("zbar shared library not found")

        monkeypatch.setattr(recognizer_module, "zbar_decode", failing)

        result = recognizer.recognize(stripes_frame)

        assert isinstance(result, ScanError)
        assert result.source == ScanSource.EXTERNAL_RECOGNIZER


class TestScanFrame:
    """Tests for asynchronous delivery."""

    def test_callback_receives_result(self, recognizer, stripes_frame, monkeypatch):
        """Test scan_frame reports through the callback on the worker."""
        monkeypatch.setattr(recognizer_module, "zbar_decode", lambda image: [make_symbol("CODE128", b"ABC-1")])
        received = []
        done = threading.Event()

        def callback(result):
            received.append((result, threading.current_thread().name))
            done.set()

        recognizer.scan_frame(stripes_frame, callback)

        assert done.wait(5.0)
        result, thread_name = received[0]
        assert result.format == "CODE_128"
        assert thread_name.startswith("recognizer")


class TestFormatMapping:
    """Tests for the ZBar symbology table."""

    def test_zbar_formats_are_known_tags(self):
        known = {BarcodeFormat.EAN_13, BarcodeFormat.EAN_8, BarcodeFormat.CODE_128, BarcodeFormat.QR_CODE}
        assert set(recognizer_module.ZBAR_FORMATS.values()) == known

    def test_data_matrix_not_produced_by_zbar(self):
        """Test DATA_MATRIX is left to other recognizers."""
        assert BarcodeFormat.DATA_MATRIX not in recognizer_module.ZBAR_FORMATS.values()
