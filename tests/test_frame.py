"""
==============================================================================
Frame Conversion Tests
==============================================================================

Tests for stride handling, validation and matrix ownership.

==============================================================================
"""

import numpy as np
import pytest

from msi_scanner.scanner import Frame, FrameConversionError, FrameMatrix
from msi_scanner.utils import FrameValidator


class TestFrameValidator:
    """Tests for frame geometry validation."""

    def test_valid_frame(self):
        """Test tightly packed frame passes."""
        assert FrameValidator().validate(640, 480, 640, 0, 640 * 480) == (True, None)

    def test_stride_smaller_than_width(self):
        """Test stride below width is rejected."""
        is_valid, error = FrameValidator().validate(640, 480, 600, 0, 640 * 480)
        assert is_valid is False
        assert "stride" in error.lower()

    def test_invalid_rotation(self):
        """Test rotation outside the four right angles is rejected."""
        assert FrameValidator().is_valid(10, 10, 10, 45) is False

    def test_last_row_may_be_unpadded(self):
        """Test buffer only needs the visible part of the last row."""
        assert FrameValidator.required_size(4, 3, 6) == 16
        assert FrameValidator().is_valid(4, 3, 6, 0, 16) is True
        assert FrameValidator().is_valid(4, 3, 6, 0, 15) is False


class TestFrameMatrix:
    """Tests for FrameMatrix construction and lifecycle."""

    def test_padded_rows_are_skipped(self):
        """Test padding bytes never reach the matrix."""
        data = bytes([
            1, 2, 3, 4, 255, 255,
            5, 6, 7, 8, 255, 255,
            9, 10, 11, 12, 255, 255,
        ])
        frame = Frame(data=data, width=4, height=3, row_stride=6)

        matrix = FrameMatrix.from_frame(frame)

        expected = np.arange(1, 13, dtype=np.uint8).reshape(3, 4)
        assert matrix.width == 4
        assert matrix.height == 3
        np.testing.assert_array_equal(matrix.pixels, expected)

    def test_padded_array_rows_are_skipped(self):
        """Test a (height, row_stride) array is cropped to its width."""
        padded = np.full((480, 704), 255, dtype=np.uint8)
        padded[:, :640] = np.arange(640, dtype=np.uint16).astype(np.uint8)
        frame = Frame(data=padded, width=640, height=480, row_stride=704)

        matrix = FrameMatrix.from_frame(frame)

        assert matrix.pixels.shape == (480, 640)
        np.testing.assert_array_equal(matrix.pixels, padded[:, :640])

    def test_mismatched_array_shape_rejected(self):
        """Test an array matching neither width nor stride is refused."""
        frame = Frame(data=np.zeros((10, 12), dtype=np.uint8), width=8, height=10, row_stride=10)

        with pytest.raises(FrameConversionError):
            FrameMatrix.from_frame(frame)

    def test_array_frame_is_copied(self):
        """Test matrix does not share memory with the source array."""
        image = np.zeros((5, 7), dtype=np.uint8)
        matrix = FrameMatrix.from_frame(Frame.from_array(image))

        image[0, 0] = 200

        assert matrix.pixels[0, 0] == 0
        assert not matrix.pixels.flags.writeable

    def test_short_buffer_rejected(self):
        """Test buffer smaller than the geometry raises."""
        frame = Frame(data=bytes(10), width=4, height=3, row_stride=4)
        with pytest.raises(FrameConversionError):
            FrameMatrix.from_frame(frame)

    def test_released_matrix_raises(self):
        """Test access after release raises."""
        matrix = FrameMatrix(np.zeros((2, 2), dtype=np.uint8))
        matrix.release()

        assert matrix.is_released
        with pytest.raises(FrameConversionError):
            _ = matrix.pixels

    def test_context_manager_releases(self):
        """Test with-block releases the buffer."""
        with FrameMatrix(np.zeros((2, 2), dtype=np.uint8)) as matrix:
            assert not matrix.is_released
        assert matrix.is_released

    def test_rotated_returns_new_matrix(self):
        """Test rotation leaves the source untouched."""
        pixels = np.arange(6, dtype=np.uint8).reshape(2, 3)
        matrix = FrameMatrix(pixels.copy())

        rotated = matrix.rotated(90)

        assert rotated.pixels.shape == (3, 2)
        assert rotated.rotation_degrees == 90
        np.testing.assert_array_equal(matrix.pixels, pixels)
        np.testing.assert_array_equal(rotated.pixels, np.rot90(pixels, k=-1))

    def test_non_grayscale_rejected(self):
        """Test 3-channel arrays are rejected."""
        with pytest.raises(FrameConversionError):
            Frame.from_array(np.zeros((4, 4, 3), dtype=np.uint8))
