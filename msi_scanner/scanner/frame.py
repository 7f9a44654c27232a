"""
==============================================================================
Frame Conversion Module
==============================================================================

Conversion of raw camera luma buffers into owned grayscale matrices.

This module implements:
- Frame: Immutable descriptor of a raw grayscale buffer
- FrameMatrix: Owned 2-D uint8 matrix used by the detection pipeline
- FrameConversionError: Raised for malformed or released buffers

Stride Handling:
---------------
Camera buffers frequently pad each row (row_stride > width). Rows are
copied through a strided view so padding bytes never leak into the matrix.

Ownership:
---------
A FrameMatrix owns its pixel buffer exclusively. It is never mutated;
rotated() produces a new matrix. release() drops the buffer and any later
access raises FrameConversionError.

==============================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import cv2
import numpy as np

from msi_scanner.utils.validators import FrameValidator


# Module logger
logger = logging.getLogger(__name__)


_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class FrameConversionError(ValueError):
    """Raised when a frame buffer cannot be turned into a FrameMatrix."""


@dataclass(frozen=True)
class Frame:
    """
    Raw grayscale frame as delivered by the capture layer.

    Attributes:
        data: Luma bytes (bytes-like) or a 2-D uint8 numpy array
        width: Visible pixels per row
        height: Number of rows
        row_stride: Bytes between row starts (>= width)
        rotation_degrees: Capture rotation metadata, bookkeeping only
        frame_id: Caller-assigned sequence number
    """

    data: Any
    width: int
    height: int
    row_stride: int
    rotation_degrees: int = 0
    frame_id: int = 0

    @classmethod
    def from_array(
        cls,
        image: np.ndarray,
        rotation_degrees: int = 0,
        frame_id: int = 0
    ) -> "Frame":
        """
        Wrap a decoded grayscale image.

        Args:
            image: 2-D uint8 array (height x width)
            rotation_degrees: Rotation metadata
            frame_id: Sequence number

        Returns:
            Frame whose row stride equals its width
        """
        if image.ndim != 2:
            raise FrameConversionError(f"Expected a 2-D grayscale image, got shape {image.shape}")

        contiguous = np.ascontiguousarray(image, dtype=np.uint8)
        height, width = contiguous.shape
        return cls(
            data=contiguous,
            width=width,
            height=height,
            row_stride=width,
            rotation_degrees=rotation_degrees,
            frame_id=frame_id,
        )

    @property
    def buffer_size(self) -> int:
        """Size of the underlying buffer in bytes."""
        if isinstance(self.data, np.ndarray):
            return int(self.data.nbytes)
        return len(memoryview(self.data).cast("B"))

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the pixel buffer."""
        return (
            f"Frame(frame_id={self.frame_id}, size={self.width}x{self.height}, "
            f"stride={self.row_stride}, rotation={self.rotation_degrees})"
        )


class FrameMatrix:
    """
    Owned grayscale pixel matrix (1 byte per pixel).

    Example:
        >>> with FrameMatrix.from_frame(frame) as matrix:
        ...     candidates = detector.detect(matrix)
    """

    def __init__(self, pixels: np.ndarray, rotation_degrees: int = 0) -> None:
        """
        Take ownership of a 2-D uint8 array.

        Args:
            pixels: Pixel data; must not be shared with other owners
            rotation_degrees: Rotation metadata carried from the Frame
        """
        if pixels.ndim != 2 or pixels.dtype != np.uint8:
            raise FrameConversionError(
                f"FrameMatrix needs 2-D uint8 pixels, got {pixels.dtype} {pixels.shape}"
            )

        pixels.setflags(write=False)
        self._pixels: Optional[np.ndarray] = pixels
        self._rotation_degrees = rotation_degrees

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def from_frame(cls, frame: Frame, validator: Optional[FrameValidator] = None) -> "FrameMatrix":
        """
        Copy the visible pixels of a frame into a new matrix.

        Args:
            frame: Raw frame descriptor
            validator: Geometry validator (default instance if None)

        Returns:
            New FrameMatrix

        Raises:
            FrameConversionError: If the geometry or buffer is invalid
        """
        validator = validator or FrameValidator()

        try:
            buffer_size = frame.buffer_size
        except TypeError as e:
            raise FrameConversionError(f"Unsupported frame buffer: {e}") from e

        is_valid, error = validator.validate(
            frame.width,
            frame.height,
            frame.row_stride,
            frame.rotation_degrees,
            buffer_size,
        )
        if not is_valid:
            raise FrameConversionError(error)

        if isinstance(frame.data, np.ndarray) and frame.data.ndim == 2:
            if frame.data.shape not in ((frame.height, frame.width), (frame.height, frame.row_stride)):
                raise FrameConversionError(
                    f"Array shape {frame.data.shape} does not match "
                    f"{frame.height}x{frame.width} (stride {frame.row_stride})"
                )
            # Padded rows arrive as (height, row_stride)
            pixels = np.array(frame.data[:, :frame.width], dtype=np.uint8, copy=True)
        else:
            flat = np.frombuffer(memoryview(frame.data).cast("B"), dtype=np.uint8)
            rows = np.lib.stride_tricks.as_strided(
                flat,
                shape=(frame.height, frame.width),
                strides=(frame.row_stride, 1),
                writeable=False,
            )
            pixels = np.array(rows, copy=True)

        return cls(pixels, frame.rotation_degrees)

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def pixels(self) -> np.ndarray:
        """Read-only pixel array (height x width)."""
        if self._pixels is None:
            raise FrameConversionError("FrameMatrix has been released")
        return self._pixels

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def rotation_degrees(self) -> int:
        return self._rotation_degrees

    @property
    def is_released(self) -> bool:
        return self._pixels is None

    def rotated(self, degrees: int) -> "FrameMatrix":
        """
        Produce a new matrix rotated clockwise by ``degrees``.

        The current matrix is left untouched.
        """
        degrees = degrees % 360
        if degrees == 0:
            return FrameMatrix(self.pixels.copy(), self._rotation_degrees)

        code = _ROTATE_CODES.get(degrees)
        if code is None:
            raise FrameConversionError(f"Unsupported rotation: {degrees}")

        rotated = cv2.rotate(self.pixels, code)
        return FrameMatrix(np.ascontiguousarray(rotated), (self._rotation_degrees + degrees) % 360)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def release(self) -> None:
        """Drop the pixel buffer."""
        self._pixels = None

    def __enter__(self) -> "FrameMatrix":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        if self._pixels is None:
            return "FrameMatrix(released)"
        return f"FrameMatrix({self.width}x{self.height}, rotation={self._rotation_degrees})"
