"""
==============================================================================
Validation Utilities Module
==============================================================================

Validation classes for incoming frame descriptors.

This module implements:
- FrameValidator: Validates grayscale buffer geometry

Validation Rules for Frames:
---------------------------
- Width and height: positive, at most 8192 pixels
- Row stride: at least the width (padded rows are allowed)
- Rotation: one of 0, 90, 180, 270 degrees
- Buffer: large enough for (height - 1) * stride + width bytes

==============================================================================
"""

from __future__ import annotations

from typing import Optional, Tuple


class FrameValidator:
    """
    Validator for raw grayscale frame descriptors.

    Example:
        >>> validator = FrameValidator()
        >>> validator.validate(640, 480, 640, 0, 640 * 480)
        (True, None)
        >>> validator.validate(640, 480, 600, 0, 640 * 480)
        (False, 'Row stride 600 is smaller than width 640')
    """

    MAX_DIMENSION = 8192
    VALID_ROTATIONS = (0, 90, 180, 270)

    def validate(
        self,
        width: int,
        height: int,
        row_stride: int,
        rotation_degrees: int = 0,
        buffer_size: Optional[int] = None
    ) -> Tuple[bool, Optional[str]]:
        """
        Validate frame geometry against its buffer.

        Args:
            width: Pixels per row
            height: Number of rows
            row_stride: Bytes between the starts of consecutive rows
            rotation_degrees: Rotation metadata from the capture layer
            buffer_size: Buffer length in bytes (skipped when None)

        Returns:
            Tuple of (is_valid, error_message)
        """
        if width <= 0 or height <= 0:
            return False, f"Frame dimensions must be positive, got {width}x{height}"

        if width > self.MAX_DIMENSION or height > self.MAX_DIMENSION:
            return False, f"Frame dimensions exceed {self.MAX_DIMENSION}: {width}x{height}"

        if row_stride < width:
            return False, f"Row stride {row_stride} is smaller than width {width}"

        if rotation_degrees not in self.VALID_ROTATIONS:
            return False, f"Rotation must be one of {self.VALID_ROTATIONS}, got {rotation_degrees}"

        if buffer_size is not None:
            required = self.required_size(width, height, row_stride)
            if buffer_size < required:
                return False, f"Buffer holds {buffer_size} bytes, need at least {required}"

        return True, None

    def is_valid(self, *args, **kwargs) -> bool:
        """Quick validation check."""
        is_valid, _ = self.validate(*args, **kwargs)
        return is_valid

    @staticmethod
    def required_size(width: int, height: int, row_stride: int) -> int:
        """Smallest buffer that holds every visible pixel; the last row may be unpadded."""
        return (height - 1) * row_stride + width
