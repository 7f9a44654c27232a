"""
==============================================================================
Utilities Package
==============================================================================

Utility classes for the application.

Modules:
--------
- validators: Frame descriptor validation

==============================================================================
"""

from .validators import FrameValidator

__all__ = [
    "FrameValidator",
]
