"""
==============================================================================
Core Package
==============================================================================

Service-layer infrastructure.

Modules:
--------
- exceptions: AppException class and error factory functions

Usage:
------
    from msi_scanner.core import exceptions
    raise exceptions.invalid_frame("width must be positive")

==============================================================================
"""

from .exceptions import (
    AppException,
    register_exception_handlers,
)

__all__ = [
    "AppException",
    "register_exception_handlers",
]
