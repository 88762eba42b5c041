"""
==============================================================================
Core Package
==============================================================================

Core infrastructure for the application.

This package provides:
- AppException and its camera/decoder subclasses
- Exception factory functions for common error scenarios
- FastAPI exception handler registration

Usage:
------
    from snapshelf.core import exceptions
    raise exceptions.book_not_found(book_id)

==============================================================================
"""

from .exceptions import (
    AppException,
    CameraError,
    InvalidSessionState,
    StrategyInitError,
    StrategyRuntimeError,
    register_exception_handlers,
)

__all__ = [
    "AppException",
    "CameraError",
    "InvalidSessionState",
    "StrategyInitError",
    "StrategyRuntimeError",
    "register_exception_handlers",
]
