"""
Application Exception Handling

AppException family for all application errors with FastAPI integration.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppException(Exception):
    """
    Unified application exception for all error scenarios.

    Provides consistent error response format across the API and the scan
    WebSocket.

    Usage:
        raise AppException("Book not found", "BOOK_NOT_FOUND", 404)
        raise AppException("Book exists", "BOOK_EXISTS", 409, {"isbn": "978..."})

    Error Codes:
        Camera / scanner:
            - CAMERA_PERMISSION_DENIED (503)
            - CAMERA_NOT_FOUND (503)
            - CAMERA_BUSY (503)
            - CAMERA_LOST (503)
            - CAMERA_TIMEOUT (503)
            - DECODER_UNAVAILABLE (503)
            - DECODER_INIT_FAILED (500, internal)
            - DECODER_FAILED (500, internal)
            - INVALID_SESSION_STATE (409)

        Books:
            - INVALID_ISBN (400)
            - BOOK_NOT_FOUND (404)
            - BOOK_EXISTS (409)
            - INVALID_IMAGE (400)

        Lookup:
            - LOOKUP_NOT_FOUND (404)
            - LOOKUP_FAILED (502)
            - INCOMPLETE_METADATA (422)

        General:
            - VALIDATION_ERROR (422)
            - INTERNAL_ERROR (500)
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize application exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "BOOK_NOT_FOUND")
            status_code: HTTP status code (default: 400)
            details: Additional error context (optional)
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        error_dict = {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict


class CameraError(AppException):
    """
    Camera could not be acquired, or was lost while scanning.

    Fatal to the current scan activation and never retried automatically.
    """

    def __init__(
        self,
        message: str,
        code: str = "CAMERA_NOT_FOUND",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, 503, details)


class StrategyInitError(AppException):
    """A decode strategy failed to start. Triggers the fallback strategy."""

    def __init__(self, strategy: str, reason: str):
        super().__init__(
            f"Decoder '{strategy}' failed to start: {reason}",
            "DECODER_INIT_FAILED",
            500,
            {"strategy": strategy, "reason": reason}
        )


class StrategyRuntimeError(AppException):
    """A running decode strategy failed beyond a single-frame miss."""

    def __init__(self, strategy: str, reason: str):
        super().__init__(
            f"Decoder '{strategy}' stopped working: {reason}",
            "DECODER_FAILED",
            500,
            {"strategy": strategy, "reason": reason}
        )


class InvalidSessionState(AppException):
    """A scan session operation was requested from the wrong state."""

    def __init__(self, current: str, expected: str):
        super().__init__(
            f"Invalid scan session state. Current: {current}, Expected: {expected}",
            "INVALID_SESSION_STATE",
            409,
            {"current_state": current, "expected_state": expected}
        )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    FastAPI exception handler for AppException.

    Converts AppException to consistent JSON error response.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the AppException envelope."""
    error = AppException(
        "Request validation failed",
        "VALIDATION_ERROR",
        422,
        {"errors": [
            {"loc": list(e.get("loc", [])), "msg": e.get("msg", "")}
            for e in exc.errors()
        ]}
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)


# ============================================
# CONVENIENCE FACTORY FUNCTIONS
# ============================================

def camera_permission_denied() -> CameraError:
    """Create camera permission denied exception."""
    return CameraError("Camera permission was denied", "CAMERA_PERMISSION_DENIED")


def camera_not_found(index: Optional[int] = None) -> CameraError:
    """Create camera not found exception."""
    details = {"camera_index": index} if index is not None else {}
    return CameraError("No camera device is available", "CAMERA_NOT_FOUND", details)


def camera_busy(index: Optional[int] = None) -> CameraError:
    """Create camera busy exception."""
    details = {"camera_index": index} if index is not None else {}
    return CameraError("Camera is in use by another session", "CAMERA_BUSY", details)


def camera_lost(reason: str = "Camera stream ended") -> CameraError:
    """Create camera lost exception."""
    return CameraError(reason, "CAMERA_LOST")


def camera_timeout(seconds: float) -> CameraError:
    """Create camera acquisition timeout exception."""
    return CameraError(
        f"Camera did not become ready within {seconds:g}s",
        "CAMERA_TIMEOUT",
        {"timeout_seconds": seconds}
    )


def decoder_unavailable(tried: list) -> CameraError:
    """Create exception for when every decode strategy failed to start."""
    return CameraError(
        "No barcode decoder could be started",
        "DECODER_UNAVAILABLE",
        {"strategies": tried}
    )


def invalid_isbn(raw: str) -> AppException:
    """Create invalid ISBN exception."""
    return AppException(
        "Not a valid ISBN-10 or ISBN-13",
        "INVALID_ISBN",
        400,
        {"value": raw}
    )


def invalid_image() -> AppException:
    """Create undecodable image exception."""
    return AppException("Image could not be decoded", "INVALID_IMAGE", 400)


def book_not_found(book_id: Optional[str] = None) -> AppException:
    """Create book not found exception."""
    details = {"book_id": book_id} if book_id else {}
    return AppException("Book not found", "BOOK_NOT_FOUND", 404, details)


def book_exists(isbn: str) -> AppException:
    """Create duplicate ISBN exception."""
    return AppException(
        "A book with this ISBN already exists.",
        "BOOK_EXISTS",
        409,
        {"isbn": isbn}
    )


def lookup_not_found(isbn: str) -> AppException:
    """Create metadata-not-found exception."""
    return AppException(
        "Google Books could not find that ISBN",
        "LOOKUP_NOT_FOUND",
        404,
        {"isbn": isbn}
    )


def incomplete_metadata(isbn: str, missing: list) -> AppException:
    """Create exception for lookups lacking the fields a record needs."""
    return AppException(
        "Title and author are required",
        "INCOMPLETE_METADATA",
        422,
        {"isbn": isbn, "missing": missing}
    )


def lookup_failed(reason: str) -> AppException:
    """Create upstream lookup failure exception."""
    return AppException(
        "Google Books lookup failed",
        "LOOKUP_FAILED",
        502,
        {"reason": reason}
    )


def internal_error(message: str = "Internal server error") -> AppException:
    """Create internal server error exception."""
    return AppException(message, "INTERNAL_ERROR", 500)
