"""
==============================================================================
Schemas Package - Pydantic Models
==============================================================================

Request and response schemas using Pydantic for validation.

- Book: Book records, lookup and capture
- Scanner: Decoder capabilities and still decoding

==============================================================================
"""

from .book import (
    BookCreate,
    BookDateGroup,
    BookDetailResponse,
    BookListResponse,
    BookMetadata,
    BookResponse,
    BooksByDateResponse,
    CaptureRequest,
    LookupResponse,
)
from .scanner import (
    CameraConstraints,
    CapabilitiesResponse,
    DecodeStillRequest,
    DecodeStillResponse,
    DetectionItem,
)

__all__ = [
    # Book
    "BookCreate",
    "BookDateGroup",
    "BookDetailResponse",
    "BookListResponse",
    "BookMetadata",
    "BookResponse",
    "BooksByDateResponse",
    "CaptureRequest",
    "LookupResponse",
    # Scanner
    "CameraConstraints",
    "CapabilitiesResponse",
    "DecodeStillRequest",
    "DecodeStillResponse",
    "DetectionItem",
]
