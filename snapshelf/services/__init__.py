"""
==============================================================================
Services Package - Business Logic Layer
==============================================================================

Service classes between the API routers and the database.

    ┌─────────────────┐
    │   API Router    │
    └────────┬────────┘
             │
    ┌────────▼────────┐
    │ CaptureService  │ ──▶ BookLookupService (Google Books)
    └────────┬────────┘
             │
    ┌────────▼────────┐
    │   BookService   │ ──▶ SQLAlchemy session
    └─────────────────┘

==============================================================================
"""

from .book_service import BookService
from .capture_service import CaptureService
from .lookup_service import BookLookupService, get_lookup_service

__all__ = [
    "BookService",
    "CaptureService",
    "BookLookupService",
    "get_lookup_service",
]
