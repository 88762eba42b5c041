"""
==============================================================================
Lookup and Capture Endpoints
==============================================================================

- GET  /lookup/{isbn}   Google Books preview for a scanned ISBN
- POST /capture         Look up an ISBN and log it for today

Both run as sync handlers so the outbound HTTP call stays off the event loop.

==============================================================================
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from snapshelf.db.database import get_db
from snapshelf.schemas.book import BookDetailResponse, BookResponse, CaptureRequest, LookupResponse
from snapshelf.services.book_service import BookService
from snapshelf.services.capture_service import CaptureService
from snapshelf.services.lookup_service import BookLookupService, get_lookup_service


router = APIRouter(tags=["Capture"])


def get_capture_service(
    db: Session = Depends(get_db),
    lookup: BookLookupService = Depends(get_lookup_service),
) -> CaptureService:
    return CaptureService(BookService(db), lookup)


@router.get("/lookup/{isbn}", response_model=LookupResponse)
def lookup_isbn(isbn: str, capture: CaptureService = Depends(get_capture_service)):
    """
    Preview Google Books metadata for an ISBN.

    The ISBN may contain hyphens or spaces; it is normalized first.
    """
    return LookupResponse(metadata=capture.preview(isbn))


@router.post("/capture", response_model=BookDetailResponse, status_code=status.HTTP_201_CREATED)
def capture_isbn(data: CaptureRequest, capture: CaptureService = Depends(get_capture_service)):
    """Look up an ISBN and log the book for today."""
    book = capture.capture(data.isbn)
    return BookDetailResponse(book=BookResponse.model_validate(book))
