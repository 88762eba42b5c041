"""
==============================================================================
Capture Service Module
==============================================================================

Scanned ISBN to logged book:

    raw text ──normalize──▶ ISBN ──Google Books──▶ metadata ──▶ BookRecord

==============================================================================
"""

from __future__ import annotations

import logging

from snapshelf.core import exceptions
from snapshelf.db.models import BookRecord
from snapshelf.scanner.normalizer import normalize_isbn
from snapshelf.schemas.book import BookCreate, BookMetadata
from snapshelf.services.book_service import BookService
from snapshelf.services.lookup_service import BookLookupService


# Module logger
logger = logging.getLogger(__name__)


class CaptureService:
    """Look up a scanned ISBN and log it for today."""

    def __init__(self, books: BookService, lookup: BookLookupService) -> None:
        self._books = books
        self._lookup = lookup

    def preview(self, raw_isbn: str) -> BookMetadata:
        """
        Fetch metadata without saving anything.

        Raises:
            AppException: INVALID_ISBN, LOOKUP_NOT_FOUND or LOOKUP_FAILED
        """
        isbn = normalize_isbn(raw_isbn)
        if isbn is None:
            raise exceptions.invalid_isbn(raw_isbn)

        metadata = self._lookup.fetch_by_isbn(isbn)
        if metadata is None:
            raise exceptions.lookup_not_found(isbn)
        return metadata

    def capture(self, raw_isbn: str) -> BookRecord:
        """
        Look up and persist a book.

        Raises:
            AppException: INVALID_ISBN, BOOK_EXISTS, LOOKUP_NOT_FOUND or
                LOOKUP_FAILED
        """
        isbn = normalize_isbn(raw_isbn)
        if isbn is None:
            raise exceptions.invalid_isbn(raw_isbn)

        # Skip the network round trip for books already logged
        if self._books.get_by_isbn(isbn) is not None:
            raise exceptions.book_exists(isbn)

        metadata = self.preview(isbn)

        missing = [
            name for name, value in (("title", metadata.title.strip()), ("author", metadata.author.strip()))
            if not value
        ]
        if missing:
            raise exceptions.incomplete_metadata(isbn, missing)

        logger.info(f"Capturing {isbn}: {metadata.title}")
        return self._books.create_for_today(BookCreate.from_metadata(metadata))
