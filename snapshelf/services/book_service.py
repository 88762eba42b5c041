"""
==============================================================================
Book Service Module
==============================================================================

Book log persistence: create today's records, list and group them.

Rules:
------
- Title and author are required
- ISBN is optional; when present it must normalize to ISBN-10/13 and be
  unique across the log
- Missing year is stored as "0000"
- date_recorded is the calendar day in the configured timezone

==============================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from itertools import groupby
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from snapshelf.config import Settings, get_settings
from snapshelf.core import exceptions
from snapshelf.db.models import UNKNOWN_YEAR, BookRecord
from snapshelf.scanner.normalizer import normalize_isbn
from snapshelf.schemas.book import BookCreate


# Module logger
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookService:
    """
    Book record operations.

    Attributes:
        _db: Database session
        _clock: Returns the current UTC time

    Example:
        >>> service = BookService(db_session)
        >>> book = service.create_for_today(BookCreate(title="Dune", author="Frank Herbert"))
        >>> service.group_by_date()[0]["date"] == book.date_recorded
        True
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utc_now
    ) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._clock = clock

    def today(self) -> str:
        """Current date in the configured timezone (YYYY-MM-DD)."""
        return self._clock().astimezone(self._settings.tzinfo).date().isoformat()

    # =========================================================================
    # CREATE OPERATIONS
    # =========================================================================

    def create_for_today(self, data: BookCreate) -> BookRecord:
        """
        Log a book under today's date.

        Raises:
            AppException: INVALID_ISBN or BOOK_EXISTS
        """
        isbn = None
        if data.isbn:
            isbn = normalize_isbn(data.isbn)
            if isbn is None:
                raise exceptions.invalid_isbn(data.isbn)
            if self.get_by_isbn(isbn) is not None:
                logger.warning(f"Duplicate ISBN rejected: {isbn}")
                raise exceptions.book_exists(isbn)

        now = self._clock()
        book = BookRecord(
            isbn=isbn,
            title=data.title,
            author=data.author,
            cover_url=data.cover_url,
            year=data.year or UNKNOWN_YEAR,
            publisher=data.publisher,
            genre=data.genre,
            description=data.description,
            date_recorded=now.astimezone(self._settings.tzinfo).date().isoformat(),
            created_at=now,
        )

        self._db.add(book)
        try:
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            raise exceptions.book_exists(isbn or "")

        self._db.refresh(book)
        logger.info(f"📗 Logged '{book.title}' on {book.date_recorded}")
        return book

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def get(self, book_id: str) -> BookRecord:
        """
        Raises:
            AppException: BOOK_NOT_FOUND
        """
        book = self._db.query(BookRecord).filter(BookRecord.id == book_id).first()
        if book is None:
            raise exceptions.book_not_found(book_id)
        return book

    def get_by_isbn(self, isbn: str) -> Optional[BookRecord]:
        return self._db.query(BookRecord).filter(BookRecord.isbn == isbn).first()

    def list_books(self) -> List[BookRecord]:
        """All books, newest first."""
        return (
            self._db.query(BookRecord)
            .order_by(BookRecord.created_at.desc())
            .all()
        )

    def group_by_date(self) -> List[Dict[str, object]]:
        """
        Books grouped by recording date.

        Returns:
            [{"date": "YYYY-MM-DD", "books": [...]}], most recent day first,
            newest book first within a day
        """
        books = (
            self._db.query(BookRecord)
            .order_by(BookRecord.date_recorded.desc(), BookRecord.created_at.desc())
            .all()
        )
        return [
            {"date": date, "books": list(group)}
            for date, group in groupby(books, key=lambda b: b.date_recorded)
        ]
