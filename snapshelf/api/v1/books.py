"""
==============================================================================
Book Log Endpoints
==============================================================================

Create and browse logged books.

Endpoints:
----------
- POST /books           Log a book for today
- GET  /books           All books, newest first
- GET  /books/by-date   Books grouped by recording date
- GET  /books/{id}      Single book

==============================================================================
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from snapshelf.db.database import get_db
from snapshelf.schemas.book import (
    BookCreate,
    BookDateGroup,
    BookDetailResponse,
    BookListResponse,
    BookResponse,
    BooksByDateResponse,
)
from snapshelf.services.book_service import BookService


router = APIRouter(prefix="/books", tags=["Books"])


class BookController:
    """Controller for book log operations."""

    def __init__(self, db: Session):
        self._service = BookService(db)

    def create(self, data: BookCreate) -> BookDetailResponse:
        book = self._service.create_for_today(data)
        return BookDetailResponse(book=BookResponse.model_validate(book))

    def list_books(self) -> BookListResponse:
        books = self._service.list_books()
        return BookListResponse(
            books=[BookResponse.model_validate(b) for b in books],
            total=len(books),
        )

    def by_date(self) -> BooksByDateResponse:
        return BooksByDateResponse(groups=[
            BookDateGroup(
                date=group["date"],
                books=[BookResponse.model_validate(b) for b in group["books"]],
            )
            for group in self._service.group_by_date()
        ])

    def get(self, book_id: str) -> BookDetailResponse:
        return BookDetailResponse(book=BookResponse.model_validate(self._service.get(book_id)))


@router.post("", response_model=BookDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_book(data: BookCreate, db: Session = Depends(get_db)):
    """
    Log a book under today's date.

    Title and author are required. An ISBN, when given, must be a valid
    ISBN-10/13 not already in the log.
    """
    return BookController(db).create(data)


@router.get("", response_model=BookListResponse)
async def list_books(db: Session = Depends(get_db)):
    """List all logged books, newest first."""
    return BookController(db).list_books()


@router.get("/by-date", response_model=BooksByDateResponse)
async def books_by_date(db: Session = Depends(get_db)):
    """Books grouped by the day they were logged, most recent day first."""
    return BookController(db).by_date()


@router.get("/{book_id}", response_model=BookDetailResponse)
async def get_book(book_id: str, db: Session = Depends(get_db)):
    """Get one logged book."""
    return BookController(db).get(book_id)
