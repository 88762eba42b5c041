"""
==============================================================================
Book Schemas Module
==============================================================================

Request and response schemas for book records, metadata lookup and the
capture workflow.

==============================================================================
"""

import re
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


# Column limits of the books table
TITLE_MAX_LENGTH = 500
AUTHOR_MAX_LENGTH = 500
COVER_URL_MAX_LENGTH = 1000
PUBLISHER_MAX_LENGTH = 255
GENRE_MAX_LENGTH = 255

_YEAR_PATTERN = re.compile(r"\d{4}")


def extract_year(value: Optional[str]) -> Optional[str]:
    """Return the first four-digit group of a date string, if any."""
    if not value:
        return None
    match = _YEAR_PATTERN.search(value)
    return match.group(0) if match else None


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None or len(value) <= limit:
        return value
    return value[:limit].rstrip()


def _strip_optional(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v if v else None


# =============================================================================
# METADATA
# =============================================================================

class BookMetadata(BaseModel):
    """Bibliographic data returned by the Google Books lookup."""
    isbn: str
    title: str
    authors: List[str] = Field(default_factory=list)
    publisher: Optional[str] = None
    description: Optional[str] = None
    year: Optional[str] = None
    genre: Optional[str] = None
    cover_url: Optional[str] = None

    @property
    def author(self) -> str:
        """Authors joined for storage."""
        return ", ".join(self.authors)


class LookupResponse(BaseModel):
    """Metadata preview for a scanned ISBN."""
    success: bool = Field(default=True)
    metadata: BookMetadata


# =============================================================================
# CREATE SCHEMAS
# =============================================================================

class BookCreate(BaseModel):
    """Fields for logging a book on today's date."""
    title: str = Field(..., max_length=TITLE_MAX_LENGTH)
    author: str = Field(..., max_length=AUTHOR_MAX_LENGTH)
    isbn: Optional[str] = Field(default=None, max_length=32)
    cover_url: Optional[str] = Field(default=None, max_length=COVER_URL_MAX_LENGTH)
    year: Optional[str] = Field(default=None, max_length=32)
    publisher: Optional[str] = Field(default=None, max_length=PUBLISHER_MAX_LENGTH)
    genre: Optional[str] = Field(default=None, max_length=GENRE_MAX_LENGTH)
    description: Optional[str] = None

    @field_validator("title", "author")
    @classmethod
    def require_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be blank")
        return v

    @field_validator("isbn", "cover_url", "publisher", "genre", "description")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    @field_validator("year")
    @classmethod
    def reduce_year(cls, v: Optional[str]) -> Optional[str]:
        """Keep only the year of a date such as "2014-05-06"."""
        v = _strip_optional(v)
        if v is None:
            return None
        year = extract_year(v)
        if year is None:
            raise ValueError("Year must contain four digits")
        return year

    @classmethod
    def from_metadata(cls, metadata: BookMetadata) -> "BookCreate":
        """
        Build a record from a Google Books volume.

        Text longer than the book columns is cut and an oversized cover URL
        is dropped.
        """
        cover_url = metadata.cover_url
        if cover_url is not None and len(cover_url) > COVER_URL_MAX_LENGTH:
            cover_url = None

        return cls(
            isbn=metadata.isbn,
            title=_clip(metadata.title.strip(), TITLE_MAX_LENGTH),
            author=_clip(metadata.author.strip(), AUTHOR_MAX_LENGTH),
            cover_url=cover_url,
            year=metadata.year,
            publisher=_clip(metadata.publisher, PUBLISHER_MAX_LENGTH),
            genre=_clip(metadata.genre, GENRE_MAX_LENGTH),
            description=metadata.description,
        )


class CaptureRequest(BaseModel):
    """Scanned or typed ISBN to look up and log."""
    isbn: str = Field(..., min_length=1, max_length=32)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class BookResponse(BaseModel):
    """Logged book."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    isbn: Optional[str] = None
    title: str
    author: str
    cover_url: Optional[str] = None
    year: str
    publisher: Optional[str] = None
    genre: Optional[str] = None
    description: Optional[str] = None
    date_recorded: str
    created_at: datetime


class BookDetailResponse(BaseModel):
    """Single book wrapper."""
    success: bool = Field(default=True)
    book: BookResponse


class BookListResponse(BaseModel):
    """All logged books, newest first."""
    success: bool = Field(default=True)
    books: List[BookResponse]
    total: int = Field(ge=0)


class BookDateGroup(BaseModel):
    """Books logged on one day."""
    date: str
    books: List[BookResponse]


class BooksByDateResponse(BaseModel):
    """Books grouped by recording date, most recent day first."""
    success: bool = Field(default=True)
    groups: List[BookDateGroup]
