"""
==============================================================================
SQLAlchemy ORM Models
==============================================================================

Database Schema:
---------------

    ┌─────────────────────────────────────────────────────────────────┐
    │                             books                               │
    ├─────────────────────────────────────────────────────────────────┤
    │ id (UUID, PK)                                                   │
    │ isbn (VARCHAR, UNIQUE, NULLABLE)                                │
    │ title (VARCHAR, NOT NULL)                                       │
    │ author (VARCHAR, NOT NULL)                                      │
    │ cover_url (VARCHAR, NULLABLE)                                   │
    │ year (VARCHAR(4), DEFAULT '0000')                               │
    │ publisher / genre / description (NULLABLE)                      │
    │ date_recorded (VARCHAR(10), YYYY-MM-DD, INDEXED)                │
    │ created_at (DATETIME, DEFAULT now)                              │
    └─────────────────────────────────────────────────────────────────┘

==============================================================================
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text

from snapshelf.db.database import Base


UNKNOWN_YEAR = "0000"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookRecord(Base):
    """
    A book logged on a given day.

    Attributes:
        id: Unique identifier (UUID)
        isbn: Canonical ISBN-10/13, unique when present
        title: Book title
        author: Authors joined by ", "
        date_recorded: Local calendar day the book was logged

    Example:
        >>> book = BookRecord(
        ...     isbn="9780143127741",
        ...     title="The Martian",
        ...     author="Andy Weir",
        ...     date_recorded="2024-05-01",
        ... )
        >>> session.add(book)
    """

    __tablename__ = "books"

    id: str = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        doc="Unique book record identifier (UUID)"
    )

    isbn: Optional[str] = Column(
        String(13),
        unique=True,
        nullable=True,
        index=True,
        doc="Canonical ISBN (digits, trailing X allowed for ISBN-10)"
    )

    title: str = Column(String(500), nullable=False, doc="Book title")

    author: str = Column(String(500), nullable=False, doc="Comma separated authors")

    cover_url: Optional[str] = Column(String(1000), nullable=True, doc="HTTPS cover image URL")

    year: str = Column(
        String(4),
        nullable=False,
        default=UNKNOWN_YEAR,
        doc="Publication year, '0000' when unknown"
    )

    publisher: Optional[str] = Column(String(255), nullable=True)

    genre: Optional[str] = Column(String(255), nullable=True)

    description: Optional[str] = Column(Text, nullable=True)

    date_recorded: str = Column(
        String(10),
        nullable=False,
        index=True,
        doc="Local date the book was logged (YYYY-MM-DD)"
    )

    created_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        doc="Record creation timestamp (UTC)"
    )

    def __repr__(self) -> str:
        return f"BookRecord(id={self.id!r}, isbn={self.isbn!r}, title={self.title!r})"
