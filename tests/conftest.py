"""
==============================================================================
Pytest Configuration and Fixtures
==============================================================================

Provides test database, client, and Google Books stand-in fixtures.

==============================================================================
"""

import os

# Must be set before the application reads its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("TIMEZONE", "UTC")
# Keep decoding deterministic regardless of how OpenCV was built
os.environ["NATIVE_DECODER_ENABLED"] = "false"

import pytest
from datetime import datetime, timezone
from typing import Dict, Generator, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from snapshelf.main import app
from snapshelf.core import exceptions
from snapshelf.db.database import Base, get_db
from snapshelf.db.models import BookRecord
from snapshelf.schemas.book import BookMetadata
from snapshelf.services.lookup_service import get_lookup_service


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

# In-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# ============================================================================
# GOOGLE BOOKS STAND-IN
# ============================================================================

class FakeLookupService:
    """In-memory replacement for BookLookupService."""

    def __init__(self) -> None:
        self.volumes: Dict[str, BookMetadata] = {}
        self.reachable = True
        self.failing = False
        self.calls = []

    def add(self, metadata: BookMetadata) -> None:
        self.volumes[metadata.isbn] = metadata

    def fetch_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        self.calls.append(isbn)
        if self.failing:
            raise exceptions.lookup_failed("503 Service Unavailable")
        return self.volumes.get(isbn)

    def check_connectivity(self, timeout: float = 4.0) -> bool:
        return self.reachable


@pytest.fixture
def lookup() -> FakeLookupService:
    """Google Books stand-in preloaded with one volume."""
    fake = FakeLookupService()
    fake.add(BookMetadata(
        isbn="9780143127741",
        title="The Martian",
        authors=["Andy Weir"],
        publisher="Broadway Books",
        year="2014",
        genre="Fiction",
        cover_url="https://books.google.com/books/content?id=martian",
    ))
    return fake


@pytest.fixture(scope="function")
def client(db: Session, lookup: FakeLookupService) -> Generator[TestClient, None, None]:
    """Create test client with database and lookup overrides."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_lookup_service] = lambda: lookup

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================================================
# BOOK FIXTURES
# ============================================================================

@pytest.fixture
def make_book(db: Session):
    """Insert a book record with an explicit recording date."""
    def _make(title: str, date_recorded: str, hour: int = 12, isbn: Optional[str] = None) -> BookRecord:
        year, month, day = (int(part) for part in date_recorded.split("-"))
        book = BookRecord(
            isbn=isbn,
            title=title,
            author="Test Author",
            year="2000",
            date_recorded=date_recorded,
            created_at=datetime(year, month, day, hour, tzinfo=timezone.utc),
        )
        db.add(book)
        db.commit()
        db.refresh(book)
        return book
    return _make
