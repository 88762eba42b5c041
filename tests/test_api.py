"""
==============================================================================
API Integration Tests
==============================================================================

Tests for REST API endpoints.

==============================================================================
"""

import base64
from collections import namedtuple
from datetime import datetime, timezone

import cv2
import numpy as np
from fastapi.testclient import TestClient

from snapshelf.schemas.book import BookMetadata
from snapshelf.scanner import strategies


Decoded = namedtuple("Decoded", "data type")


def blank_png() -> str:
    ok, buffer = cv2.imencode(".png", np.zeros((16, 16, 3), dtype=np.uint8))
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client: TestClient):
        """Test health check returns status."""
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"] == "healthy"
        assert data["components"]["google_books"] == "healthy"

    def test_health_degraded_without_google_books(self, client: TestClient, lookup):
        """Test Google Books outage degrades health."""
        lookup.reachable = False
        data = client.get("/api/v1/health").json()
        assert data["status"] == "degraded"
        assert data["components"]["google_books"] == "unreachable"

    def test_readiness_probe(self, client: TestClient):
        """Test readiness probe."""
        response = client.get("/api/v1/health/ready")
        assert response.status_code == 200
        assert response.json()["ready"] is True

    def test_liveness_probe(self, client: TestClient):
        """Test liveness probe."""
        response = client.get("/api/v1/health/live")
        assert response.status_code == 200
        assert response.json()["alive"] is True


class TestBookEndpoints:
    """Tests for the book log."""

    def test_create_book(self, client: TestClient):
        """Test logging a book stamps today's date and defaults the year."""
        response = client.post("/api/v1/books", json={
            "title": "  Dune ",
            "author": "Frank Herbert",
            "isbn": "978-0-441-17271-9",
        })
        assert response.status_code == 201
        book = response.json()["book"]
        assert book["title"] == "Dune"
        assert book["isbn"] == "9780441172719"
        assert book["year"] == "0000"
        assert book["date_recorded"] == datetime.now(timezone.utc).date().isoformat()

    def test_create_without_isbn(self, client: TestClient):
        """Test ISBN is optional."""
        response = client.post("/api/v1/books", json={"title": "Zine", "author": "Anon", "year": "1999"})
        assert response.status_code == 201
        assert response.json()["book"]["isbn"] is None
        assert response.json()["book"]["year"] == "1999"

    def test_duplicate_isbn_rejected(self, client: TestClient):
        """Test the same ISBN cannot be logged twice."""
        payload = {"title": "Dune", "author": "Frank Herbert", "isbn": "9780441172719"}
        assert client.post("/api/v1/books", json=payload).status_code == 201

        response = client.post("/api/v1/books", json={**payload, "isbn": "978 0441 172719"})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "BOOK_EXISTS"

    def test_invalid_isbn_rejected(self, client: TestClient):
        """Test malformed ISBN."""
        response = client.post("/api/v1/books", json={"title": "X", "author": "Y", "isbn": "12345"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ISBN"

    def test_year_reduced_from_date(self, client: TestClient):
        """Test a full publication date is stored as its year."""
        response = client.post("/api/v1/books", json={"title": "Dune", "author": "Frank Herbert", "year": "1965-08-01"})
        assert response.status_code == 201
        assert response.json()["book"]["year"] == "1965"

    def test_year_without_digits_rejected(self, client: TestClient):
        """Test a year with no four-digit group."""
        response = client.post("/api/v1/books", json={"title": "Dune", "author": "Frank Herbert", "year": "soon"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_blank_title_rejected(self, client: TestClient):
        """Test title and author are required."""
        response = client.post("/api/v1/books", json={"title": "   ", "author": "Y"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_list_newest_first(self, client: TestClient, make_book):
        """Test books are listed newest first."""
        make_book("Older", "2024-03-01")
        make_book("Newer", "2024-03-02")

        data = client.get("/api/v1/books").json()
        assert data["total"] == 2
        assert [b["title"] for b in data["books"]] == ["Newer", "Older"]

    def test_group_by_date(self, client: TestClient, make_book):
        """Test grouping by recording date, most recent day first."""
        make_book("A", "2024-03-01", hour=9)
        make_book("B", "2024-03-02", hour=9)
        make_book("C", "2024-03-02", hour=15)

        groups = client.get("/api/v1/books/by-date").json()["groups"]
        assert [g["date"] for g in groups] == ["2024-03-02", "2024-03-01"]
        assert [b["title"] for b in groups[0]["books"]] == ["C", "B"]
        assert [b["title"] for b in groups[1]["books"]] == ["A"]

    def test_get_book(self, client: TestClient, make_book):
        """Test fetching one book."""
        book = make_book("Solo", "2024-01-01")
        response = client.get(f"/api/v1/books/{book.id}")
        assert response.status_code == 200
        assert response.json()["book"]["title"] == "Solo"

    def test_get_missing_book(self, client: TestClient):
        """Test unknown id."""
        response = client.get("/api/v1/books/does-not-exist")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "BOOK_NOT_FOUND"


class TestLookupAndCapture:
    """Tests for Google Books lookup and capture."""

    def test_lookup_normalizes_isbn(self, client: TestClient, lookup):
        """Test hyphenated ISBN is normalized before lookup."""
        response = client.get("/api/v1/lookup/978-0-14-312774-1")
        assert response.status_code == 200
        assert response.json()["metadata"]["title"] == "The Martian"
        assert lookup.calls == ["9780143127741"]

    def test_lookup_unknown(self, client: TestClient):
        """Test ISBN with no Google Books match."""
        response = client.get("/api/v1/lookup/9780306406157")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "LOOKUP_NOT_FOUND"

    def test_lookup_invalid(self, client: TestClient, lookup):
        """Test invalid ISBN never reaches Google Books."""
        response = client.get("/api/v1/lookup/hello")
        assert response.status_code == 400
        assert lookup.calls == []

    def test_lookup_upstream_failure(self, client: TestClient, lookup):
        """Test Google Books errors map to 502."""
        lookup.failing = True
        response = client.get("/api/v1/lookup/9780143127741")
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "LOOKUP_FAILED"

    def test_capture(self, client: TestClient):
        """Test capture looks up and logs the book."""
        response = client.post("/api/v1/capture", json={"isbn": "9780143127741"})
        assert response.status_code == 201
        book = response.json()["book"]
        assert book["title"] == "The Martian"
        assert book["author"] == "Andy Weir"
        assert book["year"] == "2014"
        assert book["genre"] == "Fiction"

        listed = client.get("/api/v1/books").json()
        assert listed["total"] == 1

    def test_capture_twice(self, client: TestClient, lookup):
        """Test second capture of the same ISBN is rejected without a lookup."""
        client.post("/api/v1/capture", json={"isbn": "9780143127741"})
        response = client.post("/api/v1/capture", json={"isbn": "978-0143127741"})
        assert response.status_code == 409
        assert lookup.calls == ["9780143127741"]

    def test_capture_oversized_metadata(self, client: TestClient, lookup):
        """Test long Google Books fields are cut to the column sizes."""
        lookup.add(BookMetadata(
            isbn="9780306406157",
            title="T" * 700,
            authors=["A" * 300, "B" * 300],
            publisher="P" * 400,
            genre="G" * 400,
            year="1999",
            cover_url="https://books.google.com/" + "x" * 1200,
        ))
        response = client.post("/api/v1/capture", json={"isbn": "9780306406157"})
        assert response.status_code == 201
        book = response.json()["book"]
        assert len(book["title"]) == 500
        assert len(book["author"]) == 500
        assert len(book["publisher"]) == 255
        assert len(book["genre"]) == 255
        assert book["cover_url"] is None
        assert book["year"] == "1999"

    def test_capture_without_authors(self, client: TestClient, lookup):
        """Test volumes missing authors cannot be logged."""
        lookup.add(BookMetadata(isbn="0306406152", title="Anonymous Work"))
        response = client.post("/api/v1/capture", json={"isbn": "0306406152"})
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "INCOMPLETE_METADATA"
        assert error["details"]["missing"] == ["author"]


class TestScannerEndpoints:
    """Tests for decoder capability and still decoding."""

    def test_capabilities(self, client: TestClient):
        """Test capability report."""
        data = client.get("/api/v1/scanner/capabilities").json()
        assert data["success"] is True
        assert data["capability"] in ["native_available", "native_unavailable"]
        assert data["preferred_strategy"] == "zbar"
        assert data["scan_interval_ms"] == 200
        assert data["camera"]["facing_mode"] == "environment"

    def test_decode_still(self, client: TestClient, monkeypatch):
        """Test still image decoding picks the first ISBN."""
        monkeypatch.setattr(strategies, "decode", lambda image, symbols=None: [
            Decoded(b"012345678905", "UPCA"),
            Decoded(b"9780143127741", "EAN13"),
        ])
        response = client.post("/api/v1/scanner/decode", json={"image": blank_png()})
        assert response.status_code == 200
        data = response.json()
        assert data["isbn"] == "9780143127741"
        assert [d["isbn"] for d in data["detections"]] == [None, "9780143127741"]

    def test_decode_data_url(self, client: TestClient, monkeypatch):
        """Test data URLs are accepted."""
        monkeypatch.setattr(strategies, "decode", lambda image, symbols=None: [])
        response = client.post(
            "/api/v1/scanner/decode",
            json={"image": f"data:image/png;base64,{blank_png()}"},
        )
        assert response.status_code == 200
        assert response.json()["isbn"] is None

    def test_decode_invalid_image(self, client: TestClient):
        """Test garbage payloads."""
        response = client.post("/api/v1/scanner/decode", json={"image": "bm90IGFuIGltYWdl"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_IMAGE"
