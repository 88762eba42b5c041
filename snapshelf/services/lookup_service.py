"""
==============================================================================
Book Lookup Service Module
==============================================================================

Google Books metadata lookup by ISBN.

Request:
    GET {google_books_url}?q=isbn:<isbn>&maxResults=1[&key=<api key>]

Mapping (volumeInfo of the first item):
    title, authors, publisher, description  -> as-is
    publishedDate                           -> first 4-digit group
    categories[0]                           -> genre
    imageLinks                              -> thumbnail, smallThumbnail,
                                               extraLarge, large, medium
                                               (first present, https)

==============================================================================
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from snapshelf.config import Settings, get_settings
from snapshelf.core import exceptions
from snapshelf.schemas.book import BookMetadata, extract_year


# Module logger
logger = logging.getLogger(__name__)


# Known to exist in Google Books; used for connectivity checks
SAMPLE_ISBN = "9780143127741"

COVER_PREFERENCE = ("thumbnail", "smallThumbnail", "extraLarge", "large", "medium")


def select_cover(image_links: Optional[Dict[str, str]]) -> Optional[str]:
    """Pick the preferred cover image and force https."""
    if not image_links:
        return None
    for key in COVER_PREFERENCE:
        url = image_links.get(key)
        if url:
            return url.replace("http://", "https://", 1)
    return None


class BookLookupService:
    """
    Google Books client.

    Example:
        >>> service = BookLookupService()
        >>> metadata = service.fetch_by_isbn("9780143127741")
        >>> metadata.title
        'The Martian'
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None
    ) -> None:
        self._settings = settings or get_settings()
        self._session = session or requests.Session()

    def _params(self, isbn: str) -> Dict[str, Any]:
        params = {"q": f"isbn:{isbn}", "maxResults": 1}
        if self._settings.google_books_api_key:
            params["key"] = self._settings.google_books_api_key
        return params

    def fetch_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        """
        Look up a canonical ISBN.

        Returns:
            BookMetadata, or None when Google Books has no match

        Raises:
            AppException: LOOKUP_FAILED on network errors or non-2xx replies
        """
        try:
            response = self._session.get(
                self._settings.google_books_url,
                params=self._params(isbn),
                timeout=self._settings.lookup_timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error(f"Google Books lookup failed for {isbn}: {e}")
            raise exceptions.lookup_failed(str(e))
        except ValueError as e:
            logger.error(f"Google Books returned invalid JSON for {isbn}: {e}")
            raise exceptions.lookup_failed("Invalid response body")

        items = payload.get("items") or []
        if not items:
            logger.info(f"No Google Books match for {isbn}")
            return None

        volume = items[0].get("volumeInfo") or {}
        categories = volume.get("categories") or []

        metadata = BookMetadata(
            isbn=isbn,
            title=volume.get("title") or "",
            authors=volume.get("authors") or [],
            publisher=volume.get("publisher") or None,
            description=volume.get("description") or None,
            year=extract_year(volume.get("publishedDate")),
            genre=categories[0] if categories else None,
            cover_url=select_cover(volume.get("imageLinks")),
        )
        logger.info(f"📚 Found '{metadata.title}' for {isbn}")
        return metadata

    def check_connectivity(self, timeout: float = 4.0) -> bool:
        """
        Check that Google Books answers a known ISBN query.

        Returns:
            True on a 2xx reply
        """
        try:
            response = self._session.get(
                self._settings.google_books_url,
                params=self._params(SAMPLE_ISBN),
                timeout=timeout,
            )
            return response.ok
        except requests.RequestException as e:
            logger.warning(f"Google Books connectivity check failed: {e}")
            return False


def get_lookup_service() -> BookLookupService:
    """FastAPI dependency returning a lookup client."""
    return BookLookupService()
