"""
==============================================================================
API v1 Endpoints
==============================================================================

Version 1 of the REST API.

Routers:
--------
- health: Health check endpoints
- books: Book log
- capture: Google Books lookup and capture
- scanner: Decoder capabilities and still decoding

==============================================================================
"""

from . import health, books, capture, scanner

__all__ = ["health", "books", "capture", "scanner"]
