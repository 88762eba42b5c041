"""
==============================================================================
ISBN Normalizer
==============================================================================

Turns raw decoder text into a canonical ISBN, or rejects it.

Accepted shapes after stripping everything except digits and X/x:
- ISBN-13: 13 digits starting with 978 or 979
- ISBN-10: 9 digits followed by a digit or X (upper-cased)

Check digits are not verified; only the shape is.

==============================================================================
"""

from __future__ import annotations

import re
from typing import Optional


_STRIP_PATTERN = re.compile(r"[^0-9Xx]")
_ISBN13_PATTERN = re.compile(r"^(978|979)\d{10}$")
_ISBN10_PATTERN = re.compile(r"^\d{9}[\dXx]$")


def normalize_isbn(raw: Optional[str]) -> Optional[str]:
    """
    Normalize decoder output to a canonical ISBN.

    Args:
        raw: Text as reported by a decoder or typed by a user

    Returns:
        The canonical ISBN-13 or ISBN-10 string, or None if the text does
        not reduce to either shape

    Example:
        >>> normalize_isbn("978-0-14-312774-1")
        '9780143127741'
        >>> normalize_isbn("0-306-40615-x")
        '030640615X'
        >>> normalize_isbn("hello") is None
        True
    """
    if not raw:
        return None

    cleaned = _STRIP_PATTERN.sub("", raw)

    if _ISBN13_PATTERN.match(cleaned):
        return cleaned

    if _ISBN10_PATTERN.match(cleaned):
        return cleaned.upper()

    return None


def is_canonical_isbn(value: Optional[str]) -> bool:
    """Check if value is already a canonical ISBN."""
    return value is not None and normalize_isbn(value) == value
