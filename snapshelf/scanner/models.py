"""
==============================================================================
Scanner Data Models
==============================================================================

Value types shared by the decode strategies and the scan session controller.

Session State Machine:
---------------------

    ┌──────┐ activate() ┌──────────┐  stream live  ┌──────────┐
    │ IDLE │ ─────────▶ │ STARTING │ ────────────▶ │ SCANNING │
    └──────┘            └──────────┘               └──────────┘
                            │  ▲                    │       │
                   cancel() │  │ activate()         │       │ identifier
                 / failure  ▼  │           cancel() │       ▼ accepted
                        ┌─────────┐ ◀───────────────┘  ┌────────┐
                        │ STOPPED │ ◀───────────────── │ LOCKED │
                        └─────────┘  resources freed   └────────┘

cancel() while LOCKED still frees resources but drops the accepted identifier.

==============================================================================
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


class Symbology(str, enum.Enum):
    """
    Barcode symbologies the scanner accepts.

    Book barcodes are EAN-13 (Bookland 978/979); the other formats appear on
    older editions, price add-ons and library labels. Anything that does not
    normalize to an ISBN is dropped later by the normalizer.
    """

    EAN_13 = "EAN_13"
    EAN_8 = "EAN_8"
    UPC_A = "UPC_A"
    UPC_E = "UPC_E"
    CODE_128 = "CODE_128"

    def __str__(self) -> str:
        """Return the enum value as string."""
        return self.value

    @classmethod
    def from_decoder(cls, name: Optional[str]) -> Optional[Symbology]:
        """
        Map a decoder's type name onto a supported symbology.

        Handles ZBar names ("EAN13", "ISBN13", "UPCA"), OpenCV names
        ("EAN_13", "UPC_A") and hyphenated spellings ("UPC-A").

        Returns:
            Matching Symbology, or None for unsupported formats
        """
        if not name:
            return None
        key = "".join(ch for ch in str(name).upper() if ch.isalnum())
        return _DECODER_ALIASES.get(key)


_DECODER_ALIASES = {
    "EAN13": Symbology.EAN_13,
    "ISBN13": Symbology.EAN_13,
    "EAN8": Symbology.EAN_8,
    "UPCA": Symbology.UPC_A,
    "ISBN10": Symbology.EAN_13,
    "UPCE": Symbology.UPC_E,
    "CODE128": Symbology.CODE_128,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RawDetection:
    """
    One decoded barcode, straight from a decode strategy.

    Attributes:
        text: Decoder output, possibly with separators or control characters
        symbology: Barcode format the decoder reported
        timestamp: When the decode happened
    """

    text: str
    symbology: Symbology
    timestamp: datetime = field(default_factory=_utc_now)


class ScanSessionState(str, enum.Enum):
    """Lifecycle state of a ScanSessionController."""

    IDLE = "idle"
    STARTING = "starting"
    SCANNING = "scanning"
    LOCKED = "locked"
    STOPPED = "stopped"

    def __str__(self) -> str:
        """Return the enum value as string."""
        return self.value

    @property
    def can_activate(self) -> bool:
        """Check if activate() is allowed from this state."""
        return self in (ScanSessionState.IDLE, ScanSessionState.STOPPED)

    @property
    def can_cancel(self) -> bool:
        """Check if cancel() has anything to stop or suppress in this state."""
        return self in (
            ScanSessionState.STARTING,
            ScanSessionState.SCANNING,
            ScanSessionState.LOCKED,
        )


class DecoderCapability(str, enum.Enum):
    """Result of probing the running platform for the native detector."""

    NATIVE_AVAILABLE = "native_available"
    NATIVE_UNAVAILABLE = "native_unavailable"

    def __str__(self) -> str:
        """Return the enum value as string."""
        return self.value
