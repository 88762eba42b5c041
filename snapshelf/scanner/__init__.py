"""
==============================================================================
Scanner Package - Barcode Detection
==============================================================================

Camera-driven ISBN capture with OpenCV and pyzbar.

Classes:
--------
- ScanSessionController: Session lifecycle and detection loop
- NativeBarcodeStrategy / ZbarStrategy: Decode strategies
- CameraProvider / BrowserFrameProvider: Video feeds

Functions:
----------
- normalize_isbn: Raw barcode text to canonical ISBN

==============================================================================
"""

from .models import DecoderCapability, RawDetection, ScanSessionState, Symbology
from .normalizer import is_canonical_isbn, normalize_isbn
from .session import ScanSessionController
from .sources import (
    BrowserFrameProvider,
    CameraProvider,
    FrameFeedSource,
    VideoProvider,
    VideoSource,
    decode_frame,
)
from .strategies import (
    DecodeStrategy,
    NativeBarcodeStrategy,
    ZbarStrategy,
    decode_still,
    probe_decoder_capability,
)

__all__ = [
    "ScanSessionController",
    "ScanSessionState",
    "DecoderCapability",
    "RawDetection",
    "Symbology",
    "normalize_isbn",
    "is_canonical_isbn",
    "VideoSource",
    "VideoProvider",
    "CameraProvider",
    "BrowserFrameProvider",
    "FrameFeedSource",
    "decode_frame",
    "DecodeStrategy",
    "NativeBarcodeStrategy",
    "ZbarStrategy",
    "decode_still",
    "probe_decoder_capability",
]
