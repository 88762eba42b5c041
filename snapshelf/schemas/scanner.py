"""
==============================================================================
Scanner Schemas Module
==============================================================================

Schemas for decoder capability reporting and still-image decoding.

==============================================================================
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from snapshelf.scanner.models import DecoderCapability, Symbology


class CameraConstraints(BaseModel):
    """Camera request hints sent to browser clients."""
    facing_mode: str
    width: int
    height: int


class CapabilitiesResponse(BaseModel):
    """Decoder availability and scan timing."""
    success: bool = Field(default=True)
    capability: DecoderCapability
    native_enabled: bool
    preferred_strategy: str
    fallback_strategy: str = Field(default="zbar")
    scan_interval_ms: int
    camera: CameraConstraints


class DecodeStillRequest(BaseModel):
    """Base64 JPEG/PNG image, optionally as a data URL."""
    image: str = Field(..., min_length=1)


class DetectionItem(BaseModel):
    """One barcode found in an image."""
    text: str
    symbology: Symbology
    isbn: Optional[str] = None


class DecodeStillResponse(BaseModel):
    """Result of decoding a single image."""
    success: bool = Field(default=True)
    isbn: Optional[str] = None
    detections: List[DetectionItem] = Field(default_factory=list)
