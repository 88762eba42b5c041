"""
==============================================================================
Scanner Endpoints
==============================================================================

- GET  /scanner/capabilities  Which decoder a new scan session will use
- POST /scanner/decode        Decode one still image (no live session)

Live scanning runs over the /ws/scan WebSocket.

==============================================================================
"""

import logging

from fastapi import APIRouter

from snapshelf.config import get_settings
from snapshelf.core import exceptions
from snapshelf.scanner.models import DecoderCapability
from snapshelf.scanner.normalizer import normalize_isbn
from snapshelf.scanner.sources import decode_frame
from snapshelf.scanner.strategies import NativeBarcodeStrategy, ZbarStrategy, decode_still, probe_decoder_capability
from snapshelf.schemas.scanner import (
    CameraConstraints,
    CapabilitiesResponse,
    DecodeStillRequest,
    DecodeStillResponse,
    DetectionItem,
)


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scanner", tags=["Scanner"])


class ScannerController:
    """Controller for scanner capability and still decode operations."""

    def __init__(self):
        self._settings = get_settings()

    def capabilities(self) -> CapabilitiesResponse:
        capability = probe_decoder_capability()
        native = (
            self._settings.native_decoder_enabled
            and capability is DecoderCapability.NATIVE_AVAILABLE
        )
        return CapabilitiesResponse(
            capability=capability,
            native_enabled=self._settings.native_decoder_enabled,
            preferred_strategy=NativeBarcodeStrategy.name if native else ZbarStrategy.name,
            fallback_strategy=ZbarStrategy.name,
            scan_interval_ms=self._settings.scan_interval_ms,
            camera=CameraConstraints(
                facing_mode=self._settings.camera_facing_mode,
                width=self._settings.camera_width,
                height=self._settings.camera_height,
            ),
        )

    def decode(self, data: DecodeStillRequest) -> DecodeStillResponse:
        frame = decode_frame(data.image, self._settings.max_frame_bytes)
        if frame is None:
            raise exceptions.invalid_image()

        items = [
            DetectionItem(
                text=detection.text,
                symbology=detection.symbology,
                isbn=normalize_isbn(detection.text),
            )
            for detection in decode_still(frame)
        ]
        isbn = next((item.isbn for item in items if item.isbn), None)

        logger.info(f"Still decode: {len(items)} barcode(s), isbn={isbn}")
        return DecodeStillResponse(isbn=isbn, detections=items)


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def get_capabilities():
    """Report native decoder availability and scan timing."""
    return ScannerController().capabilities()


@router.post("/decode", response_model=DecodeStillResponse)
def decode_image(data: DecodeStillRequest):
    """
    Decode a single uploaded image.

    The first barcode that normalizes to an ISBN is returned as ``isbn``;
    every supported barcode is listed in ``detections``.
    """
    return ScannerController().decode(data)
