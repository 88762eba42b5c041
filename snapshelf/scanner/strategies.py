"""
==============================================================================
Decode Strategies
==============================================================================

Pluggable barcode readers behind one interface.

Strategies:
-----------
- NativeBarcodeStrategy: OpenCV's built-in barcode detector
  (``cv2.barcode.BarcodeDetector``). Runs on its own worker thread and pushes
  detections through a callback into a queue; ``poll()`` drains the queue.
- ZbarStrategy: portable ZBar decoder via pyzbar. Pull based; every
  ``poll()`` grabs the current frame and decodes it off the event loop.

Whether the native detector exists depends on how OpenCV was built, so the
choice is made at runtime by ``probe_decoder_capability()``.

Symbologies:
-----------
EAN-13, EAN-8, UPC-A, UPC-E, CODE-128. Other formats are dropped.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import cv2
import numpy as np
from pyzbar.pyzbar import ZBarSymbol, decode

from snapshelf.core.exceptions import CameraError, StrategyInitError, StrategyRuntimeError
from snapshelf.scanner.models import DecoderCapability, RawDetection, Symbology
from snapshelf.scanner.sources import VideoSource


# Module logger
logger = logging.getLogger(__name__)


ZBAR_SYMBOLS = [
    ZBarSymbol.EAN13,
    ZBarSymbol.EAN8,
    ZBarSymbol.UPCA,
    ZBarSymbol.UPCE,
    ZBarSymbol.CODE128,
]


# cv2.barcode type codes before OpenCV 4.8
_LEGACY_TYPE_CODES = {1: "EAN_8", 2: "EAN_13", 3: "UPC_A", 4: "UPC_E"}


def probe_decoder_capability() -> DecoderCapability:
    """
    Check whether this OpenCV build ships the native barcode detector.

    Returns:
        DecoderCapability.NATIVE_AVAILABLE or NATIVE_UNAVAILABLE
    """
    module = getattr(cv2, "barcode", None)
    if module is not None and hasattr(module, "BarcodeDetector"):
        return DecoderCapability.NATIVE_AVAILABLE
    return DecoderCapability.NATIVE_UNAVAILABLE


def to_gray(frame: np.ndarray) -> np.ndarray:
    """Convert a BGR frame to grayscale; grayscale frames pass through."""
    if frame.ndim == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    return frame


class DecodeStrategy(ABC):
    """
    Barcode reading algorithm over a live video source.

    Lifecycle:
        start(source) -> poll() ... poll() -> stop()
    """

    name: str = "strategy"

    @abstractmethod
    def start(self, source: VideoSource) -> None:
        """
        Begin reading from source. Idempotent while started.

        Raises:
            StrategyInitError: If the decoder cannot be created
        """

    @abstractmethod
    async def poll(self) -> List[RawDetection]:
        """
        Collect detections for this tick, in decoder order.

        Single-frame decode failures yield an empty list.

        Raises:
            CameraError: If the video device was lost
            StrategyRuntimeError: If the decoder itself stopped working
        """

    @abstractmethod
    def stop(self) -> None:
        """Release decoder resources. Safe to call more than once."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the strategy is started."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(running={self.is_running})"


# =============================================================================
# NATIVE (OpenCV) STRATEGY
# =============================================================================

class NativeBarcodeStrategy(DecodeStrategy):
    """
    OpenCV barcode detector on a dedicated worker thread.

    The worker reads frames, decodes them, and hands every supported result
    to ``_on_detected`` which queues it for the next ``poll()``.

    Attributes:
        frame_interval: Seconds between worker decode attempts
    """

    name = "native"

    def __init__(
        self,
        frame_interval: float = 0.1,
        detector_factory: Optional[Callable[[], object]] = None
    ) -> None:
        self._frame_interval = frame_interval
        self._detector_factory = detector_factory
        self._detections: "queue.Queue[RawDetection]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._source: Optional[VideoSource] = None
        self._failure: Optional[BaseException] = None

    def _create_detector(self):
        if self._detector_factory is not None:
            return self._detector_factory()
        if probe_decoder_capability() is DecoderCapability.NATIVE_UNAVAILABLE:
            raise RuntimeError("cv2.barcode is not available in this OpenCV build")
        return cv2.barcode.BarcodeDetector()

    def start(self, source: VideoSource) -> None:
        if self.is_running:
            return

        try:
            detector = self._create_detector()
        except Exception as e:
            raise StrategyInitError(self.name, str(e)) from e

        self._source = source
        self._failure = None
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(detector, source),
            name="native-barcode-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info("🔎 Native barcode detector started")

    def _run(self, detector, source: VideoSource) -> None:
        try:
            while not self._stop_event.is_set():
                frame = source.read()
                if frame is not None:
                    for detection in self._decode(detector, frame):
                        self._on_detected(detection)
                self._stop_event.wait(self._frame_interval)
        except Exception as e:
            # Surfaced by the next poll()
            self._failure = e
            logger.error(f"Native detector worker failed: {e}")

    def _decode(self, detector, frame: np.ndarray) -> List[RawDetection]:
        # OpenCV >= 4.8 reports type names; the 4.5-4.7 contrib API returned
        # the same tuple from detectAndDecode with integer type codes.
        if hasattr(detector, "detectAndDecodeWithType"):
            detect = detector.detectAndDecodeWithType
        else:
            detect = detector.detectAndDecode

        try:
            ok, decoded_info, decoded_type, _points = detect(frame)
        except cv2.error as e:
            logger.debug(f"Native decode miss: {e}")
            return []

        if not ok:
            return []

        detections = []
        for text, type_name in zip(decoded_info or (), decoded_type or ()):
            if isinstance(type_name, (int, np.integer)):
                type_name = _LEGACY_TYPE_CODES.get(int(type_name))
            symbology = Symbology.from_decoder(type_name)
            if not text or symbology is None:
                continue
            detections.append(RawDetection(text=text, symbology=symbology))
        return detections

    def _on_detected(self, detection: RawDetection) -> None:
        self._detections.put(detection)

    async def poll(self) -> List[RawDetection]:
        if self._failure is not None:
            failure = self._failure
            if isinstance(failure, CameraError):
                raise failure
            raise StrategyRuntimeError(self.name, str(failure))

        detections = []
        while True:
            try:
                detections.append(self._detections.get_nowait())
            except queue.Empty:
                break
        return detections

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self._frame_interval * 5))
            if thread.is_alive():
                logger.warning("Native detector worker did not exit in time")

        while True:
            try:
                self._detections.get_nowait()
            except queue.Empty:
                break

        if thread is not None:
            logger.info("🛑 Native barcode detector stopped")
        self._source = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


# =============================================================================
# ZBAR (pyzbar) STRATEGY
# =============================================================================

class ZbarStrategy(DecodeStrategy):
    """
    ZBar decoder, one frame per poll.

    Decoding runs in a worker thread via ``asyncio.to_thread`` so the event
    loop stays responsive.
    """

    name = "zbar"

    def __init__(self, symbols: Optional[List[ZBarSymbol]] = None) -> None:
        self._symbols = symbols or ZBAR_SYMBOLS
        self._source: Optional[VideoSource] = None

    def start(self, source: VideoSource) -> None:
        if self._source is not None:
            return
        self._source = source
        logger.info("🔎 ZBar decoder started")

    def decode_image(self, frame: Optional[np.ndarray]) -> List[RawDetection]:
        """
        Decode one image without a running source.

        Decoder errors and empty images yield an empty list.
        """
        if frame is None or frame.size == 0:
            return []

        try:
            barcodes = decode(to_gray(frame), symbols=self._symbols)
        except Exception as e:
            logger.debug(f"ZBar decode miss: {e}")
            return []

        detections = []
        for barcode in barcodes:
            symbology = Symbology.from_decoder(barcode.type)
            if symbology is None:
                continue
            try:
                text = barcode.data.decode("utf-8")
            except UnicodeDecodeError:
                text = barcode.data.decode("utf-8", errors="ignore")
            if text:
                detections.append(RawDetection(text=text, symbology=symbology))
        return detections

    def _read_and_decode(self, source: VideoSource) -> List[RawDetection]:
        return self.decode_image(source.read())

    async def poll(self) -> List[RawDetection]:
        source = self._source
        if source is None:
            return []
        return await asyncio.to_thread(self._read_and_decode, source)

    def stop(self) -> None:
        if self._source is not None:
            logger.info("🛑 ZBar decoder stopped")
        self._source = None

    @property
    def is_running(self) -> bool:
        return self._source is not None


def decode_still(frame: np.ndarray) -> List[RawDetection]:
    """
    Decode a single still image with ZBar.

    Used for one-off uploads where no live session is running.
    """
    return ZbarStrategy().decode_image(frame)


__all__ = [
    "DecodeStrategy",
    "NativeBarcodeStrategy",
    "ZbarStrategy",
    "ZBAR_SYMBOLS",
    "decode_still",
    "probe_decoder_capability",
]
