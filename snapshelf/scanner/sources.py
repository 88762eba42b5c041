"""
==============================================================================
Video Sources
==============================================================================

Live camera feeds the decode strategies read frames from.

A VideoProvider hands out a VideoSource through ``acquire()``. Acquisition is
where the scan session waits for the camera: the server camera opening, or a
browser user answering the camera permission prompt.

Sources:
--------
- CameraSource: server-attached camera via OpenCV VideoCapture
- FrameFeedSource: frames pushed by a browser over the scan WebSocket

==============================================================================
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, Set

import cv2
import numpy as np

from snapshelf.core import exceptions


# Module logger
logger = logging.getLogger(__name__)


class VideoSource(ABC):
    """
    Handle to a live video feed.

    ``read()`` may be called from a worker thread; implementations serialize
    access internally.
    """

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        """
        Return the current frame, or None if no new frame is available.

        Raises:
            CameraError: CAMERA_LOST if the device went away
        """

    @abstractmethod
    def release(self) -> None:
        """Release the feed. Safe to call more than once."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check if the feed is still delivering frames."""


class VideoProvider(ABC):
    """Source of VideoSource handles for scan sessions."""

    @abstractmethod
    async def acquire(self) -> VideoSource:
        """
        Wait for camera access and return an open video source.

        Raises:
            CameraError: permission denied, no device, busy or timeout
        """


# =============================================================================
# SERVER CAMERA
# =============================================================================

class CameraSource(VideoSource):
    """
    OpenCV VideoCapture wrapper.

    A bounded number of consecutive failed grabs is tolerated before the
    device is reported lost.
    """

    MAX_FAILED_READS = 30

    def __init__(self, capture: cv2.VideoCapture, index: int) -> None:
        self._capture = capture
        self._index = index
        self._lock = threading.Lock()
        self._failed_reads = 0
        self._released = False

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._released:
                return None

            ok, frame = self._capture.read()
            if ok and frame is not None:
                self._failed_reads = 0
                return frame

            self._failed_reads += 1
            if self._failed_reads >= self.MAX_FAILED_READS:
                raise exceptions.camera_lost(
                    f"Camera {self._index} stopped delivering frames"
                )
            return None

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            self._capture.release()
        CameraProvider.mark_released(self._index)
        logger.info(f"📷 Camera {self._index} released")

    @property
    def is_open(self) -> bool:
        return not self._released

    def __repr__(self) -> str:
        return f"CameraSource(index={self._index}, open={self.is_open})"


class CameraProvider(VideoProvider):
    """
    Opens the server-attached camera.

    Only one session may hold a given camera index at a time; a second
    acquisition fails with CAMERA_BUSY.

    Example:
        >>> provider = CameraProvider(index=0)
        >>> source = await provider.acquire()
        >>> frame = source.read()
        >>> source.release()
    """

    _in_use: Set[int] = set()
    _in_use_lock = threading.Lock()

    def __init__(
        self,
        index: int = 0,
        width: int = 1280,
        height: int = 720,
        open_timeout: float = 10.0
    ) -> None:
        self._index = index
        self._width = width
        self._height = height
        self._open_timeout = open_timeout

    @classmethod
    def mark_released(cls, index: int) -> None:
        """Return a camera index to the pool."""
        with cls._in_use_lock:
            cls._in_use.discard(index)

    def _open(self) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(self._index)
        if not capture.isOpened():
            capture.release()
            raise exceptions.camera_not_found(self._index)

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        return capture

    async def acquire(self) -> VideoSource:
        with self._in_use_lock:
            if self._index in self._in_use:
                raise exceptions.camera_busy(self._index)
            self._in_use.add(self._index)

        logger.info(f"📷 Opening camera {self._index}")
        opening = asyncio.ensure_future(asyncio.to_thread(self._open))

        try:
            capture = await asyncio.wait_for(
                asyncio.shield(opening), timeout=self._open_timeout
            )
        except asyncio.TimeoutError:
            # The open call cannot be interrupted; release whatever it yields.
            opening.add_done_callback(self._discard_late_capture)
            self.mark_released(self._index)
            raise exceptions.camera_timeout(self._open_timeout)
        except asyncio.CancelledError:
            opening.add_done_callback(self._discard_late_capture)
            self.mark_released(self._index)
            raise
        except Exception:
            self.mark_released(self._index)
            raise

        logger.info(f"✅ Camera {self._index} ready")
        return CameraSource(capture, self._index)

    @staticmethod
    def _discard_late_capture(future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        future.result().release()


# =============================================================================
# BROWSER FRAME FEED
# =============================================================================

def decode_frame(encoded: str, max_bytes: Optional[int] = None) -> Optional[np.ndarray]:
    """
    Decode a base64 JPEG/PNG frame (optionally a data URL) into a BGR image.

    Returns:
        The image, or None if the payload is not a decodable image
    """
    if not encoded:
        return None

    if encoded.startswith("data:"):
        _, _, encoded = encoded.partition(",")

    try:
        img_data = base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError):
        return None

    if max_bytes is not None and len(img_data) > max_bytes:
        logger.warning(f"Frame rejected: {len(img_data)} bytes exceeds {max_bytes}")
        return None

    nparr = np.frombuffer(img_data, np.uint8)
    if nparr.size == 0:
        return None
    return cv2.imdecode(nparr, cv2.IMREAD_COLOR)


class FrameFeedSource(VideoSource):
    """
    Latest-frame buffer fed by a browser client.

    Each pushed frame is returned by ``read()`` once; older unread frames are
    overwritten.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._closed = False

    def push(self, frame: np.ndarray) -> None:
        """Replace the buffered frame."""
        with self._lock:
            if not self._closed:
                self._frame = frame

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            frame, self._frame = self._frame, None
            return frame

    def release(self) -> None:
        with self._lock:
            self._closed = True
            self._frame = None

    @property
    def is_open(self) -> bool:
        return not self._closed


class BrowserFrameProvider(VideoProvider):
    """
    Video provider backed by frames a browser sends over the scan WebSocket.

    Acquisition completes when a decodable frame arrives (the user granted
    camera access), fails with CAMERA_PERMISSION_DENIED when the client reports
    a denial, and with CAMERA_TIMEOUT when nothing arrives in time.

    While a feed is open, frames go to that feed only. A frame counts toward
    the next acquisition only if it arrived after the previous feed was
    released, so a rescan never re-reads a frame from the last session.
    """

    def __init__(self, wait_timeout: float = 30.0, max_frame_bytes: Optional[int] = None) -> None:
        self._wait_timeout = wait_timeout
        self._max_frame_bytes = max_frame_bytes
        self._answered = asyncio.Event()
        self._denied = False
        self._latest: Optional[np.ndarray] = None
        self._source: Optional[FrameFeedSource] = None

    def submit_frame(self, encoded: str) -> bool:
        """
        Accept an encoded frame from the client.

        Returns:
            True if the frame decoded and was buffered
        """
        frame = decode_frame(encoded, self._max_frame_bytes)
        if frame is None:
            return False

        if self._source is not None and self._source.is_open:
            self._source.push(frame)
            return True

        self._latest = frame
        self._denied = False
        self._answered.set()
        return True

    def deny(self) -> None:
        """Record that the client refused camera access."""
        self._denied = True
        self._latest = None
        self._answered.set()

    async def acquire(self) -> VideoSource:
        if self._denied:
            self._answered.clear()
            self._denied = False

        if not self._answered.is_set():
            try:
                await asyncio.wait_for(self._answered.wait(), timeout=self._wait_timeout)
            except asyncio.TimeoutError:
                raise exceptions.camera_timeout(self._wait_timeout)

        frame, self._latest = self._latest, None
        self._answered.clear()

        if self._denied or frame is None:
            self._denied = False
            raise exceptions.camera_permission_denied()

        source = FrameFeedSource()
        source.push(frame)
        self._source = source
        return source
