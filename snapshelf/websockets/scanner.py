"""
==============================================================================
Scanner WebSocket Module
==============================================================================

Live ISBN scanning over a WebSocket, one ScanSessionController per
connection.

Protocol:
---------
1. Client connects to /ws/scan
2. Client sends {"type": "init", "source": "browser" | "camera"}
3. Server replies {"type": "ready", ...} with camera constraints and starts
   a scan session
4. Browser source: client streams {"type": "frame", "frame": <base64>}
   (or {"type": "camera_denied"} if the user refused camera access)
5. Server sends {"type": "state", ...} on every transition and
   {"type": "detected", "isbn": ...} once per session
6. Client may send {"type": "cancel"}, {"type": "rescan"} or {"type": "stop"}

Errors are sent as {"type": "error", "code": ..., "message": ...}.

==============================================================================
"""

import asyncio
import logging
from contextlib import suppress
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from snapshelf.config import Settings, get_settings
from snapshelf.core.exceptions import AppException, CameraError, InvalidSessionState
from snapshelf.scanner.session import ScanSessionController
from snapshelf.scanner.sources import BrowserFrameProvider, CameraProvider, VideoProvider


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter()


SOURCE_BROWSER = "browser"
SOURCE_CAMERA = "camera"


class ScanWebSocketHandler:
    """
    Handler for one scanning WebSocket connection.

    Manages the lifecycle of a scanning session including:
    - Video provider selection (browser frames or server camera)
    - Session activation, cancel and rescan
    - Detection and error reporting
    """

    def __init__(self, websocket: WebSocket, settings: Optional[Settings] = None):
        self._websocket = websocket
        self._settings = settings or get_settings()
        self._send_lock = asyncio.Lock()
        self._source_kind: Optional[str] = None
        self._provider: Optional[VideoProvider] = None
        self._controller: Optional[ScanSessionController] = None
        self._activation: Optional[asyncio.Task] = None

    # =========================================================================
    # OUTGOING MESSAGES
    # =========================================================================

    async def _send(self, payload: dict) -> None:
        try:
            async with self._send_lock:
                await self._websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropped {payload.get('type')} message: {e}")

    async def send_error(self, message: str, code: str = "ERROR") -> None:
        """Send error message to client."""
        await self._send({"type": "error", "code": code, "message": message})

    async def send_state(self) -> None:
        """Send the current session state."""
        controller = self._controller
        await self._send({
            "type": "state",
            "state": controller.state.value if controller else "idle",
            "strategy": controller.active_strategy if controller else None,
        })

    async def _on_detected(self, isbn: str) -> None:
        await self._send({"type": "detected", "isbn": isbn})
        await self.send_state()

    async def _on_error(self, error: AppException) -> None:
        await self.send_error(error.message, error.code)
        await self.send_state()

    # =========================================================================
    # SESSION CONTROL
    # =========================================================================

    def _build_provider(self, source: str) -> VideoProvider:
        if source == SOURCE_CAMERA:
            return CameraProvider(
                index=self._settings.camera_index,
                width=self._settings.camera_width,
                height=self._settings.camera_height,
                open_timeout=self._settings.camera_open_timeout_seconds,
            )
        return BrowserFrameProvider(
            wait_timeout=self._settings.frame_wait_timeout_seconds,
            max_frame_bytes=self._settings.max_frame_bytes,
        )

    async def handle_init(self, data: dict) -> bool:
        """Handle init message from client."""
        if data.get("type") != "init":
            await self.send_error("First message must be init", "INVALID_MESSAGE")
            return False

        source = data.get("source", SOURCE_BROWSER)
        if source not in (SOURCE_BROWSER, SOURCE_CAMERA):
            await self.send_error(f"Unknown source: {source}", "INVALID_SOURCE")
            return False

        self._source_kind = source
        self._provider = self._build_provider(source)
        self._controller = ScanSessionController(
            self._provider,
            self._on_detected,
            on_error=self._on_error,
        )

        logger.info(f"Init: source={source}")
        await self._send({
            "type": "ready",
            "source": source,
            "scan_interval_ms": self._settings.scan_interval_ms,
            "constraints": {
                "facingMode": self._settings.camera_facing_mode,
                "width": self._settings.camera_width,
                "height": self._settings.camera_height,
            },
        })
        return True

    async def _activate(self) -> None:
        try:
            await self._controller.activate()
        except (CameraError, InvalidSessionState) as e:
            await self.send_error(e.message, e.code)
        await self.send_state()

    async def start_scan(self) -> None:
        """Start a scan session in the background."""
        if not self._controller.state.can_activate:
            logger.debug(f"Scan already running ({self._controller.state})")
            return
        # A pending activation here belongs to a cancelled scan
        await self._drop_activation()

        self._activation = asyncio.create_task(self._activate())
        # Let activate() reach STARTING before reporting it
        await asyncio.sleep(0)
        await self.send_state()

    def handle_frame(self, data: dict) -> None:
        """Handle frame message from a browser client."""
        if not isinstance(self._provider, BrowserFrameProvider):
            return
        if not self._provider.submit_frame(data.get("frame") or ""):
            logger.debug("Ignored undecodable frame")

    async def handle_cancel(self) -> None:
        """Cancel the running scan, if any."""
        await self._controller.cancel()
        await self._drop_activation()
        await self.send_state()

    async def _drop_activation(self) -> None:
        activation, self._activation = self._activation, None
        if activation is not None and not activation.done():
            activation.cancel()
            with suppress(asyncio.CancelledError):
                await activation

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def run(self) -> None:
        """Main handler loop."""
        await self._websocket.accept()
        logger.info("📱 Scanner WebSocket connected")

        try:
            init_data = await self._websocket.receive_json()
            if not await self.handle_init(init_data):
                await self._websocket.close()
                return

            await self.start_scan()

            while True:
                data = await self._websocket.receive_json()
                message_type = data.get("type")

                if message_type == "frame":
                    self.handle_frame(data)

                elif message_type == "camera_denied":
                    if isinstance(self._provider, BrowserFrameProvider):
                        self._provider.deny()

                elif message_type == "cancel":
                    await self.handle_cancel()

                elif message_type == "rescan":
                    await self.start_scan()

                elif message_type == "stop":
                    logger.info("🛑 Client requested stop")
                    break

                else:
                    await self.send_error(f"Unknown message type: {message_type}", "INVALID_MESSAGE")

        except WebSocketDisconnect:
            logger.info("📱 Client disconnected")
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            await self.send_error(str(e))
        finally:
            await self.close()
            logger.info("✅ Scanner WebSocket closed")

    async def close(self) -> None:
        """Tear down the session and any pending activation."""
        if self._controller is not None:
            await self._controller.close()
        await self._drop_activation()


@router.websocket("/ws/scan")
async def websocket_scan(websocket: WebSocket):
    """Live ISBN scanning via WebSocket."""
    handler = ScanWebSocketHandler(websocket)
    await handler.run()
