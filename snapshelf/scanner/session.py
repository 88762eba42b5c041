"""
==============================================================================
Scan Session Controller
==============================================================================

Owns one camera feed and one decode strategy at a time, runs the periodic
detection loop, and emits at most one normalized ISBN per activation.

Lifecycle:
----------
    controller = ScanSessionController(provider, on_identifier_detected)
    await controller.activate()     # IDLE/STOPPED -> STARTING -> SCANNING
    ...                             # loop polls every scan_interval_ms
    await controller.cancel()       # or: detection -> LOCKED -> STOPPED
    await controller.close()        # teardown, always releases the camera

Strategy Selection:
------------------
1. Probe the platform (DecoderCapability)
2. Start the native detector if available
3. On any start failure, start the ZBar fallback on the same feed
4. If the native detector fails later while scanning, switch to the fallback
5. If nothing starts: CameraError(DECODER_UNAVAILABLE)

Ordering:
---------
Every activation gets a generation number. cancel() retires the current
generation before it awaits anything, so a poll that resolves afterwards is
discarded, and an identifier already locked but not yet delivered is
dropped. When one tick yields several detections, the first one in the
order the strategy reported them that normalizes to an ISBN wins.

==============================================================================
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import suppress
from typing import Awaitable, Callable, List, Optional, Union

from snapshelf.config import get_settings
from snapshelf.core import exceptions
from snapshelf.core.exceptions import AppException, CameraError, InvalidSessionState
from snapshelf.scanner.models import DecoderCapability, RawDetection, ScanSessionState
from snapshelf.scanner.normalizer import normalize_isbn
from snapshelf.scanner.sources import VideoProvider, VideoSource
from snapshelf.scanner.strategies import (
    DecodeStrategy,
    NativeBarcodeStrategy,
    ZbarStrategy,
    probe_decoder_capability,
)


# Module logger
logger = logging.getLogger(__name__)


StrategyFactory = Callable[[], DecodeStrategy]
IdentifierCallback = Callable[[str], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[AppException], Union[None, Awaitable[None]]]


class ScanSessionController:
    """
    Camera-driven ISBN scanning session.

    Attributes:
        state: Current ScanSessionState
        active_strategy: Name of the running decode strategy, if any
        capability: Result of the last native decoder probe
        last_identifier: Last ISBN emitted by this controller

    Example:
        >>> async def on_isbn(isbn: str) -> None:
        ...     print("captured", isbn)
        >>> controller = ScanSessionController(CameraProvider(), on_isbn)
        >>> async with controller:
        ...     await controller.activate()
        ...     await asyncio.sleep(10)
    """

    def __init__(
        self,
        video_provider: VideoProvider,
        on_identifier_detected: IdentifierCallback,
        *,
        on_error: Optional[ErrorCallback] = None,
        native_factory: Optional[StrategyFactory] = None,
        fallback_factory: Optional[StrategyFactory] = None,
        capability_probe: Callable[[], DecoderCapability] = probe_decoder_capability,
        native_enabled: Optional[bool] = None,
        poll_interval: Optional[float] = None,
        cancel_join_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize a controller in the IDLE state.

        Args:
            video_provider: Where the camera feed comes from
            on_identifier_detected: Called once with the accepted ISBN
            on_error: Called when a running session dies (camera lost)
            native_factory: Builds the preferred strategy
            fallback_factory: Builds the portable fallback strategy
            capability_probe: Runtime check for the native detector
            native_enabled: Set False to skip the native detector
            poll_interval: Detection loop period in seconds
            cancel_join_timeout: Max wait for an in-flight poll on cancel
        """
        settings = get_settings()

        self._video_provider = video_provider
        self._on_identifier_detected = on_identifier_detected
        self._on_error = on_error
        self._native_factory = native_factory or (
            lambda: NativeBarcodeStrategy(frame_interval=settings.native_frame_interval_seconds)
        )
        self._fallback_factory = fallback_factory or ZbarStrategy
        self._capability_probe = capability_probe
        self._native_enabled = (
            settings.native_decoder_enabled if native_enabled is None else native_enabled
        )
        self._poll_interval = (
            settings.scan_interval_seconds if poll_interval is None else poll_interval
        )
        self._cancel_join_timeout = (
            settings.cancel_join_timeout_seconds
            if cancel_join_timeout is None else cancel_join_timeout
        )

        self._state = ScanSessionState.IDLE
        self._generation = 0
        self._halt = asyncio.Event()
        self._source: Optional[VideoSource] = None
        self._strategy: Optional[DecodeStrategy] = None
        self._using_fallback = False
        self._loop_task: Optional[asyncio.Task] = None
        self._capability: Optional[DecoderCapability] = None
        self._last_identifier: Optional[str] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> ScanSessionState:
        return self._state

    @property
    def active_strategy(self) -> Optional[str]:
        return self._strategy.name if self._strategy is not None else None

    @property
    def capability(self) -> Optional[DecoderCapability]:
        return self._capability

    @property
    def last_identifier(self) -> Optional[str]:
        return self._last_identifier

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def activate(self) -> None:
        """
        Acquire the camera, pick a decode strategy and start scanning.

        Raises:
            InvalidSessionState: If not IDLE or STOPPED
            CameraError: Camera unavailable, or no decoder could start.
                The session is left STOPPED and is not retried.
        """
        if not self._state.can_activate:
            raise InvalidSessionState(self._state.value, "idle or stopped")

        self._generation += 1
        generation = self._generation
        self._halt = asyncio.Event()
        self._using_fallback = False
        self._set_state(ScanSessionState.STARTING)

        try:
            source = await self._video_provider.acquire()
        except BaseException as e:
            if not self._is_current(generation):
                if isinstance(e, Exception):
                    logger.info(f"Camera request finished after cancel: {e}")
                    return
                raise
            self._set_state(ScanSessionState.STOPPED)
            if isinstance(e, CameraError):
                logger.warning(f"⚠️ Camera unavailable: {e.message} ({e.code})")
            raise

        if not self._is_current(generation):
            logger.info("Scan cancelled while waiting for the camera, releasing it")
            await self._release_source(source)
            return

        self._source = source

        try:
            self._strategy = self._start_strategy(source)
        except CameraError as e:
            logger.error(f"❌ {e.message}")
            await self._release_resources()
            self._set_state(ScanSessionState.STOPPED)
            raise

        self._set_state(ScanSessionState.SCANNING)
        self._loop_task = asyncio.create_task(
            self._detection_loop(generation),
            name=f"scan-loop-{generation}",
        )
        logger.info(
            f"📷 Scanning started (decoder: {self._strategy.name}, "
            f"every {self._poll_interval * 1000:.0f}ms)"
        )

    async def cancel(self) -> None:
        """
        Stop scanning without emitting an identifier.

        A LOCKED session is still releasing resources; cancelling it drops
        the identifier it was about to deliver. From IDLE or STOPPED this is
        a no-op.
        """
        if not self._state.can_cancel:
            logger.debug(f"cancel() ignored in state {self._state}")
            return

        # Retire the generation first; anything in flight is now stale.
        self._generation += 1
        self._halt.set()

        if self._state is ScanSessionState.STARTING:
            self._set_state(ScanSessionState.STOPPED)
            logger.info("🛑 Scan cancelled before the camera was ready")
            return

        await self._join_loop()
        await self._release_resources()
        self._set_state(ScanSessionState.STOPPED)
        logger.info("🛑 Scan cancelled")

    async def close(self) -> None:
        """
        Tear the controller down, releasing the camera on every path.

        Safe to call in any state and more than once.
        """
        if self._state.can_cancel:
            await self.cancel()

        await self._join_loop()

        if self._source is not None or self._strategy is not None:
            await self._release_resources()

        if self._state is ScanSessionState.LOCKED:
            self._set_state(ScanSessionState.STOPPED)

    async def __aenter__(self) -> ScanSessionController:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # STRATEGY SELECTION
    # =========================================================================

    def _candidates(self, skip_native: bool) -> List[StrategyFactory]:
        candidates: List[StrategyFactory] = []

        if not skip_native and self._native_enabled:
            self._capability = self._capability_probe()
            if self._capability is DecoderCapability.NATIVE_AVAILABLE:
                candidates.append(self._native_factory)
            else:
                logger.info("Native barcode detector not available on this platform")

        candidates.append(self._fallback_factory)
        return candidates

    def _start_strategy(self, source: VideoSource, skip_native: bool = False) -> DecodeStrategy:
        """
        Start the first strategy that initializes.

        Raises:
            CameraError: DECODER_UNAVAILABLE if none could start
        """
        candidates = self._candidates(skip_native)
        tried = []

        for index, factory in enumerate(candidates):
            strategy = None
            try:
                strategy = factory()
                strategy.start(source)
            except Exception as e:
                name = strategy.name if strategy is not None else getattr(factory, "__name__", "strategy")
                tried.append(name)
                if strategy is not None:
                    with suppress(Exception):
                        strategy.stop()
                logger.warning(f"⚠️ Decoder '{name}' failed to start: {e}")
                continue

            self._using_fallback = index == len(candidates) - 1
            return strategy

        raise exceptions.decoder_unavailable(tried)

    async def _switch_to_fallback(self, generation: int, error: Exception) -> bool:
        """
        Replace a failed native strategy with the fallback.

        Returns:
            True if scanning can continue
        """
        failed = self._strategy
        name = failed.name if failed is not None else "strategy"

        if self._using_fallback:
            logger.error(f"❌ Fallback decoder '{name}' failed: {error}")
            await self._fail(generation, exceptions.decoder_unavailable([name]))
            return False

        logger.warning(f"⚠️ Decoder '{name}' failed while scanning ({error}), switching to fallback")
        self._strategy = None
        if failed is not None:
            await self._stop_strategy(failed)

        if not self._is_scanning(generation):
            return False

        try:
            self._strategy = self._start_strategy(self._source, skip_native=True)
        except CameraError as e:
            await self._fail(generation, e)
            return False

        logger.info(f"🔁 Now scanning with '{self._strategy.name}'")
        return True

    # =========================================================================
    # DETECTION LOOP
    # =========================================================================

    async def _detection_loop(self, generation: int) -> None:
        """Poll the active strategy until an ISBN is accepted or the session ends."""
        try:
            while self._is_scanning(generation):
                try:
                    detections = await self._strategy.poll()
                except CameraError as e:
                    if self._is_scanning(generation):
                        await self._fail(generation, e)
                    return
                except Exception as e:
                    if not self._is_scanning(generation):
                        return
                    if not await self._switch_to_fallback(generation, e):
                        return
                    continue

                if not self._is_scanning(generation):
                    if detections:
                        logger.debug(f"Discarded {len(detections)} detection(s) from a stopped scan")
                    return

                accepted = self._first_identifier(detections)
                if accepted is not None:
                    await self._accept(generation, *accepted)
                    return

                await self._sleep()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Detection loop crashed: {e}")
            if self._is_scanning(generation):
                await self._fail(generation, exceptions.internal_error("Scanner stopped unexpectedly"))

    def _first_identifier(self, detections: List[RawDetection]):
        for detection in detections:
            identifier = normalize_isbn(detection.text)
            if identifier is not None:
                return identifier, detection
            logger.debug(f"Ignored {detection.symbology} code {detection.text!r}")
        return None

    async def _accept(self, generation: int, identifier: str, detection: RawDetection) -> None:
        self._set_state(ScanSessionState.LOCKED)
        decoder = self.active_strategy

        await self._release_resources()
        if not self._is_current(generation):
            logger.info(f"ISBN {identifier} dropped, scan was cancelled while locked")
            return

        self._set_state(ScanSessionState.STOPPED)
        self._last_identifier = identifier
        logger.info(f"✅ ISBN captured: {identifier} ({detection.symbology} via {decoder})")
        await self._invoke(self._on_identifier_detected, identifier)

    async def _fail(self, generation: int, error: AppException) -> None:
        logger.error(f"❌ Scan stopped: {error.message} ({error.code})")
        await self._release_resources()
        if self._is_current(generation):
            self._set_state(ScanSessionState.STOPPED)
            if self._on_error is not None:
                await self._invoke(self._on_error, error)

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._halt.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass

    # =========================================================================
    # RESOURCE MANAGEMENT
    # =========================================================================

    async def _join_loop(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._cancel_join_timeout)
        except asyncio.TimeoutError:
            logger.warning("Detection loop did not stop in time, cancelling it")
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _release_resources(self) -> None:
        strategy, self._strategy = self._strategy, None
        source, self._source = self._source, None

        try:
            if strategy is not None:
                await self._stop_strategy(strategy)
        finally:
            if source is not None:
                await self._release_source(source)

    async def _stop_strategy(self, strategy: DecodeStrategy) -> None:
        try:
            await asyncio.to_thread(strategy.stop)
        except Exception as e:
            logger.error(f"Failed to stop decoder '{strategy.name}': {e}")

    async def _release_source(self, source: VideoSource) -> None:
        try:
            await asyncio.to_thread(source.release)
        except Exception as e:
            logger.error(f"Failed to release video source: {e}")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _is_scanning(self, generation: int) -> bool:
        return self._is_current(generation) and self._state is ScanSessionState.SCANNING

    def _set_state(self, state: ScanSessionState) -> None:
        if state is not self._state:
            logger.debug(f"Scan session: {self._state} -> {state}")
            self._state = state

    @staticmethod
    async def _invoke(callback: Callable, value) -> None:
        try:
            result = callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Scan session callback failed: {e}")

    def __repr__(self) -> str:
        return (
            f"ScanSessionController(state={self._state.value!r}, "
            f"strategy={self.active_strategy!r})"
        )
