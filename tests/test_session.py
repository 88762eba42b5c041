"""
==============================================================================
Scan Session Controller Tests
==============================================================================

Drives the controller with scripted strategies and providers; each test runs
its own event loop through asyncio.run.

==============================================================================
"""

import asyncio
import base64
import time
from collections import namedtuple
from typing import List, Optional

import cv2
import numpy as np
import pytest

from snapshelf.core import exceptions
from snapshelf.core.exceptions import CameraError, InvalidSessionState, StrategyInitError, StrategyRuntimeError
from snapshelf.scanner.models import DecoderCapability, RawDetection, ScanSessionState, Symbology
from snapshelf.scanner.session import ScanSessionController
from snapshelf.scanner import strategies
from snapshelf.scanner.sources import BrowserFrameProvider, VideoProvider, VideoSource
from snapshelf.scanner.strategies import DecodeStrategy, ZbarStrategy


# ============================================================================
# FAKES
# ============================================================================

def det(text: str, symbology: Symbology = Symbology.EAN_13) -> RawDetection:
    return RawDetection(text=text, symbology=symbology)


Decoded = namedtuple("Decoded", "data type")


def png_frame() -> str:
    ok, buffer = cv2.imencode(".png", np.zeros((16, 16, 3), dtype=np.uint8))
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


class FakeSource(VideoSource):
    def __init__(self):
        self.released = False

    def read(self):
        return None

    def release(self):
        self.released = True

    @property
    def is_open(self):
        return not self.released


class FakeProvider(VideoProvider):
    """Hands out FakeSources, optionally after a gate opens or with an error."""

    def __init__(self, error: Optional[Exception] = None, gated: bool = False):
        self.error = error
        self.gated = gated
        self.gate: Optional[asyncio.Event] = None
        self.sources: List[FakeSource] = []

    async def acquire(self):
        if self.gated:
            self.gate = self.gate or asyncio.Event()
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        source = FakeSource()
        self.sources.append(source)
        return source


class ScriptedStrategy(DecodeStrategy):
    """Returns one scripted batch of detections per poll."""

    def __init__(self, name, batches=None, start_error=None, poll_error=None, gated=False):
        self.name = name
        self.batches = list(batches or [])
        self.start_error = start_error
        self.poll_error = poll_error
        self.gated = gated
        self.gate: Optional[asyncio.Event] = None
        self.started = False
        self.stopped = False
        self.polls = 0

    def start(self, source):
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def poll(self):
        self.polls += 1
        if self.gated:
            self.gate = self.gate or asyncio.Event()
            await self.gate.wait()
        if self.poll_error is not None:
            raise self.poll_error
        return self.batches.pop(0) if self.batches else []

    def stop(self):
        self.started = False
        self.stopped = True

    @property
    def is_running(self):
        return self.started


class SlowStopStrategy(ScriptedStrategy):
    """Takes a while to release its decoder."""

    def stop(self):
        time.sleep(0.2)
        super().stop()


class Recorder:
    def __init__(self):
        self.identifiers: List[str] = []
        self.errors: List[CameraError] = []

    def on_identifier(self, isbn: str) -> None:
        self.identifiers.append(isbn)

    def on_error(self, error) -> None:
        self.errors.append(error)


def make_controller(provider, native=None, fallback=None, recorder=None,
                    capability=DecoderCapability.NATIVE_AVAILABLE, **kwargs):
    recorder = recorder or Recorder()
    native = native or ScriptedStrategy("native")
    fallback = fallback or ScriptedStrategy("zbar")
    created = {"native": 0, "fallback": 0}

    def native_factory():
        created["native"] += 1
        return native

    def fallback_factory():
        created["fallback"] += 1
        return fallback

    controller = ScanSessionController(
        provider,
        recorder.on_identifier,
        on_error=recorder.on_error,
        native_factory=native_factory,
        fallback_factory=fallback_factory,
        capability_probe=lambda: capability,
        native_enabled=True,
        poll_interval=0.005,
        cancel_join_timeout=1.0,
        **kwargs,
    )
    return controller, recorder, created


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ============================================================================
# STRATEGY SELECTION
# ============================================================================

class TestStrategySelection:
    """Native detector preferred, ZBar fallback otherwise."""

    def test_native_used_when_available(self):
        async def scenario():
            controller, recorder, created = make_controller(FakeProvider())
            await controller.activate()
            assert controller.state is ScanSessionState.SCANNING
            assert controller.active_strategy == "native"
            await controller.cancel()
            return created

        created = asyncio.run(scenario())
        assert created == {"native": 1, "fallback": 0}

    def test_native_start_failure_falls_back_silently(self):
        async def scenario():
            native = ScriptedStrategy("native", start_error=StrategyInitError("native", "no module"))
            controller, recorder, _ = make_controller(FakeProvider(), native=native)

            await controller.activate()

            assert controller.state is ScanSessionState.SCANNING
            assert controller.active_strategy == "zbar"
            assert recorder.errors == []
            await controller.cancel()

        asyncio.run(scenario())

    def test_unavailable_capability_skips_native(self):
        async def scenario():
            controller, _, created = make_controller(
                FakeProvider(), capability=DecoderCapability.NATIVE_UNAVAILABLE
            )
            await controller.activate()
            assert controller.active_strategy == "zbar"
            assert controller.capability is DecoderCapability.NATIVE_UNAVAILABLE
            await controller.cancel()
            return created

        created = asyncio.run(scenario())
        assert created["native"] == 0

    def test_no_decoder_starts(self):
        async def scenario():
            provider = FakeProvider()
            native = ScriptedStrategy("native", start_error=StrategyInitError("native", "x"))
            fallback = ScriptedStrategy("zbar", start_error=RuntimeError("zbar missing"))
            controller, _, _ = make_controller(provider, native=native, fallback=fallback)

            with pytest.raises(CameraError) as exc_info:
                await controller.activate()

            assert exc_info.value.code == "DECODER_UNAVAILABLE"
            assert exc_info.value.details["strategies"] == ["native", "zbar"]
            assert controller.state is ScanSessionState.STOPPED
            assert provider.sources[0].released

        asyncio.run(scenario())

    def test_runtime_failure_switches_to_fallback(self):
        async def scenario():
            native = ScriptedStrategy("native", poll_error=StrategyRuntimeError("native", "crashed"))
            fallback = ScriptedStrategy("zbar", batches=[[], [det("9780143127741")]])
            controller, recorder, _ = make_controller(FakeProvider(), native=native, fallback=fallback)

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)

            assert native.stopped
            assert fallback.polls == 2
            assert recorder.identifiers == ["9780143127741"]
            assert recorder.errors == []

        asyncio.run(scenario())

    def test_fallback_runtime_failure_stops_session(self):
        async def scenario():
            fallback = ScriptedStrategy("zbar", poll_error=RuntimeError("libzbar crashed"))
            provider = FakeProvider()
            controller, recorder, _ = make_controller(
                provider, fallback=fallback, capability=DecoderCapability.NATIVE_UNAVAILABLE
            )

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)

            assert [e.code for e in recorder.errors] == ["DECODER_UNAVAILABLE"]
            assert provider.sources[0].released

        asyncio.run(scenario())


# ============================================================================
# DETECTION AND LOCKING
# ============================================================================

class TestDetection:
    """At most one identifier per activation."""

    def test_first_valid_detection_in_tick_wins(self):
        async def scenario():
            native = ScriptedStrategy("native", batches=[[
                det("978-0-14-312774-1"),
                det("9780306406157"),
            ]])
            provider = FakeProvider()
            controller, recorder, _ = make_controller(provider, native=native)

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)

            assert recorder.identifiers == ["9780143127741"]
            assert controller.last_identifier == "9780143127741"
            assert native.stopped
            assert provider.sources[0].released

        asyncio.run(scenario())

    def test_invalid_codes_ignored(self):
        async def scenario():
            native = ScriptedStrategy("native", batches=[
                [det("hello", Symbology.CODE_128), det("012345678905", Symbology.UPC_A)],
                [],
                [det("096385074", Symbology.CODE_128), det("0-306-40615-2", Symbology.CODE_128)],
            ])
            controller, recorder, _ = make_controller(FakeProvider(), native=native)

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)

            assert recorder.identifiers == ["0306406152"]
            assert native.polls == 3

        asyncio.run(scenario())

    def test_no_polling_after_lock(self):
        async def scenario():
            native = ScriptedStrategy("native", batches=[
                [det("9780143127741")],
                [det("9780306406157")],
            ])
            controller, recorder, _ = make_controller(FakeProvider(), native=native)

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)
            await asyncio.sleep(0.05)

            assert recorder.identifiers == ["9780143127741"]
            assert native.polls == 1

        asyncio.run(scenario())

    def test_async_callback_awaited(self):
        async def scenario():
            received = []

            async def on_identifier(isbn):
                await asyncio.sleep(0)
                received.append(isbn)

            controller = ScanSessionController(
                FakeProvider(),
                on_identifier,
                native_factory=lambda: ScriptedStrategy("native", batches=[[det("080442957x")]]),
                fallback_factory=lambda: ScriptedStrategy("zbar"),
                capability_probe=lambda: DecoderCapability.NATIVE_AVAILABLE,
                native_enabled=True,
                poll_interval=0.005,
            )
            await controller.activate()
            await wait_until(lambda: received)
            await controller.close()
            return received

        assert asyncio.run(scenario()) == ["080442957X"]

    def test_failing_callback_does_not_break_session(self):
        async def scenario():
            def on_identifier(isbn):
                raise ValueError("consumer bug")

            provider = FakeProvider()
            controller = ScanSessionController(
                provider,
                on_identifier,
                native_factory=lambda: ScriptedStrategy("native", batches=[[det("9780143127741")]]),
                fallback_factory=lambda: ScriptedStrategy("zbar"),
                capability_probe=lambda: DecoderCapability.NATIVE_AVAILABLE,
                native_enabled=True,
                poll_interval=0.005,
            )
            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)
            assert provider.sources[0].released

        asyncio.run(scenario())

    def test_rescan_after_detection(self):
        async def scenario():
            strategies = iter([
                ScriptedStrategy("native", batches=[[det("9780143127741")]]),
                ScriptedStrategy("native", batches=[[det("9780306406157")]]),
            ])
            recorder = Recorder()
            provider = FakeProvider()
            controller = ScanSessionController(
                provider,
                recorder.on_identifier,
                native_factory=lambda: next(strategies),
                fallback_factory=lambda: ScriptedStrategy("zbar"),
                capability_probe=lambda: DecoderCapability.NATIVE_AVAILABLE,
                native_enabled=True,
                poll_interval=0.005,
            )

            for _ in range(2):
                await controller.activate()
                await wait_until(lambda: controller.state is ScanSessionState.STOPPED)

            assert recorder.identifiers == ["9780143127741", "9780306406157"]
            assert all(source.released for source in provider.sources)
            assert len(provider.sources) == 2

        asyncio.run(scenario())


# ============================================================================
# CANCELLATION
# ============================================================================

class TestCancel:
    """cancel() discards anything still in flight."""

    def test_in_flight_poll_discarded(self):
        async def scenario():
            native = ScriptedStrategy("native", batches=[[det("9780143127741")]], gated=True)
            provider = FakeProvider()
            controller, recorder, _ = make_controller(provider, native=native)

            await controller.activate()
            await wait_until(lambda: native.polls == 1)

            cancelling = asyncio.create_task(controller.cancel())
            await asyncio.sleep(0)
            native.gate.set()
            await cancelling
            await asyncio.sleep(0.05)

            assert recorder.identifiers == []
            assert controller.state is ScanSessionState.STOPPED
            assert native.stopped
            assert provider.sources[0].released

        asyncio.run(scenario())

    def test_cancel_during_camera_prompt(self):
        async def scenario():
            provider = FakeProvider(gated=True)
            controller, recorder, created = make_controller(provider)

            activation = asyncio.create_task(controller.activate())
            await wait_until(lambda: provider.gate is not None)
            assert controller.state is ScanSessionState.STARTING

            await controller.cancel()
            assert controller.state is ScanSessionState.STOPPED

            # Permission granted after the user already cancelled
            provider.gate.set()
            await activation
            await asyncio.sleep(0.05)

            assert controller.state is ScanSessionState.STOPPED
            assert controller.active_strategy is None
            assert provider.sources[0].released
            assert recorder.identifiers == []
            return created

        created = asyncio.run(scenario())
        assert created == {"native": 0, "fallback": 0}

    def test_denied_after_cancel_is_silent(self):
        async def scenario():
            provider = FakeProvider(error=exceptions.camera_permission_denied(), gated=True)
            controller, recorder, _ = make_controller(provider)

            activation = asyncio.create_task(controller.activate())
            await wait_until(lambda: provider.gate is not None)
            await controller.cancel()
            provider.gate.set()
            await activation

            assert controller.state is ScanSessionState.STOPPED
            assert recorder.errors == []

        asyncio.run(scenario())

    def test_cancel_while_locked_drops_identifier(self):
        """Test an accepted ISBN is not delivered once cancel() was called."""
        async def scenario():
            native = SlowStopStrategy("native", batches=[[det("9780143127741")]])
            provider = FakeProvider()
            controller, recorder, _ = make_controller(provider, native=native)

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.LOCKED)

            await controller.cancel()
            assert controller.state is ScanSessionState.STOPPED
            assert native.stopped
            assert provider.sources[0].released

            await asyncio.sleep(0.05)
            assert recorder.identifiers == []
            assert controller.last_identifier is None

        asyncio.run(scenario())

    def test_close_while_locked_drops_identifier(self):
        async def scenario():
            native = SlowStopStrategy("native", batches=[[det("9780143127741")]])
            controller, recorder, _ = make_controller(FakeProvider(), native=native)

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.LOCKED)
            await controller.close()
            await asyncio.sleep(0.05)

            assert controller.state is ScanSessionState.STOPPED
            assert recorder.identifiers == []

        asyncio.run(scenario())

    def test_cancel_outside_active_states_is_noop(self):
        async def scenario():
            controller, _, _ = make_controller(FakeProvider())
            await controller.cancel()
            assert controller.state is ScanSessionState.IDLE

        asyncio.run(scenario())

    def test_close_releases_scanning_session(self):
        async def scenario():
            provider = FakeProvider()
            native = ScriptedStrategy("native")
            controller, _, _ = make_controller(provider, native=native)

            async with controller:
                await controller.activate()
                assert controller.state is ScanSessionState.SCANNING

            assert controller.state is ScanSessionState.STOPPED
            assert native.stopped
            assert provider.sources[0].released

        asyncio.run(scenario())


# ============================================================================
# ERRORS AND STATE RULES
# ============================================================================

class TestErrors:
    """Camera failures stop the session without retrying."""

    def test_permission_denied(self):
        async def scenario():
            provider = FakeProvider(error=exceptions.camera_permission_denied())
            controller, _, created = make_controller(provider)

            with pytest.raises(CameraError) as exc_info:
                await controller.activate()

            assert exc_info.value.code == "CAMERA_PERMISSION_DENIED"
            assert controller.state is ScanSessionState.STOPPED
            return created

        created = asyncio.run(scenario())
        assert created == {"native": 0, "fallback": 0}

    def test_camera_lost_while_scanning(self):
        async def scenario():
            native = ScriptedStrategy("native", poll_error=exceptions.camera_lost())
            provider = FakeProvider()
            controller, recorder, _ = make_controller(provider, native=native)

            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)

            assert [e.code for e in recorder.errors] == ["CAMERA_LOST"]
            assert recorder.identifiers == []
            assert provider.sources[0].released

        asyncio.run(scenario())

    def test_activate_while_scanning_rejected(self):
        async def scenario():
            controller, _, _ = make_controller(FakeProvider())
            await controller.activate()
            with pytest.raises(InvalidSessionState):
                await controller.activate()
            await controller.cancel()

        asyncio.run(scenario())

    def test_reactivate_after_failure(self):
        async def scenario():
            provider = FakeProvider(error=exceptions.camera_not_found(0))
            controller, _, _ = make_controller(provider)

            with pytest.raises(CameraError):
                await controller.activate()

            provider.error = None
            await controller.activate()
            assert controller.state is ScanSessionState.SCANNING
            await controller.close()

        asyncio.run(scenario())


# ============================================================================
# BROWSER FEED
# ============================================================================

class TestBrowserFeed:
    """Sessions over frames pushed by a browser client."""

    def test_rescan_needs_a_new_frame(self, monkeypatch):
        monkeypatch.setattr(strategies, "decode", lambda image, symbols=None: [
            Decoded(b"9780143127741", "EAN13"),
        ])

        async def scenario():
            provider = BrowserFrameProvider(wait_timeout=0.2)
            recorder = Recorder()
            controller = ScanSessionController(
                provider,
                recorder.on_identifier,
                on_error=recorder.on_error,
                fallback_factory=ZbarStrategy,
                native_enabled=False,
                poll_interval=0.005,
            )

            assert provider.submit_frame(png_frame())
            await controller.activate()
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)
            assert recorder.identifiers == ["9780143127741"]

            # Nothing new from the browser: the old frame must not be re-read
            with pytest.raises(CameraError) as exc_info:
                await controller.activate()
            assert exc_info.value.code == "CAMERA_TIMEOUT"
            assert recorder.identifiers == ["9780143127741"]

            activation = asyncio.create_task(controller.activate())
            await asyncio.sleep(0.01)
            assert provider.submit_frame(png_frame())
            await activation
            await wait_until(lambda: controller.state is ScanSessionState.STOPPED)

            assert recorder.identifiers == ["9780143127741", "9780143127741"]
            assert recorder.errors == []

        asyncio.run(scenario())
