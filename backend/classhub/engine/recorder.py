"""
Voice clip capture.

IDLE -> RECORDING -> (SENDING | CANCELLED) -> IDLE

The microphone itself is behind MicrophoneDriver; the websocket session
feeds it with chunks pushed by the browser.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol

from classhub.errors import ClipTooShort, RecorderError

logger = logging.getLogger(__name__)

ChunkSink = Callable[[bytes], None]


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SENDING = "sending"
    CANCELLED = "cancelled"


class MicrophoneDriver(Protocol):
    async def start(self, on_data: ChunkSink) -> None:
        """Begin capture. Raise if the microphone cannot be opened."""

    async def stop(self) -> None:
        """End capture. Any buffered audio must reach on_data before this returns."""


class PushMicrophone:
    """Driver for audio pushed in from outside (e.g. websocket chunks)."""

    def __init__(self):
        self._sink: ChunkSink | None = None

    async def start(self, on_data: ChunkSink) -> None:
        self._sink = on_data

    async def stop(self) -> None:
        self._sink = None

    def push(self, chunk: bytes) -> bool:
        if self._sink is None:
            return False
        self._sink(chunk)
        return True


class VoiceRecorder:
    """Accumulates chunks while recording and drives a one-second duration ticker."""

    def __init__(
        self,
        driver: MicrophoneDriver,
        *,
        min_clip_bytes: int,
        on_tick: Callable[[int], None] | None = None,
        tick_seconds: float = 1.0,
    ):
        self.driver = driver
        self.min_clip_bytes = min_clip_bytes
        self.on_tick = on_tick
        self.tick_seconds = tick_seconds
        self.state = RecorderState.IDLE
        self.elapsed_seconds = 0
        self._chunks: list[bytes] = []
        self._ticker: asyncio.Task | None = None

    @property
    def buffered_bytes(self) -> int:
        return sum(len(c) for c in self._chunks)

    @property
    def ticking(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    async def start(self) -> None:
        if self.state != RecorderState.IDLE:
            raise RecorderError(f"Cannot start recording while {self.state.value}")
        try:
            await self.driver.start(self._on_data)
        except Exception as e:
            logger.warning("Microphone unavailable: %s", e)
            raise RecorderError("Microphone access denied") from e
        self._chunks = []
        self.elapsed_seconds = 0
        self.state = RecorderState.RECORDING
        self._ticker = asyncio.create_task(self._tick())

    def _on_data(self, chunk: bytes) -> None:
        if self.state == RecorderState.RECORDING and chunk:
            self._chunks.append(chunk)

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            self.elapsed_seconds += 1
            if self.on_tick is not None:
                self.on_tick(self.elapsed_seconds)

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def finish(self) -> bytes:
        """
        Stop capture and hand back the clip; the recorder stays SENDING
        until reset().

        Raises:
            RecorderError: If not recording or the microphone fails to stop
                (recorder is reset)
            ClipTooShort: If the clip is under min_clip_bytes (recorder is reset)
        """
        if self.state != RecorderState.RECORDING:
            raise RecorderError(f"Cannot send while {self.state.value}")
        self._stop_ticker()
        # Still RECORDING here so chunks flushed by stop() are kept
        try:
            await self.driver.stop()
        except Exception as e:
            logger.warning("Microphone failed to stop: %s", e)
            self.reset()
            raise RecorderError("Recording failed") from e
        self.state = RecorderState.SENDING
        clip = b"".join(self._chunks)
        self._chunks = []
        if len(clip) < self.min_clip_bytes:
            self.reset()
            raise ClipTooShort(f"Voice clip too short ({len(clip)} bytes)")
        return clip

    async def cancel(self) -> None:
        if self.state != RecorderState.RECORDING:
            return
        self.state = RecorderState.CANCELLED
        self._stop_ticker()
        try:
            await self.driver.stop()
        finally:
            self.reset()

    def reset(self) -> None:
        self._stop_ticker()
        self._chunks = []
        self.elapsed_seconds = 0
        self.state = RecorderState.IDLE
