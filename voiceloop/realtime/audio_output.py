"""
Speaker Output Module

Plays a complete 16-bit mono PCM buffer through the output device.

- SpeakerOutput: owns the speaker; open() is an async context manager that
  serialises playback sessions and always releases the device
- SpeakerPlayback: one playback in progress; stop() ends it immediately

The PortAudio callback reads straight from the buffer and raises
CallbackStop at the end; the finished callback resolves a future on the
event loop.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from voiceloop.config import AudioConfig, settings
from voiceloop.core.interfaces import CHANNELS, SAMPLE_WIDTH
from voiceloop.errors import NoDeviceError, PlaybackError
from voiceloop.logger import get_logger
from .audio_capture import ByteCounter, count_devices, sd

logger = get_logger(__name__)


class SpeakerPlayback:
    """A single buffer being played on the output device."""

    def __init__(
        self,
        audio: bytes,
        sample_rate: int,
        device: Optional[int],
        loop: asyncio.AbstractEventLoop,
    ):
        self._audio = memoryview(audio)
        self._sample_rate = sample_rate
        self._device = device
        self._loop = loop
        self._position = 0
        self._played = ByteCounter()
        self._driver_error: Optional[BaseException] = None
        self._done: asyncio.Future = loop.create_future()
        self._stream = None
        self._stopped = False

    # ========================================================================
    # Driver callbacks (PortAudio thread)
    # ========================================================================

    def _on_output(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug(f"Playback status: {status}")
        try:
            wanted = len(outdata)
            chunk = self._audio[self._position:self._position + wanted]
            n = len(chunk)
            outdata[:n] = chunk
            if n < wanted:
                outdata[n:] = b"\x00" * (wanted - n)
            self._position += n
            self._played.add(n)
        except Exception as e:
            self._driver_error = e
            raise sd.CallbackAbort
        if self._position >= len(self._audio):
            raise sd.CallbackStop

    def _on_finished(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._resolve)
        except RuntimeError:
            pass

    def _resolve(self) -> None:
        if not self._done.done():
            self._done.set_result(self._driver_error)

    # ========================================================================
    # Control (event loop)
    # ========================================================================

    def start(self) -> None:
        """
        Raises:
            PlaybackError: If the output stream could not be opened
        """
        try:
            self._stream = sd.RawOutputStream(
                samplerate=self._sample_rate,
                channels=CHANNELS,
                dtype="int16",
                device=self._device,
                callback=self._on_output,
                finished_callback=self._on_finished,
            )
            self._stream.start()
        except Exception as e:
            raise PlaybackError(f"Could not open output stream: {e}") from e

    def stop(self) -> None:
        """Stop immediately. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        if self._stream is not None:
            try:
                self._stream.abort()
            except Exception as e:
                logger.debug(f"Error aborting output stream: {e}")
        self._resolve()

    async def wait(self) -> None:
        """
        Block until the driver finishes or stop() is called.

        Raises:
            PlaybackError: If the driver reported an error
        """
        error = await self._done
        if error is not None:
            raise PlaybackError(f"Playback driver error: {error}")

    def close(self) -> None:
        """Release the device, aborting first if the driver is still running."""
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                if not self._done.done():
                    stream.abort()
                stream.close()
            except Exception as e:
                logger.debug(f"Error closing output stream: {e}")

    @property
    def was_stopped(self) -> bool:
        return self._stopped

    @property
    def bytes_played(self) -> int:
        return self._played.value

    @property
    def duration_ms(self) -> float:
        return 1000.0 * self.bytes_played / (self._sample_rate * SAMPLE_WIDTH * CHANNELS)


class SpeakerOutput:
    """
    Single-owner speaker device.

    Usage:
        speaker = SpeakerOutput()
        async with speaker.open(audio, 24000) as playback:
            await playback.wait()
    """

    def __init__(self, config: Optional[AudioConfig] = None):
        self._config = config or settings.audio
        self._lock = asyncio.Lock()
        self._active: Optional[SpeakerPlayback] = None

    def device_count(self) -> int:
        return count_devices("output")

    @asynccontextmanager
    async def open(self, audio: bytes, sample_rate: int) -> AsyncIterator[SpeakerPlayback]:
        """
        Acquire the speaker and start playing.

        Raises:
            NoDeviceError: If no output device is present
            PlaybackError: If the device could not be opened
        """
        async with self._lock:
            if self.device_count() == 0:
                raise NoDeviceError("audio playback")

            playback = SpeakerPlayback(
                audio,
                sample_rate,
                self._config.output_device,
                asyncio.get_running_loop(),
            )
            self._active = playback
            try:
                playback.start()
                yield playback
            finally:
                self._active = None
                playback.close()

    def close(self) -> None:
        """Stop whatever is playing."""
        if self._active is not None:
            self._active.stop()

    @property
    def is_playing(self) -> bool:
        return self._active is not None
