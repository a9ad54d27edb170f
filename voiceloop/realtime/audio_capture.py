"""
Microphone Capture Module

Reads 16-bit mono PCM at 16 kHz from the input device and exposes it as an
async sequence of AudioChunk values.

PortAudio delivers blocks on its own thread; each block is handed to the
event loop with call_soon_threadsafe into a bounded queue. The byte counter
is the only state touched from both sides and is lock guarded.

Usage:
    capture = AudioCapture()
    capture.ensure_device()
    async for chunk in capture.start(max_duration_s=15):
        await stream.write(chunk.data)
    capture.stop()
"""

import asyncio
import threading
from typing import Any, AsyncIterator, Dict, List, Optional

from voiceloop.config import AudioConfig, settings
from voiceloop.core.interfaces import CHANNELS, SAMPLE_RATE
from voiceloop.errors import NoDeviceError
from voiceloop.logger import get_logger
from .events import AudioChunk

logger = get_logger(__name__)

try:
    import sounddevice as sd
except OSError as exc:
    # PortAudio shared library missing: behave as a machine without devices
    sd = None
    logger.warning(f"sounddevice unavailable ({exc}); install PortAudio (libportaudio2)")


def _query_devices() -> List[Dict[str, Any]]:
    if sd is None:
        return []
    try:
        return list(sd.query_devices())
    except Exception as e:
        logger.warning(f"Could not query audio devices: {e}")
        return []


def count_devices(kind: str) -> int:
    """Count devices with at least one channel of the given kind ('input' or 'output')."""
    key = f"max_{kind}_channels"
    return sum(1 for dev in _query_devices() if dev.get(key, 0) > 0)


def list_audio_devices() -> List[Dict[str, Any]]:
    """
    Enumerate audio devices for display.

    Returns:
        One dict per device: index, name, inputs, outputs, default_input, default_output
    """
    devices = _query_devices()
    default_in = default_out = None
    if sd is not None and devices:
        try:
            default_in, default_out = sd.default.device
        except Exception as e:
            logger.debug(f"Could not read default audio devices: {e}")

    return [
        {
            "index": idx,
            "name": dev.get("name", ""),
            "inputs": dev.get("max_input_channels", 0),
            "outputs": dev.get("max_output_channels", 0),
            "default_input": idx == default_in,
            "default_output": idx == default_out,
        }
        for idx, dev in enumerate(devices)
    ]


class ByteCounter:
    """Byte total shared between a driver thread and the event loop."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def add(self, n: int) -> None:
        with self._lock:
            self._value += n

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class AudioCapture:
    """
    Single-owner microphone capture.

    Only one capture session exists at a time: start() releases any previous
    device handle before opening a new one.
    """

    def __init__(self, config: Optional[AudioConfig] = None):
        self._config = config or settings.audio
        self._stream = None
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._bytes = ByteCounter()
        self._dropped = 0

    # ========================================================================
    # Device checks
    # ========================================================================

    def device_count(self) -> int:
        return count_devices("input")

    def ensure_device(self) -> None:
        """
        Raises:
            NoDeviceError: If no capture device is present
        """
        if self.device_count() == 0:
            raise NoDeviceError("audio recording")

    @property
    def block_frames(self) -> int:
        return SAMPLE_RATE * self._config.block_ms // 1000

    # ========================================================================
    # Capture
    # ========================================================================

    async def start(self, max_duration_s: Optional[float] = None) -> AsyncIterator[AudioChunk]:
        """
        Capture until stop() is called or max_duration_s elapses.

        Yields:
            AudioChunk per driver block
        """
        self.stop()
        self.ensure_device()

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._config.queue_size)
        self._loop = loop
        self._queue = queue
        self._bytes.reset()
        self._dropped = 0

        def on_audio(indata, frames, time_info, status) -> None:
            if status:
                logger.debug(f"Capture status: {status}")
            data = bytes(indata)
            self._bytes.add(len(data))
            try:
                loop.call_soon_threadsafe(self._enqueue, queue, data)
            except RuntimeError:
                # Loop closed during shutdown
                pass

        stream = sd.RawInputStream(
            samplerate=SAMPLE_RATE,
            channels=CHANNELS,
            dtype="int16",
            blocksize=self.block_frames,
            device=self._config.input_device,
            callback=on_audio,
        )
        self._stream = stream
        stream.start()
        logger.debug(f"Capture started (block={self._config.block_ms}ms)")

        deadline = loop.time() + max_duration_s if max_duration_s else None
        try:
            while True:
                timeout = None
                if deadline is not None:
                    timeout = deadline - loop.time()
                    if timeout <= 0:
                        logger.debug("Capture reached max duration")
                        break
                try:
                    data = await asyncio.wait_for(queue.get(), timeout)
                except asyncio.TimeoutError:
                    logger.debug("Capture reached max duration")
                    break
                if data is None:
                    break
                yield AudioChunk(data)
        finally:
            if self._queue is queue:
                self.stop()

    def _enqueue(self, queue: asyncio.Queue, data: bytes) -> None:
        if queue is not self._queue:
            return
        try:
            queue.put_nowait(data)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(f"Capture queue full, dropped chunk ({self._dropped} total)")

    def stop(self) -> None:
        """Release the device handle. Idempotent; safe before start()."""
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.abort()
                stream.close()
            except Exception as e:
                logger.debug(f"Error closing input stream: {e}")
            logger.debug(f"Capture stopped ({self._bytes.value} bytes)")

        queue, self._queue = self._queue, None
        if queue is not None:
            while queue.full():
                queue.get_nowait()
            queue.put_nowait(None)

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    @property
    def bytes_captured(self) -> int:
        return self._bytes.value

    @property
    def dropped_chunks(self) -> int:
        return self._dropped
