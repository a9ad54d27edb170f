"""
Streaming Speech-to-Text Module

One listening session = one transcription stream fed from the microphone:
- A writer task forwards captured chunks into the stream
- A reader task appends final segments to the utterance and logs interims
- The session ends on the first of: max duration, cancellation, end of the
  result stream, or (for single-utterance listens) the first final segment
- Regular listens flush the stream after end-of-audio so a trailing final is
  kept; a single-utterance listen that already has its final skips the flush
- on_final is called with each non-blank final segment as it arrives

The outcome is always a RecognitionResult; nothing but asyncio.CancelledError
escapes recognize().
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from voiceloop.config import settings
from voiceloop.core.interfaces import StreamingConfig, TranscriptionClient, TranscriptionStream
from voiceloop.errors import NoDeviceError, OperationCancelled, TranscriptionError
from voiceloop.logger import get_logger
from .audio_capture import AudioCapture, ByteCounter
from .cancellation import CancellationScope
from .events import RecognitionResult, RecognitionStatus

logger = get_logger(__name__)


class TranscriptAggregator:
    """
    Utterance under construction.

    Only final segments are kept, in arrival order.
    """

    def __init__(self, separator: str = ""):
        self._separator = separator
        self._segments: List[str] = []
        self._lock = threading.Lock()
        self._first_final = asyncio.Event()

    def add(self, text: str) -> None:
        with self._lock:
            self._segments.append(text)
        self._first_final.set()

    @property
    def final_count(self) -> int:
        with self._lock:
            return len(self._segments)

    @property
    def text(self) -> str:
        with self._lock:
            return self._separator.join(self._segments).strip()

    async def wait_first_final(self) -> None:
        await self._first_final.wait()


@dataclass
class _SessionState:
    bytes_sent: ByteCounter = field(default_factory=ByteCounter)
    stream_error: Optional[str] = None
    capture_error: Optional[str] = None


class TranscriptionSession:
    """
    Runs listening sessions against a transcription client.

    At most one session runs at a time, so two sessions never hold the
    microphone together.

    Usage:
        session = TranscriptionSession(client, capture)
        result = await session.recognize(scope, max_duration_s=15)
        if result.is_valid:
            print(result.text)
    """

    def __init__(
        self,
        client: TranscriptionClient,
        capture: AudioCapture,
        streaming_config: Optional[StreamingConfig] = None,
        flush_timeout_s: Optional[float] = None,
        separator: str = "",
    ):
        self._client = client
        self._capture = capture
        self._streaming_config = streaming_config or StreamingConfig(
            language_code=settings.speech.language,
            enable_punctuation=settings.speech.enable_punctuation,
        )
        self._flush_timeout_s = (
            flush_timeout_s if flush_timeout_s is not None
            else settings.conversation.flush_timeout_s
        )
        self._separator = separator
        self._lock = asyncio.Lock()

    async def recognize(
        self,
        cancel: CancellationScope,
        max_duration_s: Optional[float] = None,
        single_utterance: bool = False,
        on_final: Optional[Callable[[str], None]] = None,
    ) -> RecognitionResult:
        """
        Listen until the session completes and return the utterance.

        Args:
            cancel: Scope that ends the session early
            max_duration_s: Upper bound on the session length
            single_utterance: Stop at the first final segment
            on_final: Called with each non-blank final segment as it arrives
        """
        if cancel.is_cancelled:
            return RecognitionResult(RecognitionStatus.CANCELLED)

        async with self._lock:
            return await self._recognize(cancel, max_duration_s, single_utterance, on_final)

    async def _recognize(
        self,
        cancel: CancellationScope,
        max_duration_s: Optional[float],
        single_utterance: bool,
        on_final: Optional[Callable[[str], None]],
    ) -> RecognitionResult:
        try:
            self._capture.ensure_device()
        except NoDeviceError as e:
            logger.warning(str(e))
            return RecognitionResult(RecognitionStatus.NO_DEVICE, error=str(e))

        try:
            stream = await cancel.run(self._client.open_stream(self._streaming_config))
        except OperationCancelled:
            return RecognitionResult(RecognitionStatus.CANCELLED)
        except Exception as e:
            logger.error(f"Could not open transcription stream: {e}")
            return RecognitionResult(RecognitionStatus.ERROR, error=str(e))

        aggregator = TranscriptAggregator(self._separator)
        state = _SessionState()

        writer = asyncio.create_task(self._write_audio(stream, cancel, max_duration_s, state))
        reader = asyncio.create_task(self._read_results(stream, aggregator, state, on_final))
        cancel_waiter = asyncio.create_task(cancel.wait())
        helpers = [cancel_waiter]

        waiters = {reader, writer, cancel_waiter}
        if single_utterance:
            final_waiter = asyncio.create_task(aggregator.wait_first_final())
            helpers.append(final_waiter)
            waiters.add(final_waiter)

        try:
            await asyncio.wait(waiters, timeout=max_duration_s, return_when=asyncio.FIRST_COMPLETED)

            self._capture.stop()
            await self._drain(writer)

            # No flush once a single-utterance listen has its final
            utterance_ready = single_utterance and aggregator.final_count > 0

            if not utterance_ready and not cancel.is_cancelled and not reader.done():
                try:
                    await stream.write_complete()
                except Exception as e:
                    logger.debug(f"Error signalling end of audio: {e}")
                await asyncio.wait(
                    {reader, cancel_waiter},
                    timeout=self._flush_timeout_s,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if not reader.done() and not cancel.is_cancelled:
                    logger.warning("Timed out waiting for trailing transcription results")
        finally:
            for task in helpers:
                task.cancel()
            self._capture.stop()
            await self._drain(writer)
            await self._drain(reader)
            try:
                await stream.close()
            except Exception as e:
                logger.debug(f"Error closing transcription stream: {e}")

        return self._classify(aggregator, state, cancel.is_cancelled)

    # ========================================================================
    # Session tasks
    # ========================================================================

    async def _write_audio(
        self,
        stream: TranscriptionStream,
        cancel: CancellationScope,
        max_duration_s: Optional[float],
        state: _SessionState,
    ) -> None:
        chunks = self._capture.start(max_duration_s)
        try:
            async for chunk in chunks:
                if cancel.is_cancelled or not stream.is_write_open:
                    break
                try:
                    await stream.write(chunk.data)
                    state.bytes_sent.add(chunk.length)
                except Exception as e:
                    # A dropped chunk never aborts the session
                    if not cancel.is_cancelled:
                        logger.warning(f"Audio write failed: {e}")
        except NoDeviceError as e:
            state.capture_error = str(e)
            logger.warning(str(e))
        except Exception as e:
            state.capture_error = f"Audio capture failed: {e}"
            logger.error(state.capture_error)
        finally:
            await chunks.aclose()

    async def _read_results(
        self,
        stream: TranscriptionStream,
        aggregator: TranscriptAggregator,
        state: _SessionState,
        on_final: Optional[Callable[[str], None]] = None,
    ) -> None:
        try:
            async for result in stream.results():
                if result.is_error:
                    error = TranscriptionError(result.error_message, result.error_code)
                    state.stream_error = str(error)
                    logger.error(state.stream_error)
                    return
                if result.is_final:
                    aggregator.add(result.text)
                    logger.info(f"Heard: {result.text}")
                    if on_final is not None and result.text.strip():
                        self._notify(on_final, result.text)
                elif result.text:
                    logger.debug(f"Partial ({result.stability:.2f}): {result.text}")
        except Exception as e:
            state.stream_error = str(TranscriptionError(str(e)))
            logger.error(state.stream_error)

    @staticmethod
    def _notify(on_final: Callable[[str], None], text: str) -> None:
        try:
            on_final(text)
        except Exception as e:
            logger.error(f"Final segment callback failed: {e}")

    @staticmethod
    async def _drain(task: "asyncio.Task") -> None:
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    # ========================================================================
    # Outcome
    # ========================================================================

    @staticmethod
    def _classify(
        aggregator: TranscriptAggregator,
        state: _SessionState,
        cancelled: bool,
    ) -> RecognitionResult:
        text = aggregator.text
        finals = aggregator.final_count
        sent = state.bytes_sent.value

        def result(status: RecognitionStatus, error: Optional[str] = None) -> RecognitionResult:
            return RecognitionResult(
                status, text=text, error=error, final_segments=finals, bytes_sent=sent
            )

        error = state.stream_error or state.capture_error
        if error is not None:
            if text:
                logger.info("Returning partial utterance despite stream error")
                return result(RecognitionStatus.COMPLETED, error)
            return result(RecognitionStatus.ERROR, error)

        if cancelled:
            # A barge-in utterance survives the listener being cancelled
            if finals > 0:
                return result(RecognitionStatus.COMPLETED)
            return result(RecognitionStatus.CANCELLED)

        if finals == 0:
            if sent > 0:
                return result(RecognitionStatus.NO_SPEECH)
            return result(RecognitionStatus.NO_AUDIO)

        return result(RecognitionStatus.COMPLETED)
