"""
Azure Speech Services Module

Azure Cognitive Services Speech SDK implementations of the transcription and
synthesis collaborators.

- AzureTranscriptionClient: continuous recognition over a push audio stream,
  so the voice loop owns the microphone and feeds audio chunks itself
- AzureSpeechSynthesizer: SSML synthesis into an in-memory raw PCM buffer,
  so playback happens on a device the voice loop controls

Usage:
    from voiceloop.core.speech import AzureTranscriptionClient, AzureSpeechSynthesizer

    client = AzureTranscriptionClient()
    stream = await client.open_stream(StreamingConfig(language_code="en-US"))
"""

import asyncio
from typing import AsyncIterator, Dict, Optional, Union

import azure.cognitiveservices.speech as speechsdk

from voiceloop.config import SpeechConfig, settings
from voiceloop.errors import SynthesisError, TranscriptionError
from voiceloop.logger import get_logger
from .interfaces import (
    SpeechSynthesizer,
    StreamingConfig,
    SynthesisRequest,
    SynthesizedAudio,
    TranscriptionClient,
    TranscriptionStream,
    TranscriptResult,
)

logger = get_logger(__name__)

# Marks the end of the result stream in the handoff queue
_END_OF_STREAM = None


def _create_speech_config(config: SpeechConfig) -> speechsdk.SpeechConfig:
    """Build an SDK config from our settings, failing early if unconfigured."""
    if not config.is_configured:
        raise ValueError(
            "Azure Speech not configured. Set AZURE_SPEECH_API_KEY and "
            "AZURE_SPEECH_REGION in .env"
        )
    return speechsdk.SpeechConfig(subscription=config.api_key, region=config.region)


# ============================================================================
# Speech-to-Text
# ============================================================================

class AzureTranscriptionStream(TranscriptionStream):
    """
    One continuous-recognition session fed from a push stream.

    SDK callbacks run on SDK threads; every result is handed to the event
    loop with call_soon_threadsafe and consumed through results().
    """

    def __init__(
        self,
        recognizer: speechsdk.SpeechRecognizer,
        push_stream: speechsdk.audio.PushAudioInputStream,
        loop: asyncio.AbstractEventLoop,
    ):
        self._recognizer = recognizer
        self._push_stream = push_stream
        self._loop = loop
        self._queue: "asyncio.Queue[Optional[TranscriptResult]]" = asyncio.Queue()
        self._write_closed = False
        self._closed = False

        recognizer.recognizing.connect(self._on_recognizing)
        recognizer.recognized.connect(self._on_recognized)
        recognizer.canceled.connect(self._on_canceled)
        recognizer.session_stopped.connect(self._on_session_stopped)

    # ========================================================================
    # Event Handlers (called from SDK thread)
    # ========================================================================

    def _on_recognizing(self, evt: speechsdk.SpeechRecognitionEventArgs) -> None:
        """Handle partial recognition results."""
        if evt.result.reason != speechsdk.ResultReason.RecognizingSpeech:
            return
        text = evt.result.text
        if text:
            self._post(TranscriptResult(text=text, is_final=False, stability=0.0))

    def _on_recognized(self, evt: speechsdk.SpeechRecognitionEventArgs) -> None:
        """Handle final recognition results."""
        if evt.result.reason == speechsdk.ResultReason.RecognizedSpeech:
            self._post(TranscriptResult(text=evt.result.text, is_final=True, stability=1.0))
        elif evt.result.reason == speechsdk.ResultReason.NoMatch:
            logger.debug("STT no match for segment")

    def _on_canceled(self, evt: speechsdk.SpeechRecognitionCanceledEventArgs) -> None:
        """Handle recognition cancellation (errors and end of audio)."""
        try:
            details = evt.cancellation_details
            if details.reason == speechsdk.CancellationReason.Error:
                self._post(TranscriptResult(
                    error_code=str(details.code),
                    error_message=details.error_details or "recognition cancelled",
                ))
            else:
                logger.debug(f"STT cancelled: {details.reason}")
        except Exception as e:
            logger.error(f"Error handling STT cancellation: {e}")
        self._post(_END_OF_STREAM)

    def _on_session_stopped(self, evt: speechsdk.SessionEventArgs) -> None:
        logger.debug(f"STT session stopped: {evt.session_id}")
        self._post(_END_OF_STREAM)

    def _post(self, item: Optional[TranscriptResult]) -> None:
        """Hand an item to the event loop (thread-safe)."""
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    # ========================================================================
    # TranscriptionStream API
    # ========================================================================

    async def start(self) -> None:
        """Start continuous recognition."""
        future = self._recognizer.start_continuous_recognition_async()
        await self._loop.run_in_executor(None, future.get)

    @property
    def is_write_open(self) -> bool:
        return not self._write_closed

    async def write(self, data: bytes) -> None:
        if self._write_closed:
            raise TranscriptionError("stream is closed for writing")
        self._push_stream.write(data)

    async def write_complete(self) -> None:
        if self._write_closed:
            return
        self._write_closed = True
        self._push_stream.close()

    async def results(self) -> AsyncIterator[TranscriptResult]:
        while True:
            item = await self._queue.get()
            if item is _END_OF_STREAM:
                return
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.write_complete()
        try:
            future = self._recognizer.stop_continuous_recognition_async()
            await self._loop.run_in_executor(None, future.get)
        except Exception as e:
            logger.debug(f"Error stopping recognizer: {e}")
        finally:
            for signal in (
                self._recognizer.recognizing,
                self._recognizer.recognized,
                self._recognizer.canceled,
                self._recognizer.session_stopped,
            ):
                signal.disconnect_all()
            self._queue.put_nowait(_END_OF_STREAM)


class AzureTranscriptionClient(TranscriptionClient):
    """
    Opens Azure continuous-recognition streams.

    Usage:
        client = AzureTranscriptionClient()
        stream = await client.open_stream(StreamingConfig(language_code="cs-CZ"))
        await stream.write(pcm_bytes)
        await stream.write_complete()
        async for result in stream.results():
            ...
    """

    def __init__(self, config: Optional[SpeechConfig] = None):
        self._config = config or settings.speech
        self._speech_config = _create_speech_config(self._config)
        logger.info(
            f"STT configured: region={self._config.region}, "
            f"language={self._config.language}"
        )

    def _configure(self, streaming: StreamingConfig) -> speechsdk.SpeechConfig:
        speech_config = self._speech_config
        speech_config.speech_recognition_language = streaming.language_code
        if not streaming.enable_punctuation:
            speech_config.set_service_property(
                name="punctuation",
                value="explicit",
                channel=speechsdk.ServicePropertyChannel.UriQueryParameter,
            )
        return speech_config

    async def open_stream(self, config: StreamingConfig) -> AzureTranscriptionStream:
        loop = asyncio.get_running_loop()

        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=config.sample_rate,
            bits_per_sample=16,
            channels=1,
        )
        push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
        audio_config = speechsdk.audio.AudioConfig(stream=push_stream)

        recognizer = speechsdk.SpeechRecognizer(
            speech_config=self._configure(config),
            audio_config=audio_config,
        )

        stream = AzureTranscriptionStream(recognizer, push_stream, loop)
        try:
            await stream.start()
        except Exception:
            await stream.close()
            raise

        logger.debug(f"STT stream opened ({config.language_code}, {config.sample_rate} Hz)")
        return stream


# ============================================================================
# Text-to-Speech
# ============================================================================

class AzureSpeechSynthesizer(SpeechSynthesizer):
    """
    Azure Neural TTS into memory.

    No audio device is touched: the SDK returns the raw PCM buffer, and
    playback is handled by the caller.
    """

    OUTPUT_FORMATS: Dict[int, "speechsdk.SpeechSynthesisOutputFormat"] = {
        8000: speechsdk.SpeechSynthesisOutputFormat.Raw8Khz16BitMonoPcm,
        16000: speechsdk.SpeechSynthesisOutputFormat.Raw16Khz16BitMonoPcm,
        24000: speechsdk.SpeechSynthesisOutputFormat.Raw24Khz16BitMonoPcm,
        48000: speechsdk.SpeechSynthesisOutputFormat.Raw48Khz16BitMonoPcm,
    }

    def __init__(self, config: Optional[SpeechConfig] = None):
        self._config = config or settings.speech
        if self._config.tts_sample_rate not in self.OUTPUT_FORMATS:
            raise ValueError(
                f"Unsupported TTS_SAMPLE_RATE {self._config.tts_sample_rate}; "
                f"use one of {sorted(self.OUTPUT_FORMATS)}"
            )
        self._sample_rate = self._config.tts_sample_rate
        self._speech_config = _create_speech_config(self._config)
        self._speech_config.set_speech_synthesis_output_format(
            self.OUTPUT_FORMATS[self._sample_rate]
        )
        logger.info(f"TTS configured: voice={self._config.voice_name}, {self._sample_rate} Hz")

    @staticmethod
    def _escape_ssml(text: str) -> str:
        """Escape special characters for SSML."""
        return (
            text.replace("&", "&amp;")
                .replace("<", "&lt;")
                .replace(">", "&gt;")
                .replace('"', "&quot;")
                .replace("'", "&apos;")
        )

    def _build_ssml(self, request: SynthesisRequest) -> str:
        return (
            f'<speak version="1.0" xmlns="http://www.w3.org/2001/10/synthesis" '
            f'xml:lang="{request.language_code}">'
            f'<voice name="{request.voice_name}">{self._escape_ssml(request.text)}</voice>'
            f"</speak>"
        )

    async def synthesize(self, request: SynthesisRequest) -> SynthesizedAudio:
        loop = asyncio.get_running_loop()
        synthesizer = speechsdk.SpeechSynthesizer(
            speech_config=self._speech_config,
            audio_config=None,
        )
        ssml = self._build_ssml(request)

        try:
            future = synthesizer.speak_ssml_async(ssml)
            result: Union[speechsdk.SpeechSynthesisResult, None] = await loop.run_in_executor(
                None, future.get
            )
        except asyncio.CancelledError:
            try:
                synthesizer.stop_speaking_async()
            except Exception as e:
                logger.debug(f"Error stopping synthesis: {e}")
            raise
        except Exception as e:
            raise SynthesisError(f"Error during text-to-speech synthesis: {e}") from e

        if result is None:
            raise SynthesisError("Synthesis returned no result")

        if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
            logger.debug(f"Synthesized {len(result.audio_data)} bytes")
            return SynthesizedAudio(audio=bytes(result.audio_data), sample_rate=self._sample_rate)

        if result.reason == speechsdk.ResultReason.Canceled:
            details = result.cancellation_details
            raise SynthesisError(f"Synthesis canceled: {details.reason} {details.error_details or ''}".strip())

        raise SynthesisError(f"Unexpected synthesis result: {result.reason}")
