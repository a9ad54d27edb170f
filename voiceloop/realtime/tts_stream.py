"""
Cancellable Text-to-Speech Playback Module

speak() synthesizes the whole response first, then plays it on the speaker:
- Cancellation during synthesis never touches the speaker
- Cancellation during playback stops the device immediately
- The speaker is released on every exit path

Outcomes are reported as PlaybackResult (COMPLETED, INTERRUPTED, FAILED).
"""

from typing import Optional

from voiceloop.config import settings
from voiceloop.core.interfaces import PCM16, SpeechSynthesizer, SynthesisRequest, SynthesizedAudio
from voiceloop.errors import (
    EmptyInputError,
    NoDeviceError,
    OperationCancelled,
    PlaybackError,
)
from voiceloop.logger import get_logger
from .audio_output import SpeakerOutput
from .cancellation import CancellationScope
from .events import PlaybackResult, PlaybackStatus

logger = get_logger(__name__)


class PlaybackSession:
    """
    Speaks responses through a synthesizer and a speaker.

    Usage:
        player = PlaybackSession(synthesizer, SpeakerOutput())
        result = await player.speak("Hello there!", scope)
        if result.status == PlaybackStatus.INTERRUPTED:
            ...
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        output: SpeakerOutput,
        language_code: Optional[str] = None,
        voice_name: Optional[str] = None,
    ):
        self._synthesizer = synthesizer
        self._output = output
        self._language_code = language_code or settings.speech.tts_language
        self._voice_name = voice_name or settings.speech.voice_name

    async def speak(self, text: str, cancel: CancellationScope) -> PlaybackResult:
        """
        Synthesize and play text.

        Returns:
            PlaybackResult; only asyncio.CancelledError propagates
        """
        if not text or not text.strip():
            error = EmptyInputError("Nothing to speak")
            logger.warning(str(error))
            return PlaybackResult(PlaybackStatus.FAILED, error=str(error))

        if cancel.is_cancelled:
            return PlaybackResult(PlaybackStatus.INTERRUPTED)

        request = SynthesisRequest(
            text=text.strip(),
            language_code=self._language_code,
            voice_name=self._voice_name,
            audio_encoding=PCM16,
        )

        try:
            audio = await cancel.run(self._synthesizer.synthesize(request))
        except OperationCancelled:
            logger.debug("Cancelled during synthesis")
            return PlaybackResult(PlaybackStatus.INTERRUPTED)
        except Exception as e:
            logger.error(f"Synthesis failed: {e}")
            return PlaybackResult(PlaybackStatus.FAILED, error=str(e))

        if not audio.audio:
            return PlaybackResult(PlaybackStatus.FAILED, error="Synthesis produced no audio")

        return await self._play(audio, cancel)

    async def _play(self, audio: SynthesizedAudio, cancel: CancellationScope) -> PlaybackResult:
        playback = None
        try:
            async with self._output.open(audio.audio, audio.sample_rate) as playback:
                with cancel.register(playback.stop):
                    await playback.wait()
        except NoDeviceError as e:
            logger.warning(str(e))
            return PlaybackResult(PlaybackStatus.FAILED, error=str(e))
        except PlaybackError as e:
            logger.error(str(e))
            return PlaybackResult(
                PlaybackStatus.FAILED,
                error=str(e),
                bytes_played=playback.bytes_played if playback else 0,
            )

        result = PlaybackResult(
            PlaybackStatus.INTERRUPTED if playback.was_stopped else PlaybackStatus.COMPLETED,
            bytes_played=playback.bytes_played,
            duration_ms=playback.duration_ms,
        )
        logger.debug(
            f"Playback {result.status.name.lower()} after {result.duration_ms:.0f}ms "
            f"of {audio.duration_ms:.0f}ms"
        )
        return result

    def close(self) -> None:
        """Stop any active playback."""
        self._output.close()
