"""
Collaborator Interfaces

Contracts for the remote speech services the voice loop talks to. The
real-time components depend only on these abstractions; Azure
implementations live in voiceloop.core.speech.

Architecture:
- TranscriptionClient / TranscriptionStream: bidirectional streaming recognition
- SpeechSynthesizer: one-shot text-to-audio synthesis
- Value types for the requests and responses crossing the boundary
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional


PCM16 = "PCM16"

# Fixed capture profile: 16-bit PCM, mono, 16 kHz
SAMPLE_RATE = 16000
CHANNELS = 1
SAMPLE_WIDTH = 2


@dataclass
class TranscriptResult:
    """One event from the transcription stream."""
    text: str = ""
    is_final: bool = False
    stability: float = 0.0
    error_code: Optional[str] = None
    error_message: str = ""

    @property
    def is_error(self) -> bool:
        return self.error_code is not None


@dataclass(frozen=True)
class StreamingConfig:
    """
    One-time configuration sent when a transcription stream opens.

    Attributes:
        language_code: Recognition language (BCP-47)
        sample_rate: Sample rate of the audio that will be written
        encoding: Audio encoding of the written bytes
        enable_punctuation: Request punctuated transcripts
        interim_results: Request partial results in addition to finals
    """
    language_code: str
    sample_rate: int = SAMPLE_RATE
    encoding: str = PCM16
    enable_punctuation: bool = True
    interim_results: bool = True


@dataclass(frozen=True)
class SynthesisRequest:
    """Text-to-speech request."""
    text: str
    language_code: str
    voice_name: str
    audio_encoding: str = PCM16


@dataclass(frozen=True)
class SynthesizedAudio:
    """Complete synthesized audio buffer (16-bit mono PCM)."""
    audio: bytes
    sample_rate: int

    @property
    def duration_ms(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return 1000.0 * len(self.audio) / (self.sample_rate * 2)


class TranscriptionStream(ABC):
    """
    One open recognition stream.

    Audio is written with write(), end-of-audio is signalled with
    write_complete(), and results() yields TranscriptResult events until the
    collaborator ends the stream.
    """

    @property
    @abstractmethod
    def is_write_open(self) -> bool:
        """Whether the stream still accepts audio."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Send one block of audio."""

    @abstractmethod
    async def write_complete(self) -> None:
        """Signal that no more audio will be written."""

    @abstractmethod
    def results(self) -> AsyncIterator[TranscriptResult]:
        """Async iterator over result events, ending with the stream."""

    @abstractmethod
    async def close(self) -> None:
        """Release the stream. Safe to call more than once."""


class TranscriptionClient(ABC):
    """Factory for transcription streams."""

    @abstractmethod
    async def open_stream(self, config: StreamingConfig) -> TranscriptionStream:
        """Open a stream and send the streaming configuration."""


class SpeechSynthesizer(ABC):
    """Text-to-speech collaborator."""

    @abstractmethod
    async def synthesize(self, request: SynthesisRequest) -> SynthesizedAudio:
        """
        Synthesize text to a complete audio buffer.

        Raises:
            SynthesisError: If no audio was produced
        """
