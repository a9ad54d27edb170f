"""
Event and Outcome Types for the Voice Loop

Value types passed between the real-time components:
- AudioChunk: One captured block of PCM audio
- TranscriptResult: Partial/final result from the transcription stream
- RecognitionResult: Tagged outcome of one listening session
- PlaybackResult: Tagged outcome of one playback session
- TurnState / TurnEvent: Conversation state machine and its transitions
- TurnOutcome: How one conversation turn ended

Every collaborator-facing operation returns one of these tagged results
instead of raising, which keeps the turn state machine a flat transition table.
"""

import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from voiceloop.core.interfaces import CHANNELS, SAMPLE_RATE, SAMPLE_WIDTH, TranscriptResult


# ============================================================================
# Audio
# ============================================================================

@dataclass(frozen=True)
class AudioChunk:
    """Raw PCM block delivered by one capture callback."""
    data: bytes
    timestamp: float = field(default_factory=time.monotonic)

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def duration_ms(self) -> float:
        """Duration of the chunk at the fixed capture profile."""
        return 1000.0 * self.length / (SAMPLE_RATE * CHANNELS * SAMPLE_WIDTH)


# ============================================================================
# Speech-to-Text
# ============================================================================

class RecognitionStatus(Enum):
    """Terminal state of a listening session."""
    COMPLETED = auto()   # At least one final segment (or stream ended cleanly)
    NO_SPEECH = auto()   # Audio was sent but nothing was recognized
    NO_AUDIO = auto()    # No audio reached the stream
    CANCELLED = auto()   # Scope fired before any final segment
    NO_DEVICE = auto()   # No microphone present
    ERROR = auto()       # Stream or capture failure with nothing captured


@dataclass
class RecognitionResult:
    """Outcome of TranscriptionSession.recognize()."""
    status: RecognitionStatus
    text: str = ""
    error: Optional[str] = None
    final_segments: int = 0
    bytes_sent: int = 0

    @property
    def is_valid(self) -> bool:
        """True only for a completed session that produced usable text."""
        return self.status == RecognitionStatus.COMPLETED and bool(self.text.strip())

    def describe(self) -> str:
        """One-line status for the console."""
        if self.status == RecognitionStatus.NO_DEVICE:
            return "No audio recording devices found."
        if self.status == RecognitionStatus.NO_AUDIO:
            return "No audio data captured."
        if self.status == RecognitionStatus.NO_SPEECH:
            return "No speech detected or recognized."
        if self.status == RecognitionStatus.CANCELLED:
            return "Listening cancelled."
        if self.status == RecognitionStatus.ERROR:
            return f"Error during recognition: {self.error}"
        if not self.text.strip():
            return "Input was empty."
        return self.text


# ============================================================================
# Text-to-Speech
# ============================================================================

class PlaybackStatus(Enum):
    """Terminal state of a playback session."""
    COMPLETED = auto()    # Driver reported natural end of audio
    INTERRUPTED = auto()  # Cancellation scope fired (barge-in or shutdown)
    FAILED = auto()       # Synthesis, device or driver error


@dataclass
class PlaybackResult:
    """Outcome of PlaybackSession.speak()."""
    status: PlaybackStatus
    error: Optional[str] = None
    bytes_played: int = 0
    duration_ms: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status == PlaybackStatus.COMPLETED


# ============================================================================
# Turn State Machine
# ============================================================================

class TurnState(Enum):
    """State of the conversation turn loop."""
    IDLE = auto()
    LISTENING = auto()
    GENERATING = auto()
    SPEAKING_AND_LISTENING = auto()
    SHUTTING_DOWN = auto()


@dataclass
class TurnEvent:
    """Turn state change notification."""
    state: TurnState = TurnState.IDLE
    previous_state: TurnState = TurnState.IDLE
    timestamp: float = field(default_factory=time.time)


class TurnStatus(Enum):
    """How a single turn ended."""
    NO_INPUT = auto()           # Listening produced no usable utterance
    GENERATION_FAILED = auto()  # Response generator returned an error marker
    COMPLETED = auto()          # Response played to the end
    INTERRUPTED = auto()        # User barged in; their text carries over
    PLAYBACK_FAILED = auto()    # Response could not be played
    SHUTDOWN = auto()           # Application scope fired mid-turn


@dataclass
class TurnOutcome:
    """Result of TurnCoordinator.run_turn()."""
    status: TurnStatus
    user_text: str = ""
    response_text: str = ""
    interruption: Optional[str] = None
    recognition: Optional[RecognitionResult] = None
    playback: Optional[PlaybackResult] = None
