"""
Real-Time Voice Loop Module

Barge-in conversation built from four leaf components and one coordinator.

Architecture:
- Audio Capture: Microphone chunks from sounddevice
- STT Stream: One listening session per call, typed RecognitionResult
- TTS Stream: Synthesize then play, cancellable at any point
- Turn Coordinator: Listen, generate, then speak while listening for barge-in
- Cancellation: Hierarchical one-shot scopes tying sessions to the app

Usage:
    from voiceloop.realtime import VoiceAssistant

    assistant = VoiceAssistant()
    await assistant.run()
"""

from .events import (
    AudioChunk,
    PlaybackResult,
    PlaybackStatus,
    RecognitionResult,
    RecognitionStatus,
    TurnEvent,
    TurnOutcome,
    TurnState,
    TurnStatus,
)
from .cancellation import CancellationScope, Registration
from .audio_capture import AudioCapture, list_audio_devices
from .audio_output import SpeakerOutput, SpeakerPlayback
from .stt_stream import TranscriptAggregator, TranscriptionSession
from .tts_stream import PlaybackSession
from .turn_coordinator import TurnConfig, TurnCoordinator
from .voice_agent import VoiceAssistant, build_coordinator, print_banner, run_voice_assistant

__all__ = [
    # Events
    "AudioChunk",
    "PlaybackResult",
    "PlaybackStatus",
    "RecognitionResult",
    "RecognitionStatus",
    "TurnEvent",
    "TurnOutcome",
    "TurnState",
    "TurnStatus",
    # Cancellation
    "CancellationScope",
    "Registration",
    # Devices
    "AudioCapture",
    "list_audio_devices",
    "SpeakerOutput",
    "SpeakerPlayback",
    # STT
    "TranscriptAggregator",
    "TranscriptionSession",
    # TTS
    "PlaybackSession",
    # Coordinator
    "TurnConfig",
    "TurnCoordinator",
    # Voice Assistant
    "VoiceAssistant",
    "build_coordinator",
    "print_banner",
    "run_voice_assistant",
]
