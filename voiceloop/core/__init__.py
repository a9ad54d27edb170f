"""
Core Module Package

Collaborator contracts and remote-service clients:
- Interfaces: Transcription and synthesis abstractions plus their value types
- LLM: Response generation over Azure OpenAI
- Speech: Azure Speech SDK implementations (imported explicitly from
  voiceloop.core.speech, since it needs the native SDK)
"""

from voiceloop.core.interfaces import (
    SpeechSynthesizer,
    StreamingConfig,
    SynthesisRequest,
    SynthesizedAudio,
    TranscriptionClient,
    TranscriptionStream,
    TranscriptResult,
)
from voiceloop.core.llm import ResponseGenerator, is_error_response

__all__ = [
    "SpeechSynthesizer",
    "StreamingConfig",
    "SynthesisRequest",
    "SynthesizedAudio",
    "TranscriptionClient",
    "TranscriptionStream",
    "TranscriptResult",
    "ResponseGenerator",
    "is_error_response",
]
