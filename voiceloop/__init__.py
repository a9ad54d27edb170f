"""
Voice Loop - Source Package

A spoken-dialogue loop with barge-in on Azure Speech and Azure OpenAI.

This package provides:
- Microphone capture and speaker playback over sounddevice
- Streaming recognition and cancellable synthesis/playback sessions
- A turn state machine that lets the user interrupt the assistant
- CLI interface for running and troubleshooting
"""

__version__ = "1.0.0"

from voiceloop.config import settings

__all__ = ["settings", "__version__"]
