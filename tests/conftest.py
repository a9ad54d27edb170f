"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import os
import sys
import pytest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["APP_ENV"] = "test"
os.environ["AZURE_OPENAI_API_KEY"] = "test-key"
os.environ["AZURE_OPENAI_ENDPOINT"] = "https://test.openai.azure.com"
os.environ["AZURE_OPENAI_CHAT_DEPLOYMENT"] = "chat-model"
os.environ["AZURE_SPEECH_API_KEY"] = "test-speech-key"
os.environ["AZURE_SPEECH_REGION"] = "westeurope"

from tests.fakes import (  # noqa: E402
    FakeCapture,
    FakeGenerator,
    FakeSpeakerOutput,
    FakeSynthesizer,
    FakeTranscriptionClient,
)


@pytest.fixture
def capture():
    """Microphone with one device that stays open until stopped."""
    return FakeCapture()


@pytest.fixture
def transcription_client():
    """Transcription client handing out idle streams."""
    return FakeTranscriptionClient()


@pytest.fixture
def synthesizer():
    """Instant synthesizer."""
    return FakeSynthesizer()


@pytest.fixture
def speaker():
    """Speaker whose playback lasts 50 ms."""
    return FakeSpeakerOutput(duration=0.05)


@pytest.fixture
def generator():
    """Response generator with a fixed reply."""
    return FakeGenerator()


@pytest.fixture
def scope():
    """Fresh application scope."""
    from voiceloop.realtime.cancellation import CancellationScope
    return CancellationScope(name="application")


@pytest.fixture
def mock_sd():
    """sounddevice replaced by a mock reporting one input and one output device."""
    from unittest.mock import MagicMock, patch

    sd = MagicMock()
    sd.query_devices.return_value = [
        {"name": "Built-in Microphone", "max_input_channels": 1, "max_output_channels": 0},
        {"name": "Built-in Speakers", "max_input_channels": 0, "max_output_channels": 2},
    ]
    sd.default.device = (0, 1)
    sd.CallbackStop = type("CallbackStop", (Exception,), {})
    sd.CallbackAbort = type("CallbackAbort", (Exception,), {})

    with patch("voiceloop.realtime.audio_capture.sd", sd), \
            patch("voiceloop.realtime.audio_output.sd", sd):
        yield sd
