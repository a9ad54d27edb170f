"""
Voice Assistant Module

Main entry point for the barge-in voice loop: wires the Azure
collaborators and the audio devices into a TurnCoordinator and runs it
under an application cancellation scope until Ctrl+C or SIGTERM.
"""

import asyncio
import signal
from typing import Any, Callable, Dict, Optional

from voiceloop.config import settings
from voiceloop.core.llm import ResponseGenerator
from voiceloop.logger import get_logger
from .audio_capture import AudioCapture
from .audio_output import SpeakerOutput
from .cancellation import CancellationScope
from .events import TurnEvent
from .stt_stream import TranscriptionSession
from .tts_stream import PlaybackSession
from .turn_coordinator import TurnConfig, TurnCoordinator

logger = get_logger(__name__)


def build_coordinator(
    on_state_change: Optional[Callable[[TurnEvent], None]] = None,
) -> TurnCoordinator:
    """
    Create a coordinator backed by Azure Speech, Azure OpenAI and the
    configured sound devices.

    Raises:
        ValueError: If Azure Speech is not configured
    """
    # Deferred so the rest of the package works without the native Speech SDK
    from voiceloop.core.speech import AzureSpeechSynthesizer, AzureTranscriptionClient

    capture = AudioCapture(settings.audio)
    transcriber = TranscriptionSession(
        AzureTranscriptionClient(settings.speech),
        capture,
        separator=settings.conversation.segment_separator,
    )
    player = PlaybackSession(
        AzureSpeechSynthesizer(settings.speech),
        SpeakerOutput(settings.audio),
    )
    generator = ResponseGenerator(settings.azure, settings.llm)

    return TurnCoordinator(
        transcriber,
        generator,
        player,
        capture=capture,
        config=TurnConfig(),
        on_state_change=on_state_change,
    )


class VoiceAssistant:
    """
    Barge-in voice assistant.

    Usage:
        assistant = VoiceAssistant()
        await assistant.run()

    Or with a prepared coordinator:
        assistant = VoiceAssistant(coordinator=my_coordinator)
        await assistant.run()
    """

    def __init__(
        self,
        coordinator: Optional[TurnCoordinator] = None,
        on_state_change: Optional[Callable[[TurnEvent], None]] = None,
    ):
        self._coordinator = coordinator or build_coordinator(on_state_change)
        self._scope = CancellationScope(name="application")
        self._running = False

    async def run(self) -> None:
        """Run until stop() is called or a shutdown signal arrives."""
        self._running = True

        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows, or not running in the main thread
                pass

        try:
            logger.info("Voice assistant running - speak to interact, Ctrl+C to exit")
            await self._coordinator.run(self._scope)
        except asyncio.CancelledError:
            logger.info("Voice assistant cancelled")
            self._scope.cancel("task cancelled")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            self._running = False
            logger.info(f"Voice assistant stopped: {self._coordinator.stats}")

    def stop(self, reason: str = "stop requested") -> None:
        """Cancel the application scope; run() returns once the turn unwinds."""
        self._scope.cancel(reason)

    def _signal_handler(self) -> None:
        logger.info("Shutdown signal received")
        self.stop("shutdown signal")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> str:
        return self._coordinator.state.name

    @property
    def stats(self) -> Dict[str, Any]:
        return self._coordinator.stats


async def run_voice_assistant() -> None:
    """Convenience function to build and run the assistant."""
    assistant = VoiceAssistant(on_state_change=print_state)
    await assistant.run()


def print_state(event: TurnEvent) -> None:
    labels = {
        "LISTENING": "Listening...",
        "GENERATING": "Thinking...",
        "SPEAKING_AND_LISTENING": "Speaking (interrupt any time)...",
    }
    label = labels.get(event.state.name)
    if label:
        print(f"  [{label}]")


def print_banner() -> None:
    """Print startup banner."""
    print("\n" + "=" * 60)
    print("Voice Loop")
    print("=" * 60)
    print(f"  Recognition: {settings.speech.language}")
    print(f"  Voice:       {settings.speech.voice_name}")
    print(f"  Model:       {settings.azure.chat_deployment}")
    print("-" * 60)
    print("Controls:")
    print("  - Speak naturally to interact")
    print("  - Talk over the assistant to interrupt it")
    print("  - Press Ctrl+C to quit")
    print("-" * 60)
