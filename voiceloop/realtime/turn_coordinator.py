"""
Turn Coordinator Module

Runs the conversation as a loop of turns:

    IDLE -> LISTENING -> GENERATING -> SPEAKING_AND_LISTENING -> IDLE

While a response plays, a second listener runs for barge-in. Whichever
side settles first decides the turn:
- Playback completes: the listener is cancelled and anything it heard is
  dropped
- The listener returns a final, non-empty utterance: playback is stopped and
  the utterance becomes the next turn's input, skipping LISTENING

Both operations are always awaited to the end before the next turn starts.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from voiceloop.config import settings
from voiceloop.core.llm import ResponseGenerator, is_error_response
from voiceloop.errors import OperationCancelled
from voiceloop.logger import get_logger
from .audio_capture import AudioCapture
from .cancellation import CancellationScope
from .events import (
    PlaybackResult,
    PlaybackStatus,
    RecognitionResult,
    TurnEvent,
    TurnOutcome,
    TurnState,
    TurnStatus,
)
from .stt_stream import TranscriptionSession
from .tts_stream import PlaybackSession

logger = get_logger(__name__)


@dataclass
class TurnConfig:
    """Timing of one conversation turn."""
    listen_timeout_s: float = field(default_factory=lambda: settings.conversation.listen_timeout_s)
    interruption_timeout_s: float = field(default_factory=lambda: settings.conversation.interruption_timeout_s)
    error_backoff_s: float = field(default_factory=lambda: settings.conversation.error_backoff_s)
    listen_single_utterance: bool = field(
        default_factory=lambda: settings.conversation.listen_single_utterance
    )


class TurnCoordinator:
    """
    Conversation turn state machine.

    Usage:
        coordinator = TurnCoordinator(transcriber, generator, player, capture)
        await coordinator.run(app_scope)    # returns once app_scope is cancelled
    """

    def __init__(
        self,
        transcriber: TranscriptionSession,
        generator: ResponseGenerator,
        player: PlaybackSession,
        capture: Optional[AudioCapture] = None,
        config: Optional[TurnConfig] = None,
        on_state_change: Optional[Callable[[TurnEvent], None]] = None,
    ):
        self._transcriber = transcriber
        self._generator = generator
        self._player = player
        self._capture = capture
        self._config = config or TurnConfig()
        self._on_state_change = on_state_change

        self._state = TurnState.IDLE
        self._pending_input: Optional[str] = None

        self._stats: Dict[str, int] = {
            "turns": 0,
            "completed": 0,
            "interruptions": 0,
            "no_input": 0,
            "generation_failures": 0,
            "playback_failures": 0,
            "errors": 0,
        }

    # ========================================================================
    # Main loop
    # ========================================================================

    async def run(self, app_scope: CancellationScope) -> None:
        """Run turns until the application scope is cancelled."""
        logger.info("Conversation loop started")
        try:
            while not app_scope.is_cancelled:
                try:
                    await self.run_turn(app_scope)
                except Exception as e:
                    self._stats["errors"] += 1
                    self._pending_input = None
                    logger.error(f"Unexpected error in turn: {e}", exc_info=True)
                    if not app_scope.is_cancelled:
                        self._set_state(TurnState.IDLE)
                    await app_scope.sleep(self._config.error_backoff_s)
        finally:
            self._set_state(TurnState.SHUTTING_DOWN)
            self._release_devices()
            logger.info("Conversation loop stopped")

    async def run_turn(self, app_scope: CancellationScope) -> TurnOutcome:
        """Run one turn and return how it ended."""
        if app_scope.is_cancelled:
            return TurnOutcome(TurnStatus.SHUTDOWN)

        self._stats["turns"] += 1
        user_text, self._pending_input = self._pending_input, None
        recognition: Optional[RecognitionResult] = None

        # LISTENING (skipped when an interruption carried over)
        if user_text is None:
            self._set_state(TurnState.LISTENING)
            recognition = await self._transcriber.recognize(
                app_scope,
                max_duration_s=self._config.listen_timeout_s,
                single_utterance=self._config.listen_single_utterance,
            )
            if app_scope.is_cancelled:
                return TurnOutcome(TurnStatus.SHUTDOWN, recognition=recognition)
            if not recognition.is_valid:
                self._stats["no_input"] += 1
                logger.info(recognition.describe())
                self._set_state(TurnState.IDLE)
                return TurnOutcome(TurnStatus.NO_INPUT, recognition=recognition)
            user_text = recognition.text
        else:
            logger.info(f"Answering interruption: {user_text}")

        # GENERATING
        self._set_state(TurnState.GENERATING)
        try:
            response = await app_scope.run(self._generator.generate(user_text))
        except OperationCancelled:
            return TurnOutcome(TurnStatus.SHUTDOWN, user_text=user_text, recognition=recognition)

        if is_error_response(response):
            self._stats["generation_failures"] += 1
            logger.warning(f"No response to speak: {response}")
            self._set_state(TurnState.IDLE)
            return TurnOutcome(
                TurnStatus.GENERATION_FAILED,
                user_text=user_text,
                response_text=response or "",
                recognition=recognition,
            )

        # SPEAKING_AND_LISTENING
        self._set_state(TurnState.SPEAKING_AND_LISTENING)
        playback, interruption = await self._speak_and_listen(app_scope, response)

        outcome = TurnOutcome(
            TurnStatus.COMPLETED,
            user_text=user_text,
            response_text=response,
            interruption=interruption,
            recognition=recognition,
            playback=playback,
        )

        if interruption is not None:
            self._stats["interruptions"] += 1
            self._pending_input = interruption
            outcome.status = TurnStatus.INTERRUPTED
            logger.info(f"Interrupted by: {interruption}")
        elif app_scope.is_cancelled:
            outcome.status = TurnStatus.SHUTDOWN
            return outcome
        elif playback is None or playback.status == PlaybackStatus.FAILED:
            self._stats["playback_failures"] += 1
            outcome.status = TurnStatus.PLAYBACK_FAILED
            logger.warning(f"Playback failed: {playback.error if playback else 'no result'}")
        else:
            self._stats["completed"] += 1

        self._set_state(TurnState.IDLE)
        return outcome

    # ========================================================================
    # Barge-in race
    # ========================================================================

    async def _speak_and_listen(self, app_scope: CancellationScope, response: str):
        """
        Play the response while listening for an interruption.

        Playback is stopped the moment the listener reports a final segment,
        before the listener has closed its stream.

        Returns:
            (PlaybackResult or None, interruption text or None)
        """
        interruption: Optional[str] = None
        heard_final: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_final(text: str) -> None:
            if not heard_final.done():
                heard_final.set_result(text.strip())

        with app_scope.child("speaking") as scope:
            speak_task = asyncio.create_task(self._player.speak(response, scope))
            listen_task = asyncio.create_task(
                self._transcriber.recognize(
                    scope,
                    max_duration_s=self._config.interruption_timeout_s,
                    single_utterance=True,
                    on_final=on_final,
                )
            )

            try:
                waiting = {speak_task, listen_task, heard_final}
                while True:
                    done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                    # Checked first so a simultaneous finish goes to the interruption
                    if heard_final in done:
                        interruption = heard_final.result()
                        scope.cancel("barge-in")
                        break

                    if listen_task in done:
                        heard = listen_task.result()
                        if heard.is_valid:
                            interruption = heard.text
                            scope.cancel("barge-in")
                            break
                        logger.debug(f"Interruption listener ended without speech: {heard.status.name}")
                        waiting -= {listen_task, heard_final}

                    if speak_task in done:
                        scope.cancel("playback finished")
                        break
            finally:
                scope.cancel("turn ended")
                heard_final.cancel()
                await asyncio.gather(speak_task, listen_task, return_exceptions=True)

        playback = self._task_result(speak_task)
        heard = self._task_result(listen_task)
        if interruption is not None:
            # The drained listener holds every final segment it collected
            if heard is not None and heard.is_valid:
                interruption = heard.text
        elif heard is not None and heard.is_valid:
            logger.debug(f"Discarding speech heard after playback finished: {heard.text}")
        return playback, interruption

    @staticmethod
    def _task_result(task: "asyncio.Task") -> Any:
        if task.cancelled() or task.exception() is not None:
            return None
        return task.result()

    # ========================================================================
    # Helpers
    # ========================================================================

    def _set_state(self, state: TurnState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.debug(f"Turn state: {previous.name} -> {state.name}")
        if self._on_state_change is not None:
            try:
                self._on_state_change(TurnEvent(state=state, previous_state=previous))
            except Exception as e:
                logger.error(f"State change callback failed: {e}")

    def _release_devices(self) -> None:
        if self._capture is not None:
            try:
                self._capture.stop()
            except Exception as e:
                logger.debug(f"Error stopping capture: {e}")
        try:
            self._player.close()
        except Exception as e:
            logger.debug(f"Error closing player: {e}")

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def pending_input(self) -> Optional[str]:
        return self._pending_input

    @property
    def stats(self) -> Dict[str, Any]:
        return {"state": self._state.name, **self._stats}
