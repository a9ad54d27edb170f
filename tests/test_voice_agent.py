"""
Tests for the Voice Assistant entry point and CLI
"""

import asyncio
import pytest
from unittest.mock import patch

from voiceloop.cli import create_parser, main
from voiceloop.realtime.events import TurnEvent, TurnState
from voiceloop.realtime.stt_stream import TranscriptionSession
from voiceloop.realtime.tts_stream import PlaybackSession
from voiceloop.realtime.turn_coordinator import TurnConfig, TurnCoordinator
from voiceloop.realtime.voice_agent import VoiceAssistant, print_state
from tests.fakes import (
    FakeCapture,
    FakeGenerator,
    FakeSpeakerOutput,
    FakeSynthesizer,
    FakeTranscriptionClient,
)


def idle_coordinator(capture=None, speaker=None):
    capture = capture or FakeCapture()
    speaker = speaker or FakeSpeakerOutput()
    return TurnCoordinator(
        TranscriptionSession(FakeTranscriptionClient(), capture),
        FakeGenerator(),
        PlaybackSession(FakeSynthesizer(), speaker, language_code="en-US", voice_name="voice"),
        capture=capture,
        config=TurnConfig(listen_timeout_s=5.0, interruption_timeout_s=5.0, error_backoff_s=0.01),
    )


class TestVoiceAssistant:
    """Tests for VoiceAssistant lifecycle."""

    @pytest.mark.asyncio
    async def test_stop_ends_run(self):
        capture, speaker = FakeCapture(), FakeSpeakerOutput()
        assistant = VoiceAssistant(coordinator=idle_coordinator(capture, speaker))

        task = asyncio.create_task(assistant.run())
        await asyncio.sleep(0.05)
        assert assistant.is_running
        assert assistant.state == "LISTENING"

        assistant.stop()
        await asyncio.wait_for(task, 2.0)

        assert not assistant.is_running
        assert assistant.state == "SHUTTING_DOWN"
        assert speaker.close_calls == 1
        assert capture.stop_calls >= 1

    @pytest.mark.asyncio
    async def test_task_cancellation_shuts_down(self):
        assistant = VoiceAssistant(coordinator=idle_coordinator())

        task = asyncio.create_task(assistant.run())
        await asyncio.sleep(0.05)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert not assistant.is_running
        assert assistant.state == "SHUTTING_DOWN"

    @pytest.mark.asyncio
    async def test_stats(self):
        assistant = VoiceAssistant(coordinator=idle_coordinator())
        assistant.stop()
        await assistant.run()

        assert assistant.stats["turns"] == 0
        assert assistant.stats["state"] == "SHUTTING_DOWN"


class TestPrintState:
    """Tests for the console state display."""

    def test_listening(self, capsys):
        print_state(TurnEvent(state=TurnState.LISTENING, previous_state=TurnState.IDLE))
        assert "Listening" in capsys.readouterr().out

    def test_idle_is_silent(self, capsys):
        print_state(TurnEvent(state=TurnState.IDLE, previous_state=TurnState.LISTENING))
        assert capsys.readouterr().out == ""


class TestCli:
    """Tests for argument parsing and the diagnostic commands."""

    @pytest.fixture(autouse=True)
    def no_logging_setup(self):
        # main() would attach a handler to the captured stderr
        with patch("voiceloop.cli.init_logging"):
            yield

    def test_default_command_is_run(self):
        from voiceloop.cli import cmd_run

        args = create_parser().parse_args([])
        assert args.func is cmd_run
        assert args.listen_timeout is None

    def test_run_overrides(self):
        args = create_parser().parse_args(["run", "--listen-timeout", "20", "--interruption-timeout", "30"])
        assert args.listen_timeout == 20.0
        assert args.interruption_timeout == 30.0

    def test_devices(self, mock_sd, capsys):
        assert main(["devices"]) == 0
        out = capsys.readouterr().out
        assert "Built-in Microphone" in out
        assert "[default output]" in out

    def test_check_passes(self, mock_sd, capsys):
        assert main(["check"]) == 0
        assert "All checks passed" in capsys.readouterr().out

    def test_check_reports_missing_devices(self, mock_sd, capsys):
        mock_sd.query_devices.return_value = []
        assert main(["check"]) == 1
        out = capsys.readouterr().out
        assert "No audio recording devices found." in out
        assert "No audio playback devices found." in out
