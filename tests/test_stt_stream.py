"""
Tests for the Transcription Session

Covers utterance aggregation, the cancellation-after-final rule, device
short-circuit, error classification and end-of-audio flushing.
"""

import asyncio
import time
import pytest

from voiceloop.core.interfaces import PCM16, SAMPLE_RATE
from voiceloop.realtime.cancellation import CancellationScope
from voiceloop.realtime.events import RecognitionStatus
from voiceloop.realtime.stt_stream import TranscriptAggregator, TranscriptionSession
from tests.fakes import (
    CHUNK,
    FakeCapture,
    FakeTranscriptionClient,
    FakeTranscriptionStream,
    final,
    interim,
    stream_error,
)


def make_session(stream=None, capture=None, client=None, separator=""):
    client = client or FakeTranscriptionClient([stream] if stream else [])
    capture = capture or FakeCapture()
    session = TranscriptionSession(client, capture, flush_timeout_s=0.5, separator=separator)
    return session, client, capture


class TestTranscriptAggregator:
    """Tests for utterance aggregation."""

    def test_only_finals_in_order(self):
        aggregator = TranscriptAggregator(separator=" ")
        aggregator.add("turn on")
        aggregator.add("the lights")

        assert aggregator.text == "turn on the lights"
        assert aggregator.final_count == 2

    def test_text_is_trimmed(self):
        aggregator = TranscriptAggregator()
        aggregator.add("  hello ")

        assert aggregator.text == "hello"

    def test_empty_finals_still_count(self):
        aggregator = TranscriptAggregator()
        aggregator.add("")

        assert aggregator.final_count == 1
        assert aggregator.text == ""


class TestRecognize:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_interim_then_final(self, scope):
        """Scenario A: an interim and a final, then end of stream."""
        stream = FakeTranscriptionStream([(0, interim("hal")), (0, final("haló"))])
        session, _, _ = make_session(stream)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.COMPLETED
        assert result.text == "haló"
        assert result.is_valid
        assert stream.closed

    @pytest.mark.asyncio
    async def test_interims_never_reach_the_utterance(self, scope):
        stream = FakeTranscriptionStream([
            (0, interim("what")),
            (0, interim("what is")),
            (0, final("What is")),
            (0, interim("the")),
            (0, interim("the time")),
            (0, final("the time?")),
            (0, interim("and")),
        ])
        session, _, _ = make_session(stream, separator=" ")

        result = await session.recognize(scope, max_duration_s=5)

        assert result.text == "What is the time?"
        assert result.final_segments == 2

    @pytest.mark.asyncio
    async def test_streaming_config(self, scope):
        session, client, _ = make_session(FakeTranscriptionStream([(0, final("ok"))]))

        await session.recognize(scope, max_duration_s=5)

        config = client.configs[0]
        assert config.sample_rate == SAMPLE_RATE
        assert config.encoding == PCM16
        assert config.interim_results is True

    @pytest.mark.asyncio
    async def test_audio_is_forwarded(self, scope):
        stream = FakeTranscriptionStream(end_after_script=False, trailing=[final("done")])
        capture = FakeCapture(chunks=[CHUNK] * 4, endless=False)
        session, _, _ = make_session(stream, capture)

        result = await session.recognize(scope, max_duration_s=5)

        assert stream.written == [CHUNK] * 4
        assert result.bytes_sent == 4 * len(CHUNK)

    @pytest.mark.asyncio
    async def test_end_of_audio_flushes_trailing_final(self, scope):
        """write_complete() comes before the rest of the results are read."""
        stream = FakeTranscriptionStream(end_after_script=False, trailing=[final("trailing words")])
        capture = FakeCapture(endless=False)
        session, _, _ = make_session(stream, capture)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.COMPLETED
        assert result.text == "trailing words"
        assert stream.events[:2] == ["write_complete", "flush"]
        assert stream.events[-1] == "close"

    @pytest.mark.asyncio
    async def test_single_utterance_stops_at_first_final(self, scope):
        stream = FakeTranscriptionStream([(0.02, final("stop"))], end_after_script=False)
        session, _, capture = make_session(stream)

        result = await asyncio.wait_for(
            session.recognize(scope, max_duration_s=10, single_utterance=True), 2.0
        )

        assert result.status == RecognitionStatus.COMPLETED
        assert result.text == "stop"
        assert capture.stop_calls >= 1

    @pytest.mark.asyncio
    async def test_single_utterance_skips_slow_flush(self, scope):
        """A final in hand is returned without waiting for the stream to end."""
        stream = FakeTranscriptionStream([(0.02, final("stop"))], end_after_script=False, end_delay=1.0)
        session, _, _ = make_session(stream)

        started = time.monotonic()
        result = await session.recognize(scope, max_duration_s=10, single_utterance=True)

        assert time.monotonic() - started < 0.5
        assert result.status == RecognitionStatus.COMPLETED
        assert result.text == "stop"
        assert "flush" not in stream.events
        assert stream.closed

    @pytest.mark.asyncio
    async def test_on_final_reports_each_final(self, scope):
        stream = FakeTranscriptionStream(
            [(0, interim("tur")), (0, final("turn left")), (0, final("  ")), (0, final("now"))]
        )
        session, _, _ = make_session(stream)
        heard = []

        await session.recognize(scope, max_duration_s=5, on_final=heard.append)

        assert heard == ["turn left", "now"]

    @pytest.mark.asyncio
    async def test_on_final_failure_is_not_a_stream_error(self, scope):
        def broken(text):
            raise RuntimeError("callback failed")

        stream = FakeTranscriptionStream([(0, final("hello"))])
        session, _, _ = make_session(stream)

        result = await session.recognize(scope, max_duration_s=5, on_final=broken)

        assert result.status == RecognitionStatus.COMPLETED
        assert result.error is None

    @pytest.mark.asyncio
    async def test_max_duration_ends_session(self, scope):
        stream = FakeTranscriptionStream(end_after_script=False)
        session, _, _ = make_session(stream)

        result = await asyncio.wait_for(session.recognize(scope, max_duration_s=0.05), 2.0)

        assert result.status == RecognitionStatus.NO_SPEECH
        assert stream.write_completed


class TestCancellation:
    """Tests for cancellation during a session."""

    @pytest.mark.asyncio
    async def test_cancel_after_final_returns_text(self):
        """A captured final survives the listener being cancelled."""
        scope = CancellationScope()
        stream = FakeTranscriptionStream([(0, final("stop"))], end_after_script=False)
        session, _, _ = make_session(stream)

        task = asyncio.create_task(session.recognize(scope, max_duration_s=10))
        await asyncio.sleep(0.05)
        scope.cancel("playback finished")
        result = await task

        assert result.status == RecognitionStatus.COMPLETED
        assert result.text == "stop"

    @pytest.mark.asyncio
    async def test_cancel_with_only_interims(self):
        scope = CancellationScope()
        stream = FakeTranscriptionStream([(0, interim("wa")), (0, interim("wait"))], end_after_script=False)
        session, _, _ = make_session(stream)

        task = asyncio.create_task(session.recognize(scope, max_duration_s=10))
        await asyncio.sleep(0.05)
        scope.cancel()
        result = await task

        assert result.status == RecognitionStatus.CANCELLED
        assert result.text == ""
        assert not result.is_valid
        assert stream.closed

    @pytest.mark.asyncio
    async def test_already_cancelled_touches_nothing(self):
        scope = CancellationScope()
        scope.cancel()
        session, client, capture = make_session()

        result = await session.recognize(scope)

        assert result.status == RecognitionStatus.CANCELLED
        assert client.open_calls == 0
        assert capture.start_calls == 0


class TestFailures:
    """Tests for device, stream and write failures."""

    @pytest.mark.asyncio
    async def test_no_device_short_circuits(self, scope):
        session, client, capture = make_session(capture=FakeCapture(devices=0))

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.NO_DEVICE
        assert "No audio recording devices found." in result.error
        assert client.open_calls == 0
        assert capture.start_calls == 0

    @pytest.mark.asyncio
    async def test_open_failure(self, scope):
        client = FakeTranscriptionClient(open_error=ConnectionError("unreachable"))
        session, _, capture = make_session(client=client)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.ERROR
        assert "unreachable" in result.error
        assert capture.start_calls == 0

    @pytest.mark.asyncio
    async def test_stream_error_without_text(self, scope):
        session, _, _ = make_session(FakeTranscriptionStream([(0, stream_error("quota exceeded"))]))

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.ERROR
        assert "Speech API Error" in result.error
        assert "quota exceeded" in result.error

    @pytest.mark.asyncio
    async def test_stream_error_keeps_partial_text(self, scope):
        stream = FakeTranscriptionStream([(0, final("turn it")), (0, stream_error())])
        session, _, _ = make_session(stream)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.COMPLETED
        assert result.text == "turn it"
        assert result.error is not None

    @pytest.mark.asyncio
    async def test_write_failures_are_not_fatal(self, scope):
        stream = FakeTranscriptionStream(end_after_script=False, trailing=[final("hello")], fail_writes=2)
        capture = FakeCapture(chunks=[CHUNK] * 3, endless=False)
        session, _, _ = make_session(stream, capture)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.COMPLETED
        assert result.text == "hello"
        assert stream.write_calls == 3
        assert result.bytes_sent == len(CHUNK)

    @pytest.mark.asyncio
    async def test_capture_failure_without_text(self, scope):
        capture = FakeCapture(error=OSError("device unplugged"))
        session, _, _ = make_session(FakeTranscriptionStream(end_after_script=False), capture)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.ERROR
        assert "device unplugged" in result.error

    @pytest.mark.asyncio
    async def test_no_audio(self, scope):
        stream = FakeTranscriptionStream(end_after_script=False)
        capture = FakeCapture(chunks=[], endless=False)
        session, _, _ = make_session(stream, capture)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.NO_AUDIO
        assert result.describe() == "No audio data captured."

    @pytest.mark.asyncio
    async def test_no_speech(self, scope):
        stream = FakeTranscriptionStream(end_after_script=False)
        capture = FakeCapture(endless=False)
        session, _, _ = make_session(stream, capture)

        result = await session.recognize(scope, max_duration_s=5)

        assert result.status == RecognitionStatus.NO_SPEECH
        assert result.bytes_sent > 0
