"""
Error taxonomy for the voice loop.

Leaf components (capture, transcription, generation, playback) catch these
and convert them into typed results, so the turn coordinator only interprets
outcomes and never sees a raw transport exception.
"""

from typing import Optional


class VoiceLoopError(Exception):
    """Base class for all voice loop errors."""


class NoDeviceError(VoiceLoopError):
    """No capture or playback device is present. Terminal for one session only."""

    def __init__(self, kind: str = "audio recording"):
        super().__init__(f"No {kind} devices found.")
        self.kind = kind


class StreamError(VoiceLoopError):
    """A remote collaborator failed while streaming."""


class TranscriptionError(StreamError):
    """The transcription stream reported an error."""

    def __init__(self, message: str, code: Optional[str] = None):
        detail = f"{message} (Code: {code})" if code else message
        super().__init__(f"Speech API Error: {detail}")
        self.code = code


class SynthesisError(StreamError):
    """Speech synthesis did not produce audio."""


class PlaybackError(StreamError):
    """The playback driver reported an error."""


class EmptyInputError(VoiceLoopError):
    """Nothing to generate from or nothing to speak."""


class OperationCancelled(VoiceLoopError):
    """
    The operation's cancellation scope fired before it finished.

    Not a failure: barge-in and shutdown both end sessions this way.
    """

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "operation cancelled")
        self.reason = reason
