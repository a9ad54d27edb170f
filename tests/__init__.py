"""
Test Package Initialization

This package contains all unit tests for the voice loop. Devices and remote
services are replaced by the in-memory fakes in fakes.py.

Test Structure:
- test_config.py: Configuration tests
- test_cancellation.py: Cancellation scope tests
- test_audio_capture.py: Microphone capture tests
- test_audio_output.py: Speaker output tests
- test_stt_stream.py: Listening session tests
- test_tts_stream.py: Playback session tests
- test_llm.py: Response generator tests
- test_turn_coordinator.py: Turn state machine and barge-in tests
- test_voice_agent.py: Voice assistant and CLI tests

Run tests with:
    pytest tests/ -v
"""
