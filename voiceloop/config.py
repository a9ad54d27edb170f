"""
Configuration Management Module

All runtime settings come from environment variables with sensible defaults,
loaded from a .env file when one is present (12-factor style).

Usage:
    from voiceloop.config import settings
    print(settings.speech.region)

System environment variables override values from the .env file.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly voice assistant. Answer in one to three short, "
    "natural sentences that sound good when spoken aloud. Do not use "
    "markdown, lists or emojis."
)


def get_env(key: str, default: str = "", required: bool = False) -> str:
    """
    Get an environment variable with optional default and validation.

    Args:
        key: The environment variable name
        default: Default value if not set
        required: If True, raises ValueError when not set

    Returns:
        The environment variable value or default

    Raises:
        ValueError: If required=True and the variable is not set
    """
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get an environment variable as integer."""
    return int(get_env(key, str(default)))


def get_env_float(key: str, default: float) -> float:
    """Get an environment variable as float."""
    return float(get_env(key, str(default)))


def get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as boolean."""
    value = get_env(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def get_env_optional_int(key: str) -> Optional[int]:
    """Get an environment variable as integer, or None when unset or blank."""
    value = get_env(key).strip()
    return int(value) if value else None


@dataclass
class AzureOpenAIConfig:
    """
    Azure OpenAI service configuration for response generation.

    Attributes:
        api_key: Azure OpenAI API key
        endpoint: Azure OpenAI endpoint URL
        api_version: API version string
        chat_deployment: Deployment name of the chat model (the model id)
    """
    api_key: str = field(default_factory=lambda: get_env("AZURE_OPENAI_API_KEY"))
    endpoint: str = field(default_factory=lambda: get_env("AZURE_OPENAI_ENDPOINT"))
    api_version: str = field(default_factory=lambda: get_env("AZURE_OPENAI_API_VERSION", "2024-08-01-preview"))
    chat_deployment: str = field(default_factory=lambda: get_env("AZURE_OPENAI_CHAT_DEPLOYMENT", "chat-model"))

    def validate(self) -> bool:
        """Validate that required Azure OpenAI settings are configured."""
        if not self.api_key:
            raise ValueError("AZURE_OPENAI_API_KEY is required")
        if not self.endpoint:
            raise ValueError("AZURE_OPENAI_ENDPOINT is required")
        if not self.chat_deployment:
            raise ValueError("AZURE_OPENAI_CHAT_DEPLOYMENT is required")
        return True

    @property
    def chat_url(self) -> str:
        """Get the full URL for chat completion API calls."""
        base = self.endpoint.rstrip("/")
        return f"{base}/openai/deployments/{self.chat_deployment}/chat/completions?api-version={self.api_version}"


@dataclass
class SpeechConfig:
    """
    Azure Speech configuration shared by transcription and synthesis.

    Attributes:
        api_key: Azure Speech subscription key
        region: Azure region of the Speech resource
        language: Recognition language code
        enable_punctuation: Ask the recognizer for punctuated transcripts
        tts_language: Synthesis language code
        voice_name: Neural voice used for synthesis
        tts_sample_rate: Sample rate of the synthesized PCM audio
    """
    api_key: str = field(default_factory=lambda: get_env("AZURE_SPEECH_API_KEY"))
    region: str = field(default_factory=lambda: get_env("AZURE_SPEECH_REGION"))
    language: str = field(default_factory=lambda: get_env("SPEECH_LANGUAGE", "en-US"))
    enable_punctuation: bool = field(default_factory=lambda: get_env_bool("STT_ENABLE_PUNCTUATION", True))
    tts_language: str = field(default_factory=lambda: get_env("TTS_LANGUAGE", "en-US"))
    voice_name: str = field(default_factory=lambda: get_env("TTS_VOICE_NAME", "en-US-JennyNeural"))
    tts_sample_rate: int = field(default_factory=lambda: get_env_int("TTS_SAMPLE_RATE", 24000))

    @property
    def is_configured(self) -> bool:
        """Check whether credentials for the Speech resource are present."""
        return bool(self.api_key and self.region)

    def validate(self) -> bool:
        """Validate speech settings."""
        if not self.api_key:
            raise ValueError("AZURE_SPEECH_API_KEY is required")
        if not self.region:
            raise ValueError("AZURE_SPEECH_REGION is required")
        if not self.language:
            raise ValueError("SPEECH_LANGUAGE cannot be empty")
        if not self.voice_name:
            raise ValueError("TTS_VOICE_NAME cannot be empty")
        return True


@dataclass
class LLMConfig:
    """
    Response generation configuration.

    Attributes:
        system_prompt: Optional system prompt sent with every request
        temperature: Sampling temperature
        max_tokens: Maximum tokens in a response
        connect_timeout_s: Connection timeout for the HTTP request
        read_timeout_s: Total timeout for the HTTP request
    """
    system_prompt: str = field(default_factory=lambda: get_env("LLM_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT))
    temperature: float = field(default_factory=lambda: get_env_float("LLM_TEMPERATURE", 0.7))
    max_tokens: int = field(default_factory=lambda: get_env_int("LLM_MAX_TOKENS", 300))
    connect_timeout_s: float = field(default_factory=lambda: get_env_float("LLM_CONNECT_TIMEOUT", 10.0))
    read_timeout_s: float = field(default_factory=lambda: get_env_float("LLM_READ_TIMEOUT", 30.0))


@dataclass
class AudioConfig:
    """
    Microphone and speaker configuration.

    The capture format itself is fixed (16-bit PCM, mono, 16 kHz).

    Attributes:
        input_device: sounddevice index of the microphone (None = default)
        output_device: sounddevice index of the speaker (None = default)
        block_ms: Duration of one captured chunk in milliseconds
        queue_size: Maximum number of chunks buffered between driver and loop
    """
    input_device: Optional[int] = field(default_factory=lambda: get_env_optional_int("AUDIO_INPUT_DEVICE"))
    output_device: Optional[int] = field(default_factory=lambda: get_env_optional_int("AUDIO_OUTPUT_DEVICE"))
    block_ms: int = field(default_factory=lambda: get_env_int("AUDIO_BLOCK_MS", 100))
    queue_size: int = field(default_factory=lambda: get_env_int("AUDIO_QUEUE_SIZE", 200))

    def validate(self) -> bool:
        """Validate audio settings."""
        if self.block_ms <= 0:
            raise ValueError("AUDIO_BLOCK_MS must be positive")
        if self.queue_size <= 0:
            raise ValueError("AUDIO_QUEUE_SIZE must be positive")
        return True


@dataclass
class ConversationConfig:
    """
    Turn-taking configuration.

    Attributes:
        listen_timeout_s: Maximum duration of a regular listening session
        interruption_timeout_s: Maximum duration of the barge-in listener
        flush_timeout_s: How long to wait for trailing results after end-of-audio
        error_backoff_s: Pause after an unexpected error in the turn loop
        listen_single_utterance: End a regular listen at the first final segment
        segment_separator: Text placed between final transcript segments
    """
    listen_timeout_s: float = field(default_factory=lambda: get_env_float("LISTEN_TIMEOUT_S", 15.0))
    interruption_timeout_s: float = field(default_factory=lambda: get_env_float("INTERRUPTION_TIMEOUT_S", 60.0))
    flush_timeout_s: float = field(default_factory=lambda: get_env_float("TRANSCRIPT_FLUSH_TIMEOUT_S", 5.0))
    error_backoff_s: float = field(default_factory=lambda: get_env_float("ERROR_BACKOFF_S", 1.0))
    listen_single_utterance: bool = field(default_factory=lambda: get_env_bool("LISTEN_SINGLE_UTTERANCE", False))
    segment_separator: str = field(default_factory=lambda: get_env("TRANSCRIPT_SEGMENT_SEPARATOR", " "))

    def validate(self) -> bool:
        """Validate timeouts."""
        if self.listen_timeout_s <= 0:
            raise ValueError("LISTEN_TIMEOUT_S must be positive")
        if self.interruption_timeout_s <= 0:
            raise ValueError("INTERRUPTION_TIMEOUT_S must be positive")
        if self.error_backoff_s < 0:
            raise ValueError("ERROR_BACKOFF_S cannot be negative")
        return True


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        file: Optional log file path
    """
    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE") or None)


@dataclass
class Settings:
    """
    Main settings container aggregating all configuration sections.

    Example:
        from voiceloop.config import settings

        settings.validate_all()
        timeout = settings.conversation.listen_timeout_s
    """
    azure: AzureOpenAIConfig = field(default_factory=AzureOpenAIConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    app_env: str = field(default_factory=lambda: get_env("APP_ENV", "development"))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    def validate_all(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all validations pass

        Raises:
            ValueError: If any validation fails
        """
        self.azure.validate()
        self.speech.validate()
        self.audio.validate()
        self.conversation.validate()
        return True

    def problems(self) -> List[str]:
        """Collect every validation failure instead of stopping at the first."""
        issues = []
        for section in (self.azure, self.speech, self.audio, self.conversation):
            try:
                section.validate()
            except ValueError as e:
                issues.append(str(e))
        return issues


# Singleton settings instance
settings = Settings()
