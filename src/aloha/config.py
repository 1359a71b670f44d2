"""
Configuration management for the Aloha response pipeline.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

from src.aloha.voice_profiles import DEFAULT_VOICE_KEY

load_dotenv()

logger = structlog.get_logger(__name__)

SUPPORTED_RESPONSE_FORMATS = ("pcm", "mp3", "wav", "opus", "aac", "flac")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    log_level: str = "INFO"

    # Persona
    agent_name: str = "Aloha"
    business_name: str = ""

    # OpenAI (TTS)
    openai_api_key: str = ""
    openai_tts_model: str = "tts-1"
    # - pcm is raw 24kHz 16-bit mono, the cheapest format to forward to telephony
    tts_response_format: str = "pcm"
    tts_chunk_size: int = 4096
    tts_timeout_seconds: float = 10.0
    tts_stream_buffer_chunks: int = 32

    # Voice selection
    default_voice_key: str = DEFAULT_VOICE_KEY

    # External collaborators
    classifier_timeout_seconds: float = 2.0
    dialogue_timeout_seconds: float = 8.0

    # Persona pipeline
    tone_styling_enabled: bool = False
    purpose_reminder_min_call_seconds: float = 120.0
    purpose_reminder_min_age_seconds: float = 30.0

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.openai_tts_model:
            missing.append("OPENAI_TTS_MODEL")

        fmt = (self.tts_response_format or "").strip().lower()
        if fmt not in SUPPORTED_RESPONSE_FORMATS:
            raise ConfigError(
                f"Invalid TTS_RESPONSE_FORMAT '{self.tts_response_format}'. "
                f"Expected one of: {', '.join(SUPPORTED_RESPONSE_FORMATS)}."
            )
        if self.tts_chunk_size <= 0:
            raise ConfigError("TTS_CHUNK_SIZE must be a positive number of bytes.")
        if self.tts_stream_buffer_chunks <= 0:
            raise ConfigError("TTS_STREAM_BUFFER_CHUNKS must be positive.")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            log_level=self.log_level,
            agent_name=self.agent_name,
            business_name=self.business_name or None,
            openai_tts_model=self.openai_tts_model,
            tts_response_format=self.tts_response_format,
            tts_chunk_size=self.tts_chunk_size,
            tts_timeout_seconds=self.tts_timeout_seconds,
            default_voice_key=self.default_voice_key,
            classifier_timeout_seconds=self.classifier_timeout_seconds,
            dialogue_timeout_seconds=self.dialogue_timeout_seconds,
            tone_styling_enabled=self.tone_styling_enabled,
            openai_key_set=bool(self.openai_api_key),
        )


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    config = Config(
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Persona
        agent_name=os.getenv("AGENT_NAME", "Aloha").strip() or "Aloha",
        business_name=os.getenv("BUSINESS_NAME", "").strip(),

        # OpenAI
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_tts_model=os.getenv("OPENAI_TTS_MODEL", "tts-1"),
        tts_response_format=os.getenv("TTS_RESPONSE_FORMAT", "pcm").strip().lower(),
        tts_chunk_size=_get_int("TTS_CHUNK_SIZE", 4096),
        tts_timeout_seconds=_get_float("TTS_TIMEOUT_SECONDS", 10.0),
        tts_stream_buffer_chunks=_get_int("TTS_STREAM_BUFFER_CHUNKS", 32),

        # Voice selection
        default_voice_key=os.getenv("DEFAULT_VOICE_KEY", DEFAULT_VOICE_KEY).strip() or DEFAULT_VOICE_KEY,

        # External collaborators
        classifier_timeout_seconds=_get_float("CLASSIFIER_TIMEOUT_SECONDS", 2.0),
        dialogue_timeout_seconds=_get_float("DIALOGUE_TIMEOUT_SECONDS", 8.0),

        # Persona pipeline
        tone_styling_enabled=_get_bool("TONE_STYLING_ENABLED", False),
        purpose_reminder_min_call_seconds=_get_float("PURPOSE_REMINDER_MIN_CALL_SECONDS", 120.0),
        purpose_reminder_min_age_seconds=_get_float("PURPOSE_REMINDER_MIN_AGE_SECONDS", 30.0),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
