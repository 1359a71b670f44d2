from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass
class AudioChunk:
    """
    A chunk of synthesized audio.

    `audio_bytes` is in the provider's configured response format (raw PCM by
    default). The last chunk of a completed stream has `is_final=True`.
    """

    audio_bytes: bytes
    is_final: bool = False
    timestamp: float = field(default_factory=time.time)

    # Optional: structured metadata for debugging/metrics.
    meta: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class VoiceSettings:
    """Concrete provider parameters for one synthesis request."""

    voice_id: str
    rate: float = 1.0
    pitch: float = 0.0


class SynthesisMode(str, Enum):
    BUFFERED = "buffered"
    STREAMING = "streaming"


class SynthesisError(Exception):
    """Speech synthesis failed (provider error, timeout, or empty audio)."""

    def __init__(self, message: str, *, provider: Optional[str] = None, voice_id: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.voice_id = voice_id
