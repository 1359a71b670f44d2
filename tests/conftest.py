"""
Pytest configuration and fixtures.
"""

import asyncio
import os
import random
from typing import AsyncIterator, Iterable, Optional
from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "LOG_LEVEL": "DEBUG",
        "AGENT_NAME": "Aloha",
        "BUSINESS_NAME": "Sunny Dental",
        "OPENAI_API_KEY": "test_openai_key",
        "OPENAI_TTS_MODEL": "tts-1",
        "TTS_RESPONSE_FORMAT": "pcm",
        "TTS_STREAM_BUFFER_CHUNKS": "4",
        "CLASSIFIER_TIMEOUT_SECONDS": "0.5",
        "DIALOGUE_TIMEOUT_SECONDS": "0.5",
        "TONE_STYLING_ENABLED": "false",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.aloha.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


class ScriptedRandom(random.Random):
    """
    Random source with scripted outcomes.

    `random()` returns the scripted floats in order, then `default`; `choice()`
    picks the scripted indexes in order, then the first element.
    """

    def __init__(self, floats: Iterable[float] = (), picks: Iterable[int] = (), default: float = 0.99):
        super().__init__(0)
        self._floats = list(floats)
        self._picks = list(picks)
        self._default = default

    def random(self) -> float:
        if self._floats:
            return self._floats.pop(0)
        return self._default

    def choice(self, seq):
        index = self._picks.pop(0) if self._picks else 0
        return seq[index]


class FakeProvider:
    """In-memory TTS provider that records requests and transport lifecycle."""

    name = "fake"

    def __init__(
        self,
        chunks: Iterable[bytes] = (b"a1", b"a2", b"a3"),
        *,
        audio: bytes = b"buffered-audio",
        fail_buffered: Optional[Exception] = None,
        fail_stream_after: Optional[int] = None,
        gate: Optional[asyncio.Event] = None,
        delay: float = 0.0,
    ):
        self.chunks = list(chunks)
        self.audio = audio
        self.fail_buffered = fail_buffered
        self.fail_stream_after = fail_stream_after
        self.gate = gate
        self.delay = delay

        self.buffered_calls: list[dict] = []
        self.stream_calls: list[dict] = []
        self.streams_opened = 0
        self.streams_closed = 0
        self.closed = False

    async def synthesize(self, text: str, *, voice_id: str, rate: float = 1.0, pitch: float = 0.0) -> bytes:
        self.buffered_calls.append({"text": text, "voice_id": voice_id, "rate": rate, "pitch": pitch})
        if self.fail_buffered is not None:
            raise self.fail_buffered
        return self.audio

    async def stream(
        self, text: str, *, voice_id: str, rate: float = 1.0, pitch: float = 0.0
    ) -> AsyncIterator[bytes]:
        self.stream_calls.append({"text": text, "voice_id": voice_id, "rate": rate, "pitch": pitch})
        self.streams_opened += 1
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_stream_after is not None and i >= self.fail_stream_after:
                    raise RuntimeError("provider connection reset")
                if self.gate is not None and i > 0:
                    await self.gate.wait()
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield chunk
        finally:
            self.streams_closed += 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted_rng():
    return ScriptedRandom


@pytest.fixture
def fake_provider():
    return FakeProvider()
