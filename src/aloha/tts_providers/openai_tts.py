from __future__ import annotations

from typing import Any, AsyncIterator, Optional

import httpx
import structlog

from src.aloha.config import get_config
from src.aloha.tts_providers.base import TTSProvider

logger = structlog.get_logger(__name__)

MIN_SPEED = 0.25
MAX_SPEED = 4.0


def _clamp_speed(rate: float) -> float:
    return max(MIN_SPEED, min(MAX_SPEED, float(rate)))


class OpenAITTS(TTSProvider):
    """
    OpenAI Text-to-Speech provider.

    Buffered synthesis returns the whole clip; streaming reads the HTTP body in
    `tts_chunk_size` pieces. The Audio Speech API has no pitch control, so
    `pitch` is accepted and ignored.
    """

    name = "openai"

    def __init__(self, config: Optional[Any] = None, client: Optional[Any] = None):
        self.config = config or get_config()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI  # Local import to keep module import light

            self._client = AsyncOpenAI(
                api_key=self.config.openai_api_key,
                timeout=httpx.Timeout(self.config.tts_timeout_seconds),
            )
        return self._client

    def _request(self, text: str, voice_id: str, rate: float, response_format: str) -> dict[str, Any]:
        return {
            "model": self.config.openai_tts_model,
            "voice": voice_id,
            "input": text,
            "speed": _clamp_speed(rate),
            "response_format": response_format,
        }

    async def synthesize(
        self,
        text: str,
        *,
        voice_id: str,
        rate: float = 1.0,
        pitch: float = 0.0,
        response_format: Optional[str] = None,
    ) -> bytes:
        client = self._get_client()
        resp = await client.audio.speech.create(
            **self._request(text, voice_id, rate, response_format or self.config.tts_response_format)
        )
        # SDKs have varied over time; handle several shapes.
        data = getattr(resp, "content", None)
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)
        return bytes(resp)

    async def stream(
        self,
        text: str,
        *,
        voice_id: str,
        rate: float = 1.0,
        pitch: float = 0.0,
    ) -> AsyncIterator[bytes]:
        client = self._get_client()
        request = self._request(text, voice_id, rate, self.config.tts_response_format)

        async with client.audio.speech.with_streaming_response.create(**request) as response:
            async for chunk in response.iter_bytes(self.config.tts_chunk_size):
                if chunk:
                    yield chunk

    async def close(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            try:
                await client.close()
            except Exception as e:
                logger.warning("OpenAI client close failed", error=str(e))
