from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator


class TTSProvider(ABC):
    """
    Synthesis backend boundary: a voice identifier plus rate/pitch in, audio out.

    Callers never see provider-specific types, so a backend can be swapped
    without touching the adapter or the call session.
    """

    name: str = "tts"

    @abstractmethod
    async def synthesize(self, text: str, *, voice_id: str, rate: float = 1.0, pitch: float = 0.0) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def stream(
        self,
        text: str,
        *,
        voice_id: str,
        rate: float = 1.0,
        pitch: float = 0.0,
    ) -> AsyncIterator[bytes]:
        """Yield raw audio bytes as they arrive; closing the iterator closes the transport."""
        raise NotImplementedError

    async def close(self) -> None:
        return None
