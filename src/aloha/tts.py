"""
Speech synthesis adapter.

Turns finalized text plus a voice profile into audio, either as one buffered
clip or as a cancellable stream of chunks. Only `TTSProvider` is known here,
so the backend can be swapped without touching the call session.

Streaming cancellation contract:
- a single thread-safe flag is the source of truth, checked before every chunk
  is handed to the consumer;
- once set, no further chunk is delivered and the background fetch task is
  cancelled, which closes the provider transport;
- `cancel()` is idempotent and safe on finished streams and from other threads.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional, Union

import structlog

from src.aloha.config import get_config
from src.aloha.tone_presets import TonePresetRegistry, get_tone_presets, tts_settings_from_preset
from src.aloha.tts_providers.base import TTSProvider
from src.aloha.tts_types import AudioChunk, SynthesisError, SynthesisMode, VoiceSettings
from src.aloha.voice_profiles import VoiceProfile

logger = structlog.get_logger(__name__)

_END = object()


class StreamState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    CANCELLED = "cancelled"
    DONE = "done"


@dataclass
class SynthesisMetrics:
    """Per-synthesizer counters."""

    total_requests: int = 0
    total_characters: int = 0
    total_audio_bytes: int = 0
    failures: int = 0
    cancellations: int = 0
    avg_first_byte_ms: float = 0.0
    avg_total_ms: float = 0.0

    def record_synthesis(
        self,
        *,
        characters: int,
        audio_bytes: int,
        first_byte_ms: float,
        total_ms: float,
    ) -> None:
        self.total_requests += 1
        self.total_characters += characters
        self.total_audio_bytes += audio_bytes

        # Running averages
        n = self.total_requests
        self.avg_first_byte_ms = (self.avg_first_byte_ms * (n - 1) + first_byte_ms) / n
        self.avg_total_ms = (self.avg_total_ms * (n - 1) + total_ms) / n


def _provider_name(provider: Any) -> str:
    return getattr(provider, "name", None) or type(provider).__name__


class SynthesisStream:
    """
    Handle for one streaming synthesis request.

    Iterate it with `async for` to receive `AudioChunk`s. A provider failure is
    stored in `error`, cancels the stream, and is raised from iteration as
    `SynthesisError`.
    """

    def __init__(
        self,
        provider: TTSProvider,
        text: str,
        settings: VoiceSettings,
        *,
        buffer_chunks: int = 32,
        metrics: Optional[SynthesisMetrics] = None,
    ):
        self._provider = provider
        self._text = text or ""
        self.settings = settings
        self._metrics = metrics

        self._lock = threading.Lock()
        self._cancel_flag = threading.Event()
        self._state = StreamState.PENDING
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, buffer_chunks))
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._exhausted = False
        self._error_raised = False
        self.error: Optional[SynthesisError] = None
        self.chunks_emitted = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel_flag.is_set()

    @property
    def text(self) -> str:
        return self._text

    def start(self) -> "SynthesisStream":
        """Begin fetching audio in the background. Must be called on the event loop."""
        with self._lock:
            if self._state is not StreamState.PENDING:
                return self
            if not self._text.strip():
                self._state = StreamState.DONE
                self._queue.put_nowait(_END)
                return self
            self._state = StreamState.STREAMING

        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._pump())
        self._task.add_done_callback(lambda _t: self._wake())
        return self

    def cancel(self) -> bool:
        """
        Request cancellation.

        Returns True only for the call that actually cancelled the stream; any
        later call, or a call on a finished stream, is a no-op.
        """
        if not self._mark_cancelled():
            return False
        self._stop_pump()
        logger.debug(
            "Synthesis stream cancelled",
            provider=_provider_name(self._provider),
            chunks_emitted=self.chunks_emitted,
        )
        return True

    async def aclose(self) -> None:
        """Cancel and wait for the background task to finish."""
        self.cancel()
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def read_all(self) -> bytes:
        return b"".join([chunk.audio_bytes async for chunk in self])

    async def __aenter__(self) -> "SynthesisStream":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[AudioChunk]:
        return self

    async def __anext__(self) -> AudioChunk:
        if self._state is StreamState.PENDING and not self.cancelled:
            self.start()

        while True:
            if self.error is not None and not self._error_raised:
                self._error_raised = True
                raise self.error
            if self._cancel_flag.is_set() or self._exhausted:
                raise StopAsyncIteration
            if self._queue.empty() and self._task is not None and self._task.done():
                self._exhausted = True
                continue

            item = await self._queue.get()
            if item is _END:
                self._exhausted = True
                continue
            if self._cancel_flag.is_set():
                continue

            self.chunks_emitted += 1
            return item

    def _mark_cancelled(self) -> bool:
        with self._lock:
            if self._cancel_flag.is_set():
                return False
            self._cancel_flag.set()
            if self._state is StreamState.DONE:
                return False
            self._state = StreamState.CANCELLED
        if self._metrics is not None:
            self._metrics.cancellations += 1
        return True

    def _stop_pump(self) -> None:
        task, loop = self._task, self._loop
        if task is None or loop is None:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task.cancel()
            self._wake()
            return

        if loop.is_closed():
            return
        loop.call_soon_threadsafe(task.cancel)
        loop.call_soon_threadsafe(self._wake)

    def _wake(self) -> None:
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            # Consumer is not blocked on get(); it re-checks state on its next read.
            pass

    async def _pump(self) -> None:
        settings = self.settings
        start_time = time.time()
        first_byte_time: Optional[float] = None
        total_bytes = 0

        chunks = self._provider.stream(
            self._text,
            voice_id=settings.voice_id,
            rate=settings.rate,
            pitch=settings.pitch,
        )
        try:
            async for data in chunks:
                if self._cancel_flag.is_set():
                    break
                if not data:
                    continue
                if first_byte_time is None:
                    first_byte_time = time.time()
                total_bytes += len(data)
                await self._queue.put(AudioChunk(audio_bytes=bytes(data)))

            if not self._cancel_flag.is_set():
                await self._queue.put(
                    AudioChunk(audio_bytes=b"", is_final=True, meta={"total_bytes": total_bytes})
                )
                with self._lock:
                    if self._state is StreamState.STREAMING:
                        self._state = StreamState.DONE

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error = SynthesisError(
                f"Streaming synthesis failed: {e}",
                provider=_provider_name(self._provider),
                voice_id=settings.voice_id,
            )
            if self._metrics is not None:
                self._metrics.failures += 1
            logger.warning(
                "Streaming synthesis failed",
                provider=_provider_name(self._provider),
                voice_id=settings.voice_id,
                error=str(e),
            )
            self._mark_cancelled()
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.warning("Closing synthesis transport failed", error=str(e))

            if self._metrics is not None and self.error is None and self._state is StreamState.DONE:
                end_time = time.time()
                self._metrics.record_synthesis(
                    characters=len(self._text),
                    audio_bytes=total_bytes,
                    first_byte_ms=((first_byte_time or end_time) - start_time) * 1000,
                    total_ms=(end_time - start_time) * 1000,
                )


class SpeechSynthesizer:
    """
    Provider-agnostic synthesis front end shared by a call session.

    Rate and pitch come from the voice profile's tone preset unless the caller
    overrides them.
    """

    def __init__(
        self,
        provider: Optional[TTSProvider] = None,
        config: Optional[Any] = None,
        *,
        tone_presets: Optional[TonePresetRegistry] = None,
    ):
        self.config = config or get_config()
        self._provider = provider
        self._tone_presets = tone_presets or get_tone_presets()
        self._streams: set[SynthesisStream] = set()
        self.metrics = SynthesisMetrics()

    @property
    def provider(self) -> TTSProvider:
        if self._provider is None:
            from src.aloha.tts_providers.openai_tts import OpenAITTS

            self._provider = OpenAITTS(self.config)
        return self._provider

    def resolve_settings(
        self,
        profile: VoiceProfile,
        *,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
    ) -> VoiceSettings:
        preset_rate, preset_pitch = tts_settings_from_preset(self._tone_presets.get(profile.tone_preset))
        return VoiceSettings(
            voice_id=profile.provider_voice_id,
            rate=preset_rate if rate is None else rate,
            pitch=preset_pitch if pitch is None else pitch,
        )

    async def synthesize(
        self,
        text: str,
        profile: VoiceProfile,
        mode: SynthesisMode = SynthesisMode.BUFFERED,
        *,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
    ) -> Union[bytes, SynthesisStream]:
        if SynthesisMode(mode) is SynthesisMode.STREAMING:
            return self.open_stream(text, profile, rate=rate, pitch=pitch)
        return await self.synthesize_buffered(text, profile, rate=rate, pitch=pitch)

    async def synthesize_buffered(
        self,
        text: str,
        profile: VoiceProfile,
        *,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
    ) -> bytes:
        if not text or not text.strip():
            return b""

        settings = self.resolve_settings(profile, rate=rate, pitch=pitch)
        provider = self.provider
        start_time = time.time()

        try:
            audio = await provider.synthesize(
                text,
                voice_id=settings.voice_id,
                rate=settings.rate,
                pitch=settings.pitch,
            )
        except asyncio.CancelledError:
            raise
        except SynthesisError:
            self.metrics.failures += 1
            raise
        except Exception as e:
            self.metrics.failures += 1
            logger.warning(
                "Buffered synthesis failed",
                provider=_provider_name(provider),
                voice_id=settings.voice_id,
                error=str(e),
            )
            raise SynthesisError(
                f"Buffered synthesis failed: {e}",
                provider=_provider_name(provider),
                voice_id=settings.voice_id,
            ) from e

        if not audio:
            self.metrics.failures += 1
            raise SynthesisError(
                "Provider returned no audio",
                provider=_provider_name(provider),
                voice_id=settings.voice_id,
            )

        elapsed_ms = (time.time() - start_time) * 1000
        self.metrics.record_synthesis(
            characters=len(text),
            audio_bytes=len(audio),
            first_byte_ms=elapsed_ms,
            total_ms=elapsed_ms,
        )
        return audio

    def open_stream(
        self,
        text: str,
        profile: VoiceProfile,
        *,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
        start: bool = True,
    ) -> SynthesisStream:
        """Create a stream handle; with `start=True` it must be called on the event loop."""
        stream = SynthesisStream(
            self.provider,
            text,
            self.resolve_settings(profile, rate=rate, pitch=pitch),
            buffer_chunks=self.config.tts_stream_buffer_chunks,
            metrics=self.metrics,
        )
        self._streams.add(stream)
        if start:
            stream.start()
        return stream

    def release(self, stream: SynthesisStream) -> None:
        self._streams.discard(stream)

    async def close(self) -> None:
        streams = list(self._streams)
        self._streams.clear()
        for stream in streams:
            await stream.aclose()

        if self._provider is not None:
            await self._provider.close()
