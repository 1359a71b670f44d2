"""
Call session orchestrator.

One `CallSession` per active call. It owns the call's `CallContext` and state
machine, processes caller turns strictly in arrival order, picks the raw reply
(fallback library for risk scenarios, dialogue engine otherwise), runs it
through the persona rules and streams the synthesized audio to the telephony
transport.

Once an exit is requested (caller asked to leave, or a safety scenario such as
an emergency), later turns never reach the dialogue engine: the session speaks
a closing line and ends the call.

Failures in external collaborators degrade locally:
- classifier error/timeout: treated as a normal turn (dialogue draft used)
- dialogue engine error/timeout: generic clarification from the library
- synthesis failure: the call is closed gracefully with a buffered closing line
"""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

import structlog

from src.aloha.call_state import CallContext, CallState, CallStateMachine, detect_intent
from src.aloha.config import get_config
from src.aloha.fallback_responses import DEFAULT_RESPONSE
from src.aloha.logging_setup import redact_for_logs
from src.aloha.personality import EXIT_ACKNOWLEDGMENT, PersonalityRuleContext, PersonalityRules
from src.aloha.scenario_resolver import ScenarioResolver
from src.aloha.scenarios import DetectedScenario, FallbackResponse, PlaceholderContext
from src.aloha.tone_presets import TonePreset, TonePresetRegistry, apply_tone_preset, get_tone_presets
from src.aloha.tts import SpeechSynthesizer, SynthesisStream
from src.aloha.tts_types import AudioChunk, SynthesisError
from src.aloha.voice_profiles import VoiceProfile, VoiceProfileRegistry, get_voice_profiles

logger = structlog.get_logger(__name__)

CLOSING_FALLBACK_TEXT = (
    "I'm sorry, I'm having some trouble on my end right now. Thank you for your time, and have a great day!"
)


class ScenarioClassifier(Protocol):
    """Risk/limitation scenario detection for one caller utterance."""

    def classify(
        self, utterance: str, audio_signal: Optional[Any] = None
    ) -> Union[DetectedScenario, Awaitable[DetectedScenario]]:
        ...


class DialogueEngine(Protocol):
    """Produces the draft reply for a normal turn."""

    def generate_draft(self, call_context: CallContext) -> Union[str, Awaitable[str]]:
        ...


class VoiceSelectionStore(Protocol):
    """Per-user persisted voice selection."""

    def get_selected_voice_key(self, user_id: str) -> Union[Optional[str], Awaitable[Optional[str]]]:
        ...


AudioSink = Callable[[AudioChunk], Union[None, Awaitable[None]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class QueuedTurn:
    """A caller utterance queued for turn processing."""

    utterance: str
    audio_signal: Optional[Any] = None
    received_at: float = field(default_factory=time.time)


@dataclass
class KnowledgeGap:
    scenario: str
    utterance: str
    recorded_at: float


@dataclass
class CallSessionMetrics:
    """Metrics for an entire call."""

    call_id: str = ""
    start_time: float = field(default_factory=time.time)
    end_time: float = 0.0
    total_turns: int = 0
    fallback_turns: int = 0
    total_interruptions: int = 0
    classifier_failures: int = 0
    dialogue_failures: int = 0
    synthesis_failures: int = 0

    @property
    def duration_seconds(self) -> float:
        end = self.end_time if self.end_time > 0 else time.time()
        return end - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "duration_seconds": round(self.duration_seconds, 2),
            "total_turns": self.total_turns,
            "fallback_turns": self.fallback_turns,
            "total_interruptions": self.total_interruptions,
            "classifier_failures": self.classifier_failures,
            "dialogue_failures": self.dialogue_failures,
            "synthesis_failures": self.synthesis_failures,
        }


class CallSession:
    def __init__(
        self,
        *,
        classifier: ScenarioClassifier,
        dialogue: DialogueEngine,
        synthesizer: SpeechSynthesizer,
        send_audio: AudioSink,
        user_id: str = "",
        call_id: Optional[str] = None,
        voice_store: Optional[VoiceSelectionStore] = None,
        voice_profile: Optional[VoiceProfile] = None,
        placeholders: Optional[PlaceholderContext] = None,
        campaign_purpose: Optional[str] = None,
        business_name: Optional[str] = None,
        config: Optional[Any] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        voice_profiles: Optional[VoiceProfileRegistry] = None,
        tone_presets: Optional[TonePresetRegistry] = None,
    ):
        self.config = config or get_config()
        self._classifier = classifier
        self._dialogue = dialogue
        self._synthesizer = synthesizer
        self._send_audio = send_audio
        self._voice_store = voice_store
        self._voice_profiles = voice_profiles or get_voice_profiles()
        self._tone_presets = tone_presets or get_tone_presets()
        self._clock = clock
        self._rng = rng or random.Random()

        now = clock()
        self.context = CallContext(
            user_id=user_id,
            call_id=call_id,
            started_at=now,
            campaign_purpose=campaign_purpose,
        )
        self.state_machine = CallStateMachine(self.context)
        self.metrics = CallSessionMetrics(call_id=call_id or "", start_time=now)
        self.knowledge_gaps: List[KnowledgeGap] = []

        self._business_name = business_name or self.config.business_name or None
        self._placeholders = placeholders or PlaceholderContext(
            display_name=self.config.agent_name,
            business_name=self._business_name,
            purpose=campaign_purpose,
        )
        self._resolver = ScenarioResolver(rng=self._rng, default_display_name=self.config.agent_name)
        self._rules = PersonalityRules(
            self._rng,
            clock,
            min_call_seconds=self.config.purpose_reminder_min_call_seconds,
            min_purpose_age_seconds=self.config.purpose_reminder_min_age_seconds,
        )

        self.voice_profile: Optional[VoiceProfile] = voice_profile
        self.tone_preset: TonePreset = self._tone_presets.default()

        self._turn_queue: asyncio.Queue[QueuedTurn] = asyncio.Queue()
        self._turn_worker_task: Optional[asyncio.Task] = None
        self._turn_task: Optional[asyncio.Task] = None
        self._stream: Optional[SynthesisStream] = None
        self._seen_scenarios: set[str] = set()
        self._exit_response: Optional[FallbackResponse] = None
        self._responses_sent = 0
        self._is_running = False
        self._ended = False

    @property
    def call_id(self) -> Optional[str]:
        return self.context.call_id

    @property
    def state(self) -> CallState:
        return self.state_machine.state

    @property
    def is_speaking(self) -> bool:
        return self._stream is not None

    async def start(self) -> None:
        """Resolve the caller's voice, enter GREETING and start the turn worker."""
        if self._is_running or self._ended:
            return

        self.voice_profile = await self._resolve_voice()
        self.tone_preset = self._tone_presets.get(self.voice_profile.tone_preset)
        self.state_machine.transition_to(CallState.GREETING, "call started")

        self._is_running = True
        if self._turn_worker_task is None or self._turn_worker_task.done():
            self._turn_worker_task = asyncio.create_task(self._turn_worker())

        logger.info(
            "Call session started",
            call_id=self.call_id,
            voice_key=self.voice_profile.key,
            tone_preset=self.tone_preset.key.value,
        )

    async def on_caller_turn(self, utterance: str, audio_signal: Optional[Any] = None) -> None:
        """Queue a final caller utterance; turns are processed in arrival order."""
        if not self._is_running or self.state_machine.is_terminal:
            logger.debug("Ignoring caller turn, session not running", call_id=self.call_id)
            return
        await self._turn_queue.put(QueuedTurn(utterance=utterance or "", audio_signal=audio_signal))

    async def on_interrupt(self) -> bool:
        """Barge-in: stop the agent's current audio. Returns False if nothing was playing."""
        stream = self._stream
        if stream is None:
            return False

        self.metrics.total_interruptions += 1
        logger.info("Barge-in interrupt", call_id=self.call_id, chunks_sent=stream.chunks_emitted)
        stream.cancel()
        await stream.aclose()
        return True

    async def on_call_end(self) -> None:
        """Hang-up: cancel synthesis and pending turns; nothing outlives the call."""
        if self._ended:
            return
        self._ended = True
        self._is_running = False

        stream = self._stream
        if stream is not None:
            stream.cancel()

        tasks_to_cancel: List[asyncio.Task] = []
        for task in (self._turn_task, self._turn_worker_task):
            if task and not task.done():
                task.cancel()
                tasks_to_cancel.append(task)
        if tasks_to_cancel:
            await asyncio.gather(*tasks_to_cancel, return_exceptions=True)

        if stream is not None:
            await stream.aclose()
            self._synthesizer.release(stream)
        self._stream = None

        while not self._turn_queue.empty():
            self._turn_queue.get_nowait()
            self._turn_queue.task_done()

        self.state_machine.end("call ended")
        self.metrics.end_time = self._clock()
        logger.info("Call session ended", metrics=self.metrics.to_dict())

    async def wait_idle(self) -> None:
        """Wait until every queued caller turn has been processed."""
        await self._turn_queue.join()

    async def speak(self, text: str, *, is_closing: Optional[bool] = None) -> str:
        """Finalize and play an agent-initiated utterance (greeting, purpose, ...)."""
        return await self._respond(text, is_closing=is_closing)

    def mark_purpose_delivered(self) -> None:
        self.context.mark_purpose_delivered(self._clock())
        if self.state in (CallState.GREETING, CallState.IDENTIFICATION):
            self.state_machine.transition_to(CallState.PURPOSE_DELIVERY, "purpose delivered")

    def finalize(self, text: str, *, is_closing: Optional[bool] = None) -> str:
        """Tone styling (optional) followed by the persona rules."""
        closing = self.state_machine.is_closing if is_closing is None else is_closing
        preset = self.tone_preset

        if self.config.tone_styling_enabled:
            text = apply_tone_preset(text, preset, rng=self._rng, is_closing=closing)

        ctx = PersonalityRuleContext(
            state=self.state,
            tone_preset=preset,
            call_context=self.context,
            is_first_response=self._responses_sent == 0,
            is_closing=closing,
            is_clarification=self.state == CallState.CLARIFICATION,
            caller_name=self.context.caller_name,
            business_name=self._business_name,
            agent_name=self.config.agent_name,
        )
        return self._rules.apply(text, ctx)

    async def _resolve_voice(self) -> VoiceProfile:
        if self.voice_profile is not None:
            return self.voice_profile

        key: Optional[str] = None
        user_id = self.context.user_id
        if self._voice_store is not None and user_id:
            try:
                key = await _maybe_await(self._voice_store.get_selected_voice_key(user_id))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Voice selection lookup failed, using default", call_id=self.call_id, error=str(e))
                key = None

        return self._voice_profiles.get(key or self.config.default_voice_key)

    async def _turn_worker(self) -> None:
        """Background worker that processes queued caller turns sequentially."""
        try:
            while self._is_running:
                try:
                    queued = await asyncio.wait_for(self._turn_queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    self._turn_task = asyncio.create_task(self._run_turn(queued))
                    try:
                        await self._turn_task
                    except asyncio.CancelledError:
                        if not self._is_running:
                            raise
                finally:
                    self._turn_task = None
                    self._turn_queue.task_done()
        except asyncio.CancelledError:
            logger.debug("Turn worker stopped", call_id=self.call_id)

    async def _run_turn(self, queued: QueuedTurn) -> None:
        """Run a single caller turn; errors stay inside this call."""
        self.metrics.total_turns += 1
        try:
            await self._process_turn(queued)
        except asyncio.CancelledError:
            logger.debug("Turn cancelled", call_id=self.call_id)
            raise
        except Exception as e:
            logger.error("Turn failed", call_id=self.call_id, error=str(e), exc_info=True)

    async def _process_turn(self, queued: QueuedTurn) -> None:
        if self.state_machine.is_terminal:
            return

        utterance = queued.utterance.strip()
        intent = detect_intent(utterance)
        self.state_machine.update_from_interaction(utterance, intent)

        logger.info(
            "Caller turn",
            call_id=self.call_id,
            utterance=redact_for_logs(utterance),
            intent=intent.value,
            state=self.state.value,
        )

        if self.context.exit_requested:
            await self._finish_exit()
            return

        scenario = await self._classify(utterance, queued.audio_signal)
        if scenario.is_normal:
            text = await self._draft()
        else:
            text = self._use_fallback(scenario, utterance)

        await self._respond(text)

    async def _classify(self, utterance: str, audio_signal: Optional[Any]) -> DetectedScenario:
        async def _call() -> Any:
            return await _maybe_await(self._classifier.classify(utterance, audio_signal))

        try:
            result = await asyncio.wait_for(_call(), timeout=self.config.classifier_timeout_seconds)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self.metrics.classifier_failures += 1
            logger.warning("Scenario classifier timed out, treating turn as normal", call_id=self.call_id)
            return DetectedScenario.normal()
        except Exception as e:
            self.metrics.classifier_failures += 1
            logger.warning("Scenario classifier failed, treating turn as normal", call_id=self.call_id, error=str(e))
            return DetectedScenario.normal()

        if isinstance(result, DetectedScenario):
            return result
        if isinstance(result, dict) and "category" in result:
            return DetectedScenario(category=result["category"], type=result.get("type"))

        logger.warning("Scenario classifier returned an unexpected value", call_id=self.call_id)
        return DetectedScenario.normal()

    async def _draft(self) -> str:
        async def _call() -> Any:
            return await _maybe_await(self._dialogue.generate_draft(self.context))

        try:
            draft = await asyncio.wait_for(_call(), timeout=self.config.dialogue_timeout_seconds)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self.metrics.dialogue_failures += 1
            logger.warning("Dialogue engine timed out, using default response", call_id=self.call_id)
            return DEFAULT_RESPONSE.primary
        except Exception as e:
            self.metrics.dialogue_failures += 1
            logger.warning("Dialogue engine failed, using default response", call_id=self.call_id, error=str(e))
            return DEFAULT_RESPONSE.primary

        if not isinstance(draft, str) or not draft.strip():
            return DEFAULT_RESPONSE.primary
        return draft

    def _use_fallback(self, scenario: DetectedScenario, utterance: str) -> str:
        response = self._resolver.resolve(scenario, self._placeholders)
        label = scenario.label()
        self.metrics.fallback_turns += 1

        self._apply_fallback_flags(response, label, utterance)

        # Vary the wording when the same scenario comes up again in this call.
        candidates = response.candidates()
        if label in self._seen_scenarios and len(candidates) > 1:
            text = self._rng.choice(candidates)
        else:
            text = response.primary
        self._seen_scenarios.add(label)

        logger.info(
            "Fallback response selected",
            call_id=self.call_id,
            scenario=label,
            should_exit=response.should_exit,
            state=self.state.value,
        )
        return text

    def _apply_fallback_flags(self, response: FallbackResponse, label: str, utterance: str) -> None:
        if response.should_log_knowledge_gap:
            self.knowledge_gaps.append(
                KnowledgeGap(scenario=label, utterance=utterance, recorded_at=self._clock())
            )
            logger.info(
                "Knowledge gap recorded",
                call_id=self.call_id,
                scenario=label,
                utterance=redact_for_logs(utterance),
            )
        if response.should_offer_callback:
            self.state_machine.request_human_followup()
        if response.should_exit:
            self._exit_response = response
            self.state_machine.request_exit()

    async def _finish_exit(self) -> None:
        """Close a call whose exit was already requested, bypassing the dialogue engine."""
        response = self._exit_response
        if response is not None and response.alternatives:
            text = response.alternatives[0]
        elif response is not None and response.primary:
            text = response.primary
        else:
            text = EXIT_ACKNOWLEDGMENT

        logger.info("Exit already requested, closing call", call_id=self.call_id, state=self.state.value)
        await self._respond(text, is_closing=True)
        self.state_machine.end("exit requested")

    async def _respond(self, text: str, *, is_closing: Optional[bool] = None) -> str:
        final = self.finalize(text, is_closing=is_closing)
        if not final or self.state_machine.is_terminal:
            return ""

        previous = self._stream
        if previous is not None:
            previous.cancel()
            await previous.aclose()

        stream = self._synthesizer.open_stream(final, self.voice_profile or self._voice_profiles.default())
        self._stream = stream
        try:
            async for chunk in stream:
                await _maybe_await(self._send_audio(chunk))
            if not stream.cancelled:
                self._responses_sent += 1
        except SynthesisError as e:
            self.metrics.synthesis_failures += 1
            logger.error(
                "Streaming synthesis failed, closing call",
                call_id=self.call_id,
                provider=e.provider,
                voice_id=e.voice_id,
                error=str(e),
            )
            await self._close_gracefully()
        finally:
            if self._stream is stream:
                self._stream = None
            await stream.aclose()
            self._synthesizer.release(stream)

        return final

    async def _close_gracefully(self) -> None:
        self.state_machine.force_closing("synthesis failure")
        closing = self.finalize(CLOSING_FALLBACK_TEXT, is_closing=True)
        profile = self.voice_profile or self._voice_profiles.default()

        try:
            audio = await self._synthesizer.synthesize_buffered(closing, profile)
        except SynthesisError as e:
            self.metrics.synthesis_failures += 1
            logger.error("Closing synthesis failed, ending call", call_id=self.call_id, error=str(e))
            self.state_machine.end("synthesis failure")
            return

        await _maybe_await(self._send_audio(AudioChunk(audio_bytes=audio, is_final=True)))
