"""
Per-call conversation state.

`CallContext` is mutable and owned by exactly one call session; nothing outside
that session's processing path may touch it. `CallStateMachine` validates
transitions so the agent always knows where it is in the conversation.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class CallState(str, Enum):
    INIT = "INIT"
    GREETING = "GREETING"
    IDENTIFICATION = "IDENTIFICATION"
    PURPOSE_DELIVERY = "PURPOSE_DELIVERY"
    INTERACTION = "INTERACTION"
    TASK_HANDLING = "TASK_HANDLING"
    CLARIFICATION = "CLARIFICATION"
    EMOTIONAL_SUPPORT = "EMOTIONAL_SUPPORT"
    ESCALATION_OR_CALLBACK = "ESCALATION_OR_CALLBACK"
    CLOSING = "CLOSING"
    ENDED = "ENDED"


class CallIntent(str, Enum):
    QUESTION_PRICING = "question_pricing"
    QUESTION_SERVICE = "question_service"
    QUESTION_HOURS = "question_hours"
    QUESTION_LOCATION = "question_location"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    UNSUBSCRIBE = "unsubscribe"
    SMALL_TALK = "small_talk"
    COMPLAINT = "complaint"
    COMPLIMENT = "compliment"
    EMERGENCY = "emergency"
    UNCLEAR = "unclear"
    NONE = "none"


_S = CallState

_VALID_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    _S.INIT: frozenset({_S.GREETING, _S.ENDED}),
    _S.GREETING: frozenset({_S.IDENTIFICATION, _S.PURPOSE_DELIVERY, _S.INTERACTION, _S.CLOSING, _S.ENDED}),
    _S.IDENTIFICATION: frozenset(
        {_S.PURPOSE_DELIVERY, _S.INTERACTION, _S.CLARIFICATION, _S.CLOSING, _S.ENDED}
    ),
    _S.PURPOSE_DELIVERY: frozenset(
        {_S.INTERACTION, _S.TASK_HANDLING, _S.CLARIFICATION, _S.EMOTIONAL_SUPPORT, _S.CLOSING, _S.ENDED}
    ),
    _S.INTERACTION: frozenset(
        {
            _S.TASK_HANDLING,
            _S.CLARIFICATION,
            _S.EMOTIONAL_SUPPORT,
            _S.ESCALATION_OR_CALLBACK,
            _S.CLOSING,
            _S.ENDED,
        }
    ),
    _S.TASK_HANDLING: frozenset(
        {_S.INTERACTION, _S.CLARIFICATION, _S.ESCALATION_OR_CALLBACK, _S.CLOSING, _S.ENDED}
    ),
    _S.CLARIFICATION: frozenset(
        {_S.INTERACTION, _S.TASK_HANDLING, _S.EMOTIONAL_SUPPORT, _S.CLOSING, _S.ENDED}
    ),
    _S.EMOTIONAL_SUPPORT: frozenset(
        {_S.INTERACTION, _S.TASK_HANDLING, _S.ESCALATION_OR_CALLBACK, _S.CLOSING, _S.ENDED}
    ),
    _S.ESCALATION_OR_CALLBACK: frozenset({_S.CLOSING, _S.ENDED}),
    _S.CLOSING: frozenset({_S.ENDED}),
    _S.ENDED: frozenset(),
}

_STATE_GUIDANCE: dict[CallState, str] = {
    _S.INIT: "Call is initializing. Prepare for greeting.",
    _S.GREETING: "Deliver a warm greeting. Introduce yourself and ask if it's a good time.",
    _S.IDENTIFICATION: "Confirm caller identity if needed. Be polite and brief.",
    _S.PURPOSE_DELIVERY: "Explain why you're calling. Be clear and concise about the purpose.",
    _S.INTERACTION: (
        "Engage with the caller's needs. Answer questions, handle requests, or provide information."
    ),
    _S.TASK_HANDLING: "Focus on completing the specific task (scheduling, rescheduling, confirming, etc.).",
    _S.CLARIFICATION: "Ask for clarification. Be patient and use simple language.",
    _S.EMOTIONAL_SUPPORT: "Provide empathetic support. Acknowledge emotions, remain calm, and offer help.",
    _S.ESCALATION_OR_CALLBACK: "Arrange for human follow-up. Confirm callback details and set expectations.",
    _S.CLOSING: "Close the call politely. Thank the caller and provide a warm sign-off.",
    _S.ENDED: "Call has ended. No further action needed.",
}


@dataclass
class CallContext:
    """Mutable per-call context used by the persona pipeline."""

    user_id: str = ""
    call_id: Optional[str] = None
    call_type: str = "inbound"
    started_at: float = field(default_factory=time.time)

    # Call progress
    has_delivered_purpose: bool = False
    purpose_delivered_at: Optional[float] = None
    campaign_purpose: Optional[str] = None
    clarification_attempts: int = 0
    connection_issues_count: int = 0
    needs_human_followup: bool = False
    exit_requested: bool = False

    # Caller
    last_user_utterance: str = ""
    last_intent: CallIntent = CallIntent.NONE
    caller_name: Optional[str] = None
    caller_identified: bool = False

    # Emotional state
    is_caller_angry: bool = False
    is_caller_confused: bool = False
    is_caller_busy: bool = False
    is_caller_upset: bool = False

    def mark_purpose_delivered(self, now: Optional[float] = None) -> None:
        """Record purpose delivery; the timestamp is set at most once."""
        if self.has_delivered_purpose:
            return
        self.has_delivered_purpose = True
        self.purpose_delivered_at = time.time() if now is None else now

    def call_duration(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.started_at

    def purpose_age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since purpose delivery, or None if not delivered yet."""
        if not self.has_delivered_purpose or self.purpose_delivered_at is None:
            return None
        return (time.time() if now is None else now) - self.purpose_delivered_at


class CallStateMachine:
    def __init__(self, context: Optional[CallContext] = None, *, initial: CallState = CallState.INIT):
        self.context = context or CallContext()
        self._state = initial
        self._previous: Optional[CallState] = None
        self._history: list[CallState] = [initial]
        self.last_state_change_at: float = time.time()

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def previous_state(self) -> Optional[CallState]:
        return self._previous

    @property
    def history(self) -> list[CallState]:
        return list(self._history)

    @property
    def is_closing(self) -> bool:
        return self._state == CallState.CLOSING

    @property
    def is_terminal(self) -> bool:
        return self._state == CallState.ENDED

    @staticmethod
    def is_valid_transition(from_state: CallState, to_state: CallState) -> bool:
        return to_state in _VALID_TRANSITIONS.get(from_state, frozenset())

    def transition_to(self, new_state: CallState, reason: str = "") -> bool:
        """Move to `new_state`; invalid transitions are logged and ignored."""
        if self._state == new_state:
            return False

        if not self.is_valid_transition(self._state, new_state):
            logger.warning(
                "Invalid call state transition",
                call_id=self.context.call_id,
                from_state=self._state.value,
                to_state=new_state.value,
            )
            return False

        self._previous = self._state
        self._state = new_state
        self._history.append(new_state)
        self.last_state_change_at = time.time()

        logger.info(
            "Call state changed",
            call_id=self.context.call_id,
            from_state=self._previous.value,
            to_state=new_state.value,
            reason=reason or None,
        )
        return True

    def force_closing(self, reason: str) -> None:
        if self._state not in (CallState.CLOSING, CallState.ENDED):
            self.transition_to(CallState.CLOSING, reason)

    def end(self, reason: str = "call_ended") -> None:
        self.transition_to(CallState.ENDED, reason)

    def request_exit(self) -> None:
        self.context.exit_requested = True
        self.force_closing("Exit requested")

    def request_human_followup(self) -> None:
        self.context.needs_human_followup = True

    def reset_clarification_attempts(self) -> None:
        self.context.clarification_attempts = 0

    def state_guidance(self) -> str:
        return _STATE_GUIDANCE.get(self._state, "")

    def update_from_interaction(
        self,
        utterance: str,
        intent: CallIntent,
        *,
        stt_confidence: Optional[float] = None,
        has_connection_issue: bool = False,
        is_angry: Optional[bool] = None,
        is_confused: Optional[bool] = None,
        is_busy: Optional[bool] = None,
        is_upset: Optional[bool] = None,
    ) -> None:
        ctx = self.context
        ctx.last_user_utterance = utterance
        ctx.last_intent = intent

        if is_angry is not None:
            ctx.is_caller_angry = is_angry
        if is_confused is not None:
            ctx.is_caller_confused = is_confused
        if is_busy is not None:
            ctx.is_caller_busy = is_busy
        if is_upset is not None:
            ctx.is_caller_upset = is_upset
        if has_connection_issue:
            ctx.connection_issues_count += 1

        self._auto_transition(intent, stt_confidence=stt_confidence, has_connection_issue=has_connection_issue)

    def _auto_transition(
        self,
        intent: CallIntent,
        *,
        stt_confidence: Optional[float],
        has_connection_issue: bool,
    ) -> None:
        ctx = self.context
        current = self._state
        if current in (CallState.CLOSING, CallState.ENDED):
            return

        if intent == CallIntent.UNSUBSCRIBE or ctx.exit_requested:
            self.transition_to(CallState.CLOSING, "Exit requested")
            return

        if intent == CallIntent.EMERGENCY:
            self.transition_to(CallState.CLOSING, "Emergency detected - redirecting")
            return

        low_confidence = stt_confidence is not None and stt_confidence < 0.5
        if low_confidence or has_connection_issue:
            if current != CallState.CLARIFICATION:
                ctx.clarification_attempts += 1
                if ctx.clarification_attempts < 3:
                    self.transition_to(CallState.CLARIFICATION, "Low confidence or connection issue")
                else:
                    self.transition_to(CallState.CLOSING, "Too many clarification attempts")
            return

        if ctx.is_caller_angry or ctx.is_caller_upset or intent == CallIntent.COMPLAINT:
            if current != CallState.EMOTIONAL_SUPPORT:
                self.transition_to(CallState.EMOTIONAL_SUPPORT, "Emotional support needed")
            return

        if intent in (CallIntent.RESCHEDULE, CallIntent.CANCEL, CallIntent.CONFIRM):
            if current != CallState.TASK_HANDLING:
                self.transition_to(CallState.TASK_HANDLING, f"Task intent: {intent.value}")
            return

        if ctx.needs_human_followup:
            if current != CallState.ESCALATION_OR_CALLBACK:
                self.transition_to(CallState.ESCALATION_OR_CALLBACK, "Human follow-up needed")
            return

        if current in (CallState.GREETING, CallState.IDENTIFICATION, CallState.PURPOSE_DELIVERY):
            if intent not in (CallIntent.UNCLEAR, CallIntent.NONE):
                self.transition_to(CallState.INTERACTION, "User engaged")


_INTENT_RULES: tuple[tuple[CallIntent, re.Pattern[str]], ...] = tuple(
    (intent, re.compile(pattern))
    for intent, pattern in (
        # Emergency first: it overrides everything else.
        (CallIntent.EMERGENCY, r"\b(emergency|911|ambulance|police|fire|help me|urgent)\b"),
        (
            CallIntent.UNSUBSCRIBE,
            r"\b(remove|unsubscribe|don'?t call|stop calling|do not call|opt out|take me off)\b",
        ),
        (CallIntent.RESCHEDULE, r"\b(reschedule|re-schedule|change time|move appointment)\b"),
        (CallIntent.CANCEL, r"\b(cancel|cancelled|no longer need)\b"),
        (CallIntent.CONFIRM, r"\b(confirm|confirmation|yes|sure|okay|ok)\b"),
        (CallIntent.QUESTION_PRICING, r"\b(price|pricing|cost|fee|charge|rate|how much)\b"),
        (CallIntent.QUESTION_SERVICE, r"\b(service|services|what do you|what can you)\b"),
        (CallIntent.QUESTION_HOURS, r"\b(hour|hours|open|close|when|time|schedule)\b"),
        (CallIntent.QUESTION_LOCATION, r"\b(location|where|address|city|state)\b"),
        (
            CallIntent.COMPLAINT,
            r"\b(angry|mad|furious|terrible|awful|horrible|worst|hate|disgusted|complaint)\b",
        ),
        (CallIntent.COMPLIMENT, r"\b(thank|thanks|appreciate|great|good|excellent|love)\b"),
        (
            CallIntent.SMALL_TALK,
            r"\b(how are you|how's it going|what's up|hello|hi|hey|good morning|good afternoon|good evening)\b",
        ),
    )
)

_FILLER_ONLY_RE = re.compile(r"^(uh|um|hmm|er|ah)$")


def detect_intent(utterance: str) -> CallIntent:
    """Keyword intent detection on a caller utterance."""
    lower = (utterance or "").strip().lower()

    for intent, pattern in _INTENT_RULES:
        if pattern.search(lower):
            return intent

    if len(lower) < 3 or _FILLER_ONLY_RE.match(lower):
        return CallIntent.UNCLEAR

    return CallIntent.NONE
