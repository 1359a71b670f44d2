"""
Persona micro-rules.

Always-on rules applied to every outgoing utterance, whether it came from the
dialogue engine or from the fallback library. They run after content selection
and before synthesis, in a fixed order: later rules assume the normalization
done by earlier ones, and the banned-phrase scrub must see everything the other
rules added.
"""

from __future__ import annotations

import random
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from src.aloha.call_state import CallContext, CallState
from src.aloha.tone_presets import TonePreset

logger = structlog.get_logger(__name__)

ELLIPSIS = "..."


@dataclass
class PersonalityRuleContext:
    state: CallState
    tone_preset: TonePreset
    call_context: CallContext
    is_first_response: bool = False
    is_closing: bool = False
    is_clarification: bool = False
    caller_name: Optional[str] = None
    business_name: Optional[str] = None
    agent_name: str = "Aloha"


# Rule 1
_COMMAND_RE = re.compile(r"\b(you must|you have to|you need to)\b", re.IGNORECASE)
_CORRECTION_RE = re.compile(r"\b(that's wrong|incorrect|no, that's not)\b", re.IGNORECASE)
_POLITE_MARKER_RE = re.compile(r"\b(please|thank you|I appreciate|I understand)\b", re.IGNORECASE)
POLITE_PHRASES = ("I appreciate your patience", "Thank you for your time", "I understand")

# Rule 2
_UNCERTAINTY_RE = re.compile(
    r"\b(I don't know|I'm not sure|I don't have|unable to|can't tell|not sure)\b", re.IGNORECASE
)
_FOLLOW_UP_RE = re.compile(r"\b(follow up|follows up|call back|get back to you|someone will)\b", re.IGNORECASE)
FOLLOW_UP_COMMITMENT = "I'll make sure someone follows up with you about this."

# Rule 3
_REDUNDANT_RE = re.compile(
    r"\b(I just wanted to let you know that|I wanted to inform you that|I'd like to mention that)\b\s*",
    re.IGNORECASE,
)
_QUALIFIER_RE = re.compile(
    r"\b(actually|basically|essentially|literally|really|very|quite|rather)\b\s*", re.IGNORECASE
)
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")

# Rule 5
_SENTENCE_BOUNDARY_RE = re.compile(r"([.!?])\s+([A-Z])")

# Rule 6
_IDENTITY_CHALLENGE_RE = re.compile(
    r"\b(are you a person|are you human|are you real|who am I talking to)\b", re.IGNORECASE
)

# Rule 7
_ACKNOWLEDGMENT_RE = re.compile(r"\b(thank you|appreciate|goodbye|have a great)\b", re.IGNORECASE)
EXIT_ACKNOWLEDGMENT = "Thank you for your time. Have a great day!"
FOLLOW_UP_CONFIRMATION = "Someone from our team will follow up with you soon."

# Rule 8
_SIGN_OFF_RE = re.compile(
    r"\b(thank you for your time|thanks again|have a great day|appreciate your time)\b", re.IGNORECASE
)
CLOSINGS = (
    "That's everything on my side. Thanks again for your time and have a great day!",
    "Thank you for calling. Have a wonderful day!",
    "I appreciate your time. Take care!",
)

# Final scrub
_BANNED_RES = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bas an AI\b",
        r"\bas an artificial intelligence\b",
        r"\bI'm just a robot\b",
        r"\bI'm just a bot\b",
    )
)


def _scrub_banned(text: str, agent_name: Optional[str]) -> str:
    replacement = f"I'm {agent_name or 'Aloha'}"
    for pattern in _BANNED_RES:
        text = pattern.sub(replacement, text)
    return text


def _tidy_spacing(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\s+([,.!?])", r"\1", text)
    return text.strip()


def _append(text: str, sentence: str) -> str:
    text = text.rstrip()
    return f"{text} {sentence}" if text else sentence


def _truncate(text: str, max_length: int) -> str:
    kept = ""
    for match in _SENTENCE_RE.finditer(text):
        sentence = match.group(0).strip()
        candidate = f"{kept} {sentence}".strip()
        if len(candidate) > max_length:
            break
        kept = candidate

    if not kept:
        # First sentence alone is too long: cut at the last word that fits.
        for word in text.split():
            candidate = f"{kept} {word}".strip()
            if len(candidate) > max_length:
                break
            kept = candidate

    if not kept:
        # A single token longer than the budget.
        kept = text[:max_length]

    return kept.rstrip(" .,;:") + ELLIPSIS


class PersonalityRules:
    """
    Ordered persona rule pipeline.

    `apply` is deterministic for a given random source and clock; nothing else
    is consulted.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        *,
        min_call_seconds: float = 120.0,
        min_purpose_age_seconds: float = 30.0,
    ):
        self._rng = rng or random.Random()
        self._clock = clock
        self._min_call_seconds = min_call_seconds
        self._min_purpose_age_seconds = min_purpose_age_seconds
        self._rules: tuple[tuple[str, Callable[[str, PersonalityRuleContext], str]], ...] = (
            ("calm_and_polite", self._calm_and_polite),
            ("honest_limitations", self._honest_limitations),
            ("brevity", self._brevity),
            ("one_question_at_a_time", self._one_question_at_a_time),
            ("purpose_reminder", self._purpose_reminder),
            ("ai_identity", self._ai_identity),
            ("caller_boundaries", self._caller_boundaries),
            ("clean_closing", self._clean_closing),
            ("banned_phrases", self._banned_phrases),
        )

    def rule_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._rules)

    def apply(self, text: str, ctx: PersonalityRuleContext) -> str:
        processed = text or ""
        for name, rule in self._rules:
            before = processed
            processed = rule(processed, ctx)
            if processed != before:
                logger.debug("Persona rule applied", rule=name, call_id=ctx.call_context.call_id)
        return processed.strip()

    def _calm_and_polite(self, text: str, ctx: PersonalityRuleContext) -> str:
        cleaned = _COMMAND_RE.sub("I'd recommend", text)
        cleaned = _CORRECTION_RE.sub("let me clarify", cleaned)

        if not _POLITE_MARKER_RE.search(cleaned) and self._rng.random() < 0.3:
            phrase = self._rng.choice(POLITE_PHRASES)
            cleaned = f"{phrase}. {cleaned}" if cleaned.strip() else f"{phrase}."
        return cleaned

    def _honest_limitations(self, text: str, ctx: PersonalityRuleContext) -> str:
        if _UNCERTAINTY_RE.search(text) and not _FOLLOW_UP_RE.search(text):
            return _append(text, FOLLOW_UP_COMMITMENT)
        return text

    def _brevity(self, text: str, ctx: PersonalityRuleContext) -> str:
        max_length = ctx.tone_preset.max_sentence_length * 3
        # Measure the text as it will be spoken, after the final scrub.
        text = _scrub_banned(text, ctx.agent_name)
        if len(text) <= max_length:
            return text

        compressed = _REDUNDANT_RE.sub("", text)
        compressed = _QUALIFIER_RE.sub("", compressed)
        compressed = _tidy_spacing(compressed)
        if compressed[:1].islower():
            compressed = compressed[:1].upper() + compressed[1:]

        if len(compressed) <= max_length:
            return compressed
        return _truncate(compressed, max_length)

    def _one_question_at_a_time(self, text: str, ctx: PersonalityRuleContext) -> str:
        if text.count("?") <= 2:
            return text
        first = text.index("?") + 1
        return text[:first] + text[first:].replace("?", ".")

    def _should_remind_purpose(self, ctx: PersonalityRuleContext) -> bool:
        call = ctx.call_context
        if ctx.state != CallState.INTERACTION or not call.has_delivered_purpose:
            return False

        now = self._clock()
        purpose_age = call.purpose_age(now) or 0.0
        return (
            call.call_duration(now) > self._min_call_seconds
            and purpose_age > self._min_purpose_age_seconds
        )

    def _purpose_reminder(self, text: str, ctx: PersonalityRuleContext) -> str:
        purpose = (ctx.call_context.campaign_purpose or "").strip()
        if not purpose or not self._should_remind_purpose(ctx):
            return text

        reminder = f"Just as a reminder, I'm calling to {purpose}."
        if self._rng.random() < 0.3:
            return f"{reminder} {text}".strip()

        if _SENTENCE_BOUNDARY_RE.search(text):
            return _SENTENCE_BOUNDARY_RE.sub(lambda m: f"{m.group(1)} {reminder} {m.group(2)}", text, count=1)
        return _append(text, reminder)

    def _ai_identity(self, text: str, ctx: PersonalityRuleContext) -> str:
        utterance = ctx.call_context.last_user_utterance or ""
        if not _IDENTITY_CHALLENGE_RE.search(utterance):
            return text

        agent = ctx.agent_name or "Aloha"
        self_identified = re.compile(
            r"\b(ai|assistant|virtual|" + re.escape(agent) + r")\b", re.IGNORECASE
        )
        if self_identified.search(text):
            return text

        business = ctx.business_name or "our business"
        return f"I'm {agent}, a virtual assistant for {business}, and I'm here to help. {text}".strip()

    def _caller_boundaries(self, text: str, ctx: PersonalityRuleContext) -> str:
        call = ctx.call_context
        if call.exit_requested and not _ACKNOWLEDGMENT_RE.search(text):
            text = _append(text, EXIT_ACKNOWLEDGMENT)
        if call.needs_human_followup and not _FOLLOW_UP_RE.search(text):
            text = _append(text, FOLLOW_UP_CONFIRMATION)
        return text

    def _clean_closing(self, text: str, ctx: PersonalityRuleContext) -> str:
        if not ctx.is_closing or _SIGN_OFF_RE.search(text):
            return text
        return _append(text, self._rng.choice(CLOSINGS))

    def _banned_phrases(self, text: str, ctx: PersonalityRuleContext) -> str:
        return _scrub_banned(text, ctx.agent_name)
