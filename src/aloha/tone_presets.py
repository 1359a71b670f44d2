"""
Tone preset table.

A tone preset changes HOW the agent speaks (prosody and phrasing), never WHAT it
says. The table is built once per process and is read-only afterwards, so call
sessions can share it without locking.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class TonePresetKey(str, Enum):
    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"
    EMPATHETIC = "empathetic"
    ENERGETIC = "energetic"


# TTS rate: 1.0 is normal speed. TTS pitch: semitones around 0.
SPEAKING_RATES: Mapping[str, float] = MappingProxyType({"slow": 0.85, "medium": 1.0, "fast": 1.25})
PITCH_LEVELS: Mapping[str, float] = MappingProxyType({"low": -2.0, "normal": 0.0, "high": 2.0})

_DISFLUENCY_PROBABILITY = {"high": 0.3, "medium": 0.15, "low": 0.05}


@dataclass(frozen=True)
class TonePreset:
    key: TonePresetKey
    label: str
    description: str
    speaking_rate: str
    pitch_level: str
    max_sentence_length: int

    # Conversational style
    allow_disfluencies: bool = False
    disfluency_frequency: str = "low"
    filler_words: tuple[str, ...] = ()
    confirm_phrases: tuple[str, ...] = ()
    softeners: tuple[str, ...] = ()
    prefer_short_sentences: bool = False
    use_contractions: bool = True

    @property
    def rate(self) -> float:
        return SPEAKING_RATES[self.speaking_rate]

    @property
    def pitch(self) -> float:
        return PITCH_LEVELS[self.pitch_level]


_PRESETS = (
    TonePreset(
        key=TonePresetKey.FRIENDLY,
        label="Friendly",
        description="Warm, approachable, conversational tone",
        speaking_rate="medium",
        pitch_level="normal",
        max_sentence_length=20,
        allow_disfluencies=True,
        disfluency_frequency="low",
        filler_words=("um", "uh", "well", "you know"),
        confirm_phrases=("yeah, that makes sense", "gotcha", "sure thing", "absolutely", "of course"),
        softeners=("no worries at all", "happy to help", "not a problem", "my pleasure"),
        prefer_short_sentences=True,
        use_contractions=True,
    ),
    TonePreset(
        key=TonePresetKey.PROFESSIONAL,
        label="Professional",
        description="Formal, polished, business-appropriate tone",
        speaking_rate="medium",
        pitch_level="low",
        max_sentence_length=25,
        allow_disfluencies=False,
        confirm_phrases=("understood", "that's clear", "I understand", "certainly", "very well"),
        softeners=(
            "I appreciate your patience",
            "thank you for your understanding",
            "I understand your concern",
        ),
        prefer_short_sentences=False,
        use_contractions=False,
    ),
    TonePreset(
        key=TonePresetKey.EMPATHETIC,
        label="Empathetic",
        description="Gentle, understanding, supportive tone",
        speaking_rate="slow",
        pitch_level="normal",
        max_sentence_length=18,
        allow_disfluencies=True,
        disfluency_frequency="medium",
        filler_words=("um", "well", "I see"),
        confirm_phrases=(
            "I'm really sorry you're dealing with this",
            "I hear you",
            "I understand",
            "that sounds really tough",
            "I can imagine how that feels",
        ),
        softeners=(
            "that sounds really difficult",
            "thank you for telling me",
            "I'm here to help",
            "take your time",
        ),
        prefer_short_sentences=True,
        use_contractions=True,
    ),
    TonePreset(
        key=TonePresetKey.ENERGETIC,
        label="Energetic",
        description="Upbeat, enthusiastic, positive tone",
        speaking_rate="fast",
        pitch_level="high",
        max_sentence_length=22,
        allow_disfluencies=True,
        disfluency_frequency="low",
        filler_words=("um", "so", "like"),
        confirm_phrases=("awesome", "perfect", "sounds great", "excellent", "fantastic"),
        softeners=("no problem at all", "happy to help out", "glad to assist", "my pleasure"),
        prefer_short_sentences=True,
        use_contractions=True,
    ),
)

DEFAULT_TONE_PRESET_KEY = TonePresetKey.FRIENDLY


class TonePresetRegistry:
    """Read-only lookup from tone key to preset."""

    def __init__(self, presets: tuple[TonePreset, ...] = _PRESETS):
        self._presets: Mapping[TonePresetKey, TonePreset] = MappingProxyType(
            {preset.key: preset for preset in presets}
        )

    def keys(self) -> tuple[TonePresetKey, ...]:
        return tuple(self._presets)

    def default(self) -> TonePreset:
        return self._presets[DEFAULT_TONE_PRESET_KEY]

    def get(self, key: Union[TonePresetKey, str, None]) -> TonePreset:
        if key is None:
            return self.default()
        try:
            return self._presets[TonePresetKey(key)]
        except (ValueError, KeyError):
            logger.warning("Unknown tone preset, using default", tone_preset=str(key))
            return self.default()


@lru_cache(maxsize=1)
def get_tone_presets() -> TonePresetRegistry:
    return TonePresetRegistry()


def tts_settings_from_preset(preset: TonePreset) -> tuple[float, float]:
    """Return `(rate, pitch)` for the synthesis provider."""
    return preset.rate, preset.pitch


_SENTENCE_BOUNDARY_RE = re.compile(r"([.!?])\s+([A-Z])")
_HAS_STATEMENT_RE = re.compile(r"[.!?]\s+[A-Z]")

_CONTRACTIONS: tuple[tuple[str, str], ...] = (
    ("I am", "I'm"),
    ("you are", "you're"),
    ("we are", "we're"),
    ("they are", "they're"),
    ("it is", "it's"),
    ("that is", "that's"),
    ("what is", "what's"),
    ("where is", "where's"),
    ("who is", "who's"),
    ("how is", "how's"),
    ("I will", "I'll"),
    ("you will", "you'll"),
    ("we will", "we'll"),
    ("they will", "they'll"),
    ("it will", "it'll"),
    ("that will", "that'll"),
    ("I have", "I've"),
    ("you have", "you've"),
    ("we have", "we've"),
    ("they have", "they've"),
    ("I would", "I'd"),
    ("you would", "you'd"),
    ("do not", "don't"),
    ("does not", "doesn't"),
    ("did not", "didn't"),
    ("cannot", "can't"),
    ("could not", "couldn't"),
    ("should not", "shouldn't"),
    ("would not", "wouldn't"),
    ("will not", "won't"),
)


def _match_case(source: str, replacement: str) -> str:
    if source[:1].isupper() and replacement[:1].islower():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def _swap_phrases(text: str, pairs: tuple[tuple[str, str], ...]) -> str:
    for src, dst in pairs:
        pattern = re.compile(r"\b" + re.escape(src) + r"\b", re.IGNORECASE)
        text = pattern.sub(lambda m, dst=dst: _match_case(m.group(0), dst), text)
    return text


def apply_contractions(text: str) -> str:
    return _swap_phrases(text, _CONTRACTIONS)


def remove_contractions(text: str) -> str:
    return _swap_phrases(text, tuple((dst, src) for src, dst in _CONTRACTIONS))


def apply_tone_preset(
    text: str,
    preset: TonePreset,
    *,
    rng: Optional[random.Random] = None,
    is_closing: bool = False,
) -> str:
    """
    Optional styling pass: softeners, confirmations, fillers and contractions.

    Runs before the persona rules, which still bound the final length.
    """
    rng = rng or random.Random()
    styled = text

    if not is_closing:
        if preset.softeners and rng.random() < 0.3:
            softener = rng.choice(preset.softeners)
            styled = f"{softener[:1].upper()}{softener[1:]}. {styled}"

        if preset.confirm_phrases and _HAS_STATEMENT_RE.search(styled) and rng.random() < 0.2:
            confirm = rng.choice(preset.confirm_phrases)
            styled = _SENTENCE_BOUNDARY_RE.sub(rf"\1 {confirm}. \2", styled, count=1)

        if preset.allow_disfluencies and preset.filler_words:
            frequency = _DISFLUENCY_PROBABILITY.get(preset.disfluency_frequency, 0.05)
            if rng.random() < frequency:
                filler = rng.choice(preset.filler_words)
                if rng.random() < 0.5:
                    styled = f"{filler[:1].upper()}{filler[1:]}, {styled}"
                else:
                    styled = _SENTENCE_BOUNDARY_RE.sub(rf"\1 {filler}, \2", styled, count=1)

    styled = apply_contractions(styled) if preset.use_contractions else remove_contractions(styled)
    return styled.strip()
