"""
Voice profile registry.

Four selectable voice identities. Each maps a persona key to a synthesis
provider voice and a tone preset; the agent's behavior stays the same, only
the voice changes. Per-user selection is persisted elsewhere and resolved here
at call start.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional

import structlog

from src.aloha.tone_presets import TonePresetKey

logger = structlog.get_logger(__name__)

DEFAULT_VOICE_KEY = "aloha_voice_friendly_female_us"


@dataclass(frozen=True)
class VoiceProfile:
    key: str
    label: str
    description: str
    provider_voice_id: str
    tone_preset: TonePresetKey
    gender: str
    accent: str


_PROFILES = (
    VoiceProfile(
        key="aloha_voice_friendly_female_us",
        label="Friendly (Female, US)",
        description="Warm and approachable, ideal for feedback and general calls.",
        provider_voice_id="nova",
        tone_preset=TonePresetKey.FRIENDLY,
        gender="female",
        accent="US",
    ),
    VoiceProfile(
        key="aloha_voice_professional_male_us",
        label="Professional (Male, US)",
        description="Clear and confident, great for confirmations and updates.",
        provider_voice_id="onyx",
        tone_preset=TonePresetKey.PROFESSIONAL,
        gender="male",
        accent="US",
    ),
    VoiceProfile(
        key="aloha_voice_energetic_female_uk",
        label="Energetic (Female, US)",
        description="Lively and upbeat, perfect for sales or promotions.",
        provider_voice_id="nova",
        tone_preset=TonePresetKey.ENERGETIC,
        gender="female",
        accent="US",
    ),
    VoiceProfile(
        key="aloha_voice_empathetic_male_neutral",
        label="Empathetic (Male, Neutral)",
        description="Calm and reassuring, ideal for sensitive or support calls.",
        provider_voice_id="echo",
        tone_preset=TonePresetKey.EMPATHETIC,
        gender="male",
        accent="Neutral",
    ),
)

_PREVIEW_TEMPLATES: Mapping[str, str] = MappingProxyType(
    {
        "aloha_voice_friendly_female_us": (
            "Hi there! I'm {name}. I'm here to help and make every call feel friendly and easy."
        ),
        "aloha_voice_professional_male_us": (
            "Hello, this is {name}. You can count on me for clear communication and reliable updates."
        ),
        "aloha_voice_energetic_female_uk": (
            "Hey! I'm {name}. Let's jump in and make things happen with energy and momentum!"
        ),
        "aloha_voice_empathetic_male_neutral": (
            "Hi, I'm {name}. I'm here to listen, support you, and make every call feel understood."
        ),
    }
)

_PREVIEW_ASSETS: Mapping[str, str] = MappingProxyType(
    {
        "aloha_voice_friendly_female_us": "friendly-us.mp3",
        "aloha_voice_professional_male_us": "professional-us.mp3",
        "aloha_voice_energetic_female_uk": "energetic-uk.mp3",
        "aloha_voice_empathetic_male_neutral": "empathetic-neutral.mp3",
    }
)


class VoiceProfileRegistry:
    """
    Immutable catalog of voice profiles.

    Lookups never fail: a missing key silently resolves to the default profile
    and an unknown key resolves to it with a warning.
    """

    def __init__(
        self,
        profiles: tuple[VoiceProfile, ...] = _PROFILES,
        default_key: str = DEFAULT_VOICE_KEY,
    ):
        self._profiles: Mapping[str, VoiceProfile] = MappingProxyType({p.key: p for p in profiles})
        if default_key not in self._profiles:
            raise ValueError(f"Default voice key {default_key!r} is not in the catalog")
        self._default_key = default_key

    @property
    def default_key(self) -> str:
        return self._default_key

    def all(self) -> tuple[VoiceProfile, ...]:
        return tuple(self._profiles.values())

    def is_valid(self, key: Optional[str]) -> bool:
        return bool(key) and key in self._profiles

    def default(self) -> VoiceProfile:
        return self._profiles[self._default_key]

    def get(self, key: Optional[str]) -> VoiceProfile:
        if not key:
            return self.default()
        profile = self._profiles.get(key)
        if profile is None:
            logger.warning("Invalid voice key, using default", voice_key=key, default_key=self._default_key)
            return self.default()
        return profile

    def preview_script(self, key: Optional[str], display_name: str = "") -> str:
        name = (display_name or "").strip() or "Aloha"
        template = _PREVIEW_TEMPLATES.get(key or "") or _PREVIEW_TEMPLATES[self._default_key]
        return template.format(name=name)

    def preview_asset_name(self, key: Optional[str]) -> str:
        return _PREVIEW_ASSETS.get(key or "") or _PREVIEW_ASSETS[self._default_key]


@lru_cache(maxsize=1)
def get_voice_profiles() -> VoiceProfileRegistry:
    return VoiceProfileRegistry()
