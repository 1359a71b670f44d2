"""
Aloha call-response finalization.

Public names resolve lazily: the static tables (fallback library, tone presets,
voice profiles) load without pulling in openai or dotenv.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.aloha.config import Config, get_config
    from src.aloha.fallback_responses import get_fallback_library
    from src.aloha.scenario_resolver import ScenarioResolver
    from src.aloha.session import CallSession
    from src.aloha.tone_presets import get_tone_presets
    from src.aloha.tts import SpeechSynthesizer
    from src.aloha.voice_profiles import get_voice_profiles

_EXPORTS = {
    "Config": "src.aloha.config",
    "get_config": "src.aloha.config",
    "get_fallback_library": "src.aloha.fallback_responses",
    "ScenarioResolver": "src.aloha.scenario_resolver",
    "CallSession": "src.aloha.session",
    "get_tone_presets": "src.aloha.tone_presets",
    "SpeechSynthesizer": "src.aloha.tts",
    "get_voice_profiles": "src.aloha.voice_profiles",
}

__all__ = list(_EXPORTS)


def __getattr__(name: str) -> Any:
    module = _EXPORTS.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(import_module(module), name)
