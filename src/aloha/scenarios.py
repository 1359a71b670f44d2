"""
Scenario and fallback-response data model.

A `DetectedScenario` comes from the external classifier and is treated as
read-only. `FallbackResponse` values in the library are immutable templates;
placeholders are substituted into fresh copies at resolution time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class ScenarioCategory(str, Enum):
    AUDIO_TECHNICAL = "audio_technical"
    CALLER_BEHAVIOR = "caller_behavior"
    EMOTIONAL_SOCIAL = "emotional_social"
    IDENTITY_ISSUES = "identity_issues"
    BUSINESS_LOGIC = "business_logic"
    NORMAL = "normal"

    @classmethod
    def parse(cls, value: Union["ScenarioCategory", str, None]) -> Optional["ScenarioCategory"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class ResponseTone(str, Enum):
    CALM = "calm"
    EMPATHETIC = "empathetic"
    PROFESSIONAL = "professional"
    POLITE = "polite"
    NEUTRAL = "neutral"


# Subtypes that always end the call, whatever the dialogue engine wants next.
SAFETY_TYPES = frozenset({"emergency", "unsubscribe_dnc", "child", "not_intended_customer"})


@dataclass(frozen=True)
class DetectedScenario:
    category: Union[ScenarioCategory, str]
    type: Optional[str] = None

    @classmethod
    def normal(cls) -> "DetectedScenario":
        return cls(category=ScenarioCategory.NORMAL)

    @property
    def is_normal(self) -> bool:
        return ScenarioCategory.parse(self.category) == ScenarioCategory.NORMAL

    def label(self) -> str:
        category = ScenarioCategory.parse(self.category)
        name = category.value if category else str(self.category)
        return f"{name}:{self.type}" if self.type else name


@dataclass(frozen=True)
class FallbackResponse:
    primary: str
    alternatives: tuple[str, ...] = ()
    tone: ResponseTone = ResponseTone.POLITE
    should_log_knowledge_gap: bool = False
    should_offer_callback: bool = False
    should_exit: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.primary and not any(self.alternatives)

    def candidates(self) -> list[str]:
        """Primary plus alternatives, with empty strings dropped."""
        return [text for text in (self.primary, *self.alternatives) if text]


@dataclass(frozen=True)
class PlaceholderContext:
    """Caller/business values substituted into fallback templates."""

    display_name: Optional[str] = None
    business_name: Optional[str] = None
    phone: Optional[str] = None
    purpose: Optional[str] = None
    hours: Optional[str] = None
