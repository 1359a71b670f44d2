"""
Scenario resolver.

Selects a fallback library entry for a detected scenario and fills in the
caller/business placeholders. `resolve()` is total: whatever the classifier
hands over, some safe utterance comes back.
"""

from __future__ import annotations

import dataclasses
import random
import re
from typing import Optional

import structlog

from src.aloha.fallback_responses import (
    DEFAULT_RESPONSE,
    EMPTY_RESPONSE,
    FallbackLibrary,
    get_fallback_library,
)
from src.aloha.scenarios import (
    SAFETY_TYPES,
    DetectedScenario,
    FallbackResponse,
    PlaceholderContext,
    ScenarioCategory,
)

logger = structlog.get_logger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{(displayname|businessname|phone|purpose|hours)\}", re.IGNORECASE)

PLACEHOLDER_DEFAULTS = {
    "businessname": "our business",
    "phone": "our main number",
    "purpose": "assist you",
    "hours": "our regular business hours",
}


def _value(raw: Optional[str], default: str) -> str:
    if raw is None:
        return default
    text = str(raw).strip()
    return text or default


class ScenarioResolver:
    def __init__(
        self,
        library: Optional[FallbackLibrary] = None,
        *,
        rng: Optional[random.Random] = None,
        default_display_name: str = "Aloha",
    ):
        self._library = library or get_fallback_library()
        self._rng = rng or random.Random()
        self._default_display_name = default_display_name or "Aloha"

    def resolve(
        self,
        scenario: DetectedScenario,
        context: Optional[PlaceholderContext] = None,
    ) -> FallbackResponse:
        """Return the fallback for `scenario`; never raises."""
        try:
            return self._resolve(scenario, context or PlaceholderContext())
        except Exception as e:
            logger.error("Fallback resolution failed, using default", error=str(e))
            return DEFAULT_RESPONSE

    def resolve_random(
        self,
        scenario: DetectedScenario,
        context: Optional[PlaceholderContext] = None,
    ) -> str:
        """Pick one of primary/alternatives uniformly at random ("" for normal)."""
        candidates = self.resolve(scenario, context).candidates()
        if not candidates:
            return ""
        return self._rng.choice(candidates)

    def _resolve(self, scenario: DetectedScenario, context: PlaceholderContext) -> FallbackResponse:
        category = ScenarioCategory.parse(getattr(scenario, "category", None))
        scenario_type = getattr(scenario, "type", None)

        if category == ScenarioCategory.NORMAL:
            return EMPTY_RESPONSE

        template = self._library.lookup(category, scenario_type) if category else None
        if template is None:
            logger.info(
                "No fallback for scenario, using default",
                category=category.value if category else str(getattr(scenario, "category", None)),
                type=scenario_type,
            )
            return DEFAULT_RESPONSE

        values = {
            "displayname": _value(context.display_name, self._default_display_name),
            "businessname": _value(context.business_name, PLACEHOLDER_DEFAULTS["businessname"]),
            "phone": _value(context.phone, PLACEHOLDER_DEFAULTS["phone"]),
            "purpose": _value(context.purpose, PLACEHOLDER_DEFAULTS["purpose"]),
            "hours": _value(context.hours, PLACEHOLDER_DEFAULTS["hours"]),
        }

        def substitute(text: str) -> str:
            return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1).lower()], text)

        resolved = dataclasses.replace(
            template,
            primary=substitute(template.primary),
            alternatives=tuple(substitute(alt) for alt in template.alternatives),
        )

        if scenario_type.strip().lower() in SAFETY_TYPES and not resolved.should_exit:
            resolved = dataclasses.replace(resolved, should_exit=True)

        return resolved
