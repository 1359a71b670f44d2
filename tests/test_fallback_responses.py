"""
Tests for the fallback response library and scenario resolver.
"""

import re

import pytest

from conftest import ScriptedRandom
from src.aloha.fallback_responses import DEFAULT_RESPONSE, EMPTY_RESPONSE, get_fallback_library
from src.aloha.scenario_resolver import PLACEHOLDER_DEFAULTS, ScenarioResolver
from src.aloha.scenarios import DetectedScenario, FallbackResponse, PlaceholderContext, ScenarioCategory

_PLACEHOLDER_TOKEN_RE = re.compile(r"\{[A-Za-z]+\}")


def _all_scenarios():
    library = get_fallback_library()
    for category in library.categories():
        for type_ in library.types(category):
            yield DetectedScenario(category=category, type=type_)


class TestFallbackLibrary:
    """Tests for the static fallback tables."""

    def test_five_categories_excluding_normal(self):
        library = get_fallback_library()
        assert set(library.categories()) == {
            ScenarioCategory.AUDIO_TECHNICAL,
            ScenarioCategory.CALLER_BEHAVIOR,
            ScenarioCategory.EMOTIONAL_SOCIAL,
            ScenarioCategory.IDENTITY_ISSUES,
            ScenarioCategory.BUSINESS_LOGIC,
        }

    def test_lookup_is_case_insensitive_on_type(self):
        library = get_fallback_library()
        assert library.lookup("business_logic", " Outside_Hours ") is library.lookup(
            ScenarioCategory.BUSINESS_LOGIC, "outside_hours"
        )

    def test_lookup_miss_returns_none(self):
        library = get_fallback_library()
        assert library.lookup("business_logic", "does_not_exist") is None
        assert library.lookup("not_a_category", "angry") is None
        assert library.lookup("emotional_social", None) is None

    def test_tables_are_read_only(self):
        library = get_fallback_library()
        with pytest.raises(TypeError):
            library._tables[ScenarioCategory.EMOTIONAL_SOCIAL]["angry"] = DEFAULT_RESPONSE  # type: ignore[index]

    def test_singleton(self):
        assert get_fallback_library() is get_fallback_library()


class TestResolveTotality:
    """resolve() always yields a usable response and never raises."""

    def test_every_known_scenario_resolves(self):
        resolver = ScenarioResolver()
        for scenario in _all_scenarios():
            response = resolver.resolve(scenario, PlaceholderContext())
            assert isinstance(response, FallbackResponse)
            assert response.primary
            assert not _PLACEHOLDER_TOKEN_RE.search(response.primary)
            for alt in response.alternatives:
                assert not _PLACEHOLDER_TOKEN_RE.search(alt)

    def test_normal_returns_empty_response(self):
        response = ScenarioResolver().resolve(DetectedScenario.normal())
        assert response == EMPTY_RESPONSE
        assert response.is_empty

    @pytest.mark.parametrize(
        "scenario",
        [
            DetectedScenario(category="business_logic", type="teleport_request"),
            DetectedScenario(category="emotional_social", type=None),
            DetectedScenario(category="emotional_social", type=""),
            DetectedScenario(category="made_up_category", type="angry"),
            DetectedScenario(category=None, type=None),  # type: ignore[arg-type]
            DetectedScenario(category=42, type=7),  # type: ignore[arg-type]
        ],
    )
    def test_unknown_inputs_return_default(self, scenario):
        assert ScenarioResolver().resolve(scenario) == DEFAULT_RESPONSE

    def test_non_scenario_object_returns_default(self):
        assert ScenarioResolver().resolve(object()) == DEFAULT_RESPONSE  # type: ignore[arg-type]

    def test_library_failure_returns_default(self):
        class BrokenLibrary:
            def lookup(self, category, type_):
                raise RuntimeError("boom")

        resolver = ScenarioResolver(BrokenLibrary())  # type: ignore[arg-type]
        response = resolver.resolve(DetectedScenario(category="emotional_social", type="angry"))
        assert response == DEFAULT_RESPONSE


class TestPlaceholderSubstitution:
    def test_outside_hours_uses_supplied_hours(self):
        response = ScenarioResolver().resolve(
            DetectedScenario(category="business_logic", type="outside_hours"),
            PlaceholderContext(hours="9am–5pm"),
        )
        assert "9am–5pm" in response.primary
        assert "{hours}" not in response.primary

    def test_missing_values_use_defaults(self):
        response = ScenarioResolver().resolve(
            DetectedScenario(category="audio_technical", type="voicemail"),
            PlaceholderContext(),
        )
        text = " ".join(response.candidates())
        assert PLACEHOLDER_DEFAULTS["businessname"] in text
        assert PLACEHOLDER_DEFAULTS["phone"] in text
        assert PLACEHOLDER_DEFAULTS["purpose"] in text
        assert "Aloha" in response.primary

    def test_supplied_values_appear_verbatim_in_primary_and_alternatives(self):
        context = PlaceholderContext(
            display_name="Kai",
            business_name="Sunny Dental",
            phone="555-0100",
            purpose="confirm your cleaning",
        )
        response = ScenarioResolver().resolve(
            DetectedScenario(category="audio_technical", type="voicemail"), context
        )
        for text in response.candidates():
            assert "Kai" in text
            assert "Sunny Dental" in text
            assert "555-0100" in text
            assert "{" not in text

    def test_blank_values_fall_back_to_defaults(self):
        response = ScenarioResolver().resolve(
            DetectedScenario(category="business_logic", type="outside_hours"),
            PlaceholderContext(hours="   "),
        )
        assert PLACEHOLDER_DEFAULTS["hours"] in response.primary

    def test_library_templates_are_not_mutated(self):
        ScenarioResolver().resolve(
            DetectedScenario(category="business_logic", type="outside_hours"),
            PlaceholderContext(hours="noon to midnight"),
        )
        template = get_fallback_library().lookup("business_logic", "outside_hours")
        assert "{hours}" in template.primary

    def test_placeholder_tokens_are_case_insensitive(self):
        table = {
            ScenarioCategory.BUSINESS_LOGIC: {
                "custom": FallbackResponse(primary="Call {PHONE} or ask {BusinessName}."),
            }
        }
        from src.aloha.fallback_responses import FallbackLibrary

        resolver = ScenarioResolver(FallbackLibrary(table))
        response = resolver.resolve(
            DetectedScenario(category="business_logic", type="custom"),
            PlaceholderContext(phone="555-0199", business_name="Acme"),
        )
        assert response.primary == "Call 555-0199 or ask Acme."


class TestSafetyExit:
    @pytest.mark.parametrize(
        "category,type_",
        [
            ("emotional_social", "emergency"),
            ("business_logic", "unsubscribe_dnc"),
            ("identity_issues", "child"),
            ("identity_issues", "not_intended_customer"),
        ],
    )
    def test_safety_types_always_exit(self, category, type_):
        response = ScenarioResolver().resolve(DetectedScenario(category=category, type=type_))
        assert response.should_exit is True

    def test_safety_type_forces_exit_even_if_table_entry_does_not(self):
        from src.aloha.fallback_responses import FallbackLibrary

        table = {ScenarioCategory.EMOTIONAL_SOCIAL: {"emergency": FallbackResponse(primary="Stay calm.")}}
        response = ScenarioResolver(FallbackLibrary(table)).resolve(
            DetectedScenario(category="emotional_social", type="emergency")
        )
        assert response.should_exit is True

    def test_regular_scenarios_do_not_exit(self):
        response = ScenarioResolver().resolve(DetectedScenario(category="emotional_social", type="angry"))
        assert response.should_exit is False


class TestResolveRandom:
    def test_picks_from_primary_and_alternatives(self):
        scenario = DetectedScenario(category="business_logic", type="outside_hours")
        context = PlaceholderContext(hours="9 to 5")
        expected = ScenarioResolver().resolve(scenario, context).candidates()

        resolver = ScenarioResolver(rng=ScriptedRandom(picks=[1]))
        assert resolver.resolve_random(scenario, context) == expected[1]

    def test_normal_returns_empty_string(self):
        resolver = ScenarioResolver(rng=ScriptedRandom())
        assert resolver.resolve_random(DetectedScenario.normal()) == ""

    def test_deterministic_with_seeded_source(self):
        import random

        scenario = DetectedScenario(category="emotional_social", type="angry")
        first = [ScenarioResolver(rng=random.Random(7)).resolve_random(scenario) for _ in range(3)]
        second = [ScenarioResolver(rng=random.Random(7)).resolve_random(scenario) for _ in range(3)]
        assert first == second

    def test_empty_alternatives_are_skipped(self):
        from src.aloha.fallback_responses import FallbackLibrary

        table = {
            ScenarioCategory.CALLER_BEHAVIOR: {
                "odd": FallbackResponse(primary="Only this.", alternatives=("", "")),
            }
        }
        resolver = ScenarioResolver(FallbackLibrary(table), rng=ScriptedRandom(picks=[0]))
        assert resolver.resolve_random(DetectedScenario(category="caller_behavior", type="odd")) == "Only this."
