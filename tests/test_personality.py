"""
Tests for the persona rule pipeline.
"""

import dataclasses
import random

import pytest

from conftest import ScriptedRandom
from src.aloha.call_state import CallContext, CallState
from src.aloha.personality import (
    EXIT_ACKNOWLEDGMENT,
    FOLLOW_UP_COMMITMENT,
    FOLLOW_UP_CONFIRMATION,
    PersonalityRuleContext,
    PersonalityRules,
)
from src.aloha.tone_presets import TonePresetKey, get_tone_presets

NOW = 10_000.0


def _clock() -> float:
    return NOW


def _rules(rng=None, **kwargs) -> PersonalityRules:
    return PersonalityRules(rng or ScriptedRandom(), clock=_clock, **kwargs)


def _preset(key=TonePresetKey.FRIENDLY, max_sentence_length=None):
    preset = get_tone_presets().get(key)
    if max_sentence_length is not None:
        preset = dataclasses.replace(preset, max_sentence_length=max_sentence_length)
    return preset


def _ctx(*, state=CallState.GREETING, preset=None, closing=False, agent_name="Aloha", **call_fields):
    call_fields.setdefault("started_at", NOW - 5)
    return PersonalityRuleContext(
        state=state,
        tone_preset=preset or _preset(),
        call_context=CallContext(**call_fields),
        is_closing=closing,
        business_name="Sunny Dental",
        agent_name=agent_name,
    )


def _reminder_ctx(purpose_age: float, *, call_age: float = 121.0, purpose="confirm your appointment"):
    return _ctx(
        state=CallState.INTERACTION,
        started_at=NOW - call_age,
        has_delivered_purpose=True,
        purpose_delivered_at=NOW - purpose_age,
        campaign_purpose=purpose,
    )


class TestRuleOrder:
    def test_fixed_rule_order(self):
        assert _rules().rule_names() == (
            "calm_and_polite",
            "honest_limitations",
            "brevity",
            "one_question_at_a_time",
            "purpose_reminder",
            "ai_identity",
            "caller_boundaries",
            "clean_closing",
            "banned_phrases",
        )

    def test_same_seed_same_output(self):
        text = "You must bring your card. I'm not sure about parking? Maybe? Call us? Thanks."
        ctx_a = _reminder_ctx(40.0)
        ctx_b = _reminder_ctx(40.0)
        ctx_a.is_closing = ctx_b.is_closing = True

        first = _rules(random.Random(1234)).apply(text, ctx_a)
        second = _rules(random.Random(1234)).apply(text, ctx_b)
        assert first == second

    def test_reminder_is_added_after_brevity(self):
        long_text = (
            "Your visit is booked for Monday morning at nine. "
            "We will send a text message the day before with directions and parking details."
        )
        result = _rules().apply(long_text, _reminder_ctx(60.0))
        assert "Just as a reminder, I'm calling to confirm your appointment." in result

    def test_scrub_sees_text_added_by_earlier_rules(self):
        ctx = _reminder_ctx(60.0, purpose="explain that as an AI I can book visits")
        result = _rules().apply("Sounds good.", ctx)
        assert "as an ai" not in result.lower()
        assert "I'm Aloha" in result


class TestCalmAndPolite:
    def test_command_tone_is_softened(self):
        assert _rules().apply("You must bring your ID.", _ctx()) == "I'd recommend bring your ID."

    def test_correction_is_softened(self):
        result = _rules().apply("That's wrong, the office opens at nine.", _ctx())
        assert result == "let me clarify, the office opens at nine."

    def test_polite_phrase_injected_when_random_fires(self):
        rules = _rules(ScriptedRandom(floats=[0.1], picks=[2]))
        assert rules.apply("Your appointment is set.", _ctx()) == "I understand. Your appointment is set."

    def test_no_injection_when_already_polite(self):
        rules = _rules(ScriptedRandom(floats=[0.1], picks=[0]))
        assert rules.apply("Please hold on.", _ctx()) == "Please hold on."


class TestHonestLimitations:
    def test_uncertainty_gets_follow_up_commitment(self):
        ctx = _ctx(preset=_preset(max_sentence_length=40))
        result = _rules().apply("I'm not sure about that.", ctx)
        assert result == f"I'm not sure about that. {FOLLOW_UP_COMMITMENT}"

    def test_existing_follow_up_is_kept_as_is(self):
        text = "I'm not sure, but someone will call back."
        assert _rules().apply(text, _ctx()) == text


class TestBrevity:
    def test_short_text_untouched(self):
        assert _rules().apply("See you Monday.", _ctx()) == "See you Monday."

    def test_fillers_stripped_then_truncated_at_sentence(self):
        text = (
            "I just wanted to let you know that your appointment is really very important to us. "
            "We will see you tomorrow at ten. Bring your insurance card please."
        )
        assert _rules().apply(text, _ctx()) == "Your appointment is important to us..."

    def test_compression_alone_can_satisfy_budget(self):
        text = "Your appointment is actually really very quite basically confirmed for Monday morning."
        result = _rules().apply(text, _ctx())
        assert result == "Your appointment is confirmed for Monday morning."

    def test_single_long_sentence_cut_at_word_boundary(self):
        text = "Your " + "lovely " * 30 + "appointment is confirmed"
        result = _rules().apply(text, _ctx())
        assert result.endswith("...")
        assert len(result) <= 60 + 3
        assert set(result[:-3].split()) <= {"Your", "lovely"}

    @pytest.mark.parametrize("key", list(TonePresetKey))
    @pytest.mark.parametrize(
        "text",
        [
            "We have openings on Monday, Tuesday, and Wednesday. Thursday is fully booked. "
            "Friday has a few late slots. The weekend is closed.",
            "Your new patient paperwork can be completed online before the visit, and if you bring "
            "it printed that works too, and the front desk can also help you fill it in",
            "Okay. Sure. Yes. Fine. Great. Perfect. Lovely. Done. Next. Right. Good. Thanks everyone.",
        ],
    )
    def test_length_bound_holds(self, key, text):
        preset = _preset(key)
        result = _rules().apply(text, _ctx(preset=preset))
        assert len(result) <= preset.max_sentence_length * 3 + len("...")
        source_words = {w.strip(".,!?") for w in text.split()}
        for word in result[:-3].split():
            assert word.strip(".,!?") in source_words

    @pytest.mark.parametrize("agent_name", ["Aloha", "Kailani Makoa"])
    def test_length_bound_holds_after_scrub(self, agent_name):
        preset = _preset()
        text = "As an AI as an AI as an AI ok. " * 3
        result = _rules().apply(text, _ctx(preset=preset, agent_name=agent_name))
        assert len(result) <= preset.max_sentence_length * 3 + len("...")
        assert "as an ai" not in result.lower()
        assert result.startswith(f"I'm {agent_name}")


class TestOneQuestion:
    def test_only_first_question_kept(self):
        ctx = _ctx(preset=_preset(max_sentence_length=40))
        text = "Can you come Monday? Or Tuesday? Or maybe Wednesday? Which works?"
        assert _rules().apply(text, ctx) == "Can you come Monday? Or Tuesday. Or maybe Wednesday. Which works."

    def test_two_questions_allowed(self):
        text = "Monday? Or Tuesday?"
        assert _rules().apply(text, _ctx()) == text


class TestPurposeReminder:
    def test_injected_after_thresholds(self):
        result = _rules().apply("Thanks for holding. Your visit is on Monday.", _reminder_ctx(31.0))
        assert result == (
            "Thanks for holding. Just as a reminder, I'm calling to confirm your appointment. "
            "Your visit is on Monday."
        )

    def test_not_injected_when_purpose_is_recent(self):
        result = _rules().apply("Thanks for holding. Your visit is on Monday.", _reminder_ctx(10.0))
        assert "Just as a reminder" not in result

    def test_not_injected_in_short_call(self):
        result = _rules().apply("Sounds good.", _reminder_ctx(31.0, call_age=60.0))
        assert "Just as a reminder" not in result

    def test_prefix_placement(self):
        rules = _rules(ScriptedRandom(floats=[0.99, 0.1]))
        result = rules.apply("Thanks for holding. Your visit is on Monday.", _reminder_ctx(31.0))
        assert result.startswith("Just as a reminder, I'm calling to confirm your appointment. Thanks")

    def test_appended_when_no_sentence_boundary(self):
        result = _rules().apply("Sounds good.", _reminder_ctx(31.0))
        assert result == "Sounds good. Just as a reminder, I'm calling to confirm your appointment."

    def test_requires_interaction_state(self):
        ctx = _reminder_ctx(31.0)
        ctx.state = CallState.TASK_HANDLING
        assert "Just as a reminder" not in _rules().apply("Sounds good.", ctx)

    def test_requires_campaign_purpose(self):
        ctx = _reminder_ctx(31.0, purpose=None)
        assert _rules().apply("Sounds good.", ctx) == "Sounds good."

    def test_thresholds_are_configurable(self):
        rules = _rules(min_call_seconds=10.0, min_purpose_age_seconds=5.0)
        ctx = _reminder_ctx(6.0, call_age=11.0)
        assert "Just as a reminder" in rules.apply("Sounds good.", ctx)


class TestAIIdentity:
    def test_disclosure_prepended_when_challenged(self):
        ctx = _ctx(last_user_utterance="Hold on, are you human?")
        result = _rules().apply("Your appointment is on Monday.", ctx)
        assert result == (
            "I'm Aloha, a virtual assistant for Sunny Dental, and I'm here to help. "
            "Your appointment is on Monday."
        )

    def test_no_disclosure_when_already_identified(self):
        ctx = _ctx(last_user_utterance="who am I talking to")
        text = "This is Aloha from Sunny Dental."
        assert _rules().apply(text, ctx) == text

    def test_no_disclosure_without_challenge(self):
        ctx = _ctx(last_user_utterance="What time do you open?")
        assert _rules().apply("We open at nine.", ctx) == "We open at nine."


class TestCallerBoundaries:
    def test_exit_acknowledged(self):
        result = _rules().apply("Okay.", _ctx(exit_requested=True))
        assert result == f"Okay. {EXIT_ACKNOWLEDGMENT}"

    def test_follow_up_confirmed(self):
        result = _rules().apply("Okay.", _ctx(needs_human_followup=True))
        assert result == f"Okay. {FOLLOW_UP_CONFIRMATION}"

    def test_existing_acknowledgment_not_duplicated(self):
        text = "Goodbye for now."
        assert _rules().apply(text, _ctx(exit_requested=True)) == text


class TestCleanClosing:
    def test_sign_off_added_when_closing(self):
        rules = _rules(ScriptedRandom(picks=[1]))
        result = rules.apply("Your booking is confirmed.", _ctx(closing=True))
        assert result == "Your booking is confirmed. Thank you for calling. Have a wonderful day!"

    def test_existing_sign_off_kept(self):
        text = "Thanks again, bye."
        assert _rules().apply(text, _ctx(closing=True)) == text

    def test_no_sign_off_outside_closing(self):
        assert _rules().apply("Your booking is confirmed.", _ctx()) == "Your booking is confirmed."


class TestBannedPhrases:
    def test_as_an_ai_replaced(self):
        result = _rules().apply("as an AI, I can help", _ctx())
        assert "as an ai" not in result.lower()
        assert result == "I'm Aloha, I can help"

    @pytest.mark.parametrize(
        "text",
        ["As an artificial intelligence I can help.", "I'm just a bot, sorry.", "I'm just a robot."],
    )
    def test_other_banned_phrases(self, text):
        result = _rules().apply(text, _ctx(agent_name="Kai"))
        assert "I'm Kai" in result
        for banned in ("artificial intelligence", "just a bot", "just a robot"):
            assert banned not in result.lower()
